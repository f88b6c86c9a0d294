from fastapi import APIRouter, Depends, HTTPException
from starlette.concurrency import run_in_threadpool

from kiosk.api.auth import require_admin
from kiosk.api.deps import get_backend, get_connectivity, get_offline_queue, get_registry
from kiosk.api.schemas import ConnectivityRequest
from kiosk.core.connectivity import ConnectivityMonitor
from kiosk.core.registry import SessionRegistry
from kiosk.queue.jobs import enqueue_replay
from kiosk.queue.replay import replay
import kiosk.observability.metrics as metrics

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/queue")
async def get_queue_snapshot(limit: int = 50, queue=Depends(get_offline_queue)):
    """Pending and failed offline operations, oldest first."""
    pending = await queue.pending(limit)
    failed = await queue.failed(limit)
    return {
        "depth": await queue.depth(),
        "pending": [op.to_dict() for op in pending],
        "failed": [op.to_dict() for op in failed],
    }


@router.post("/queue/replay")
async def replay_queue(mode: str = "inline", limit: int = 0,
                       queue=Depends(get_offline_queue), backend=Depends(get_backend),
                       connectivity: ConnectivityMonitor = Depends(get_connectivity)):
    if mode == "enqueue":
        job_id = await run_in_threadpool(enqueue_replay, limit)
        return {"mode": "enqueue", "jobId": job_id}
    if mode != "inline":
        raise HTTPException(status_code=422, detail="mode must be 'inline' or 'enqueue'")
    if not await connectivity.recheck():
        raise HTTPException(status_code=409, detail="Kiosk is offline")
    return {"mode": "inline", **(await replay(queue, backend, limit=limit))}


@router.post("/queue/{op_id}/retry")
async def retry_failed_operation(op_id: str, queue=Depends(get_offline_queue)):
    if not await queue.retry_failed(op_id):
        raise HTTPException(status_code=404, detail="No failed operation with this id")
    return {"id": op_id, "status": "pending"}


@router.delete("/queue/replayed")
async def clear_replayed_operations(queue=Depends(get_offline_queue)):
    return {"cleared": await queue.clear_replayed()}


@router.get("/metrics")
async def get_metrics():
    """Observability snapshot backed by Redis counters."""
    return await run_in_threadpool(metrics.get_kiosk_snapshot)


@router.get("/connectivity")
def get_connectivity_snapshot(connectivity: ConnectivityMonitor = Depends(get_connectivity)):
    return connectivity.snapshot()


@router.post("/connectivity")
def set_connectivity(req: ConnectivityRequest, connectivity: ConnectivityMonitor = Depends(get_connectivity)):
    connectivity.set_forced_offline(req.offline)
    return connectivity.snapshot()


@router.post("/connectivity/check")
async def check_connectivity(connectivity: ConnectivityMonitor = Depends(get_connectivity)):
    await connectivity.check()
    return connectivity.snapshot()


@router.get("/sessions")
def get_sessions(registry: SessionRegistry = Depends(get_registry)):
    return registry.snapshot()
