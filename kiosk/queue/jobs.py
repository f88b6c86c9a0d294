import asyncio

from kiosk.backend.client import BackendClient
from kiosk.observability.logging import log
from kiosk.queue.offline_queue import RedisOfflineQueue
from kiosk.queue.replay import replay
from kiosk.queue.rq_conn import get_queue


def replay_pending_operations_job(limit: int = 0):
    """
    Background job run by the RQ worker: drain the offline queue once.
    Entries that fail transiently stay pending for the next run.
    """
    try:
        log(event="replay_job_start", limit=int(limit or 0))
        return asyncio.run(replay(RedisOfflineQueue(), BackendClient(), limit=limit))
    except Exception as e:
        log(event="replay_job_exception", errorType=type(e).__name__, error=str(e)[:300])
        raise


def enqueue_replay(limit: int = 0) -> str:
    job = get_queue().enqueue(replay_pending_operations_job, limit)
    log(event="replay_job_enqueued", jobId=job.id)
    return job.id
