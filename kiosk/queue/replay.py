"""
Replays the durable offline queue against the backend, oldest first.

Each pending entry is replayed with the operation key it was queued with,
step by step, so a step that already reached the backend (for example the
release half of a gown change) is acknowledged again instead of applied twice.
"""
from typing import Any, Dict, List

from kiosk.backend.client import is_permanent_message
from kiosk.core.errors import DomainRejection, KioskError
from kiosk.core.models import OperationStep, PendingOperation
from kiosk.observability.logging import log
from kiosk.settings import settings
import kiosk.observability.metrics as metrics


def steps_for(op: PendingOperation) -> List[OperationStep]:
    raw = (op.payload or {}).get("steps") or []
    return [OperationStep(s.get("action", ""), dict(s.get("params") or {})) for s in raw]


def _is_permanent(e: KioskError) -> bool:
    if isinstance(e, DomainRejection):
        return True
    return is_permanent_message(e.message)


async def replay_operation(queue, backend, op: PendingOperation, max_attempts: int) -> str:
    """Returns "replayed", "failed" or "retry"."""
    steps = steps_for(op)
    if not steps:
        await queue.mark_failed(op.id, "No steps recorded for this operation")
        return "failed"
    try:
        for step in steps:
            await backend.perform(step, op.operationKey)
    except KioskError as e:
        if _is_permanent(e):
            await queue.mark_failed(op.id, e.message)
            log(event="replay_permanent_failure", pendingId=op.id, kind=op.kind, error=e.message)
            return "failed"
        updated = await queue.increment_attempts(op.id, e.message)
        attempts = updated.attempts if updated is not None else op.attempts + 1
        if attempts >= max_attempts:
            await queue.mark_failed(op.id, f"Max retry attempts reached: {e.message}")
            log(event="replay_attempts_exhausted", pendingId=op.id, kind=op.kind, attempts=attempts)
            return "failed"
        log(event="replay_retry_scheduled", pendingId=op.id, kind=op.kind, attempts=attempts)
        return "retry"
    await queue.mark_replayed(op.id)
    return "replayed"


async def replay(queue, backend, limit: int = 0, max_attempts: int = 0) -> Dict[str, Any]:
    """
    Process pending operations. Stops early on the first retryable failure so
    later entries are not applied ahead of an earlier one.
    """
    limit = int(limit or settings.REPLAY_BATCH_LIMIT)
    max_attempts = int(max_attempts or settings.REPLAY_MAX_ATTEMPTS)
    pending = await queue.pending(limit)
    summary: Dict[str, Any] = {"total": len(pending), "replayed": 0, "failed": 0, "retry": 0, "errors": []}

    for op in pending:
        result = await replay_operation(queue, backend, op, max_attempts)
        summary[result] += 1
        if result == "replayed":
            await metrics.emit(metrics.increment_replay_delivered)
        elif result == "failed":
            await metrics.emit(metrics.increment_replay_failed)
            current = await queue.get(op.id)
            summary["errors"].append({"id": op.id, "kind": op.kind, "error": current.error if current else ""})
        else:
            break

    log(event="replay_complete", **{k: v for k, v in summary.items() if k != "errors"})
    return summary
