"""
Durable offline queue
---------------------
Mutations made while the kiosk is offline are written here and replayed
later in enqueue order. Layout (all keys under OFFLINE_QUEUE_PREFIX):

  {p}:op:{id}        JSON PendingOperation
  {p}:pending        LIST of ids, oldest first
  {p}:failed         LIST of ids that hit a permanent error or ran out of attempts
  {p}:replayed       LIST of ids delivered by replay (entries expire)
  {p}:dedupe:{fp}    id of the pending operation with the same fingerprint

enqueue() returns only after the MULTI/EXEC that writes the entry has
completed; any Redis error surfaces as QueueFailure.
"""
import json
from typing import Any, Dict, List, Optional
import uuid

from redis.exceptions import RedisError

from kiosk.core.errors import QueueFailure
from kiosk.core.models import FAILED, PENDING, REPLAYED, PendingOperation
from kiosk.observability.logging import log
from kiosk.settings import settings
from kiosk.store.redis_conn import get_async_redis
from kiosk.utils.time import now_ms

# Fields that identify "the same mutation" for a given operation kind.
DEDUPE_FIELDS = {
    "CHECK_IN_GOWN": ("bookingId", "rfid"),
    "CHANGE_GOWN": ("bookingId", "newRfid"),
    "MARK_PHOTO_START": ("contactId",),
}

# Replayed entries are kept around briefly for the admin view
REPLAYED_TTL_SEC = 86400


def dedupe_fingerprint(kind: str, payload: Dict[str, Any]) -> Optional[str]:
    fields = DEDUPE_FIELDS.get(kind)
    if not fields:
        return None
    data = payload.get("data", payload) or {}
    parts = [str(data.get(f) or "").upper() for f in fields]
    if not any(parts):
        return None
    return f"{kind}:" + ":".join(parts)


class RedisOfflineQueue:
    def __init__(self, redis=None, prefix: Optional[str] = None):
        self._redis = redis
        self.prefix = prefix or settings.OFFLINE_QUEUE_PREFIX

    @property
    def r(self):
        if self._redis is None:
            self._redis = get_async_redis()
        return self._redis

    def _op_key(self, op_id: str) -> str:
        return f"{self.prefix}:op:{op_id}"

    @property
    def _pending_key(self) -> str:
        return f"{self.prefix}:pending"

    @property
    def _failed_key(self) -> str:
        return f"{self.prefix}:failed"

    @property
    def _replayed_key(self) -> str:
        return f"{self.prefix}:replayed"

    def _dedupe_key(self, fingerprint: str) -> str:
        return f"{self.prefix}:dedupe:{fingerprint}"

    async def enqueue(self, kind: str, payload: Dict[str, Any], operation_key: str = "") -> str:
        """
        Persist one operation and return its id once the write is acknowledged.
        A pending entry with the same fingerprint is returned instead of a new one.
        """
        op = PendingOperation(
            id=uuid.uuid4().hex,
            kind=kind,
            payload=payload,
            operationKey=operation_key or uuid.uuid4().hex,
        )
        fingerprint = dedupe_fingerprint(kind, payload)
        try:
            if fingerprint:
                claimed = await self.r.set(self._dedupe_key(fingerprint), op.id, nx=True)
                if not claimed:
                    existing_id = await self.r.get(self._dedupe_key(fingerprint))
                    existing = await self.get(existing_id) if existing_id else None
                    if existing is not None and existing.status == PENDING:
                        log(event="offline_queue_duplicate", kind=kind, pendingId=existing.id)
                        return existing.id
                    # stale pointer: take it over
                    await self.r.set(self._dedupe_key(fingerprint), op.id)

            async with self.r.pipeline(transaction=True) as pipe:
                pipe.set(self._op_key(op.id), json.dumps(op.to_dict()))
                pipe.rpush(self._pending_key, op.id)
                await pipe.execute()
        except RedisError as e:
            log(event="offline_queue_write_failed", kind=kind, errorType=type(e).__name__, error=str(e)[:200])
            if fingerprint:
                await self._drop_dedupe_pointer(fingerprint, op.id)
            raise QueueFailure("Could not save the operation offline.", {"kind": kind}) from e

        log(event="offline_queue_enqueued", kind=kind, pendingId=op.id, operationKey=op.operationKey)
        return op.id

    async def _drop_dedupe_pointer(self, fingerprint: str, op_id: str) -> None:
        try:
            if await self.r.get(self._dedupe_key(fingerprint)) == op_id:
                await self.r.delete(self._dedupe_key(fingerprint))
        except RedisError:
            pass

    async def get(self, op_id: str) -> Optional[PendingOperation]:
        raw = await self.r.get(self._op_key(op_id))
        if not raw:
            return None
        return PendingOperation.from_dict(json.loads(raw))

    async def _save(self, op: PendingOperation) -> None:
        await self.r.set(self._op_key(op.id), json.dumps(op.to_dict()))

    async def pending(self, limit: Optional[int] = None) -> List[PendingOperation]:
        """Pending operations, oldest first."""
        end = -1 if not limit else int(limit) - 1
        ids = await self.r.lrange(self._pending_key, 0, end) or []
        out: List[PendingOperation] = []
        for op_id in ids:
            op = await self.get(op_id)
            if op is not None and op.status == PENDING:
                out.append(op)
        return out

    async def failed(self, limit: int = 100) -> List[PendingOperation]:
        ids = await self.r.lrange(self._failed_key, 0, max(0, int(limit) - 1)) or []
        out: List[PendingOperation] = []
        for op_id in ids:
            op = await self.get(op_id)
            if op is not None:
                out.append(op)
        return out

    async def depth(self) -> int:
        return int(await self.r.llen(self._pending_key) or 0)

    async def increment_attempts(self, op_id: str, error: str = "") -> Optional[PendingOperation]:
        op = await self.get(op_id)
        if op is None:
            return None
        op.attempts += 1
        op.error = error or op.error
        await self._save(op)
        return op

    async def mark_replayed(self, op_id: str) -> None:
        op = await self.get(op_id)
        if op is None:
            return
        op.status = REPLAYED
        op.error = None
        await self._finish(op, failed=False)

    async def mark_failed(self, op_id: str, error: str) -> None:
        op = await self.get(op_id)
        if op is None:
            return
        op.status = FAILED
        op.error = error
        await self._finish(op, failed=True)

    async def _finish(self, op: PendingOperation, failed: bool) -> None:
        fingerprint = dedupe_fingerprint(op.kind, op.payload)
        async with self.r.pipeline(transaction=True) as pipe:
            if failed:
                pipe.set(self._op_key(op.id), json.dumps(op.to_dict()))
                pipe.rpush(self._failed_key, op.id)
            else:
                pipe.set(self._op_key(op.id), json.dumps(op.to_dict()), ex=REPLAYED_TTL_SEC)
                pipe.rpush(self._replayed_key, op.id)
            pipe.lrem(self._pending_key, 0, op.id)
            await pipe.execute()
        if fingerprint:
            await self._drop_dedupe_pointer(fingerprint, op.id)

    async def retry_failed(self, op_id: str) -> bool:
        """Move a failed entry back to the tail of the pending list (admin action)."""
        op = await self.get(op_id)
        if op is None or op.status != FAILED:
            return False
        op.status = PENDING
        op.attempts = 0
        op.enqueuedAt = now_ms()
        async with self.r.pipeline(transaction=True) as pipe:
            pipe.set(self._op_key(op.id), json.dumps(op.to_dict()))
            pipe.lrem(self._failed_key, 0, op.id)
            pipe.rpush(self._pending_key, op.id)
            await pipe.execute()
        log(event="offline_queue_requeued", pendingId=op.id, kind=op.kind)
        return True

    async def clear_replayed(self) -> int:
        ids = await self.r.lrange(self._replayed_key, 0, -1) or []
        if not ids:
            return 0
        async with self.r.pipeline(transaction=True) as pipe:
            for op_id in ids:
                pipe.delete(self._op_key(op_id))
            pipe.delete(self._replayed_key)
            await pipe.execute()
        log(event="offline_queue_replayed_cleared", count=len(ids))
        return len(ids)
