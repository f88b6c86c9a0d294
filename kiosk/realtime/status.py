"""
Realtime transaction status
---------------------------
Payment terminals report checkout progress on Redis pub/sub channels
`transaction:{transactionId}` as JSON {"status": "PENDING|COMPLETED|CANCELED"}.
The listener forwards each message to the state machine that owns the
transaction; the webhook route publishes on the same channel.
"""
import asyncio
import json
from typing import Optional

from redis.exceptions import RedisError

from kiosk.core.models import TXN_STATUSES
from kiosk.observability.logging import log
from kiosk.store.redis_conn import get_async_redis

CHANNEL_PREFIX = "transaction:"


def channel_for(transaction_id: str) -> str:
    return f"{CHANNEL_PREFIX}{transaction_id}"


def parse_status_message(data) -> Optional[str]:
    try:
        body = json.loads(data) if isinstance(data, (str, bytes)) else data
    except ValueError:
        return None
    status = str((body or {}).get("status") or "").upper() if isinstance(body, dict) else ""
    return status if status in TXN_STATUSES else None


async def publish_status(transaction_id: str, status: str, redis=None) -> int:
    r = redis or get_async_redis()
    return int(await r.publish(channel_for(transaction_id), json.dumps({"status": str(status).upper()})))


class TransactionStatusListener:
    def __init__(self, registry, redis=None):
        self.registry = registry
        self._redis = redis
        self._task: Optional[asyncio.Task] = None

    @property
    def r(self):
        if self._redis is None:
            self._redis = get_async_redis()
        return self._redis

    async def handle_message(self, message: dict) -> bool:
        if not message or message.get("type") != "pmessage":
            return False
        channel = message.get("channel") or ""
        transaction_id = channel[len(CHANNEL_PREFIX):] if channel.startswith(CHANNEL_PREFIX) else ""
        status = parse_status_message(message.get("data"))
        if not transaction_id or status is None:
            log(event="transaction_status_malformed", channel=channel)
            return False
        machine = self.registry.find_by_transaction(transaction_id)
        if machine is None:
            log(event="transaction_status_unrouted", transactionId=transaction_id, status=status)
            return False
        await machine.transaction_status(transaction_id, status)
        return True

    async def run(self) -> None:
        pubsub = self.r.pubsub()
        await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
        log(event="transaction_listener_started")
        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is not None:
                    await self.handle_message(message)
        except RedisError as e:
            log(event="transaction_listener_failed", errorType=type(e).__name__, error=str(e)[:200])
            raise
        finally:
            await pubsub.aclose()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except RedisError:
                pass
            self._task = None
