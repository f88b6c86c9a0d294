import uuid
from typing import Optional

from kiosk.store.redis_conn import get_async_redis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_REFRESH_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class SurfaceClaim:
    """
    Cross-process ownership of one kiosk surface instance.
    Only the holder of the token may refresh or release it. The TTL is short
    and the holder keeps refreshing it, so a crashed process frees the kiosk
    within one TTL.
    """

    def __init__(self, surface: str, kiosk_id: str, ttl_ms: int, redis=None):
        self.key = f"lock:kiosk:{surface}:{kiosk_id}"
        self.ttl_ms = int(ttl_ms)
        self.token: Optional[str] = None
        self._redis = redis

    @property
    def r(self):
        if self._redis is None:
            self._redis = get_async_redis()
        return self._redis

    async def acquire(self) -> bool:
        token = uuid.uuid4().hex
        if await self.r.set(self.key, token, px=self.ttl_ms, nx=True):
            self.token = token
            return True
        return False

    async def refresh(self) -> bool:
        """False when the claim expired and someone else may hold it now."""
        if self.token is None:
            return False
        return bool(await self.r.eval(_REFRESH_SCRIPT, 1, self.key, self.token, self.ttl_ms))

    async def release(self) -> bool:
        if self.token is None:
            return False
        try:
            return bool(await self.r.eval(_RELEASE_SCRIPT, 1, self.key, self.token))
        finally:
            self.token = None
