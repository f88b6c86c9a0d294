import json
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from kiosk.backend.client import BackendClient
from kiosk.core.connectivity import ConnectivityMonitor
from kiosk.core.errors import TransientError
from kiosk.core.models import EventContext, LookupResult, NotFound
from kiosk.observability.logging import log
from kiosk.settings import settings
from kiosk.store.redis_conn import get_async_redis
from kiosk.utils.time import now_ms

GOWN = "gown"
BOOKING = "booking"


class OfflineCacheMiss(TransientError):
    pass


class LookupService:
    """
    Online lookups go to the backend and are cached; while offline the cache
    answers. A network failure during an online lookup flips connectivity
    and falls through to the cache.
    """

    def __init__(self, client: BackendClient, connectivity: ConnectivityMonitor, redis=None):
        self.client = client
        self.connectivity = connectivity
        self._redis = redis

    @property
    def r(self):
        if self._redis is None:
            self._redis = get_async_redis()
        return self._redis

    @staticmethod
    def _cache_key(resource: str, identifier: str, event_context: EventContext) -> str:
        if resource == GOWN:
            return f"lookup:gown:{identifier}"
        return f"lookup:booking:{event_context.eventId}:{identifier}"

    async def _remote(self, resource: str, identifier: str, event_context: EventContext) -> Optional[Dict[str, Any]]:
        if resource == GOWN:
            return await self.client.fetch_gown(identifier)
        return await self.client.fetch_booking_by_gown(identifier, event_context)

    async def fetch(self, resource: str, identifier: str, event_context: EventContext) -> Optional[Dict[str, Any]]:
        if await self.connectivity.recheck():
            try:
                record = await self._remote(resource, identifier, event_context)
            except TransientError as e:
                if not e.detail.get("network"):
                    raise
                self.connectivity.mark_down("lookup")
            else:
                if record is not None:
                    await self._cache_put(resource, identifier, event_context, record)
                return record

        cached = await self._cache_get(resource, identifier, event_context)
        if cached is None:
            log(event="lookup_offline_cache_miss", resource=resource, identifier=identifier)
            raise OfflineCacheMiss("This item is not available offline.", {"resource": resource})
        log(event="lookup_offline_cache_hit", resource=resource, identifier=identifier)
        return cached

    async def _cache_put(self, resource: str, identifier: str, event_context: EventContext, record: Dict[str, Any]) -> None:
        try:
            await self.r.set(
                self._cache_key(resource, identifier, event_context),
                json.dumps({"record": record, "cachedAt": now_ms()}, default=str),
                ex=int(settings.LOOKUP_CACHE_TTL_SEC),
            )
        except RedisError as e:
            log(event="lookup_cache_write_failed", errorType=type(e).__name__)

    async def _cache_get(self, resource: str, identifier: str, event_context: EventContext) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.r.get(self._cache_key(resource, identifier, event_context))
        except RedisError as e:
            log(event="lookup_cache_read_failed", errorType=type(e).__name__)
            return None
        if not raw:
            return None
        return (json.loads(raw) or {}).get("record")


class SurfaceLookup:
    """lookup_by_identifier() for one surface: fetch, then let the profile interpret."""

    def __init__(self, service: LookupService, profile):
        self.service = service
        self.profile = profile

    async def lookup_by_identifier(self, identifier: str, event_context: EventContext) -> LookupResult:
        try:
            record = await self.service.fetch(self.profile.lookup_resource, identifier, event_context)
        except OfflineCacheMiss:
            if self.profile.offline_miss_is_not_found:
                return NotFound()
            raise
        return self.profile.interpret(record, event_context, now_ms())
