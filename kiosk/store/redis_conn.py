from redis import Redis
from redis.asyncio import Redis as AsyncRedis
from kiosk.settings import settings


def get_redis(**kwargs) -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True, **kwargs)


def get_async_redis() -> AsyncRedis:
    return AsyncRedis.from_url(settings.REDIS_URL, decode_responses=True)
