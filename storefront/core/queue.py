from urllib.parse import urlparse

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from storefront.core.config import get_settings


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
        ssl=u.scheme == "rediss",
    )


async def create_queue_pool() -> ArqRedis:
    return await create_pool(get_redis_settings())
