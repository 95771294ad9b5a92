from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.shared.utils.logger import get_logger

from .config import settings

logger = get_logger(__name__)

_client: Optional[Redis] = None


def get_client() -> Redis:
    global _client
    if _client is None:
        _client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
        )
    return _client


async def close():
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


async def check_connection() -> bool:
    """Ping для /health, ошибки не пробрасываются"""
    try:
        return bool(await get_client().ping())
    except (RedisError, OSError) as e:
        logger.warning(f"Redis health check failed: {e}")
        return False
