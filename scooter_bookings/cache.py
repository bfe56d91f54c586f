import json
from datetime import date
from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from scooter_bookings.settings import REDIS_URL, SLOTS_CACHE_TTL

_redis: Redis | None = None


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def _slots_key(
    pool_id: UUID, day: date, start_block: int, duration: int, customer_id: UUID
) -> str:
    return f"slots:{pool_id}:{day.isoformat()}:{start_block}:{duration}:{customer_id}"


async def get_slots_cache(
    pool_id: UUID, day: date, start_block: int, duration: int, customer_id: UUID
) -> list | None:
    try:
        key = _slots_key(pool_id, day, start_block, duration, customer_id)
        data = await get_redis().get(key)
        return json.loads(data) if data else None
    except Exception:
        logger.warning("Redis get failed, skipping slots cache", exc_info=True)
        return None


async def set_slots_cache(
    pool_id: UUID,
    day: date,
    start_block: int,
    duration: int,
    customer_id: UUID,
    slots: list,
) -> None:
    try:
        await get_redis().setex(
            _slots_key(pool_id, day, start_block, duration, customer_id),
            SLOTS_CACHE_TTL,
            json.dumps(slots),
        )
    except Exception:
        logger.warning("Redis set failed, skipping slots cache", exc_info=True)


async def invalidate_slots_cache(pool_id: UUID) -> None:
    """Drop every cached slot list of the pool, whatever day, duration or customer."""
    try:
        redis = get_redis()
        keys = [k async for k in redis.scan_iter(match=f"slots:{pool_id}:*")]
        if keys:
            await redis.delete(*keys)
    except Exception:
        logger.warning("Redis invalidate failed for slots cache", exc_info=True)
