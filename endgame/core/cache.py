import logging
from typing import Optional
from uuid import UUID

import redis.asyncio as redis
from redis.exceptions import WatchError

from endgame.config_secrets import FEED_CACHE_TTL, PROFILE_CACHE_TTL, REDIS_URL
from endgame.schemas.schemas import PostResponse, ProfileResponse, RedisFeed, RedisProfile

logger = logging.getLogger(__name__)

# Redis connection
redis_client: Optional[redis.Redis] = None

FEED_KEY = "feed:latest"


async def init_cache():
    """Initialize Redis connection"""
    global redis_client
    redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    logger.info("Redis cache initialized")


async def close_cache():
    """Close Redis connection"""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None


# Every cached entry has a generation counter that invalidation bumps. A reader
# takes the generation before it queries the store and only writes its entry
# back if the generation is unchanged, so a value read before a concurrent
# commit is never cached after that commit's invalidation.
def _generation_key(key: str) -> str:
    return f"{key}:generation"


async def _generation(key: str) -> Optional[str]:
    if not redis_client:
        return None
    return await redis_client.get(_generation_key(key))


async def _store_if_current(key: str, generation: Optional[str], value: str, expiry: int) -> bool:
    if not redis_client:
        return False

    generation_key = _generation_key(key)
    async with redis_client.pipeline(transaction=True) as pipe:
        try:
            await pipe.watch(generation_key)
            if await pipe.get(generation_key) != generation:
                logger.debug(f"Not caching {key}: invalidated while it was read")
                return False
            pipe.multi()
            pipe.setex(key, expiry, value)
            await pipe.execute()
        except WatchError:
            logger.debug(f"Not caching {key}: invalidated while it was written")
            return False
    return True


async def _invalidate(*keys: str):
    if not redis_client or not keys:
        return

    async with redis_client.pipeline(transaction=True) as pipe:
        for key in keys:
            pipe.incr(_generation_key(key))
            pipe.delete(key)
        await pipe.execute()


# Profile cache functions
def _profile_key(profile_id: UUID) -> str:
    return f"profile:{profile_id}"


async def profile_cache_generation(profile_id: UUID) -> Optional[str]:
    """Read before loading a profile from the store; pass to cache_profile"""
    return await _generation(_profile_key(profile_id))


async def cache_profile(profile: ProfileResponse, generation: Optional[str], expiry: int = PROFILE_CACHE_TTL) -> bool:
    """Cache public profile data in Redis using RedisProfile model"""
    return await _store_if_current(_profile_key(profile.id), generation, RedisProfile(profile=profile).to_redis(), expiry)


async def get_cached_profile(profile_id: UUID) -> Optional[ProfileResponse]:
    """Get cached public profile data"""
    if not redis_client:
        return None

    cached = await redis_client.get(_profile_key(profile_id))
    if not cached:
        return None

    entry = RedisProfile.from_redis(cached)
    if not entry:
        return None
    return entry.profile


async def invalidate_profile_cache(*profile_ids: UUID):
    """Invalidate cached profiles; counters are always re-read from the store"""
    await _invalidate(*[_profile_key(profile_id) for profile_id in profile_ids])


# Feed cache functions
async def feed_cache_generation() -> Optional[str]:
    """Read before loading the feed page from the store; pass to cache_feed"""
    return await _generation(FEED_KEY)


async def cache_feed(posts: list[PostResponse], generation: Optional[str], expiry: int = FEED_CACHE_TTL) -> bool:
    """Cache the un-personalised feed page using RedisFeed model"""
    return await _store_if_current(FEED_KEY, generation, RedisFeed(posts=posts).to_redis(), expiry)


async def get_cached_feed() -> Optional[list[PostResponse]]:
    """Get the cached un-personalised feed page"""
    if not redis_client:
        return None

    cached = await redis_client.get(FEED_KEY)
    if not cached:
        return None

    feed = RedisFeed.from_redis(cached)
    if not feed:
        return None
    return feed.posts


async def invalidate_feed_cache():
    """Invalidate the feed page cache"""
    await _invalidate(FEED_KEY)
