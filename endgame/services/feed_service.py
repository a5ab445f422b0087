import logging
from typing import Optional
from uuid import UUID

from endgame.config_secrets import FEED_PAGE_SIZE
from endgame.core.cache import cache_feed, feed_cache_generation, get_cached_feed
from endgame.schemas.schemas import PostResponse
from endgame.services.post_service import get_latest_posts, mark_liked

logger = logging.getLogger(__name__)


async def get_feed(viewer_id: Optional[UUID] = None, limit: int = FEED_PAGE_SIZE) -> list[PostResponse]:
    """
    Get the newest posts across all profiles.

    The un-personalised page is cached briefly and dropped on every post
    write; the viewer's like state is always read fresh.
    """
    if limit != FEED_PAGE_SIZE:
        return await mark_liked(await get_latest_posts(limit), viewer_id)

    posts = await get_cached_feed()
    if posts is None:
        generation = await feed_cache_generation()
        posts = await get_latest_posts(limit)
        await cache_feed(posts, generation)
    else:
        logger.debug("Serving feed from cache")

    return await mark_liked(posts, viewer_id)
