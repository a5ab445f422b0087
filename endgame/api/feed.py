from typing import Annotated

from fastapi import APIRouter, Query, status

from endgame.core.auth import CurrentProfile
from endgame.schemas.schemas import FeedResponse
from endgame.services.feed_service import get_feed

router = APIRouter(prefix="/api/v1/feed", tags=["feed"])


@router.get("", status_code=status.HTTP_200_OK)
async def feed(
    current_profile: CurrentProfile,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> FeedResponse:
    """
    Get the newest posts across all athletes.

    Each post carries its author, its tags and whether you liked it.
    """
    posts = await get_feed(viewer_id=current_profile.id, limit=limit)
    return FeedResponse(posts=posts)
