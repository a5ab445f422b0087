from typing import Annotated, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, File, Query, UploadFile, status

from endgame.api.errors import http_error
from endgame.api.uploads import read_upload
from endgame.config_secrets import MAX_PROFILE_IMAGE_BYTES
from endgame.core.auth import CurrentProfile
from endgame.schemas.schemas import (
    AchievementResponse,
    FollowStateResponse,
    PostResponse,
    ProfileResponse,
    ProfileSummary,
    ProfileUpdateRequest,
)
from endgame.services import profile_service
from endgame.services.achievement_service import get_achievements
from endgame.services.errors import ServiceError
from endgame.services.post_service import get_user_posts

router = APIRouter(prefix="/api/v1/profiles", tags=["profiles"])


@router.get("/leaderboard", status_code=status.HTTP_200_OK)
async def leaderboard(
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> list[ProfileSummary]:
    """
    Get athletes ranked by follower count.

    Parameters:
    - **limit**: Maximum number of profiles to return (default: 50)
    """
    return await profile_service.get_leaderboard(limit)


@router.get("/search", status_code=status.HTTP_200_OK)
async def search(
    q: Optional[str] = None,
    limit: Annotated[int, Query(ge=1, le=50)] = 20,
) -> list[ProfileSummary]:
    """
    Search athletes by username or full name.

    Parameters:
    - **q**: Case-insensitive substring; an empty query returns the top athletes
    - **limit**: Maximum number of profiles to return (default: 20)
    """
    return await profile_service.search_profiles(q, limit)


@router.put("/me", status_code=status.HTTP_200_OK)
async def update_me(
    update_data: ProfileUpdateRequest,
    current_profile: CurrentProfile,
) -> ProfileResponse:
    """
    Update the signed-in profile.

    Parameters:
    - **update_data**: Full name, bio, location, sport or image URLs to change

    Raises:
    - **401 Unauthorized**: If not authenticated
    """
    try:
        return await profile_service.update_profile(
            current_profile.id,
            update_data.model_dump(exclude_unset=True),
        )
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.post("/me/image", status_code=status.HTTP_200_OK)
async def upload_image(
    current_profile: CurrentProfile,
    file: Annotated[UploadFile, File()],
    kind: Literal["avatar", "cover"] = "avatar",
) -> ProfileResponse:
    """
    Upload a new avatar or cover image for the signed-in profile.

    Raises:
    - **422 Unprocessable Entity**: If the file is not an image or is larger than 5MB
    - **502 Bad Gateway**: If object storage rejects the upload
    """
    try:
        media = await read_upload(file, max_bytes=MAX_PROFILE_IMAGE_BYTES)
        return await profile_service.upload_profile_image(current_profile.id, media, kind)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.get("/by-username/{username}", status_code=status.HTTP_200_OK)
async def get_by_username(username: str) -> ProfileResponse:
    """Get a profile by its username."""
    try:
        return await profile_service.get_profile_by_username(username)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.get("/{profile_id}", status_code=status.HTTP_200_OK)
async def get_profile(profile_id: UUID) -> ProfileResponse:
    """
    Get a profile by its ID.

    Raises:
    - **404 Not Found**: If the profile does not exist
    """
    try:
        return await profile_service.get_profile(profile_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.get("/{profile_id}/posts", status_code=status.HTTP_200_OK)
async def get_profile_posts(
    profile_id: UUID,
    current_profile: CurrentProfile,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[PostResponse]:
    """Get a profile's posts, newest first, with the viewer's like state."""
    return await get_user_posts(profile_id, viewer_id=current_profile.id, limit=limit, offset=offset)


@router.get("/{profile_id}/achievements", status_code=status.HTTP_200_OK)
async def list_achievements(profile_id: UUID) -> list[AchievementResponse]:
    """Get the achievements a profile has earned."""
    return await get_achievements(profile_id)


@router.get("/{profile_id}/followers", status_code=status.HTTP_200_OK)
async def get_followers(
    profile_id: UUID,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[ProfileSummary]:
    """Get profiles following the specified profile."""
    return await profile_service.get_followers(profile_id, limit, offset)


@router.get("/{profile_id}/following", status_code=status.HTTP_200_OK)
async def get_following(
    profile_id: UUID,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[ProfileSummary]:
    """Get profiles the specified profile follows."""
    return await profile_service.get_following(profile_id, limit, offset)


@router.get("/{profile_id}/follow", status_code=status.HTTP_200_OK)
async def follow_state(profile_id: UUID, current_profile: CurrentProfile) -> FollowStateResponse:
    """Whether the signed-in profile follows the specified profile."""
    try:
        profile = await profile_service.get_profile(profile_id)
    except ServiceError as exc:
        raise http_error(exc) from exc

    following = await profile_service.is_following(current_profile.id, profile_id)
    return FollowStateResponse(profile_id=profile_id, following=following, followers_count=profile.followers_count)


@router.post("/{profile_id}/follow", status_code=status.HTTP_200_OK)
async def follow(profile_id: UUID, current_profile: CurrentProfile) -> FollowStateResponse:
    """
    Follow a profile. Following a profile twice changes nothing.

    Raises:
    - **404 Not Found**: If the profile does not exist
    - **422 Unprocessable Entity**: If you try to follow yourself
    """
    try:
        return await profile_service.follow_profile(current_profile.id, profile_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.delete("/{profile_id}/follow", status_code=status.HTTP_200_OK)
async def unfollow(profile_id: UUID, current_profile: CurrentProfile) -> FollowStateResponse:
    """Unfollow a profile. Unfollowing a profile you don't follow changes nothing."""
    try:
        return await profile_service.unfollow_profile(current_profile.id, profile_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
