from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, File, Form, Query, Response, UploadFile, status

from endgame.api.errors import http_error
from endgame.api.uploads import read_upload
from endgame.core.auth import CurrentProfile
from endgame.schemas.schemas import CommentCreate, CommentResponse, LikeStateResponse, PostResponse
from endgame.services import post_service
from endgame.services.errors import ServiceError

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_new_post(
    current_profile: CurrentProfile,
    files: Annotated[list[UploadFile], File()],
    caption: Annotated[Optional[str], Form()] = None,
    tags: Annotated[Optional[str], Form()] = None,
) -> PostResponse:
    """
    Create a post for the signed-in profile.

    Parameters:
    - **files**: One to five images, at most 10MB each
    - **caption**: Optional caption
    - **tags**: Optional comma-separated tags, e.g. "#Basketball, training"

    Returns:
    - **PostResponse**: The created post

    Raises:
    - **401 Unauthorized**: If not authenticated
    - **422 Unprocessable Entity**: If the images, caption or tags are invalid
    - **502 Bad Gateway**: If object storage rejects an upload; nothing is created
    """
    tag_list = tags.split(",") if tags else []
    try:
        media = [await read_upload(upload) for upload in files]
        return await post_service.create_post(current_profile.id, media, caption, tag_list)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.get("/tagged/{tag}", status_code=status.HTTP_200_OK)
async def posts_by_tag(
    tag: str,
    current_profile: CurrentProfile,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[PostResponse]:
    """Get the newest posts carrying a tag."""
    return await post_service.get_posts_by_tag(tag, viewer_id=current_profile.id, limit=limit)


@router.get("/{post_id}", status_code=status.HTTP_200_OK)
async def get_post_detail(post_id: UUID, current_profile: CurrentProfile) -> PostResponse:
    """
    Get a post with its author, tags and whether you liked it.

    Raises:
    - **404 Not Found**: If the post does not exist
    """
    try:
        return await post_service.get_post(post_id, viewer_id=current_profile.id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(post_id: UUID, current_profile: CurrentProfile) -> Response:
    """
    Delete one of your own posts.

    Raises:
    - **403 Forbidden**: If the post belongs to another profile
    - **404 Not Found**: If the post does not exist
    """
    try:
        await post_service.delete_post(post_id, current_profile.id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{post_id}/like", status_code=status.HTTP_200_OK)
async def like(post_id: UUID, current_profile: CurrentProfile) -> LikeStateResponse:
    """
    Like a post. Liking a post twice changes nothing.

    Returns:
    - **LikeStateResponse**: The committed like state and like count
    """
    try:
        return await post_service.like_post(current_profile.id, post_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.delete("/{post_id}/like", status_code=status.HTTP_200_OK)
async def unlike(post_id: UUID, current_profile: CurrentProfile) -> LikeStateResponse:
    """Remove your like from a post."""
    try:
        return await post_service.unlike_post(current_profile.id, post_id)
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.get("/{post_id}/comments", status_code=status.HTTP_200_OK)
async def list_comments(
    post_id: UUID,
    limit: Annotated[int, Query(ge=1, le=200)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[CommentResponse]:
    """Get the comments of a post, oldest first."""
    return await post_service.get_post_comments(post_id, limit, offset)


@router.post("/{post_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    post_id: UUID,
    comment: CommentCreate,
    current_profile: CurrentProfile,
) -> CommentResponse:
    """
    Comment on a post.

    Raises:
    - **404 Not Found**: If the post does not exist
    - **422 Unprocessable Entity**: If the comment is empty or too long
    """
    try:
        return await post_service.create_comment(current_profile.id, post_id, comment.content)
    except ServiceError as exc:
        raise http_error(exc) from exc
