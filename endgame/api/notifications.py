from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from endgame.api.errors import http_error
from endgame.core.auth import CurrentProfile
from endgame.schemas.schemas import NotificationListResponse
from endgame.services import notification_service
from endgame.services.errors import ServiceError

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.get("", status_code=status.HTTP_200_OK)
async def list_notifications(
    current_profile: CurrentProfile,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> NotificationListResponse:
    """
    Get your newest notifications and the number still unread.

    Listing does not mark anything read.
    """
    return await notification_service.get_notifications(current_profile.id, limit)


@router.get("/unread-count", status_code=status.HTTP_200_OK)
async def unread_count(current_profile: CurrentProfile) -> dict[str, int]:
    return {"unread_count": await notification_service.get_unread_count(current_profile.id)}


@router.post("/read-all", status_code=status.HTTP_200_OK)
async def read_all(current_profile: CurrentProfile) -> dict[str, int]:
    """Mark all your notifications read."""
    return {"updated": await notification_service.mark_all_as_read(current_profile.id)}


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def read_one(notification_id: UUID, current_profile: CurrentProfile) -> Response:
    """
    Mark one of your notifications read.

    Raises:
    - **404 Not Found**: If the notification does not exist or is not yours
    """
    try:
        await notification_service.mark_as_read(current_profile.id, notification_id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
