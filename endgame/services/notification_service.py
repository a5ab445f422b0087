import logging
from typing import Optional
from uuid import UUID, uuid4

from asyncpg import Connection

from endgame.config_secrets import NOTIFICATION_PAGE_SIZE
from endgame.core.db import get_connection
from endgame.models.models import NotificationType
from endgame.schemas.schemas import NotificationListResponse, NotificationResponse
from endgame.services.errors import NotificationNotFoundError
from endgame.services.realtime_service import ChangeKind, publish_change

logger = logging.getLogger(__name__)

ACTION_TEXT = {
    NotificationType.LIKE: "liked your post",
    NotificationType.COMMENT: "commented on your post",
    NotificationType.FOLLOW: "started following you",
}


async def create_notification(
    conn: Connection,
    recipient_id: UUID,
    sender_id: UUID,
    notification_type: NotificationType,
    post_id: Optional[UUID] = None,
    comment_id: Optional[UUID] = None,
    message: Optional[str] = None,
) -> Optional[dict]:
    """
    Insert a notification inside the caller's transaction.

    Actions on your own content never notify you; achievements are the one
    notification a profile sends itself. Returns the new row, or None when
    nothing was created.
    """
    if recipient_id == sender_id and notification_type != NotificationType.ACHIEVEMENT:
        return None

    row = await conn.fetchrow(
        """
        INSERT INTO notifications (id, recipient_id, sender_id, type, post_id, comment_id, message)
        SELECT
            $1::uuid, $2::uuid, $3::uuid, $4::notification_type, $5::uuid, $6::uuid,
            COALESCE($7::text, p.username || ' ' || $8::text)
        FROM profiles p
        WHERE p.id = $3
        RETURNING id, recipient_id, sender_id, type, post_id, comment_id, message, is_read, created_at
        """,
        uuid4(),
        recipient_id,
        sender_id,
        notification_type.value,
        post_id,
        comment_id,
        message,
        ACTION_TEXT.get(notification_type, ""),
    )
    return dict(row) if row else None


async def publish_notifications(rows: list[Optional[dict]]) -> None:
    """Announce committed notifications to their recipients' subscriptions"""
    for row in rows:
        if not row:
            continue
        await publish_change(
            "notifications",
            ChangeKind.INSERT,
            {"id": row["id"], "recipient_id": row["recipient_id"], "type": row["type"]},
        )


async def get_notifications(recipient_id: UUID, limit: int = NOTIFICATION_PAGE_SIZE) -> NotificationListResponse:
    """Get the newest notifications of a profile with its unread count.

    Reading does not mark anything as read.
    """
    async with get_connection() as conn:
        rows = await conn.fetch(
            """
            SELECT
                n.id, n.type, n.message, n.is_read, n.created_at, n.sender_id,
                n.post_id, n.comment_id,
                s.username AS sender_username,
                s.profile_image_url AS sender_profile_image_url
            FROM notifications n
            LEFT JOIN profiles s ON s.id = n.sender_id
            WHERE n.recipient_id = $1
            ORDER BY n.created_at DESC
            LIMIT $2
            """,
            recipient_id,
            limit,
        )
        unread_count = await conn.fetchval(
            "SELECT COUNT(*) FROM notifications WHERE recipient_id = $1 AND is_read = FALSE",
            recipient_id,
        )

    return NotificationListResponse(
        notifications=[NotificationResponse(**dict(row)) for row in rows],
        unread_count=unread_count or 0,
    )


async def get_unread_count(recipient_id: UUID) -> int:
    async with get_connection() as conn:
        count = await conn.fetchval(
            "SELECT COUNT(*) FROM notifications WHERE recipient_id = $1 AND is_read = FALSE",
            recipient_id,
        )
    return count or 0


async def mark_as_read(recipient_id: UUID, notification_id: UUID) -> None:
    """Mark one notification read; only its recipient may do so"""
    async with get_connection() as conn:
        updated = await conn.fetchval(
            """
            UPDATE notifications
            SET is_read = TRUE
            WHERE id = $1 AND recipient_id = $2
            RETURNING id
            """,
            notification_id,
            recipient_id,
        )

    if updated is None:
        raise NotificationNotFoundError(f"Notification {notification_id} not found")

    await publish_change(
        "notifications",
        ChangeKind.UPDATE,
        {"id": notification_id, "recipient_id": recipient_id},
    )


async def mark_all_as_read(recipient_id: UUID) -> int:
    """Mark every unread notification of a profile read and return how many changed"""
    async with get_connection() as conn:
        rows = await conn.fetch(
            """
            UPDATE notifications
            SET is_read = TRUE
            WHERE recipient_id = $1 AND is_read = FALSE
            RETURNING id
            """,
            recipient_id,
        )

    if rows:
        logger.info(f"Marked {len(rows)} notifications read for {recipient_id}")
        await publish_change("notifications", ChangeKind.UPDATE, {"recipient_id": recipient_id})
    return len(rows)
