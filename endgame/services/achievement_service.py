from typing import NamedTuple, Optional
from uuid import UUID, uuid4

from asyncpg import Connection

from endgame.core.db import get_connection
from endgame.models.models import AchievementType, NotificationType
from endgame.schemas.schemas import AchievementResponse
from endgame.services.counter_service import CounterField
from endgame.services.notification_service import create_notification


class Milestone(NamedTuple):
    type: AchievementType
    field: CounterField
    threshold: int
    title: str
    description: str


MILESTONES = (
    Milestone(AchievementType.FIRST_POST, CounterField.POSTS, 1, "First Post", "Shared your first post"),
    Milestone(AchievementType.TEN_POSTS, CounterField.POSTS, 10, "Ten Posts", "Shared ten posts"),
    Milestone(
        AchievementType.HUNDRED_FOLLOWERS,
        CounterField.FOLLOWERS,
        100,
        "Hundred Followers",
        "Reached 100 followers",
    ),
)


async def award_milestones(
    conn: Connection,
    profile_id: UUID,
    field: CounterField,
    value: Optional[int],
) -> list[dict]:
    """
    Award every milestone the new counter value has reached.

    Runs inside the transaction that changed the counter. Each achievement is
    earned at most once; a newly earned one also notifies its owner. Returns
    the created notification rows.
    """
    if value is None:
        return []

    notifications = []
    for milestone in MILESTONES:
        if milestone.field is not field or value < milestone.threshold:
            continue

        earned = await conn.fetchval(
            """
            INSERT INTO achievements (id, user_id, type, title, description)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (user_id, type) DO NOTHING
            RETURNING id
            """,
            uuid4(),
            profile_id,
            milestone.type.value,
            milestone.title,
            milestone.description,
        )
        if earned is None:
            continue

        notification = await create_notification(
            conn,
            recipient_id=profile_id,
            sender_id=profile_id,
            notification_type=NotificationType.ACHIEVEMENT,
            message=f"Achievement unlocked: {milestone.title}",
        )
        if notification:
            notifications.append(notification)

    return notifications


async def get_achievements(profile_id: UUID) -> list[AchievementResponse]:
    """Get a profile's achievements, newest first"""
    async with get_connection() as conn:
        rows = await conn.fetch(
            """
            SELECT id, type, title, description, earned_at
            FROM achievements
            WHERE user_id = $1
            ORDER BY earned_at DESC
            """,
            profile_id,
        )
    return [AchievementResponse(**dict(row)) for row in rows]
