from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, EmailStr, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SportCategory(str, Enum):
    BASKETBALL = "basketball"
    SOCCER = "soccer"
    TENNIS = "tennis"
    RUNNING = "running"
    SWIMMING = "swimming"
    CYCLING = "cycling"
    VOLLEYBALL = "volleyball"
    BASEBALL = "baseball"
    FOOTBALL = "football"
    HOCKEY = "hockey"
    OTHER = "other"


class NotificationType(str, Enum):
    LIKE = "like"
    COMMENT = "comment"
    FOLLOW = "follow"
    MENTION = "mention"
    ACHIEVEMENT = "achievement"


class AchievementType(str, Enum):
    FIRST_POST = "first_post"
    TEN_POSTS = "ten_posts"
    HUNDRED_FOLLOWERS = "hundred_followers"
    VERIFIED_ATHLETE = "verified_athlete"
    TOP_CONTRIBUTOR = "top_contributor"
    COMMUNITY_LEADER = "community_leader"


# Database models
class Profile(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    username: str
    email: EmailStr
    password_hash: str | None = None
    full_name: str
    bio: str | None = None
    location: str | None = None
    sport: SportCategory | None = SportCategory.OTHER
    profile_image_url: str | None = None
    cover_image_url: str | None = None
    is_verified: bool = False
    followers_count: int = 0
    following_count: int = 0
    posts_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
