import logging
import re
from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator

from endgame.config_secrets import MAX_CAPTION_LENGTH, MAX_COMMENT_LENGTH
from endgame.models.models import AchievementType, NotificationType, SportCategory

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.]{3,30}$")


# Auth Schemas
class ProfileCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    username: str
    full_name: str = Field(min_length=1, max_length=100)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        v = v.strip()
        if not USERNAME_PATTERN.match(v):
            raise ValueError("Username must be 3-30 letters, digits, '.' or '_'")
        return v


class Token(BaseModel):
    access_token: str
    token_type: str


# Profile Schemas
class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    username: str
    full_name: str
    bio: Optional[str] = None
    location: Optional[str] = None
    sport: Optional[SportCategory] = None
    profile_image_url: Optional[str] = None
    cover_image_url: Optional[str] = None
    is_verified: bool = False
    followers_count: int = 0
    following_count: int = 0
    posts_count: int = 0
    created_at: datetime


class ProfilePrivateResponse(ProfileResponse):
    email: EmailStr


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=100)
    sport: Optional[SportCategory] = None


class ProfileSummary(BaseModel):
    id: UUID
    username: str
    full_name: str
    profile_image_url: Optional[str] = None
    sport: Optional[SportCategory] = None
    is_verified: bool = False
    followers_count: int = 0
    posts_count: int = 0


class FollowStateResponse(BaseModel):
    profile_id: UUID
    following: bool
    followers_count: int


# Post Schemas
class PostAuthor(BaseModel):
    id: UUID
    username: str
    profile_image_url: Optional[str] = None
    sport: Optional[SportCategory] = None


class TagResponse(BaseModel):
    id: UUID
    name: str


class PostResponse(BaseModel):
    id: UUID
    user_id: UUID
    caption: Optional[str] = None
    media_urls: List[str]
    media_type: str = "image"
    likes_count: int = 0
    comments_count: int = 0
    created_at: datetime
    author: Optional[PostAuthor] = None
    tags: List[TagResponse] = Field(default_factory=list)
    liked_by_user: Optional[bool] = None


class LikeStateResponse(BaseModel):
    post_id: UUID
    liked: bool
    likes_count: int


class CommentCreate(BaseModel):
    content: str

    @field_validator("content")
    @classmethod
    def validate_content(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Comment cannot be empty")
        if len(v) > MAX_COMMENT_LENGTH:
            raise ValueError(f"Comment content must be {MAX_COMMENT_LENGTH} characters or less")
        return v


class CommentResponse(BaseModel):
    id: UUID
    post_id: UUID
    user_id: UUID
    content: str
    created_at: datetime
    username: str
    profile_image_url: Optional[str] = None


def validate_caption(caption: Optional[str]) -> Optional[str]:
    if caption is None:
        return None
    caption = caption.strip()
    if len(caption) > MAX_CAPTION_LENGTH:
        raise ValueError(f"Caption must be {MAX_CAPTION_LENGTH} characters or less")
    return caption or None


class FeedResponse(BaseModel):
    posts: List[PostResponse]


# Notification Schemas
class NotificationResponse(BaseModel):
    id: UUID
    type: NotificationType
    message: str
    is_read: bool
    created_at: datetime
    sender_id: UUID
    sender_username: Optional[str] = None
    sender_profile_image_url: Optional[str] = None
    post_id: Optional[UUID] = None
    comment_id: Optional[UUID] = None


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int


class AchievementResponse(BaseModel):
    id: UUID
    type: AchievementType
    title: str
    description: Optional[str] = None
    earned_at: datetime


# Redis Data Models
class RedisModel(BaseModel):
    """Base model for Redis data structures with serialization/deserialization methods"""

    @classmethod
    def from_redis(cls, data: Union[str, bytes, None]) -> Optional["RedisModel"]:
        """Create an instance from Redis data"""
        if data is None:
            return None
        try:
            return cls.model_validate_json(data)
        except ValidationError:
            logging.exception("Error parsing Redis data")
            return None

    def to_redis(self) -> str:
        """Convert to JSON string for Redis storage"""
        return self.model_dump_json()


class RedisFeed(RedisModel):
    """Un-personalised feed page for Redis storage"""
    posts: List[PostResponse] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=datetime.now)


class RedisProfile(RedisModel):
    """Public profile for Redis storage"""
    profile: ProfileResponse
