import logging
from typing import Any, Literal, Optional
from uuid import UUID, uuid4

import asyncpg

from endgame.config_secrets import LEADERBOARD_SIZE, SEARCH_RESULT_SIZE, TOP_ATHLETES_SIZE
from endgame.core.auth import get_password_hash, verify_password
from endgame.core.cache import (
    cache_profile,
    get_cached_profile,
    invalidate_profile_cache,
    profile_cache_generation,
)
from endgame.core.db import get_connection
from endgame.models.models import NotificationType, Profile
from endgame.schemas.schemas import FollowStateResponse, ProfileResponse, ProfileSummary
from endgame.services import counter_service, media_service
from endgame.services.achievement_service import award_milestones
from endgame.services.counter_service import CounterField
from endgame.services.errors import (
    DuplicateProfileError,
    InvalidCredentialsError,
    ProfileNotFoundError,
    ValidationError,
)
from endgame.services.notification_service import create_notification, publish_notifications

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = """
    id, username, email, password_hash, full_name, bio, location, sport,
    profile_image_url, cover_image_url, is_verified,
    followers_count, following_count, posts_count, created_at, updated_at
"""

SUMMARY_COLUMNS = """
    id, username, full_name, profile_image_url, sport, is_verified, followers_count, posts_count
"""

UPDATABLE_FIELDS = ("full_name", "bio", "location", "sport")

ProfileImageKind = Literal["avatar", "cover"]
IMAGE_COLUMNS = {"avatar": "profile_image_url", "cover": "cover_image_url"}


async def create_profile(email: str, password: str, username: str, full_name: str) -> Profile:
    """Register a new profile"""
    profile = Profile(
        id=uuid4(),
        username=username,
        email=email.lower(),
        password_hash=get_password_hash(password),
        full_name=full_name,
    )

    async with get_connection() as conn, conn.transaction():
        existing = await conn.fetchrow(
            "SELECT username, email FROM profiles WHERE lower(username) = lower($1) OR email = $2",
            profile.username,
            profile.email,
        )
        if existing:
            field = "Username" if existing["username"].lower() == profile.username.lower() else "Email"
            raise DuplicateProfileError(f"{field} already registered")

        try:
            await conn.execute(
                """
                INSERT INTO profiles (id, username, email, password_hash, full_name, sport, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                profile.id,
                profile.username,
                profile.email,
                profile.password_hash,
                profile.full_name,
                profile.sport.value if profile.sport else None,
                profile.created_at,
                profile.updated_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateProfileError("Username or email already registered") from exc

    logger.info(f"Registered profile {profile.username}")
    return profile


async def get_profile_record(profile_id: UUID) -> Optional[Profile]:
    """Get the full profile row, including private fields"""
    async with get_connection() as conn:
        row = await conn.fetchrow(f"SELECT {PROFILE_COLUMNS} FROM profiles WHERE id = $1", profile_id)
    return Profile(**dict(row)) if row else None


async def get_profile_by_login(login: str) -> Optional[Profile]:
    async with get_connection() as conn:
        row = await conn.fetchrow(
            f"SELECT {PROFILE_COLUMNS} FROM profiles WHERE lower(username) = lower($1) OR email = lower($1)",
            login,
        )
    return Profile(**dict(row)) if row else None


async def authenticate(login: str, password: str) -> Profile:
    """Check a username-or-email and password pair"""
    profile = await get_profile_by_login(login.strip())
    if profile is None or not profile.password_hash or not verify_password(password, profile.password_hash):
        raise InvalidCredentialsError("Incorrect username or password")
    return profile


async def get_profile(profile_id: UUID) -> ProfileResponse:
    """Get a public profile with caching"""
    cached = await get_cached_profile(profile_id)
    if cached:
        return cached

    generation = await profile_cache_generation(profile_id)
    profile = await get_profile_record(profile_id)
    if profile is None:
        raise ProfileNotFoundError(f"Profile {profile_id} not found")

    response = ProfileResponse.model_validate(profile)
    await cache_profile(response, generation)
    return response


async def get_profile_by_username(username: str) -> ProfileResponse:
    async with get_connection() as conn:
        profile_id = await conn.fetchval("SELECT id FROM profiles WHERE lower(username) = lower($1)", username)
    if profile_id is None:
        raise ProfileNotFoundError(f"Profile {username} not found")
    return await get_profile(profile_id)


async def update_profile(profile_id: UUID, update_data: dict[str, Any]) -> ProfileResponse:
    """Update editable profile fields; counters and identity are not editable"""
    changes = {key: value for key, value in update_data.items() if key in UPDATABLE_FIELDS}
    if not changes:
        return await get_profile(profile_id)

    assignments = []
    values: list[Any] = [profile_id]
    for key, value in changes.items():
        values.append(value.value if hasattr(value, "value") else value)
        assignments.append(f"{key} = ${len(values)}")

    async with get_connection() as conn:
        updated = await conn.fetchval(
            f"""
            UPDATE profiles
            SET {', '.join(assignments)}, updated_at = NOW()
            WHERE id = $1
            RETURNING id
            """,
            *values,
        )

    if updated is None:
        raise ProfileNotFoundError(f"Profile {profile_id} not found")

    await invalidate_profile_cache(profile_id)
    return await get_profile(profile_id)


async def upload_profile_image(
    profile_id: UUID,
    media: media_service.MediaFile,
    kind: ProfileImageKind = "avatar",
) -> ProfileResponse:
    """
    Upload a new avatar or cover image and point the profile at it.

    The previous image is deleted only after the profile row references the
    new one; if the row update fails the new upload is discarded instead.
    """
    column = IMAGE_COLUMNS[kind]
    media_service.validate_profile_image(media)
    uploaded = await media_service.upload_media_batch(profile_id, [media], prefix="profile")

    try:
        async with get_connection() as conn, conn.transaction():
            previous = await conn.fetchrow(
                f"SELECT {column} AS url FROM profiles WHERE id = $1 FOR UPDATE",
                profile_id,
            )
            if previous is None:
                raise ProfileNotFoundError(f"Profile {profile_id} not found")
            await conn.execute(
                f"UPDATE profiles SET {column} = $2, updated_at = NOW() WHERE id = $1",
                profile_id,
                uploaded.urls[0],
            )
    except Exception:
        await media_service.discard_media(uploaded.keys)
        raise

    if previous["url"]:
        await media_service.discard_media_urls(profile_id, [previous["url"]])

    await invalidate_profile_cache(profile_id)
    return await get_profile(profile_id)


async def follow_profile(follower_id: UUID, following_id: UUID) -> FollowStateResponse:
    """
    Follow a profile.

    Following twice is a no-op: the edge is unique, and counters only move
    when a row was actually inserted.
    """
    if follower_id == following_id:
        raise ValidationError("You cannot follow yourself")

    notifications = []
    async with get_connection() as conn, conn.transaction():
        exists = await conn.fetchval("SELECT 1 FROM profiles WHERE id = $1", following_id)
        if not exists:
            raise ProfileNotFoundError(f"Profile {following_id} not found")

        inserted = await conn.fetchval(
            """
            INSERT INTO follows (id, follower_id, following_id)
            VALUES ($1, $2, $3)
            ON CONFLICT (follower_id, following_id) DO NOTHING
            RETURNING id
            """,
            uuid4(),
            follower_id,
            following_id,
        )

        if inserted:
            followers_count = await counter_service.record_follow(conn, follower_id, following_id, 1)
            notifications.append(
                await create_notification(conn, following_id, follower_id, NotificationType.FOLLOW)
            )
            notifications.extend(
                await award_milestones(conn, following_id, CounterField.FOLLOWERS, followers_count)
            )
        else:
            followers_count = await counter_service.adjust_counter(conn, CounterField.FOLLOWERS, following_id, 0)

    if inserted:
        await invalidate_profile_cache(follower_id, following_id)
        await publish_notifications(notifications)

    return FollowStateResponse(profile_id=following_id, following=True, followers_count=followers_count or 0)


async def unfollow_profile(follower_id: UUID, following_id: UUID) -> FollowStateResponse:
    """Unfollow a profile; unfollowing a profile you don't follow is a no-op"""
    async with get_connection() as conn, conn.transaction():
        deleted = await conn.fetchval(
            """
            DELETE FROM follows
            WHERE follower_id = $1 AND following_id = $2
            RETURNING id
            """,
            follower_id,
            following_id,
        )

        if deleted:
            followers_count = await counter_service.record_follow(conn, follower_id, following_id, -1)
        else:
            followers_count = await counter_service.adjust_counter(conn, CounterField.FOLLOWERS, following_id, 0)

    if followers_count is None:
        raise ProfileNotFoundError(f"Profile {following_id} not found")

    if deleted:
        await invalidate_profile_cache(follower_id, following_id)

    return FollowStateResponse(profile_id=following_id, following=False, followers_count=followers_count)


async def is_following(follower_id: UUID, following_id: UUID) -> bool:
    async with get_connection() as conn:
        row = await conn.fetchval(
            "SELECT 1 FROM follows WHERE follower_id = $1 AND following_id = $2",
            follower_id,
            following_id,
        )
    return row is not None


async def get_followers(profile_id: UUID, limit: int = 50, offset: int = 0) -> list[ProfileSummary]:
    """Get profiles that follow profile_id"""
    async with get_connection() as conn:
        rows = await conn.fetch(
            """
            SELECT p.id, p.username, p.full_name, p.profile_image_url, p.sport,
                   p.is_verified, p.followers_count, p.posts_count
            FROM follows f
            JOIN profiles p ON f.follower_id = p.id
            WHERE f.following_id = $1
            ORDER BY f.created_at DESC
            LIMIT $2 OFFSET $3
            """,
            profile_id,
            limit,
            offset,
        )
    return [ProfileSummary(**dict(row)) for row in rows]


async def get_following(profile_id: UUID, limit: int = 50, offset: int = 0) -> list[ProfileSummary]:
    """Get profiles that profile_id follows"""
    async with get_connection() as conn:
        rows = await conn.fetch(
            """
            SELECT p.id, p.username, p.full_name, p.profile_image_url, p.sport,
                   p.is_verified, p.followers_count, p.posts_count
            FROM follows f
            JOIN profiles p ON f.following_id = p.id
            WHERE f.follower_id = $1
            ORDER BY f.created_at DESC
            LIMIT $2 OFFSET $3
            """,
            profile_id,
            limit,
            offset,
        )
    return [ProfileSummary(**dict(row)) for row in rows]


async def get_leaderboard(limit: int = LEADERBOARD_SIZE) -> list[ProfileSummary]:
    """Profiles ranked by follower count"""
    async with get_connection() as conn:
        rows = await conn.fetch(
            f"""
            SELECT {SUMMARY_COLUMNS}
            FROM profiles
            ORDER BY followers_count DESC, posts_count DESC, username ASC
            LIMIT $1
            """,
            limit,
        )
    return [ProfileSummary(**dict(row)) for row in rows]


def _escape_like(query: str) -> str:
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def search_profiles(query: Optional[str], limit: int = SEARCH_RESULT_SIZE) -> list[ProfileSummary]:
    """
    Case-insensitive substring search over username and full name.

    An empty query returns the top athletes instead.
    """
    query = (query or "").strip()
    if not query:
        return await get_leaderboard(limit=TOP_ATHLETES_SIZE)

    pattern = f"%{_escape_like(query)}%"
    async with get_connection() as conn:
        rows = await conn.fetch(
            f"""
            SELECT {SUMMARY_COLUMNS}
            FROM profiles
            WHERE username ILIKE $1 OR full_name ILIKE $1
            ORDER BY followers_count DESC, username ASC
            LIMIT $2
            """,
            pattern,
            limit,
        )
    return [ProfileSummary(**dict(row)) for row in rows]
