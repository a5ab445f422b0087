import logging
from collections.abc import Sequence
from typing import Optional
from uuid import UUID, uuid4

import asyncpg

from endgame.config_secrets import FEED_PAGE_SIZE
from endgame.core.cache import invalidate_feed_cache, invalidate_profile_cache
from endgame.core.db import get_connection
from endgame.models.models import NotificationType
from endgame.schemas.schemas import (
    CommentResponse,
    LikeStateResponse,
    PostAuthor,
    PostResponse,
    TagResponse,
    validate_caption,
)
from endgame.services import counter_service, media_service
from endgame.services.achievement_service import award_milestones
from endgame.services.counter_service import CounterField
from endgame.services.errors import PermissionDeniedError, PostNotFoundError, ValidationError
from endgame.services.notification_service import create_notification, publish_notifications
from endgame.services.realtime_service import ChangeKind, publish_change
from endgame.services.tag_service import associate_tags, get_post_tags, normalize_tag, normalize_tags

logger = logging.getLogger(__name__)

POST_SELECT = """
    SELECT
        p.id, p.user_id, p.caption, p.media_urls, p.media_type,
        p.likes_count, p.comments_count, p.created_at,
        u.username, u.profile_image_url, u.sport
    FROM posts p
    JOIN profiles u ON p.user_id = u.id
"""


def post_from_row(row) -> PostResponse:
    data = dict(row)
    return PostResponse(
        id=data["id"],
        user_id=data["user_id"],
        caption=data["caption"],
        media_urls=list(data["media_urls"] or []),
        media_type=data["media_type"],
        likes_count=data["likes_count"],
        comments_count=data["comments_count"],
        created_at=data["created_at"],
        author=PostAuthor(
            id=data["user_id"],
            username=data["username"],
            profile_image_url=data["profile_image_url"],
            sport=data["sport"],
        ),
    )


async def attach_tags(posts: list[PostResponse]) -> list[PostResponse]:
    tags = await get_post_tags([post.id for post in posts])
    for post in posts:
        post.tags = [TagResponse(**tag) for tag in tags.get(post.id, [])]
    return posts


async def get_liked_post_ids(viewer_id: UUID, post_ids: list[UUID]) -> set[UUID]:
    if not post_ids:
        return set()

    async with get_connection() as conn:
        rows = await conn.fetch(
            "SELECT post_id FROM likes WHERE user_id = $1 AND post_id = ANY($2::uuid[])",
            viewer_id,
            post_ids,
        )
    return {row["post_id"] for row in rows}


async def mark_liked(posts: list[PostResponse], viewer_id: Optional[UUID]) -> list[PostResponse]:
    """Set liked_by_user on each post for the viewer"""
    if viewer_id is None:
        return posts

    liked = await get_liked_post_ids(viewer_id, [post.id for post in posts])
    for post in posts:
        post.liked_by_user = post.id in liked
    return posts


async def hydrate_posts(rows, viewer_id: Optional[UUID] = None) -> list[PostResponse]:
    posts = [post_from_row(row) for row in rows]
    await attach_tags(posts)
    return await mark_liked(posts, viewer_id)


async def create_post(
    owner_id: UUID,
    files: Sequence[media_service.MediaFile],
    caption: Optional[str] = None,
    tags: Optional[list[str]] = None,
) -> PostResponse:
    """
    Create a post from image files.

    Input is validated before anything is stored. Media is uploaded next, and
    the post row, its tags, the owner's posts_count and any milestone are
    written in one transaction. If that transaction fails the uploaded
    objects are deleted again, so a failed create leaves neither a post nor
    orphaned media.
    """
    try:
        caption = validate_caption(caption)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    tag_names = normalize_tags(tags)
    media_service.validate_media(files)

    uploaded = await media_service.upload_media_batch(owner_id, files)

    post_id = uuid4()
    try:
        async with get_connection() as conn, conn.transaction():
            await conn.execute(
                """
                INSERT INTO posts (id, user_id, caption, media_urls, media_type)
                VALUES ($1, $2, $3, $4, 'image')
                """,
                post_id,
                owner_id,
                caption,
                uploaded.urls,
            )
            await associate_tags(conn, post_id, tag_names)
            posts_count = await counter_service.record_post(conn, owner_id, 1)
            notifications = await award_milestones(conn, owner_id, CounterField.POSTS, posts_count)
    except Exception:
        logger.exception(f"Creating post for {owner_id} failed, discarding {len(uploaded.keys)} uploads")
        await media_service.discard_media(uploaded.keys)
        raise

    logger.info(f"Created post {post_id} with {len(uploaded.urls)} images")

    await invalidate_feed_cache()
    await invalidate_profile_cache(owner_id)
    await publish_change("posts", ChangeKind.INSERT, {"id": post_id, "user_id": owner_id})
    await publish_notifications(notifications)

    return await get_post(post_id, viewer_id=owner_id)


async def get_post(post_id: UUID, viewer_id: Optional[UUID] = None) -> PostResponse:
    """Get a single post with author, tags and the viewer's like state"""
    async with get_connection() as conn:
        row = await conn.fetchrow(f"{POST_SELECT} WHERE p.id = $1", post_id)

    if not row:
        raise PostNotFoundError(f"Post {post_id} not found")

    posts = await hydrate_posts([row], viewer_id)
    return posts[0]


async def get_latest_posts(limit: int = FEED_PAGE_SIZE) -> list[PostResponse]:
    """Newest posts across all profiles with tags, not personalised"""
    async with get_connection() as conn:
        rows = await conn.fetch(
            f"""
            {POST_SELECT}
            ORDER BY p.created_at DESC
            LIMIT $1
            """,
            limit,
        )
    return await hydrate_posts(rows)


async def get_user_posts(
    user_id: UUID,
    viewer_id: Optional[UUID] = None,
    limit: int = FEED_PAGE_SIZE,
    offset: int = 0,
) -> list[PostResponse]:
    """Get posts created by a profile, newest first"""
    async with get_connection() as conn:
        rows = await conn.fetch(
            f"""
            {POST_SELECT}
            WHERE p.user_id = $1
            ORDER BY p.created_at DESC
            LIMIT $2 OFFSET $3
            """,
            user_id,
            limit,
            offset,
        )
    return await hydrate_posts(rows, viewer_id)


async def get_posts_by_tag(
    tag: str,
    viewer_id: Optional[UUID] = None,
    limit: int = FEED_PAGE_SIZE,
) -> list[PostResponse]:
    """Get the newest posts carrying a tag; the tag is normalized first"""
    name = normalize_tag(tag)
    if not name:
        return []

    async with get_connection() as conn:
        rows = await conn.fetch(
            f"""
            {POST_SELECT}
            JOIN post_tags pt ON pt.post_id = p.id
            JOIN tags t ON t.id = pt.tag_id
            WHERE t.name = $1
            ORDER BY p.created_at DESC
            LIMIT $2
            """,
            name,
            limit,
        )
    return await hydrate_posts(rows, viewer_id)


async def delete_post(post_id: UUID, owner_id: UUID) -> None:
    """
    Delete a post owned by owner_id.

    Ownership is part of the DELETE itself, so a profile can never remove
    another profile's post. Likes, comments, tags and notifications go with
    the row; the media objects are deleted after the commit.
    """
    async with get_connection() as conn, conn.transaction():
        media_urls = await conn.fetchval(
            "DELETE FROM posts WHERE id = $1 AND user_id = $2 RETURNING media_urls",
            post_id,
            owner_id,
        )
        if media_urls is None:
            author_id = await conn.fetchval("SELECT user_id FROM posts WHERE id = $1", post_id)
            if author_id is None:
                raise PostNotFoundError(f"Post {post_id} not found")
            raise PermissionDeniedError("You can only delete your own posts")

        await counter_service.record_post(conn, owner_id, -1)

    logger.info(f"Deleted post {post_id}")

    await media_service.discard_media_urls(owner_id, list(media_urls))
    await invalidate_feed_cache()
    await invalidate_profile_cache(owner_id)
    await publish_change("posts", ChangeKind.DELETE, {"id": post_id, "user_id": owner_id})


async def like_post(user_id: UUID, post_id: UUID) -> LikeStateResponse:
    """
    Like a post.

    Liking an already liked post changes nothing and reports the current
    count; likes_count only moves when a like row is inserted.
    """
    notification = None
    try:
        async with get_connection() as conn, conn.transaction():
            author_id = await conn.fetchval("SELECT user_id FROM posts WHERE id = $1", post_id)
            if author_id is None:
                raise PostNotFoundError(f"Post {post_id} not found")

            inserted = await conn.fetchval(
                """
                INSERT INTO likes (id, user_id, post_id)
                VALUES ($1, $2, $3)
                ON CONFLICT (user_id, post_id) DO NOTHING
                RETURNING id
                """,
                uuid4(),
                user_id,
                post_id,
            )

            if inserted:
                likes_count = await counter_service.record_like(conn, post_id, 1)
                notification = await create_notification(
                    conn, author_id, user_id, NotificationType.LIKE, post_id=post_id
                )
            else:
                likes_count = await counter_service.adjust_counter(conn, CounterField.LIKES, post_id, 0)
    except asyncpg.ForeignKeyViolationError as exc:
        # Post deleted between the lookup and the insert
        raise PostNotFoundError(f"Post {post_id} not found") from exc

    if inserted:
        await _publish_post_update(post_id, likes_count=likes_count)
        await publish_notifications([notification])

    return LikeStateResponse(post_id=post_id, liked=True, likes_count=likes_count or 0)


async def unlike_post(user_id: UUID, post_id: UUID) -> LikeStateResponse:
    """Remove a like; unliking a post you haven't liked is a no-op"""
    async with get_connection() as conn, conn.transaction():
        deleted = await conn.fetchval(
            "DELETE FROM likes WHERE user_id = $1 AND post_id = $2 RETURNING id",
            user_id,
            post_id,
        )

        if deleted:
            likes_count = await counter_service.record_like(conn, post_id, -1)
        else:
            likes_count = await counter_service.adjust_counter(conn, CounterField.LIKES, post_id, 0)

    if likes_count is None:
        raise PostNotFoundError(f"Post {post_id} not found")

    if deleted:
        await _publish_post_update(post_id, likes_count=likes_count)

    return LikeStateResponse(post_id=post_id, liked=False, likes_count=likes_count)


async def create_comment(user_id: UUID, post_id: UUID, content: str) -> CommentResponse:
    """Add a comment to a post; comments are append-only"""
    content = content.strip()
    if not content:
        raise ValidationError("Comment cannot be empty")

    comment_id = uuid4()
    try:
        async with get_connection() as conn, conn.transaction():
            author_id = await conn.fetchval("SELECT user_id FROM posts WHERE id = $1", post_id)
            if author_id is None:
                raise PostNotFoundError(f"Post {post_id} not found")

            row = await conn.fetchrow(
                """
                WITH inserted AS (
                    INSERT INTO comments (id, user_id, post_id, content)
                    VALUES ($1, $2, $3, $4)
                    RETURNING id, post_id, user_id, content, created_at
                )
                SELECT i.id, i.post_id, i.user_id, i.content, i.created_at,
                       u.username, u.profile_image_url
                FROM inserted i
                JOIN profiles u ON u.id = i.user_id
                """,
                comment_id,
                user_id,
                post_id,
                content,
            )
            comments_count = await counter_service.record_comment(conn, post_id)
            notification = await create_notification(
                conn, author_id, user_id, NotificationType.COMMENT, post_id=post_id, comment_id=comment_id
            )
    except asyncpg.ForeignKeyViolationError as exc:
        raise PostNotFoundError(f"Post {post_id} not found") from exc

    await _publish_post_update(post_id, comments_count=comments_count)
    await publish_notifications([notification])

    return CommentResponse(**dict(row))


async def get_post_comments(post_id: UUID, limit: int = 100, offset: int = 0) -> list[CommentResponse]:
    """Get comments of a post, oldest first"""
    async with get_connection() as conn:
        rows = await conn.fetch(
            """
            SELECT c.id, c.post_id, c.user_id, c.content, c.created_at,
                   u.username, u.profile_image_url
            FROM comments c
            JOIN profiles u ON u.id = c.user_id
            WHERE c.post_id = $1
            ORDER BY c.created_at ASC
            LIMIT $2 OFFSET $3
            """,
            post_id,
            limit,
            offset,
        )
    return [CommentResponse(**dict(row)) for row in rows]


async def _publish_post_update(post_id: UUID, **counters: Optional[int]) -> None:
    await invalidate_feed_cache()
    await publish_change("posts", ChangeKind.UPDATE, {"id": post_id, **counters})
