"""
Counter reconciliation policy.

Denormalized counters (followers_count, following_count, posts_count,
likes_count, comments_count) are only written from this module. Every
adjustment runs on the caller's connection, inside the transaction that
inserts or deletes the relationship row, so a committed counter never
disagrees with the rows it counts. The ``recount_*`` functions recompute
counters from the underlying rows and are used to repair drift.
"""

import logging
from enum import Enum
from uuid import UUID

from asyncpg import Connection

from endgame.core.db import get_connection

logger = logging.getLogger(__name__)


class CounterField(Enum):
    """Whitelisted (table, column) pairs that hold a denormalized counter"""

    FOLLOWERS = ("profiles", "followers_count")
    FOLLOWING = ("profiles", "following_count")
    POSTS = ("profiles", "posts_count")
    LIKES = ("posts", "likes_count")
    COMMENTS = ("posts", "comments_count")

    @property
    def table(self) -> str:
        return self.value[0]

    @property
    def column(self) -> str:
        return self.value[1]


async def adjust_counter(conn: Connection, field: CounterField, row_id: UUID, delta: int) -> int | None:
    """Apply ``delta`` to one counter and return the new value.

    Returns None when the row does not exist. The value never drops below zero.
    """
    if delta == 0:
        return await conn.fetchval(
            f"SELECT {field.column} FROM {field.table} WHERE id = $1",
            row_id,
        )

    return await conn.fetchval(
        f"""
        UPDATE {field.table}
        SET {field.column} = GREATEST({field.column} + $2, 0), updated_at = NOW()
        WHERE id = $1
        RETURNING {field.column}
        """,
        row_id,
        delta,
    )


async def record_like(conn: Connection, post_id: UUID, delta: int) -> int | None:
    """Like row inserted (+1) or deleted (-1)"""
    return await adjust_counter(conn, CounterField.LIKES, post_id, delta)


async def record_comment(conn: Connection, post_id: UUID) -> int | None:
    """Comment row inserted; comments are append-only"""
    return await adjust_counter(conn, CounterField.COMMENTS, post_id, 1)


async def record_follow(conn: Connection, follower_id: UUID, following_id: UUID, delta: int) -> int | None:
    """Follow edge inserted (+1) or deleted (-1).

    Returns the followed profile's new followers_count.

    Both profile rows are updated in id order, so two profiles following
    each other at the same time lock their rows in the same order.
    """
    updates = sorted(
        [(follower_id, CounterField.FOLLOWING), (following_id, CounterField.FOLLOWERS)],
        key=lambda update: update[0],
    )
    followers_count = None
    for profile_id, field in updates:
        value = await adjust_counter(conn, field, profile_id, delta)
        if field is CounterField.FOLLOWERS:
            followers_count = value
    return followers_count


async def record_post(conn: Connection, owner_id: UUID, delta: int) -> int | None:
    """Post row inserted (+1) or deleted (-1)"""
    return await adjust_counter(conn, CounterField.POSTS, owner_id, delta)


async def recount_post(conn: Connection, post_id: UUID) -> None:
    """Recompute likes_count and comments_count of one post from its rows"""
    await conn.execute(
        """
        UPDATE posts p
        SET likes_count = (SELECT COUNT(*) FROM likes l WHERE l.post_id = p.id),
            comments_count = (SELECT COUNT(*) FROM comments c WHERE c.post_id = p.id)
        WHERE p.id = $1
        """,
        post_id,
    )


async def recount_profile(conn: Connection, profile_id: UUID) -> None:
    """Recompute follower, following and post counters of one profile"""
    await conn.execute(
        """
        UPDATE profiles pr
        SET followers_count = (SELECT COUNT(*) FROM follows f WHERE f.following_id = pr.id),
            following_count = (SELECT COUNT(*) FROM follows f WHERE f.follower_id = pr.id),
            posts_count = (SELECT COUNT(*) FROM posts p WHERE p.user_id = pr.id)
        WHERE pr.id = $1
        """,
        profile_id,
    )


async def reconcile_all_counters() -> dict[str, int]:
    """
    Recompute every counter from the relationship rows.

    Only rows whose stored value differs are rewritten. Returns the number of
    corrected profiles and posts.
    """
    async with get_connection() as conn, conn.transaction():
        profiles_status = await conn.execute(
            """
            WITH actual AS (
                SELECT
                    pr.id,
                    (SELECT COUNT(*) FROM follows f WHERE f.following_id = pr.id) AS followers,
                    (SELECT COUNT(*) FROM follows f WHERE f.follower_id = pr.id) AS following,
                    (SELECT COUNT(*) FROM posts p WHERE p.user_id = pr.id) AS posts
                FROM profiles pr
            )
            UPDATE profiles pr
            SET followers_count = a.followers,
                following_count = a.following,
                posts_count = a.posts
            FROM actual a
            WHERE pr.id = a.id
              AND (pr.followers_count, pr.following_count, pr.posts_count)
                  IS DISTINCT FROM (a.followers, a.following, a.posts)
            """,
        )
        posts_status = await conn.execute(
            """
            WITH actual AS (
                SELECT
                    p.id,
                    (SELECT COUNT(*) FROM likes l WHERE l.post_id = p.id) AS likes,
                    (SELECT COUNT(*) FROM comments c WHERE c.post_id = p.id) AS comments
                FROM posts p
            )
            UPDATE posts p
            SET likes_count = a.likes,
                comments_count = a.comments
            FROM actual a
            WHERE p.id = a.id
              AND (p.likes_count, p.comments_count) IS DISTINCT FROM (a.likes, a.comments)
            """,
        )

    result = {
        "profiles": _affected_rows(profiles_status),
        "posts": _affected_rows(posts_status),
    }
    logger.info(f"Counter reconciliation corrected {result['profiles']} profiles and {result['posts']} posts")
    return result


def _affected_rows(status: str) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 3"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0
