from collections.abc import Iterable
from uuid import UUID

from asyncpg import Connection

from endgame.config_secrets import MAX_TAG_LENGTH, MAX_TAGS_PER_POST
from endgame.core.db import get_connection
from endgame.services.errors import ValidationError


def normalize_tag(raw: str) -> str:
    """Trim whitespace and a leading '#', then case-fold"""
    return raw.strip().lstrip("#").strip().casefold()


def normalize_tags(raw_tags: Iterable[str] | None) -> list[str]:
    """
    Normalize a post's free-text tags.

    Empty entries are dropped and duplicates collapse onto the first
    occurrence, so ``["Basketball", "basketball", " Basketball "]`` becomes
    ``["basketball"]``. Raises ValidationError when a tag is too long or the
    post carries too many distinct tags.
    """
    tags: list[str] = []
    seen: set[str] = set()
    for raw in raw_tags or []:
        name = normalize_tag(raw)
        if not name or name in seen:
            continue
        if len(name) > MAX_TAG_LENGTH:
            raise ValidationError(f"Tag '{name}' is longer than {MAX_TAG_LENGTH} characters")
        seen.add(name)
        tags.append(name)

    if len(tags) > MAX_TAGS_PER_POST:
        raise ValidationError(f"A post can have at most {MAX_TAGS_PER_POST} tags")
    return tags


async def find_or_create_tag(conn: Connection, name: str) -> UUID:
    """Return the id of the tag named ``name``, creating it if needed.

    The store-side function upserts on the unique name, so two posts
    introducing the same new tag concurrently both get the one row.
    """
    return await conn.fetchval("SELECT create_tag_if_not_exists($1)", name)


async def associate_tags(conn: Connection, post_id: UUID, names: list[str]) -> list[dict]:
    """Link already-normalized tags to a post inside the caller's transaction"""
    linked = []
    for name in names:
        tag_id = await find_or_create_tag(conn, name)
        await conn.execute(
            """
            INSERT INTO post_tags (post_id, tag_id)
            VALUES ($1, $2)
            ON CONFLICT DO NOTHING
            """,
            post_id,
            tag_id,
        )
        linked.append({"id": tag_id, "name": name})
    return linked


async def get_post_tags(post_ids: list[UUID]) -> dict[UUID, list[dict]]:
    """Get tags for a batch of posts, keyed by post id"""
    if not post_ids:
        return {}

    async with get_connection() as conn:
        rows = await conn.fetch(
            """
            SELECT pt.post_id, t.id, t.name
            FROM post_tags pt
            JOIN tags t ON t.id = pt.tag_id
            WHERE pt.post_id = ANY($1::uuid[])
            ORDER BY t.name
            """,
            post_ids,
        )

    tags: dict[UUID, list[dict]] = {post_id: [] for post_id in post_ids}
    for row in rows:
        tags.setdefault(row["post_id"], []).append({"id": row["id"], "name": row["name"]})
    return tags
