"""
Utility script to create database tables.

This module owns the relational schema of the application: enum types,
tables, indexes and the ``create_tag_if_not_exists`` function used for
idempotent tag creation.
"""

import asyncio
import logging
from typing import Optional

import asyncpg
from asyncpg import Connection

from endgame.config_secrets import DATABASE_URL

ENUM_TYPES = {
    "sport_category": (
        "basketball", "soccer", "tennis", "running", "swimming", "cycling",
        "volleyball", "baseball", "football", "hockey", "other",
    ),
    "notification_type": ("like", "comment", "follow", "mention", "achievement"),
    "achievement_type": (
        "first_post", "ten_posts", "hundred_followers",
        "verified_athlete", "top_contributor", "community_leader",
    ),
}

TABLES = {
    "profiles": """
        CREATE TABLE IF NOT EXISTS profiles (
            id UUID PRIMARY KEY,
            username TEXT UNIQUE NOT NULL,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            full_name TEXT NOT NULL,
            bio TEXT,
            location TEXT,
            sport sport_category DEFAULT 'other',
            profile_image_url TEXT,
            cover_image_url TEXT,
            is_verified BOOLEAN NOT NULL DEFAULT FALSE,
            followers_count INTEGER NOT NULL DEFAULT 0 CHECK (followers_count >= 0),
            following_count INTEGER NOT NULL DEFAULT 0 CHECK (following_count >= 0),
            posts_count INTEGER NOT NULL DEFAULT 0 CHECK (posts_count >= 0),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_profiles_followers_count ON profiles(followers_count DESC);
    """,
    "posts": """
        CREATE TABLE IF NOT EXISTS posts (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            caption TEXT,
            media_urls TEXT[] NOT NULL,
            media_type TEXT NOT NULL DEFAULT 'image',
            likes_count INTEGER NOT NULL DEFAULT 0 CHECK (likes_count >= 0),
            comments_count INTEGER NOT NULL DEFAULT 0 CHECK (comments_count >= 0),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT post_media_check CHECK (
                cardinality(media_urls) BETWEEN 1 AND 5
            )
        );
        CREATE INDEX IF NOT EXISTS idx_posts_user_id ON posts(user_id);
        CREATE INDEX IF NOT EXISTS idx_posts_created_at ON posts(created_at DESC);
    """,
    "likes": """
        CREATE TABLE IF NOT EXISTS likes (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            post_id UUID NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE(user_id, post_id)
        );
        CREATE INDEX IF NOT EXISTS idx_likes_post_id ON likes(post_id);
    """,
    "comments": """
        CREATE TABLE IF NOT EXISTS comments (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            post_id UUID NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
            content TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_comments_post_id ON comments(post_id, created_at);
    """,
    "follows": """
        CREATE TABLE IF NOT EXISTS follows (
            id UUID PRIMARY KEY,
            follower_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            following_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE(follower_id, following_id),
            CONSTRAINT no_self_follow CHECK (follower_id <> following_id)
        );
        CREATE INDEX IF NOT EXISTS idx_follows_following_id ON follows(following_id);
    """,
    "notifications": """
        CREATE TABLE IF NOT EXISTS notifications (
            id UUID PRIMARY KEY,
            recipient_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            sender_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            type notification_type NOT NULL,
            post_id UUID REFERENCES posts(id) ON DELETE CASCADE,
            comment_id UUID REFERENCES comments(id) ON DELETE CASCADE,
            message TEXT NOT NULL,
            is_read BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_notifications_recipient
            ON notifications(recipient_id, created_at DESC);
    """,
    "tags": """
        CREATE TABLE IF NOT EXISTS tags (
            id UUID PRIMARY KEY,
            name TEXT UNIQUE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """,
    "post_tags": """
        CREATE TABLE IF NOT EXISTS post_tags (
            post_id UUID NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
            tag_id UUID NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
            PRIMARY KEY (post_id, tag_id)
        );
        CREATE INDEX IF NOT EXISTS idx_post_tags_tag_id ON post_tags(tag_id);
    """,
    "achievements": """
        CREATE TABLE IF NOT EXISTS achievements (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            type achievement_type NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE(user_id, type)
        );
    """,
}

# gen_random_uuid() is built in from PostgreSQL 13 onwards
CREATE_TAG_FUNCTION = """
    CREATE OR REPLACE FUNCTION create_tag_if_not_exists(tag_name TEXT)
    RETURNS UUID
    LANGUAGE sql
    AS $$
        INSERT INTO tags (id, name)
        VALUES (gen_random_uuid(), tag_name)
        ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
        RETURNING id;
    $$;
"""


def _enum_statement(name: str, values: tuple[str, ...]) -> str:
    labels = ", ".join(f"'{value}'" for value in values)
    return f"""
        DO $$ BEGIN
            CREATE TYPE {name} AS ENUM ({labels});
        EXCEPTION
            WHEN duplicate_object THEN NULL;
        END $$;
    """


async def create_schema(conn: Connection) -> None:
    """Create enum types, tables and functions if they don't exist"""
    async with conn.transaction():
        for name, values in ENUM_TYPES.items():
            await conn.execute(_enum_statement(name, values))

        for name, statement in TABLES.items():
            await conn.execute(statement)
            logging.info(f"Created {name} table")

        await conn.execute(CREATE_TAG_FUNCTION)


async def create_database_tables(connection_string: Optional[str] = None) -> None:
    """
    Create all database tables.

    Args:
        connection_string: Database connection string. If not provided,
            uses the DATABASE_URL from config_secrets.py.
    """
    conn_string = connection_string or DATABASE_URL

    logging.info("Connecting to database...")
    conn = await asyncpg.connect(conn_string)

    try:
        logging.info("Creating tables...")
        await create_schema(conn)
        logging.info("All tables created successfully")
    finally:
        await conn.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(create_database_tables())
