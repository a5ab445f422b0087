import asyncio
import copy
import re
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any, Optional
from uuid import UUID, uuid4

import pytest

from endgame.services import (
    achievement_service,
    counter_service,
    notification_service,
    post_service,
    profile_service,
    s3_service,
    tag_service,
)

COUNTER_UPDATE = re.compile(r"^UPDATE (\w+) SET (\w+) = GREATEST")
SINGLE_COLUMN_SELECT = re.compile(r"^SELECT (\w+) FROM (\w+) WHERE id = \$1$")
IMAGE_SELECT = re.compile(r"^SELECT (\w+) AS url FROM profiles WHERE id = \$1 FOR UPDATE$")
ASSIGNMENT = re.compile(r"(\w+) = \$(\d+)")


class SimulatedFailure(Exception):
    pass


class FakeDatabase:
    """
    In-memory stand-in for the Postgres schema.

    It understands exactly the statements the services issue, keyed on their
    distinctive fragments, and rolls back on a failed transaction like the
    real store. An unknown statement fails the test loudly.
    """

    def __init__(self):
        self.tables: dict[str, dict[UUID, dict]] = {
            "profiles": {},
            "posts": {},
            "comments": {},
            "notifications": {},
            "achievements": {},
            "tags": {},
        }
        self.likes: dict[tuple[UUID, UUID], UUID] = {}
        self.follows: dict[tuple[UUID, UUID], UUID] = {}
        self.post_tags: set[tuple[UUID, UUID]] = set()
        self.fail_on: Optional[str] = None
        self.commits = 0
        self.rollbacks = 0
        self.open_transactions = 0
        self.max_open_transactions = 0
        self._clock = datetime(2024, 1, 1, tzinfo=UTC)

    # Seeding helpers
    def _now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def add_profile(self, username: str = "athlete", **fields: Any) -> UUID:
        profile_id = fields.pop("id", uuid4())
        self.tables["profiles"][profile_id] = {
            "id": profile_id,
            "username": username,
            "email": f"{username}@example.com",
            "password_hash": "x",
            "full_name": username.title(),
            "bio": None,
            "location": None,
            "sport": "other",
            "profile_image_url": None,
            "cover_image_url": None,
            "is_verified": False,
            "followers_count": 0,
            "following_count": 0,
            "posts_count": 0,
            "created_at": self._now(),
            "updated_at": self._now(),
            **fields,
        }
        return profile_id

    def add_post(self, user_id: UUID, **fields: Any) -> UUID:
        post_id = fields.pop("id", uuid4())
        self.tables["posts"][post_id] = {
            "id": post_id,
            "user_id": user_id,
            "caption": None,
            "media_urls": ["https://media.example.com/a.jpg"],
            "media_type": "image",
            "likes_count": 0,
            "comments_count": 0,
            "created_at": self._now(),
            **fields,
        }
        self.tables["profiles"][user_id]["posts_count"] += 1
        return post_id

    def profile(self, profile_id: UUID) -> dict:
        return self.tables["profiles"][profile_id]

    def post(self, post_id: UUID) -> Optional[dict]:
        return self.tables["posts"].get(post_id)

    def notifications_for(self, recipient_id: UUID) -> list[dict]:
        return [n for n in self.tables["notifications"].values() if n["recipient_id"] == recipient_id]

    # Transactions
    def snapshot(self):
        return copy.deepcopy((self.tables, self.likes, self.follows, self.post_tags))

    def restore(self, snapshot) -> None:
        self.tables, self.likes, self.follows, self.post_tags = snapshot

    # Statement routing
    def run(self, query: str, args: tuple) -> Any:
        sql = " ".join(query.split())
        if self.fail_on and self.fail_on in sql:
            raise SimulatedFailure(f"Simulated failure on: {self.fail_on}")

        if sql.startswith("INSERT INTO likes"):
            return self._insert_edge(self.likes, args)
        if sql.startswith("DELETE FROM likes"):
            return self.likes.pop((args[0], args[1]), None)
        if sql.startswith("INSERT INTO follows"):
            return self._insert_edge(self.follows, args)
        if sql.startswith("DELETE FROM follows"):
            return self.follows.pop((args[0], args[1]), None)
        if sql.startswith("DELETE FROM posts"):
            return self._delete_post(*args)
        if sql.startswith("INSERT INTO posts"):
            return self._insert_post(*args)
        if sql.startswith("INSERT INTO notifications"):
            return self._insert_notification(*args)
        if sql.startswith("INSERT INTO achievements"):
            return self._insert_achievement(*args)
        if sql.startswith("INSERT INTO post_tags"):
            self.post_tags.add((args[0], args[1]))
            return "INSERT 0 1"
        if sql.startswith("SELECT create_tag_if_not_exists"):
            return self._tag_id(args[0])
        if "INSERT INTO comments" in sql:
            return self._insert_comment(*args)
        if sql.startswith("SELECT post_id FROM likes"):
            return [{"post_id": post_id} for (user_id, post_id) in self.likes if user_id == args[0] and post_id in args[1]]
        if "FROM post_tags pt" in sql:
            return self._post_tags(args[0])
        if "FROM posts p" in sql:
            return self._select_posts(sql, args)
        if sql.startswith("SELECT id, username, email") and sql.endswith("FROM profiles WHERE id = $1"):
            row = self.tables["profiles"].get(args[0])
            return dict(row) if row else None
        if sql.startswith("UPDATE profiles SET") and "GREATEST" not in sql:
            return self._update_profile(sql, args)

        match = IMAGE_SELECT.match(sql)
        if match:
            row = self.tables["profiles"].get(args[0])
            return {"url": row[match.group(1)]} if row else None

        match = COUNTER_UPDATE.match(sql)
        if match:
            row = self.tables[match.group(1)].get(args[0])
            if row is None:
                return None
            column = match.group(2)
            row[column] = max(row[column] + args[1], 0)
            return row[column]

        match = SINGLE_COLUMN_SELECT.match(sql)
        if match:
            row = self.tables[match.group(2)].get(args[0])
            if row is None:
                return None
            return 1 if match.group(1) == "1" else row[match.group(1)]

        raise AssertionError(f"Unhandled statement: {sql}")

    def _insert_edge(self, edges: dict, args: tuple) -> Optional[UUID]:
        edge_id, source, target = args
        if (source, target) in edges:
            return None
        edges[(source, target)] = edge_id
        return edge_id

    def _update_profile(self, sql: str, args: tuple) -> Optional[UUID]:
        row = self.tables["profiles"].get(args[0])
        if row is None:
            return None
        for column, position in ASSIGNMENT.findall(sql.split(" WHERE ", 1)[0]):
            row[column] = args[int(position) - 1]
        return row["id"]

    def _insert_post(self, post_id, user_id, caption, media_urls) -> str:
        self.tables["posts"][post_id] = {
            "id": post_id,
            "user_id": user_id,
            "caption": caption,
            "media_urls": list(media_urls),
            "media_type": "image",
            "likes_count": 0,
            "comments_count": 0,
            "created_at": self._now(),
        }
        return "INSERT 0 1"

    def _delete_post(self, post_id, user_id) -> Optional[list[str]]:
        post = self.tables["posts"].get(post_id)
        if post is None or post["user_id"] != user_id:
            return None
        del self.tables["posts"][post_id]
        self.likes = {key: value for key, value in self.likes.items() if key[1] != post_id}
        self.post_tags = {pair for pair in self.post_tags if pair[0] != post_id}
        for table in ("comments", "notifications"):
            self.tables[table] = {
                row_id: row for row_id, row in self.tables[table].items() if row.get("post_id") != post_id
            }
        return post["media_urls"]

    def _insert_notification(self, notification_id, recipient_id, sender_id, kind, post_id, comment_id, message, action):
        sender = self.tables["profiles"].get(sender_id)
        if sender is None:
            return None
        row = {
            "id": notification_id,
            "recipient_id": recipient_id,
            "sender_id": sender_id,
            "type": kind,
            "post_id": post_id,
            "comment_id": comment_id,
            "message": message or f"{sender['username']} {action}",
            "is_read": False,
            "created_at": self._now(),
        }
        self.tables["notifications"][notification_id] = row
        return dict(row)

    def _insert_achievement(self, achievement_id, user_id, kind, title, description) -> Optional[UUID]:
        for row in self.tables["achievements"].values():
            if row["user_id"] == user_id and row["type"] == kind:
                return None
        self.tables["achievements"][achievement_id] = {
            "id": achievement_id,
            "user_id": user_id,
            "type": kind,
            "title": title,
            "description": description,
            "earned_at": self._now(),
        }
        return achievement_id

    def _tag_id(self, name: str) -> UUID:
        for row in self.tables["tags"].values():
            if row["name"] == name:
                return row["id"]
        tag_id = uuid4()
        self.tables["tags"][tag_id] = {"id": tag_id, "name": name}
        return tag_id

    def _post_tags(self, post_ids: list[UUID]) -> list[dict]:
        rows = []
        for post_id, tag_id in self.post_tags:
            if post_id in post_ids:
                rows.append({"post_id": post_id, "id": tag_id, "name": self.tables["tags"][tag_id]["name"]})
        return sorted(rows, key=lambda row: row["name"])

    def _insert_comment(self, comment_id, user_id, post_id, content) -> dict:
        author = self.tables["profiles"][user_id]
        row = {
            "id": comment_id,
            "post_id": post_id,
            "user_id": user_id,
            "content": content,
            "created_at": self._now(),
        }
        self.tables["comments"][comment_id] = row
        return {**row, "username": author["username"], "profile_image_url": author["profile_image_url"]}

    def _joined_post(self, post: dict) -> dict:
        author = self.tables["profiles"][post["user_id"]]
        return {
            **post,
            "username": author["username"],
            "profile_image_url": author["profile_image_url"],
            "sport": author["sport"],
        }

    def _select_posts(self, sql: str, args: tuple):
        posts = sorted(self.tables["posts"].values(), key=lambda post: post["created_at"], reverse=True)
        if "WHERE p.id = $1" in sql:
            post = self.tables["posts"].get(args[0])
            return self._joined_post(post) if post else None
        if "WHERE p.user_id = $1" in sql:
            posts = [post for post in posts if post["user_id"] == args[0]]
            limit, offset = args[1], args[2]
            return [self._joined_post(post) for post in posts[offset:offset + limit]]
        if "WHERE t.name = $1" in sql:
            tag_ids = {row["id"] for row in self.tables["tags"].values() if row["name"] == args[0]}
            tagged = {post_id for post_id, tag_id in self.post_tags if tag_id in tag_ids}
            posts = [post for post in posts if post["id"] in tagged]
            return [self._joined_post(post) for post in posts[: args[1]]]
        return [self._joined_post(post) for post in posts[: args[0]]]


class FakeTransaction:
    def __init__(self, db: FakeDatabase):
        self._db = db
        self._snapshot = None

    async def __aenter__(self):
        self._snapshot = self._db.snapshot()
        self._db.open_transactions += 1
        self._db.max_open_transactions = max(self._db.max_open_transactions, self._db.open_transactions)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._db.open_transactions -= 1
        if exc_type is None:
            self._db.commits += 1
        else:
            self._db.restore(self._snapshot)
            self._db.rollbacks += 1
        return False


class FakeConnection:
    """Every statement is a round trip: it yields to the event loop first"""

    def __init__(self, db: FakeDatabase):
        self._db = db

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self._db)

    async def fetchval(self, query: str, *args):
        await asyncio.sleep(0)
        return self._db.run(query, args)

    async def fetchrow(self, query: str, *args):
        await asyncio.sleep(0)
        return self._db.run(query, args)

    async def fetch(self, query: str, *args):
        await asyncio.sleep(0)
        return self._db.run(query, args) or []

    async def execute(self, query: str, *args):
        await asyncio.sleep(0)
        return self._db.run(query, args)


DB_MODULES = (
    achievement_service,
    counter_service,
    notification_service,
    post_service,
    profile_service,
    tag_service,
)


@pytest.fixture
def db(monkeypatch) -> FakeDatabase:
    database = FakeDatabase()

    @asynccontextmanager
    async def fake_get_connection():
        yield FakeConnection(database)

    for module in DB_MODULES:
        monkeypatch.setattr(module, "get_connection", fake_get_connection)
    return database


class FakeStorage:
    """Object storage double; ``fail_on_upload`` is the 1-based upload to reject"""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.uploads = 0
        self.deleted: list[str] = []
        self.fail_on_upload: Optional[int] = None

    def upload(self, data: bytes, key: str, content_type: Optional[str] = None) -> Optional[str]:
        self.uploads += 1
        if self.fail_on_upload == self.uploads:
            return None
        self.objects[key] = data
        return s3_service.get_public_url(key)

    def delete(self, key: str) -> bool:
        self.deleted.append(key)
        self.objects.pop(key, None)
        return True


@pytest.fixture
def storage(monkeypatch) -> FakeStorage:
    fake = FakeStorage()
    monkeypatch.setattr(s3_service, "upload_media_to_s3", fake.upload)
    monkeypatch.setattr(s3_service, "delete_media_from_s3", fake.delete)
    return fake
