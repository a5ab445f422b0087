from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from endgame.models.models import NotificationType
from endgame.services import notification_service
from endgame.services.errors import NotificationNotFoundError

from conftest import FakeConnection


@pytest.fixture
def conn(monkeypatch):
    connection = MagicMock()
    connection.fetchval = AsyncMock()
    connection.fetch = AsyncMock()

    @asynccontextmanager
    async def fake_get_connection():
        yield connection

    monkeypatch.setattr(notification_service, "get_connection", fake_get_connection)
    return connection


async def test_self_action_creates_no_notification(db):
    me = db.add_profile("me")

    row = await notification_service.create_notification(FakeConnection(db), me, me, NotificationType.LIKE)

    assert row is None
    assert db.tables["notifications"] == {}


async def test_notification_message_names_the_sender(db):
    owner = db.add_profile("owner")
    fan = db.add_profile("fan")

    row = await notification_service.create_notification(FakeConnection(db), owner, fan, NotificationType.FOLLOW)

    assert row["message"] == "fan started following you"
    assert row["is_read"] is False


async def test_mark_as_read_requires_recipient(conn):
    conn.fetchval.return_value = None

    with pytest.raises(NotificationNotFoundError):
        await notification_service.mark_as_read(uuid4(), uuid4())

    query, notification_id, recipient_id = conn.fetchval.await_args.args
    assert "recipient_id = $2" in query


async def test_mark_all_as_read_counts_updated_rows(conn):
    conn.fetch.return_value = [{"id": uuid4()}, {"id": uuid4()}]

    assert await notification_service.mark_all_as_read(uuid4()) == 2


async def test_listing_does_not_mark_read(conn):
    conn.fetch.return_value = []
    conn.fetchval.return_value = 4

    result = await notification_service.get_notifications(uuid4())

    assert result.unread_count == 4
    assert result.notifications == []
    assert all("UPDATE" not in call.args[0] for call in conn.fetch.await_args_list)
