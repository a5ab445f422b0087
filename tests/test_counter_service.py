from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from endgame.services import counter_service
from endgame.services.counter_service import CounterField

from conftest import FakeConnection, FakeTransaction


async def test_counter_never_drops_below_zero(db):
    author = db.add_profile("author")
    post_id = db.add_post(author)
    conn = FakeConnection(db)

    assert await counter_service.record_like(conn, post_id, -1) == 0
    assert db.post(post_id)["likes_count"] == 0


async def test_zero_delta_reads_without_writing(db):
    author = db.add_profile("author", followers_count=7)
    conn = FakeConnection(db)

    assert await counter_service.adjust_counter(conn, CounterField.FOLLOWERS, author, 0) == 7


async def test_record_follow_moves_both_sides(db):
    fan = db.add_profile("fan")
    star = db.add_profile("star")
    conn = FakeConnection(db)

    followers = await counter_service.record_follow(conn, fan, star, 1)

    assert followers == 1
    assert db.profile(fan)["following_count"] == 1
    assert db.profile(star)["followers_count"] == 1
    assert db.profile(star)["following_count"] == 0


def test_counter_fields_are_whitelisted_columns():
    assert CounterField.LIKES.table == "posts"
    assert CounterField.LIKES.column == "likes_count"
    assert {field.table for field in CounterField} == {"profiles", "posts"}


async def test_reconcile_reports_corrected_rows(monkeypatch, db):
    conn = MagicMock()
    conn.execute = AsyncMock(side_effect=["UPDATE 3", "UPDATE 0"])
    conn.transaction = lambda: FakeTransaction(db)

    @asynccontextmanager
    async def fake_get_connection():
        yield conn

    monkeypatch.setattr(counter_service, "get_connection", fake_get_connection)

    result = await counter_service.reconcile_all_counters()

    assert result == {"profiles": 3, "posts": 0}
    assert conn.execute.await_count == 2
    assert db.commits == 1


def test_affected_rows_parses_command_tag():
    assert counter_service._affected_rows("UPDATE 12") == 12
    assert counter_service._affected_rows("") == 0
    assert counter_service._affected_rows(None) == 0


async def test_recount_recomputes_from_rows():
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="UPDATE 1")
    post_id = uuid4()
    profile_id = uuid4()

    await counter_service.recount_post(conn, post_id)
    await counter_service.recount_profile(conn, profile_id)

    post_query, post_arg = conn.execute.await_args_list[0].args
    profile_query, profile_arg = conn.execute.await_args_list[1].args
    assert "COUNT(*) FROM likes" in post_query and post_arg == post_id
    assert "COUNT(*) FROM follows" in profile_query and profile_arg == profile_id


async def test_mutual_follows_update_profiles_in_the_same_order():
    low, high = sorted([uuid4(), uuid4()])
    conn = MagicMock()
    conn.fetchval = AsyncMock(return_value=1)

    await counter_service.record_follow(conn, low, high, 1)
    await counter_service.record_follow(conn, high, low, 1)

    locked = [call.args[1] for call in conn.fetchval.await_args_list]
    assert locked == [low, high, low, high]


async def test_record_follow_returns_followers_of_the_followed_profile(db):
    fan = db.add_profile("fan", following_count=4)
    star = db.add_profile("star", followers_count=9)
    conn = FakeConnection(db)

    assert await counter_service.record_follow(conn, fan, star, 1) == 10
    assert await counter_service.record_follow(conn, star, fan, 1) == 1
