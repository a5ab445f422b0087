import asyncio
from types import SimpleNamespace
from uuid import uuid4

import pytest

from endgame.client.http import ApiError
from endgame.client.optimistic import (
    Confirmed,
    FollowToggle,
    LikeToggle,
    MutationInFlightError,
    OptimisticToggle,
    RolledBack,
    ToggleState,
)
from endgame.schemas.schemas import FollowStateResponse, LikeStateResponse


def test_flip_never_goes_below_zero():
    assert ToggleState(active=False, count=3).flipped() == ToggleState(active=True, count=4)
    assert ToggleState(active=True, count=0).flipped() == ToggleState(active=False, count=0)


async def test_tentative_state_then_server_confirmation():
    gate = asyncio.Event()

    async def mutate(target_id, activate):
        await gate.wait()
        return ToggleState(active=activate, count=42)

    toggle = OptimisticToggle(mutate)
    pending = toggle.toggle(uuid4(), uuid4(), ToggleState(active=False, count=9))

    assert pending.tentative.state == ToggleState(active=True, count=10)
    assert not pending.done()

    gate.set()
    outcome = await pending

    assert outcome == Confirmed(state=ToggleState(active=True, count=42))


async def test_failure_rolls_back_to_previous_state():
    async def mutate(target_id, activate):
        raise ApiError(503, "unavailable")

    toggle = OptimisticToggle(mutate)
    current = ToggleState(active=True, count=5)

    outcome = await toggle.toggle(uuid4(), uuid4(), current)

    assert isinstance(outcome, RolledBack)
    assert outcome.state == current
    assert outcome.error.status_code == 503


async def test_second_toggle_while_pending_is_rejected():
    gate = asyncio.Event()
    calls = []

    async def mutate(target_id, activate):
        calls.append(activate)
        await gate.wait()
        return ToggleState(active=activate, count=1)

    toggle = OptimisticToggle(mutate)
    profile_id, post_id = uuid4(), uuid4()
    pending = toggle.toggle(profile_id, post_id, ToggleState(active=False, count=0))

    with pytest.raises(MutationInFlightError):
        toggle.toggle(profile_id, post_id, pending.tentative.state)
    other = toggle.toggle(profile_id, uuid4(), ToggleState(active=False, count=0))

    gate.set()
    await pending
    await other
    assert not toggle.is_pending(profile_id, post_id)

    again = toggle.toggle(profile_id, post_id, ToggleState(active=True, count=1))
    assert isinstance(await again, Confirmed)
    assert calls == [True, True, False]


async def test_unexpected_errors_propagate_and_release_the_guard():
    async def mutate(target_id, activate):
        raise KeyError("bug")

    toggle = OptimisticToggle(mutate)
    profile_id, target_id = uuid4(), uuid4()

    with pytest.raises(KeyError):
        await toggle.toggle(profile_id, target_id, ToggleState(active=False, count=0))
    assert not toggle.is_pending(profile_id, target_id)


async def test_like_toggle_uses_committed_count():
    post_id = uuid4()

    async def like_post(target):
        return LikeStateResponse(post_id=target, liked=True, likes_count=7)

    async def unlike_post(target):
        return LikeStateResponse(post_id=target, liked=False, likes_count=6)

    session = SimpleNamespace(profile_id=uuid4(), api=SimpleNamespace(like_post=like_post, unlike_post=unlike_post))
    likes = LikeToggle(session)

    liked = await likes.toggle_post(post_id, ToggleState(active=False, count=3))
    unliked = await likes.toggle_post(post_id, ToggleState(active=True, count=7))

    assert liked == Confirmed(state=ToggleState(active=True, count=7))
    assert unliked == Confirmed(state=ToggleState(active=False, count=6))


async def test_follow_toggle_rolls_back_on_api_error():
    async def follow(target):
        raise ApiError(422, "You cannot follow yourself")

    session = SimpleNamespace(profile_id=uuid4(), api=SimpleNamespace(follow=follow, unfollow=follow))
    follows = FollowToggle(session)
    current = ToggleState(active=False, count=12)

    outcome = await follows.toggle_profile(session.profile_id, current)

    assert outcome == RolledBack(state=current, error=outcome.error)
    assert outcome.state.count == 12


async def test_follow_toggle_confirms_follower_count():
    star = uuid4()

    async def follow(target):
        return FollowStateResponse(profile_id=target, following=True, followers_count=101)

    session = SimpleNamespace(profile_id=uuid4(), api=SimpleNamespace(follow=follow, unfollow=follow))

    outcome = await FollowToggle(session).toggle_profile(star, ToggleState(active=False, count=99))

    assert outcome == Confirmed(state=ToggleState(active=True, count=101))
