"""
Optimistic toggles for likes and follows.

The UI flips immediately to a tentative state while the durable mutation
runs. The server's answer then either confirms the toggle, replacing the
client's count estimate with the committed one, or rolls it back to the
state shown before. A second toggle on the same (profile, target) pair while
one is in flight is rejected rather than interleaved.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Generator
from dataclasses import dataclass
from typing import Any, Union
from uuid import UUID

from endgame.client.http import ApiError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToggleState:
    active: bool
    count: int

    def flipped(self) -> "ToggleState":
        delta = -1 if self.active else 1
        return ToggleState(active=not self.active, count=max(self.count + delta, 0))


@dataclass(frozen=True)
class Tentative:
    state: ToggleState
    previous: ToggleState


@dataclass(frozen=True)
class Confirmed:
    state: ToggleState


@dataclass(frozen=True)
class RolledBack:
    state: ToggleState
    error: ApiError


MutationOutcome = Union[Confirmed, RolledBack]

# (target_id, activate) -> committed state
Mutate = Callable[[UUID, bool], Awaitable[ToggleState]]


class MutationInFlightError(Exception):
    """A toggle on the same target is still waiting for the server."""


class PendingMutation:
    """A toggle that has been shown to the user but not yet committed"""

    def __init__(self, tentative: Tentative, task: "asyncio.Task[MutationOutcome]"):
        self.tentative = tentative
        self._task = task

    def done(self) -> bool:
        return self._task.done()

    def __await__(self) -> Generator[Any, None, MutationOutcome]:
        return self._task.__await__()


class OptimisticToggle:
    def __init__(self, mutate: Mutate):
        self._mutate = mutate
        self._in_flight: dict[tuple[UUID, UUID], PendingMutation] = {}

    def is_pending(self, profile_id: UUID, target_id: UUID) -> bool:
        return (profile_id, target_id) in self._in_flight

    def toggle(self, profile_id: UUID, target_id: UUID, current: ToggleState) -> PendingMutation:
        """Flip ``current`` now and start the durable mutation.

        Must be called from a running event loop. Raises MutationInFlightError
        if the previous toggle of this pair has not settled.
        """
        key = (profile_id, target_id)
        if key in self._in_flight:
            raise MutationInFlightError(f"A change to {target_id} is already in progress")

        tentative = Tentative(state=current.flipped(), previous=current)
        task = asyncio.create_task(self._run(key, tentative))
        pending = PendingMutation(tentative, task)
        self._in_flight[key] = pending
        return pending

    async def _run(self, key: tuple[UUID, UUID], tentative: Tentative) -> MutationOutcome:
        try:
            committed = await self._mutate(key[1], tentative.state.active)
        except ApiError as exc:
            logger.warning(f"Rolling back toggle of {key[1]}: {exc}")
            return RolledBack(state=tentative.previous, error=exc)
        finally:
            self._in_flight.pop(key, None)
        return Confirmed(state=committed)


class LikeToggle(OptimisticToggle):
    """Like/unlike posts for the signed-in profile"""

    def __init__(self, session):
        self._session = session
        super().__init__(self._like)

    async def _like(self, post_id: UUID, activate: bool) -> ToggleState:
        api = self._session.api
        result = await (api.like_post(post_id) if activate else api.unlike_post(post_id))
        return ToggleState(active=result.liked, count=result.likes_count)

    def toggle_post(self, post_id: UUID, current: ToggleState) -> PendingMutation:
        return self.toggle(self._session.profile_id, post_id, current)


class FollowToggle(OptimisticToggle):
    """Follow/unfollow profiles for the signed-in profile"""

    def __init__(self, session):
        self._session = session
        super().__init__(self._follow)

    async def _follow(self, profile_id: UUID, activate: bool) -> ToggleState:
        api = self._session.api
        result = await (api.follow(profile_id) if activate else api.unfollow(profile_id))
        return ToggleState(active=result.following, count=result.followers_count)

    def toggle_profile(self, profile_id: UUID, current: ToggleState) -> PendingMutation:
        return self.toggle(self._session.profile_id, profile_id, current)
