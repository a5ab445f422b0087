import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, Optional, TypeVar

from endgame.client.session import SessionContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ViewUnmountedError(RuntimeError):
    """Raised when loading into a view that has been torn down."""


class ViewLoader(Generic[T]):
    """
    Ties data fetches to the lifetime of one mounted view.

    Each ``load`` supersedes the previous one and cancels it if it is still
    running. A result is applied only while the view is mounted and still
    showing the key it was fetched for, so a slow response for an old key
    never overwrites a newer one.
    """

    def __init__(self, session: SessionContext, apply: Callable[[T], None]):
        self._session = session
        self._apply = apply
        self._generation = 0
        self._key: Optional[Hashable] = None
        self._task: Optional[asyncio.Task] = None
        self.mounted = True
        session.register_view(self)

    @property
    def key(self) -> Optional[Hashable]:
        return self._key

    async def load(self, key: Hashable, fetch: Callable[[], Awaitable[T]]) -> Optional[T]:
        """Fetch for ``key`` and apply the result; returns None when it went stale"""
        if not self.mounted:
            raise ViewUnmountedError("View is no longer mounted")

        self._generation += 1
        generation = self._generation
        self._key = key
        if self._task is not None and not self._task.done():
            self._task.cancel()

        task = asyncio.ensure_future(fetch())
        self._task = task
        try:
            result = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # Superseded by a newer load or by unmount
            return None

        if generation != self._generation or not self.mounted or key != self._key:
            logger.debug(f"Discarding stale result for {key}")
            return None

        self._apply(result)
        return result

    async def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._session.unregister_view(self)
