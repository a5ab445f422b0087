"""
Row-level change notifications.

Writers publish a ``ChangeEvent`` to the Redis channel of the table they
changed once their transaction has committed. Readers never patch their
state from an event: a subscription only uses events as a signal to run its
listeners' idempotent re-fetch. Each subscription owns a bounded queue and a
single reconciler task, and the registry keeps at most one subscription per
(table, column, value) filter.
"""

import asyncio
import itertools
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from endgame.config_secrets import (
    CHANGE_CHANNEL_PREFIX,
    CHANGE_QUEUE_SIZE,
    CHANGE_RETRY_DELAY,
    CHANGE_RETRY_MAX_DELAY,
    CHANGE_SUBSCRIBE_TIMEOUT,
)
from endgame.core import cache

logger = logging.getLogger(__name__)

WATCHED_TABLES = frozenset({"posts", "notifications"})

Refetch = Callable[[], Awaitable[None]]
SubscriptionKey = tuple[str, Optional[str], Optional[str]]


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    table: str
    kind: ChangeKind
    row: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def matches(self, column: Optional[str], value: Optional[str]) -> bool:
        if column is None:
            return True
        return str(self.row.get(column)) == value


def channel_name(table: str) -> str:
    return f"{CHANGE_CHANNEL_PREFIX}{table}"


async def publish_change(table: str, kind: ChangeKind, row: dict[str, Any]) -> None:
    """Publish a committed change; delivery is best effort"""
    client = cache.redis_client
    if not client:
        return

    event = ChangeEvent(table=table, kind=kind, row=row)
    try:
        await client.publish(channel_name(table), event.model_dump_json())
    except RedisError:
        logger.exception(f"Failed to publish {kind.value} on {table}")


class ChangeSource(Protocol):
    async def subscribe(self) -> None: ...

    def events(self) -> AsyncIterator[ChangeEvent]: ...

    async def close(self) -> None: ...


class RedisChangeSource:
    """Change events of one table read from Redis pub/sub"""

    def __init__(self, client, table: str):
        self._client = client
        self._channel = channel_name(table)
        self._pubsub = None
        self._closed = False

    async def subscribe(self) -> None:
        """Return once Redis has confirmed the subscription"""
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(self._channel)
        async with asyncio.timeout(CHANGE_SUBSCRIBE_TIMEOUT):
            while True:
                message = await self._pubsub.get_message(timeout=None)
                if message and message.get("type") == "subscribe":
                    return

    async def events(self) -> AsyncIterator[ChangeEvent]:
        if self._pubsub is None:
            raise RuntimeError(f"Not subscribed to {self._channel}")
        async for message in self._pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                yield ChangeEvent.model_validate_json(message["data"])
            except PydanticValidationError:
                logger.warning(f"Ignoring malformed change event on {self._channel}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()


async def _close_quietly(source: ChangeSource) -> None:
    try:
        await source.close()
    except (RedisError, OSError):
        logger.warning("Failed to close a broken change source")


class ChangeSubscription:
    """
    One filtered subscription shared by any number of re-fetch listeners.

    If the source fails and ``reopen`` is given, a fresh source is opened with
    exponential backoff and every listener re-fetches once, since changes
    committed while disconnected were never delivered. Without ``reopen`` the
    subscription is marked failed.
    """

    def __init__(
        self,
        source: ChangeSource,
        table: str,
        column: Optional[str] = None,
        value: Optional[Any] = None,
        maxsize: int = CHANGE_QUEUE_SIZE,
        reopen: Optional[Callable[[], ChangeSource]] = None,
    ):
        if table not in WATCHED_TABLES:
            raise ValueError(f"Changes on {table} are not published")
        self.table = table
        self.column = column
        self.value = None if value is None else str(value)
        self._source = source
        self._reopen = reopen
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=maxsize)
        self._listeners: dict[int, Refetch] = {}
        self._tokens = itertools.count()
        self._tasks: list[asyncio.Task] = []
        self._closed = False
        self._failed = False

    @property
    def key(self) -> SubscriptionKey:
        return (self.table, self.column, self.value)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def failed(self) -> bool:
        return self._failed

    def add_listener(self, refetch: Refetch) -> int:
        token = next(self._tokens)
        self._listeners[token] = refetch
        return token

    def remove_listener(self, token: int) -> bool:
        return self._listeners.pop(token, None) is not None

    async def start(self) -> None:
        """Subscribe and start reading; any change committed after this returns is delivered"""
        if self._tasks or self._closed:
            return
        await self._source.subscribe()
        self._tasks = [
            asyncio.create_task(self._read(), name=f"changes-read-{self.table}"),
            asyncio.create_task(self._reconcile(), name=f"changes-reconcile-{self.table}"),
        ]

    def _offer(self, event: ChangeEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            # A re-fetch is already queued; it will observe this change too
            logger.debug(f"Change queue full for {self.key}, dropping event")

    async def _read(self) -> None:
        delay = CHANGE_RETRY_DELAY
        while True:
            try:
                async for event in self._source.events():
                    delay = CHANGE_RETRY_DELAY
                    if event.table == self.table and event.matches(self.column, self.value):
                        self._offer(event)
                return
            except asyncio.CancelledError:
                raise
            except (RedisError, OSError):
                logger.exception(f"Change source for {self.key} failed")

            await _close_quietly(self._source)
            if self._reopen is None:
                self._failed = True
                return
            self._source = await self._resubscribe(delay)
            delay = min(delay * 2, CHANGE_RETRY_MAX_DELAY)
            self._offer(ChangeEvent(table=self.table, kind=ChangeKind.UPDATE))

    async def _resubscribe(self, delay: float) -> ChangeSource:
        while True:
            await asyncio.sleep(delay)
            source = self._reopen()
            try:
                await source.subscribe()
            except (RedisError, OSError):
                logger.exception(f"Resubscribing to changes on {self.key} failed")
                await _close_quietly(source)
                delay = min(delay * 2, CHANGE_RETRY_MAX_DELAY)
                continue
            logger.info(f"Resubscribed to changes on {self.key}")
            return source

    async def _reconcile(self) -> None:
        while True:
            await self._queue.get()
            while not self._queue.empty():
                self._queue.get_nowait()

            for refetch in list(self._listeners.values()):
                try:
                    await refetch()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception(f"Re-fetch after change on {self.key} failed")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self._source.close()


class SubscriptionHandle:
    """A listener's claim on a shared subscription; release exactly once"""

    def __init__(self, registry: "SubscriptionRegistry", subscription: ChangeSubscription, token: int):
        self._registry = registry
        self._subscription = subscription
        self._token = token
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def key(self) -> SubscriptionKey:
        return self._subscription.key

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        await self._registry._release(self._subscription, self._token)


def _redis_source(table: str) -> ChangeSource:
    if cache.redis_client is None:
        raise RuntimeError("Redis cache is not initialized")
    return RedisChangeSource(cache.redis_client, table)


class SubscriptionRegistry:
    def __init__(self, source_factory: Callable[[str], ChangeSource] = _redis_source):
        self._source_factory = source_factory
        self._subscriptions: dict[SubscriptionKey, ChangeSubscription] = {}
        self._lock = asyncio.Lock()

    def active_keys(self) -> list[SubscriptionKey]:
        return list(self._subscriptions)

    async def acquire(
        self,
        table: str,
        refetch: Refetch,
        column: Optional[str] = None,
        value: Optional[Any] = None,
    ) -> SubscriptionHandle:
        """
        Register a re-fetch listener.

        Returns once the subscription is live, so a view that loads its
        snapshot after this call cannot miss a change.
        """
        key = (table, column, None if value is None else str(value))
        async with self._lock:
            subscription = self._subscriptions.get(key)
            if subscription is not None and subscription.failed:
                logger.warning(f"Replacing failed subscription to changes on {key}")
                del self._subscriptions[key]
                await subscription.close()
                subscription = None
            if subscription is None:
                subscription = ChangeSubscription(
                    self._source_factory(table),
                    table,
                    column,
                    value,
                    reopen=lambda: self._source_factory(table),
                )
                try:
                    await subscription.start()
                except BaseException:
                    await subscription.close()
                    raise
                self._subscriptions[key] = subscription
                logger.info(f"Subscribed to changes on {key}")
            token = subscription.add_listener(refetch)
        return SubscriptionHandle(self, subscription, token)

    async def _release(self, subscription: ChangeSubscription, token: int) -> None:
        async with self._lock:
            subscription.remove_listener(token)
            if subscription.listener_count:
                return
            if self._subscriptions.get(subscription.key) is subscription:
                del self._subscriptions[subscription.key]
        await subscription.close()
        logger.info(f"Unsubscribed from changes on {subscription.key}")

    async def close(self) -> None:
        async with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for subscription in subscriptions:
            await subscription.close()


registry = SubscriptionRegistry()
