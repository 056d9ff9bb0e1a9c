"""Shared lifecycle for realtime synchronizers.

A synchronizer fetches a snapshot, opens one live subscription and folds
change events into the snapshot. Every asynchronous continuation checks the
instance generation before committing, so nothing resolving after stop()
can write into a torn-down synchronizer.
"""

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine

from ..errors import SubscribeError
from .events import ChangeEvent, Record
from .reconcile import EventSequencer, resolve_expanded
from .service import RemoteDataService, Unsubscribe

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncState:
    """What a synchronizer exposes to its consumers."""

    data: Any
    loading: bool
    error: Exception | None = None


StateListener = Callable[[SyncState], None]


class SubscribePolicy(Enum):
    """When a collection synchronizer opens its subscription."""

    NON_EMPTY = "non_empty"  # Once the snapshot holds at least one record
    SETTLED = "settled"  # Once a fetch succeeded, even if empty


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for subscription setup."""

    max_attempts: int = 3
    backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0


class Synchronizer(ABC):
    """Base class holding the subscription, task and listener bookkeeping.

    Parameters are fixed at construction. To change them, stop this
    instance and create a new one.
    """

    def __init__(
        self,
        service: RemoteDataService,
        collection: str,
        *,
        expand: str = "",
        realtime: bool = True,
        retry: RetryPolicy | None = None,
    ):
        self._service = service
        self._collection = collection
        self._expand = expand
        self._realtime = realtime
        self._retry = retry or RetryPolicy()

        self._loading = False
        self._error: Exception | None = None
        self._pending_fetches = 0

        self._unsubscribe: Unsubscribe | None = None
        self._subscribing = False

        self._active = False
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[StateListener] = []
        self._sequencer = EventSequencer()

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def expand(self) -> str:
        return self._expand

    @property
    def realtime(self) -> bool:
        return self._realtime

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_subscribed(self) -> bool:
        return self._unsubscribe is not None

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> Exception | None:
        return self._error

    @property
    @abstractmethod
    def data(self) -> Any:
        """The current snapshot."""
        pass

    @property
    def state(self) -> SyncState:
        return SyncState(data=self.data, loading=self._loading, error=self._error)

    @abstractmethod
    async def _activate(self) -> None:
        """Initial load and subscription for a freshly started instance."""
        pass

    @abstractmethod
    async def _load(self) -> None:
        """Fetch the snapshot, recording failures in the error field."""
        pass

    @abstractmethod
    def _reconcile(self, event: ChangeEvent) -> None:
        """Fold one change event into the snapshot."""
        pass

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Activate: load the snapshot and open the subscription.

        Never raises for fetch or subscription failures; those land in
        the error field.
        """
        if self._active:
            return

        self._active = True
        logger.debug(f"Starting {self!r}")
        await self._activate()

    async def stop(self) -> None:
        """Tear down. Safe to call repeatedly; unsubscribes at most once."""
        was_active = self._active
        self._active = False
        self._generation += 1

        self._release_subscription()
        self._subscribing = False
        self._sequencer.clear()

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._pending_fetches = 0
        self._loading = False

        if was_active:
            logger.debug(f"Stopped {self!r}")

    async def __aenter__(self) -> "Synchronizer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def refresh(self) -> asyncio.Task:
        """Re-run the initial load in the background.

        Returns the task so callers may await it; fire-and-forget is fine.
        """
        return self._spawn(self._refresh())

    async def _refresh(self) -> None:
        if not self._active:
            logger.debug(f"Ignoring refresh of inactive {self!r}")
            return

        await self._load()
        self._after_change()

    def _after_change(self) -> None:
        """Hook run after the snapshot changed."""

    # ==================== Listeners ====================

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Observe state changes. Returns a callable removing the listener."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        state = self.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)

    # ==================== Fetch bookkeeping ====================

    def _begin_fetch(self) -> None:
        self._pending_fetches += 1
        self._loading = True
        self._error = None
        self._notify()

    def _end_fetch(self) -> None:
        self._pending_fetches = max(0, self._pending_fetches - 1)
        self._loading = self._pending_fetches > 0

    # ==================== Subscription ====================

    async def _subscribe(self, topic: str) -> None:
        """Open the subscription, replacing any existing one."""
        if self._subscribing:
            return

        self._release_subscription()
        generation = self._generation
        self._subscribing = True
        try:
            await self._open_subscription(topic, generation)
        finally:
            if generation == self._generation:
                self._subscribing = False

    async def _open_subscription(self, topic: str, generation: int) -> None:
        handler = functools.partial(self._dispatch, generation)
        attempts = max(1, self._retry.max_attempts)
        delay = self._retry.backoff_seconds
        target = f"{self._collection}/{topic}"

        for attempt in range(1, attempts + 1):
            try:
                unsubscribe = await self._service.subscribe(
                    self._collection, topic, handler
                )
            except Exception as e:
                if generation != self._generation:
                    return

                if attempt == attempts:
                    self._error = SubscribeError(f"Failed to subscribe to {target}", e)
                    logger.error(f"{self._error} (after {attempts} attempts)")
                    self._notify()
                    return

                logger.warning(
                    f"Subscription to {target} failed, "
                    f"attempt {attempt}/{attempts}: {e}"
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._retry.max_backoff_seconds)
                if generation != self._generation:
                    return
                continue

            if generation != self._generation:
                # Torn down while the subscription was being opened
                self._call_unsubscribe(unsubscribe)
                return

            self._unsubscribe = unsubscribe
            logger.info(f"Subscribed to {target}")
            return

    def _release_subscription(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            self._call_unsubscribe(unsubscribe)

    def _call_unsubscribe(self, unsubscribe: Unsubscribe) -> None:
        try:
            unsubscribe()
        except Exception as e:
            logger.warning(f"Failed to release subscription on {self._collection}: {e}")

    def _dispatch(self, generation: int, event: ChangeEvent) -> None:
        if generation != self._generation or not self._active:
            logger.debug(f"Dropping {event.action.value} event from a stale subscription")
            return
        self._reconcile(event)

    # ==================== Expansion ====================

    def _reconcile_expanded(
        self, event: ChangeEvent, commit: Callable[[Record], None]
    ) -> None:
        """Resolve the expanded record in the background, then commit it.

        The snapshot stays unchanged until the fetch (or its fallback)
        lands. Results superseded by a newer event for the same record
        are discarded.
        """
        token = self._sequencer.begin(event.record_id)
        self._spawn(self._commit_expanded(event, token, self._generation, commit))

    async def _commit_expanded(
        self,
        event: ChangeEvent,
        token: int,
        generation: int,
        commit: Callable[[Record], None],
    ) -> None:
        try:
            record = await resolve_expanded(
                self._service, self._collection, event.record, self._expand
            )
            if generation != self._generation:
                return
            if not self._sequencer.is_current(event.record_id, token):
                logger.debug(
                    f"Discarding stale expansion of {self._collection}/{event.record_id}"
                )
                return
        finally:
            # A stop cleared the sequencer; tokens from before it are not ours
            if generation == self._generation:
                self._sequencer.finish(event.record_id)
        commit(record)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def __repr__(self) -> str:
        return f"{type(self).__name__}(collection={self._collection!r})"
