"""Live mirror of a filtered, sorted record collection."""

import functools
import logging

from ..errors import FetchError
from .base import RetryPolicy, SubscribePolicy, Synchronizer
from .events import WILDCARD_TOPIC, Action, ChangeEvent, Record
from .reconcile import apply_event, dedupe
from .service import RemoteDataService

logger = logging.getLogger(__name__)


class CollectionSynchronizer(Synchronizer):
    """Keeps an ordered list of records in step with a remote collection.

    Example:
        async with CollectionSynchronizer(client, "todos", expand="user") as todos:
            todos.add_listener(lambda state: print(len(state.data)))
            ...
    """

    def __init__(
        self,
        service: RemoteDataService,
        collection: str,
        *,
        filter: str = "",
        sort: str = "-created",
        expand: str = "",
        realtime: bool = True,
        subscribe_policy: SubscribePolicy = SubscribePolicy.NON_EMPTY,
        retry: RetryPolicy | None = None,
    ):
        super().__init__(
            service, collection, expand=expand, realtime=realtime, retry=retry
        )
        self._filter = filter
        self._sort = sort
        self._policy = subscribe_policy

        self._data: list[Record] = []
        self._loading = True
        self._settled = False
        # Creates waiting on their expanded form; a later update commits as a create
        self._pending_creates: set[str] = set()

    @property
    def filter(self) -> str:
        return self._filter

    @property
    def sort(self) -> str:
        return self._sort

    @property
    def data(self) -> list[Record]:
        return self._data

    async def _activate(self) -> None:
        await self._load()
        if self._should_subscribe():
            await self._subscribe(WILDCARD_TOPIC)

    async def stop(self) -> None:
        await super().stop()
        self._pending_creates.clear()

    async def _load(self) -> None:
        generation = self._generation
        self._begin_fetch()
        try:
            records = await self._service.list_all(
                self._collection,
                filter=self._filter,
                sort=self._sort,
                expand=self._expand,
            )
            records = dedupe(list(records))
        except Exception as e:
            if generation != self._generation:
                return
            self._end_fetch()
            # Keep the last good snapshot on failure
            self._error = FetchError(f"Failed to load {self._collection}", e)
            logger.warning(str(self._error))
            self._notify()
            return

        if generation != self._generation:
            return

        self._settled = True
        self._end_fetch()
        self._data = records
        logger.debug(f"Loaded {len(self._data)} records from {self._collection}")
        self._notify()

    def _should_subscribe(self) -> bool:
        if not (self._realtime and self._active):
            return False
        if self._unsubscribe is not None or self._subscribing:
            return False
        if self._policy is SubscribePolicy.SETTLED:
            return self._settled
        return bool(self._data)

    def _after_change(self) -> None:
        if self._should_subscribe():
            self._spawn(self._subscribe(WILDCARD_TOPIC))

    def _reconcile(self, event: ChangeEvent) -> None:
        record_id = event.record_id

        if event.action is Action.DELETE or not self._expand:
            self._sequencer.advance(record_id)
            self._pending_creates.discard(record_id)
            self._set_data(apply_event(self._data, event))
            return

        if event.action is Action.CREATE:
            self._pending_creates.add(record_id)
        self._reconcile_expanded(event, functools.partial(self._commit, event.action))

    def _commit(self, action: Action, record: Record) -> None:
        if record["id"] in self._pending_creates:
            self._pending_creates.discard(record["id"])
            action = Action.CREATE
        self._set_data(apply_event(self._data, ChangeEvent(action, record)))

    def _set_data(self, data: list[Record]) -> None:
        if data == self._data:
            return
        self._data = data
        self._notify()
        self._after_change()

    def __repr__(self) -> str:
        return (
            f"CollectionSynchronizer(collection={self._collection!r}, "
            f"filter={self._filter!r}, sort={self._sort!r}, expand={self._expand!r})"
        )
