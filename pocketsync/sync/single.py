"""Live mirror of one record."""

import asyncio
import logging

from ..errors import FetchError
from .base import RetryPolicy, Synchronizer
from .events import Action, ChangeEvent, Record
from .reconcile import apply_single_event
from .service import RemoteDataService

logger = logging.getLogger(__name__)


class RecordSynchronizer(Synchronizer):
    """Keeps one record, looked up by id, in step with the backend.

    An empty record_id is a valid idle state: no fetch, no subscription,
    data stays None. Unlike the collection form, a failed fetch clears
    the held record.
    """

    def __init__(
        self,
        service: RemoteDataService,
        collection: str,
        record_id: str | None,
        *,
        expand: str = "",
        realtime: bool = True,
        retry: RetryPolicy | None = None,
    ):
        super().__init__(
            service, collection, expand=expand, realtime=realtime, retry=retry
        )
        self._record_id = record_id or ""
        self._data: Record | None = None
        self._loading = bool(self._record_id)

    @property
    def record_id(self) -> str:
        return self._record_id

    @property
    def data(self) -> Record | None:
        return self._data

    async def _activate(self) -> None:
        if not self._record_id:
            logger.debug(f"No record id for {self._collection}, staying idle")
            return

        # The subscription does not wait for the initial fetch
        jobs = [self._load()]
        if self._realtime:
            jobs.append(self._subscribe(self._record_id))
        await asyncio.gather(*jobs)

    async def _load(self) -> None:
        if not self._record_id:
            self._data = None
            self._loading = False
            self._notify()
            return

        generation = self._generation
        self._begin_fetch()
        try:
            record = await self._service.get_one(
                self._collection, self._record_id, expand=self._expand
            )
        except Exception as e:
            if generation != self._generation:
                return
            self._end_fetch()
            self._error = FetchError(
                f"Failed to load {self._collection}/{self._record_id}", e
            )
            self._data = None
            logger.warning(str(self._error))
            self._notify()
            return

        if generation != self._generation:
            return

        self._end_fetch()
        self._data = record
        self._notify()

    def _reconcile(self, event: ChangeEvent) -> None:
        if event.action is Action.CREATE or event.record_id != self._record_id:
            return

        if event.action is Action.UPDATE and self._expand:
            self._reconcile_expanded(event, self._set_data)
            return

        self._sequencer.advance(event.record_id)
        self._set_data(apply_single_event(self._data, event))

    def _set_data(self, record: Record | None) -> None:
        if record == self._data:
            return
        self._data = record
        self._notify()

    def __repr__(self) -> str:
        return (
            f"RecordSynchronizer(collection={self._collection!r}, "
            f"record_id={self._record_id!r}, expand={self._expand!r})"
        )
