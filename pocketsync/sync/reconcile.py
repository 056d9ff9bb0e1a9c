"""Reconciliation of change events into held snapshots.

The apply functions are pure: they take the current snapshot and an event
and return the new snapshot without touching the input. Expansion fetches
are the only side channel, handled by resolve_expanded().
"""

import logging

from ..errors import ExpansionFetchError
from .events import Action, ChangeEvent, Record
from .service import RemoteDataService

logger = logging.getLogger(__name__)


def apply_event(snapshot: list[Record], event: ChangeEvent) -> list[Record]:
    """Apply one event to an ordered collection snapshot.

    Create prepends (newest first). A create for an id already present
    moves it to the front instead of duplicating it. Update replaces in
    place and delete removes; both are no-ops for unknown ids.
    """
    record_id = event.record_id

    if event.action is Action.CREATE:
        return [event.record] + [r for r in snapshot if r["id"] != record_id]

    if event.action is Action.UPDATE:
        return [event.record if r["id"] == record_id else r for r in snapshot]

    if event.action is Action.DELETE:
        return [r for r in snapshot if r["id"] != record_id]

    return list(snapshot)


def apply_single_event(current: Record | None, event: ChangeEvent) -> Record | None:
    """Apply one event to a single held record. Creates are ignored."""
    if event.action is Action.UPDATE:
        return event.record
    if event.action is Action.DELETE:
        return None
    return current


def dedupe(records: list[Record]) -> list[Record]:
    """Drop repeated ids, keeping the first occurrence."""
    seen: set[str] = set()
    result = []
    for record in records:
        if record["id"] in seen:
            continue
        seen.add(record["id"])
        result.append(record)
    return result


async def resolve_expanded(
    service: RemoteDataService,
    collection: str,
    record: Record,
    expand: str,
) -> Record:
    """Fetch the expanded form of an event record, falling back to it.

    Failures are logged and never raised: the caller always gets a record
    it can merge.
    """
    try:
        return await service.get_one(collection, record["id"], expand=expand)
    except Exception as e:
        error = ExpansionFetchError(
            f"Failed to fetch expanded record {collection}/{record['id']}", e
        )
        logger.warning(f"{error}; using unexpanded record")
        return record


class EventSequencer:
    """Per-record monotonic counters used to discard stale async results.

    A background fetch takes a token with `begin` and calls `finish` when
    it is done. Any event for the same record advances the counter, so a
    result computed for an older token is stale. Records with no fetch in
    flight are not tracked.
    """

    def __init__(self) -> None:
        self._latest: dict[str, int] = {}
        self._pending: dict[str, int] = {}

    def begin(self, record_id: str) -> int:
        """Take a token for a background fetch of `record_id`."""
        self._pending[record_id] = self._pending.get(record_id, 0) + 1
        return self._bump(record_id)

    def advance(self, record_id: str) -> None:
        """Mark any in-flight result for `record_id` as stale."""
        if record_id in self._pending:
            self._bump(record_id)

    def finish(self, record_id: str) -> None:
        remaining = self._pending.get(record_id, 0) - 1
        if remaining > 0:
            self._pending[record_id] = remaining
        else:
            self._pending.pop(record_id, None)
            self._latest.pop(record_id, None)

    def is_current(self, record_id: str, token: int) -> bool:
        return self._latest.get(record_id) == token

    def clear(self) -> None:
        self._latest.clear()
        self._pending.clear()

    def _bump(self, record_id: str) -> int:
        token = self._latest.get(record_id, 0) + 1
        self._latest[record_id] = token
        return token

    def __len__(self) -> int:
        return len(self._latest)
