"""Tests for the pure reconciliation functions and expansion helper."""

import logging
import random

import pytest
from unittest.mock import AsyncMock, MagicMock

from pocketsync.errors import ClientResponseError
from pocketsync.sync import (
    Action,
    ChangeEvent,
    EventSequencer,
    apply_event,
    apply_single_event,
    resolve_expanded,
)


def rec(record_id: str, **fields):
    return {"id": record_id, **fields}


class TestApplyEvent:
    """Tests for apply_event on collection snapshots."""

    def test_create_prepends(self):
        """A create lands in front of the existing records."""
        snapshot = [rec("A"), rec("B")]

        result = apply_event(snapshot, ChangeEvent(Action.CREATE, rec("C")))

        assert [r["id"] for r in result] == ["C", "A", "B"]

    def test_create_existing_id_does_not_duplicate(self):
        """A repeated create moves the record to the front once."""
        snapshot = [rec("A"), rec("B", v=1)]

        result = apply_event(snapshot, ChangeEvent(Action.CREATE, rec("B", v=2)))

        assert result == [rec("B", v=2), rec("A")]

    def test_update_replaces_in_place(self):
        snapshot = [rec("A"), rec("B", v=1), rec("C")]

        result = apply_event(snapshot, ChangeEvent(Action.UPDATE, rec("B", v=2)))

        assert result == [rec("A"), rec("B", v=2), rec("C")]

    def test_update_is_idempotent(self):
        """Applying the same update twice equals applying it once."""
        snapshot = [rec("A", v=1), rec("B")]
        event = ChangeEvent(Action.UPDATE, rec("A", v=2))

        once = apply_event(snapshot, event)
        twice = apply_event(once, event)

        assert once == twice

    def test_update_unknown_id_is_noop(self):
        snapshot = [rec("A")]

        result = apply_event(snapshot, ChangeEvent(Action.UPDATE, rec("Z")))

        assert result == snapshot

    def test_delete_removes(self):
        snapshot = [rec("A"), rec("B")]

        result = apply_event(snapshot, ChangeEvent(Action.DELETE, rec("A")))

        assert result == [rec("B")]

    def test_delete_unknown_id_is_noop(self):
        """Deleting an absent id leaves the snapshot unchanged."""
        snapshot = [rec("A"), rec("B")]

        result = apply_event(snapshot, ChangeEvent(Action.DELETE, rec("Z")))

        assert result == snapshot

    def test_input_not_mutated(self):
        snapshot = [rec("A", v=1)]
        original = [dict(r) for r in snapshot]

        apply_event(snapshot, ChangeEvent(Action.UPDATE, rec("A", v=2)))
        apply_event(snapshot, ChangeEvent(Action.DELETE, rec("A")))

        assert snapshot == original


def _random_history(rng: random.Random, ids: list[str]) -> dict[str, list[ChangeEvent]]:
    """Per-record event sequences starting with a create."""
    history = {}
    for record_id in ids:
        events = [ChangeEvent(Action.CREATE, rec(record_id, v=0))]
        for step in range(1, rng.randint(1, 6)):
            roll = rng.random()
            last = events[-1].action
            if last is Action.DELETE:
                events.append(ChangeEvent(Action.CREATE, rec(record_id, v=step)))
            elif roll < 0.25:
                events.append(ChangeEvent(Action.DELETE, rec(record_id)))
            else:
                events.append(ChangeEvent(Action.UPDATE, rec(record_id, v=step)))
        history[record_id] = events
    return history


def _interleave(rng: random.Random, history: dict[str, list[ChangeEvent]]) -> list[ChangeEvent]:
    """Shuffle across records while keeping each record's own order."""
    queues = {k: list(v) for k, v in history.items()}
    merged = []
    while queues:
        record_id = rng.choice(sorted(queues))
        merged.append(queues[record_id].pop(0))
        if not queues[record_id]:
            del queues[record_id]
    return merged


class TestConvergence:
    """Any interleaving converges to the records whose last event is not a delete."""

    @pytest.mark.parametrize("seed", range(20))
    def test_interleavings_converge(self, seed):
        rng = random.Random(seed)
        ids = [f"r{i}" for i in range(8)]
        history = _random_history(rng, ids)

        snapshot: list[dict] = []
        for event in _interleave(rng, history):
            snapshot = apply_event(snapshot, event)

        expected = {
            record_id: events[-1].record
            for record_id, events in history.items()
            if events[-1].action is not Action.DELETE
        }
        held_ids = [r["id"] for r in snapshot]

        assert len(held_ids) == len(set(held_ids))
        assert {r["id"]: r for r in snapshot} == expected


class TestApplySingleEvent:
    """Tests for apply_single_event."""

    def test_update_replaces(self):
        assert apply_single_event(rec("A", v=1), ChangeEvent(Action.UPDATE, rec("A", v=2))) == rec("A", v=2)

    def test_delete_clears(self):
        assert apply_single_event(rec("A"), ChangeEvent(Action.DELETE, rec("A"))) is None

    def test_create_ignored(self):
        current = rec("A")
        assert apply_single_event(current, ChangeEvent(Action.CREATE, rec("B"))) is current


class TestResolveExpanded:
    """Tests for the expand-then-fallback helper."""

    @pytest.mark.asyncio
    async def test_returns_expanded_record(self):
        service = MagicMock()
        service.get_one = AsyncMock(return_value=rec("A", expand={"user": {"id": "u1"}}))

        result = await resolve_expanded(service, "todos", rec("A"), "user")

        assert result["expand"] == {"user": {"id": "u1"}}
        service.get_one.assert_awaited_once_with("todos", "A", expand="user")

    @pytest.mark.asyncio
    async def test_falls_back_to_bare_record(self, caplog):
        """A failed expansion fetch is logged and the bare record returned."""
        service = MagicMock()
        service.get_one = AsyncMock(side_effect=ClientResponseError(500, "boom"))
        bare = rec("A", title="bare")

        with caplog.at_level(logging.WARNING, logger="pocketsync.sync.reconcile"):
            result = await resolve_expanded(service, "todos", bare, "user")

        assert result is bare
        assert "Failed to fetch expanded record todos/A" in caplog.text


class TestEventSequencer:
    """Tests for per-record sequence tokens."""

    def test_latest_token_is_current(self):
        seq = EventSequencer()
        first = seq.begin("A")
        second = seq.begin("A")

        assert not seq.is_current("A", first)
        assert seq.is_current("A", second)

    def test_advance_makes_pending_token_stale(self):
        seq = EventSequencer()
        token = seq.begin("A")
        seq.advance("A")

        assert not seq.is_current("A", token)

    def test_records_are_independent(self):
        seq = EventSequencer()
        a = seq.begin("A")
        seq.begin("B")
        seq.advance("B")

        assert seq.is_current("A", a)

    def test_clear(self):
        seq = EventSequencer()
        token = seq.begin("A")
        seq.clear()

        assert not seq.is_current("A", token)
        assert len(seq) == 0

    def test_untracked_records_are_not_stored(self):
        seq = EventSequencer()
        for i in range(100):
            seq.advance(f"r{i}")

        assert len(seq) == 0

    def test_finish_forgets_record(self):
        seq = EventSequencer()
        first = seq.begin("A")
        second = seq.begin("A")

        seq.finish("A")
        assert seq.is_current("A", second)
        assert not seq.is_current("A", first)

        seq.finish("A")
        assert len(seq) == 0
