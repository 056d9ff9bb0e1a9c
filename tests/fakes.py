"""In-memory Remote Data Service used by the synchronizer tests."""

import asyncio
import copy
from typing import Any

from pocketsync.errors import ClientResponseError
from pocketsync.sync import Action, ChangeEvent, RemoteDataService


async def drain(rounds: int = 10) -> None:
    """Let pending tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeSubscription:
    def __init__(self, collection: str, topic: str, handler):
        self.collection = collection
        self.topic = topic
        self.handler = handler
        self.active = True
        self.release_count = 0

    def release(self) -> None:
        self.release_count += 1
        self.active = False


class FakeRemoteService(RemoteDataService):
    """Scriptable service: canned results, injected failures, held calls."""

    def __init__(self, records: list[dict[str, Any]] | None = None):
        self.records: list[dict[str, Any]] = list(records or [])
        self.expanded: dict[str, dict[str, Any]] = {}

        self.list_error: Exception | None = None
        self.get_errors: dict[str, Exception] = {}
        self.subscribe_errors: list[Exception] = []

        self.list_gate: asyncio.Event | None = None
        self.subscribe_gate: asyncio.Event | None = None
        self.hold_gets = False
        self.held_gets: list[tuple[str, asyncio.Future]] = []

        self.list_calls: list[dict[str, Any]] = []
        self.get_calls: list[tuple[str, str, str]] = []
        self.subscribe_calls = 0
        self.subscriptions: list[FakeSubscription] = []

    async def list_all(self, collection, *, filter="", sort="", expand=""):
        self.list_calls.append(
            {"collection": collection, "filter": filter, "sort": sort, "expand": expand}
        )
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.list_error is not None:
            raise self.list_error
        return copy.deepcopy(self.records)

    async def get_one(self, collection, record_id, *, expand=""):
        self.get_calls.append((collection, record_id, expand))

        if self.hold_gets:
            future = asyncio.get_running_loop().create_future()
            self.held_gets.append((record_id, future))
            return await future

        if record_id in self.get_errors:
            raise self.get_errors[record_id]
        if record_id in self.expanded:
            return copy.deepcopy(self.expanded[record_id])
        for record in self.records:
            if record["id"] == record_id:
                return copy.deepcopy(record)
        raise ClientResponseError(404, "The requested resource wasn't found.")

    async def subscribe(self, collection, topic, handler):
        self.subscribe_calls += 1
        if self.subscribe_gate is not None:
            await self.subscribe_gate.wait()
        if self.subscribe_errors:
            raise self.subscribe_errors.pop(0)

        subscription = FakeSubscription(collection, topic, handler)
        self.subscriptions.append(subscription)
        return subscription.release

    @property
    def active_subscriptions(self) -> list[FakeSubscription]:
        return [s for s in self.subscriptions if s.active]

    @property
    def release_count(self) -> int:
        return sum(s.release_count for s in self.subscriptions)

    def emit(self, action: Action, record: dict[str, Any]) -> None:
        """Deliver an event to every active subscription."""
        event = ChangeEvent(action, copy.deepcopy(record))
        for subscription in self.active_subscriptions:
            subscription.handler(event)
