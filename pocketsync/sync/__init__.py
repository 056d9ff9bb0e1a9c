"""Realtime synchronization of backend records.

Synchronizers fetch a snapshot, subscribe to change events and reconcile
creates, updates and deletes into local state.
"""

from .base import RetryPolicy, SubscribePolicy, Synchronizer, SyncState
from .collection import CollectionSynchronizer
from .events import WILDCARD_TOPIC, Action, ChangeEvent, Record
from .reconcile import EventSequencer, apply_event, apply_single_event, resolve_expanded
from .service import RemoteDataService
from .single import RecordSynchronizer

__all__ = [
    "Action",
    "ChangeEvent",
    "CollectionSynchronizer",
    "EventSequencer",
    "Record",
    "RecordSynchronizer",
    "RemoteDataService",
    "RetryPolicy",
    "SubscribePolicy",
    "SyncState",
    "Synchronizer",
    "WILDCARD_TOPIC",
    "apply_event",
    "apply_single_event",
    "resolve_expanded",
]
