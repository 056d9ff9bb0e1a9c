"""pocketsync: realtime-synced client for a PocketBase-compatible backend."""

from .client import PocketBaseClient
from .errors import (
    AuthError,
    ClientResponseError,
    ExpansionFetchError,
    FetchError,
    SubscribeError,
    SyncError,
    UnverifiedAccountError,
)
from .session import SessionContext
from .sync import (
    Action,
    ChangeEvent,
    CollectionSynchronizer,
    RecordSynchronizer,
    RetryPolicy,
    SubscribePolicy,
    SyncState,
)

__version__ = "0.1.0"

__all__ = [
    "Action",
    "AuthError",
    "ChangeEvent",
    "ClientResponseError",
    "CollectionSynchronizer",
    "ExpansionFetchError",
    "FetchError",
    "PocketBaseClient",
    "RecordSynchronizer",
    "RetryPolicy",
    "SessionContext",
    "SubscribePolicy",
    "SubscribeError",
    "SyncError",
    "SyncState",
    "UnverifiedAccountError",
]
