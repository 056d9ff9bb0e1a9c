"""Interface of the Remote Data Service consumed by the synchronizers."""

from abc import ABC, abstractmethod
from typing import Callable

from .events import ChangeEvent, Record

EventHandler = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], None]


class RemoteDataService(ABC):
    """Query and subscription primitives of the backend.

    Implementations raise ClientResponseError (status 404 for a missing
    record) on failure. Event handlers are invoked on the event loop thread.
    """

    @abstractmethod
    async def list_all(
        self,
        collection: str,
        *,
        filter: str = "",
        sort: str = "",
        expand: str = "",
    ) -> list[Record]:
        """Fetch every record of a collection matching filter, in sort order."""
        pass

    @abstractmethod
    async def get_one(
        self,
        collection: str,
        record_id: str,
        *,
        expand: str = "",
    ) -> Record:
        """Fetch one record by id."""
        pass

    @abstractmethod
    async def subscribe(
        self,
        collection: str,
        topic: str,
        handler: EventHandler,
    ) -> Unsubscribe:
        """Subscribe to change events.

        Args:
            collection: Collection name.
            topic: "*" for every record, or a record id.
            handler: Called with each ChangeEvent.

        Returns:
            A callable that releases the subscription.
        """
        pass
