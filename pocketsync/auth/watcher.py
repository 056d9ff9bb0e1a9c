"""Background watcher that ends the session when the account goes away."""

import asyncio
import logging
from typing import Any, Callable

from ..client import PocketBaseClient
from ..errors import ClientResponseError
from ..session import SessionContext
from ..sync.events import Action, ChangeEvent
from ..sync.service import Unsubscribe

logger = logging.getLogger(__name__)

# Statuses meaning the account is gone or the token is no longer accepted
LOGOUT_STATUSES = (401, 403, 404)


class AuthWatcher:
    """Detects deletion or revocation of the signed-in account.

    While the session is valid it subscribes to the user's own record and
    logs out on a delete event. A periodic re-validation is the safety net
    for when realtime is unavailable. Network failures never log out.
    """

    def __init__(
        self,
        client: PocketBaseClient,
        session: SessionContext | None = None,
        interval_seconds: float = 300,
        on_logout: Callable[[], None] | None = None,
    ):
        """Initialize the watcher.

        Args:
            client: Client used to look up and subscribe to the user record.
            session: Session to watch. Defaults to the client's.
            interval_seconds: Period of the re-validation loop.
            on_logout: Called after the watcher cleared the session.
        """
        self._client = client
        self._session = session or client.session
        self._interval = interval_seconds
        self._on_logout = on_logout

        self._remove_listener: Callable[[], None] | None = None
        self._unsubscribe: Unsubscribe | None = None
        self._task: asyncio.Task | None = None
        self._change_task: asyncio.Task | None = None
        self._logging_out = False
        self._running = False
        # Bumped whenever a newer activation or a teardown supersedes the current one
        self._generation = 0

    @property
    def collection(self) -> str:
        return self._client.auth_collection

    @property
    def is_subscribed(self) -> bool:
        return self._unsubscribe is not None

    async def start(self) -> None:
        """Start watching the session."""
        if self._running:
            return

        self._running = True
        self._remove_listener = self._session.on_change(self._handle_session_change)
        if self._session.is_valid:
            await self._activate()
        logger.info("Auth watcher started")

    async def stop(self) -> None:
        """Stop watching and release every resource."""
        self._running = False
        if self._remove_listener:
            self._remove_listener()
            self._remove_listener = None

        if self._change_task:
            self._change_task.cancel()
            try:
                await self._change_task
            except asyncio.CancelledError:
                pass
            self._change_task = None

        await self._cleanup()
        logger.info("Auth watcher stopped")

    def _handle_session_change(self, token: str, record: dict[str, Any] | None) -> None:
        if not self._running:
            return
        if self._change_task and not self._change_task.done():
            self._change_task.cancel()
        self._change_task = asyncio.create_task(self._apply_session_change())

    async def _apply_session_change(self) -> None:
        if self._session.is_valid:
            await self._activate()
        else:
            await self._cleanup()

    async def _activate(self) -> None:
        self._generation += 1
        generation = self._generation

        await self.validate()
        if generation != self._generation:
            return
        await self._setup_subscription(generation)
        if generation != self._generation:
            return
        self._start_periodic()

    async def validate(self) -> None:
        """Check that the signed-in user still exists."""
        if self._logging_out:
            return

        user_id = self._session.user_id
        if not self._session.is_valid or not user_id:
            return

        try:
            await self._client.get_one(self.collection, user_id)
        except ClientResponseError as e:
            if e.status in LOGOUT_STATUSES:
                logger.warning(f"Session user {user_id} rejected ({e.status}), logging out")
                self.logout()
            else:
                logger.debug(f"Auth validation inconclusive: {e}")

    async def _setup_subscription(self, generation: int) -> None:
        self._release_subscription()

        user_id = self._session.user_id
        if not self._session.is_valid or not user_id:
            return

        try:
            unsubscribe = await self._client.subscribe(
                self.collection, user_id, self._handle_event
            )
        except ClientResponseError as e:
            logger.warning(
                f"Realtime subscription failed, falling back to periodic validation: {e}"
            )
            return

        if generation != self._generation:
            # Superseded while the subscription was being opened
            self._call_unsubscribe(unsubscribe)
            return
        self._unsubscribe = unsubscribe

    def _handle_event(self, event: ChangeEvent) -> None:
        if event.action is Action.DELETE:
            logger.warning(f"Session user {event.record_id} was deleted, logging out")
            self.logout()

    def _start_periodic(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self._run_loop())

    async def _run_loop(self) -> None:
        """Periodic validation loop."""
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.validate()
            except Exception as e:
                logger.error(f"Auth validation failed: {e}", exc_info=True)

    def logout(self) -> None:
        """Release the subscription and clear the session once."""
        if self._logging_out:
            return

        self._logging_out = True
        self._generation += 1
        try:
            self._release_subscription()
            if self._task:
                self._task.cancel()
            self._task = None
            self._session.clear()
        finally:
            self._logging_out = False

        if self._on_logout:
            self._on_logout()

    def _release_subscription(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            self._call_unsubscribe(unsubscribe)

    def _call_unsubscribe(self, unsubscribe: Unsubscribe) -> None:
        try:
            unsubscribe()
        except Exception as e:
            logger.error(f"Error unsubscribing from realtime: {e}")

    async def _cleanup(self) -> None:
        self._generation += 1
        self._release_subscription()

        if self._task:
            self._task.cancel()
            if self._task is not asyncio.current_task():
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
