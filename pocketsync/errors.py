"""Exception types shared across pocketsync."""

from typing import Any


class ClientResponseError(Exception):
    """A failed request to the Remote Data Service.

    Mirrors the error shape the backend returns: an HTTP status, a message
    and optional per-field validation data. A status of 0 means the request
    never got a response (network failure, timeout, broker unreachable).
    """

    def __init__(
        self,
        status: int,
        message: str,
        data: dict[str, Any] | None = None,
        url: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.message = message
        self.data = data or {}
        self.url = url

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @property
    def is_network_error(self) -> bool:
        return self.status == 0

    def __repr__(self) -> str:
        return f"ClientResponseError(status={self.status}, message={self.message!r})"


class SyncError(Exception):
    """Base class for failures surfaced by a synchronizer.

    Wraps the underlying exception and keeps its message so callers can
    display it without knowing which transport produced it.
    """

    def __init__(self, message: str, original: BaseException | None = None):
        if original is not None:
            message = f"{message}: {original}"
        super().__init__(message)
        self.original = original
        if original is not None:
            self.__cause__ = original


class FetchError(SyncError):
    """Initial load or refresh failed."""


class SubscribeError(SyncError):
    """Realtime subscription could not be opened."""


class ExpansionFetchError(SyncError):
    """Fetching the expanded form of an event record failed (logged only)."""


class AuthError(Exception):
    """Authentication or onboarding failure."""


class UnverifiedAccountError(AuthError):
    """Password login was refused because the account is not verified yet."""

    def __init__(self, identity: str, verification_sent: bool):
        super().__init__(
            f"Account {identity} is not verified"
            + (" (verification email sent)" if verification_sent else "")
        )
        self.identity = identity
        self.verification_sent = verification_sent
