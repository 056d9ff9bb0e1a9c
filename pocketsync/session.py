"""Session context holding the current auth token and user record."""

import base64
import binascii
import json
import logging
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)

SessionCallback = Callable[[str, "dict[str, Any] | None"], None]


def _token_claims(token: str) -> dict[str, Any]:
    """Decode the (unverified) JWT payload of a token."""
    parts = token.split(".")
    if len(parts) != 3:
        return {}

    payload = parts[1]
    payload += "=" * (-len(payload) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return {}
    return claims if isinstance(claims, dict) else {}


class SessionContext:
    """Explicit auth state shared by the client, auth services and watchers.

    Listeners registered with on_change() are called with (token, record)
    every time the session is saved or cleared.
    """

    def __init__(self, token: str = "", record: dict[str, Any] | None = None):
        self._token = token
        self._record = record
        self._listeners: list[SessionCallback] = []

    @property
    def token(self) -> str:
        return self._token

    @property
    def record(self) -> dict[str, Any] | None:
        return self._record

    @property
    def user_id(self) -> str | None:
        if self._record:
            return self._record.get("id")
        return None

    @property
    def is_valid(self) -> bool:
        """True when a token is present and its exp claim is in the future."""
        if not self._token:
            return False

        claims = _token_claims(self._token)
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            return False
        return exp > time.time()

    def save(self, token: str, record: dict[str, Any] | None) -> None:
        self._token = token
        self._record = record
        self._emit()

    def clear(self) -> None:
        self._token = ""
        self._record = None
        self._emit()

    def on_change(
        self, callback: SessionCallback, fire_immediately: bool = False
    ) -> Callable[[], None]:
        """Register a listener. Returns a callable that removes it."""
        self._listeners.append(callback)
        if fire_immediately:
            callback(self._token, self._record)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _emit(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self._token, self._record)
            except Exception as e:
                logger.error(f"Session listener failed: {e}", exc_info=True)
