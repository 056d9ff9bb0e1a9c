"""Rate-limited re-sending of verification emails."""

import logging

from ..errors import AuthError
from .countdown import Countdown
from .service import AuthService

logger = logging.getLogger(__name__)


class VerificationResender:
    """Re-sends a verification email at most once per cooldown.

    The cooldown starts when the resender starts (the first email was just
    sent by registration or login) and again after every successful resend.
    """

    def __init__(
        self,
        auth: AuthService,
        email: str,
        cooldown_seconds: int = 60,
        tick_seconds: float = 1.0,
    ):
        self.auth = auth
        self.email = email
        self._can_resend = False
        self._countdown = Countdown(
            cooldown_seconds, self._cooldown_finished, tick_seconds=tick_seconds
        )

    @property
    def can_resend(self) -> bool:
        return self._can_resend

    @property
    def seconds_remaining(self) -> int:
        return 0 if self._can_resend else self._countdown.seconds

    def start(self) -> None:
        self._can_resend = False
        self._countdown.start()

    def stop(self) -> None:
        self._countdown.pause()

    def _cooldown_finished(self) -> None:
        self._can_resend = True
        self._countdown.reset()

    async def resend(self) -> None:
        """Request a new verification email.

        Raises:
            AuthError: If the cooldown has not elapsed.
        """
        if not self._can_resend:
            raise AuthError(
                f"Verification email can be re-sent in {self._countdown.seconds}s"
            )

        await self.auth.request_verification(self.email)
        logger.info(f"Verification email re-sent to {self.email}")
        self.start()
