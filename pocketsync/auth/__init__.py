"""Authentication, verification and onboarding flows."""

from .countdown import Countdown
from .service import AuthService
from .verification import VerificationResender
from .watcher import AuthWatcher

__all__ = ["AuthService", "AuthWatcher", "Countdown", "VerificationResender"]
