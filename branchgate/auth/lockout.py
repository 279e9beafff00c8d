"""
Progressive account lockout.

Pure decision logic: no I/O, no clock of its own. The credential store applies
the same threshold and duration when it records a failed attempt, so the two
always agree on when a lock starts.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..utils.clock import ensure_utc

# Account lockout settings
MAX_FAILED_ATTEMPTS = 5
LOCKOUT_MINUTES = 15


@dataclass(frozen=True)
class LockDecision:
    """Whether a principal is locked right now, and for how long."""
    locked: bool
    remaining_seconds: int = 0


class LockoutPolicy:
    """
    Maps failed-attempt history to lock state.

    The lock clock starts when the threshold-reaching failure is recorded
    (``locked_until`` is written at that moment), and further failures during
    the lock window do not extend it.
    """

    def __init__(self, threshold: int = MAX_FAILED_ATTEMPTS, lock_minutes: int = LOCKOUT_MINUTES):
        if threshold < 1:
            raise ValueError("Lockout threshold must be at least 1")
        self.threshold = threshold
        self.lock_duration = timedelta(minutes=lock_minutes)

    def decide(
        self,
        failed_attempt_count: int,
        locked_until: Optional[datetime],
        now: datetime,
    ) -> LockDecision:
        """
        Decide lock state.

        Only an unexpired ``locked_until`` locks the account; a count at or
        above the threshold with an expired lock does not (the store re-locks
        on the next failure).
        """
        locked_until = ensure_utc(locked_until)
        if locked_until is None or locked_until <= now:
            return LockDecision(locked=False)

        remaining = math.ceil((locked_until - now).total_seconds())
        return LockDecision(locked=True, remaining_seconds=max(1, remaining))

    def lock_expiry(self, now: datetime) -> datetime:
        """When a lock started at ``now`` ends."""
        return now + self.lock_duration
