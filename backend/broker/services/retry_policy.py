"""Outcome classification shared by the refresh sweeper and the queue processor."""

from dataclasses import dataclass
from enum import Enum


class Outcome(str, Enum):
    """What happened on one attempt."""

    SUCCEEDED = "succeeded"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


class Verdict(str, Enum):
    """What to do next."""

    COMPLETE = "complete"
    RETRY = "retry"
    FAIL = "fail"


@dataclass(frozen=True)
class Decision:
    verdict: Verdict
    delay_seconds: int | None = None


@dataclass(frozen=True)
class RetryPolicy:
    """Decide between completing, retrying with backoff, or failing terminally.

    Attributes:
        max_attempts: Attempts allowed before a transient failure becomes
            terminal. ``None`` defers retries to the next scheduled run
            without a cap (the sweeper's mode).
        base_delay_seconds: Backoff base; the delay after attempt ``n`` is
            ``base * 2**n``.
        max_delay_seconds: Upper bound on any single delay.
    """

    max_attempts: int | None = 3
    base_delay_seconds: int = 60
    max_delay_seconds: int = 3600

    def backoff_delay(self, attempt: int) -> int:
        """Delay in seconds before retrying after ``attempt`` failed attempts."""
        if attempt < 0:
            attempt = 0
        # Cap the exponent so huge attempt counts cannot overflow into floats
        exponent = min(attempt, 32)
        return min(self.base_delay_seconds * 2**exponent, self.max_delay_seconds)

    def decide(self, outcome: Outcome, attempt: int) -> Decision:
        """Classify an attempt.

        Args:
            outcome: Result of the attempt.
            attempt: Failed attempts so far, including this one when it failed.
        """
        if outcome == Outcome.SUCCEEDED:
            return Decision(Verdict.COMPLETE)
        if outcome == Outcome.PERMANENT_FAILURE:
            return Decision(Verdict.FAIL)
        if self.max_attempts is not None and attempt >= self.max_attempts:
            return Decision(Verdict.FAIL)
        return Decision(Verdict.RETRY, self.backoff_delay(attempt))
