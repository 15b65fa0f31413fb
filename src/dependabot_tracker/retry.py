"""Per-page retry state machine for alert fetches.

Each page request moves through ``FETCHING -> BACKOFF_WAIT -> FETCHING``
until it ends in ``SUCCEEDED`` or ``FAILED``. The machine only decides; the
caller performs the request and the sleep.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from dependabot_tracker.config import PollingConfig
from dependabot_tracker.models import ErrorKind


class FetchPhase(str, Enum):
    """Phase of a single page fetch."""

    FETCHING = "fetching"
    BACKOFF_WAIT = "backoff_wait"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    """Limits for transient retries and rate-limit waits."""

    max_transient_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    rate_limit_default_wait: float = 60.0

    @classmethod
    def from_config(cls, config: PollingConfig) -> RetryPolicy:
        return cls(
            max_transient_attempts=config.max_transient_attempts,
            backoff_base=config.backoff_base_seconds,
            backoff_max=config.backoff_max_seconds,
            rate_limit_default_wait=config.rate_limit_default_wait_seconds,
        )


class InvalidTransition(RuntimeError):
    """Event received in a phase that cannot handle it."""

    pass


class PageFetchMachine:
    """Escalation rules for one page.

    - A rate-limit signal waits for the reported reset and retries once; a
      second consecutive one fails with ``RATE_LIMITED``.
    - Transient errors back off exponentially with jitter until
      ``max_transient_attempts`` requests have failed, then fail with
      ``TRANSIENT``.
    - Auth, not-found and rejected-request errors fail immediately.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._rng = rng or random.Random()
        self._clock = clock
        self.phase = FetchPhase.FETCHING
        self.error: ErrorKind | None = None
        self.delay: float = 0.0
        self.transient_failures = 0
        self._rate_limited = False

    @property
    def done(self) -> bool:
        return self.phase in (FetchPhase.SUCCEEDED, FetchPhase.FAILED)

    def _expect(self, phase: FetchPhase) -> None:
        if self.phase is not phase:
            raise InvalidTransition(f"Cannot handle event in phase {self.phase.value}")

    def on_success(self) -> None:
        self._expect(FetchPhase.FETCHING)
        self.phase = FetchPhase.SUCCEEDED
        self.delay = 0.0

    def on_rate_limited(
        self, reset_at: float | None = None, retry_after: float | None = None
    ) -> None:
        """Handle a rate-limit signal.

        Args:
            reset_at: Epoch seconds when the quota resets, if reported.
            retry_after: Seconds to wait, if reported. Takes precedence.
        """
        self._expect(FetchPhase.FETCHING)
        if self._rate_limited:
            self._fail(ErrorKind.RATE_LIMITED)
            return
        self._rate_limited = True
        if retry_after is not None:
            wait = retry_after
        elif reset_at is not None:
            wait = reset_at - self._clock()
        else:
            wait = self.policy.rate_limit_default_wait
        self._backoff(max(0.0, wait))

    def on_transient(self) -> None:
        self._expect(FetchPhase.FETCHING)
        self._rate_limited = False
        self.transient_failures += 1
        if self.transient_failures >= self.policy.max_transient_attempts:
            self._fail(ErrorKind.TRANSIENT)
            return
        exponential = self.policy.backoff_base * 2 ** (self.transient_failures - 1)
        jitter = self._rng.uniform(0, self.policy.backoff_base)
        self._backoff(min(self.policy.backoff_max, exponential + jitter))

    def on_fatal(self, kind: ErrorKind) -> None:
        self._expect(FetchPhase.FETCHING)
        self._fail(kind)

    def resume(self) -> None:
        """Leave the backoff wait and fetch again."""
        self._expect(FetchPhase.BACKOFF_WAIT)
        self.phase = FetchPhase.FETCHING
        self.delay = 0.0

    def _backoff(self, delay: float) -> None:
        self.phase = FetchPhase.BACKOFF_WAIT
        self.delay = delay

    def _fail(self, kind: ErrorKind) -> None:
        self.phase = FetchPhase.FAILED
        self.error = kind
        self.delay = 0.0
