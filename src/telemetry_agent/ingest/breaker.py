"""Circuit breaker guarding the reasoning oracle against rate limits.

One instance is shared by every analysis in the process. The check of the
block window and the decision to proceed happen under a single lock, and
once a window expires exactly one caller is admitted as a probe; everyone
else keeps short-circuiting until that probe reports back.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from enum import Enum

import structlog

logger = structlog.get_logger()


class Admission(str, Enum):
    DENIED = "denied"
    ALLOWED = "allowed"
    PROBE = "probe"


class OracleCircuitBreaker:
    def __init__(
        self,
        cooldown_seconds: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._blocked_until: float | None = None
        self._probe_in_flight = False

    def try_acquire(self) -> Admission:
        """Decide atomically whether the caller may contact the oracle."""
        with self._lock:
            if self._blocked_until is None:
                return Admission.ALLOWED
            if self._clock() < self._blocked_until or self._probe_in_flight:
                return Admission.DENIED
            self._probe_in_flight = True
            return Admission.PROBE

    def record_success(self, admission: Admission) -> None:
        with self._lock:
            if admission is Admission.PROBE:
                self._blocked_until = None
                self._probe_in_flight = False
                logger.info("Oracle circuit closed")

    def record_failure(self, admission: Admission, *, rate_limited: bool) -> None:
        """Open the breaker on a rate limit; otherwise just release a probe."""
        with self._lock:
            if admission is Admission.PROBE:
                self._probe_in_flight = False
            if rate_limited:
                self._blocked_until = self._clock() + self.cooldown_seconds
                logger.warning(
                    "Oracle rate limited, circuit opened",
                    cooldown_seconds=self.cooldown_seconds,
                )

    def trip(self) -> None:
        with self._lock:
            self._blocked_until = self._clock() + self.cooldown_seconds
            self._probe_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._blocked_until = None
            self._probe_in_flight = False

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._blocked_until is not None and self._clock() < self._blocked_until

    def remaining_seconds(self) -> float:
        with self._lock:
            if self._blocked_until is None:
                return 0.0
            return max(0.0, self._blocked_until - self._clock())
