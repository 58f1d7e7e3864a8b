"""Circuit breaker for the datastore.

After `failure_threshold` consecutive failures the breaker opens and calls
are skipped until `cooldown_seconds` have passed; then one probe call is let
through (half-open). A success closes it again.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class CircuitBreaker:
    failure_threshold: int = 3
    cooldown_seconds: float = 60.0
    label: str = "service"
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    _consecutive_failures: int = field(default=0, init=False, repr=False)
    _opened_at: Optional[float] = field(default=None, init=False, repr=False)

    @property
    def is_open(self) -> bool:
        return self._consecutive_failures >= self.failure_threshold

    def should_try(self) -> bool:
        if not self.is_open:
            return True
        return self._opened_at is not None and (
            self.clock() - self._opened_at >= self.cooldown_seconds
        )

    def record_success(self) -> None:
        if self.is_open:
            logger.info("Circuit breaker closed for %s", self.label)
        self._consecutive_failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if not self.is_open:
            return
        if self._opened_at is None:
            logger.warning(
                "Circuit breaker OPENED for %s after %d consecutive failures, skipping for %.0fs",
                self.label,
                self._consecutive_failures,
                self.cooldown_seconds,
            )
        # A failed half-open probe restarts the cooldown
        self._opened_at = self.clock()
