from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DECREASE_ERROR_RATE = 0.3
DECREASE_RATE_LIMIT_RATE = 0.2
INCREASE_ERROR_RATE = 0.1
INCREASE_RATE_LIMIT_RATE = 0.05


@dataclass
class WindowStats:
    total: int = 0
    failed: int = 0
    rate_limited: int = 0

    @property
    def error_rate(self) -> float:
        return self.failed / self.total if self.total else 0.0

    @property
    def rate_limit_rate(self) -> float:
        return self.rate_limited / self.total if self.total else 0.0

    def add(self, other: "WindowStats") -> None:
        self.total += other.total
        self.failed += other.failed
        self.rate_limited += other.rate_limited


class ConcurrencyController:
    """Additive increase / additive decrease of the number of in-flight leads.

    Observations from consecutive windows are pooled until at least
    ``min_samples`` have been seen, so that tiny windows at low concurrency
    still get evaluated eventually.
    """

    def __init__(self, minimum: int = 1, maximum: int = 8, initial: int = 1, min_samples: int = 5) -> None:
        if minimum < 1 or maximum < minimum:
            raise ValueError("concurrency bounds must satisfy 1 <= minimum <= maximum")
        self.minimum = minimum
        self.maximum = maximum
        self.min_samples = min_samples
        self.current = max(minimum, min(maximum, initial))
        self._pending = WindowStats()

    def update(self, stats: WindowStats) -> int:
        self._pending.add(stats)
        window = self._pending
        if window.total < self.min_samples:
            return self.current
        self._pending = WindowStats()

        previous = self.current
        if window.error_rate > DECREASE_ERROR_RATE or window.rate_limit_rate > DECREASE_RATE_LIMIT_RATE:
            self.current = max(self.minimum, self.current - 1)
        elif window.error_rate < INCREASE_ERROR_RATE and window.rate_limit_rate < INCREASE_RATE_LIMIT_RATE:
            self.current = min(self.maximum, self.current + 1)

        if self.current != previous:
            logger.info(
                "[CONCURRENCY] %s -> %s (error rate %.0f%%, rate-limit rate %.0f%% over %s leads)",
                previous,
                self.current,
                window.error_rate * 100,
                window.rate_limit_rate * 100,
                window.total,
            )
        return self.current
