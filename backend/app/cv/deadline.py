"""Wall-clock budgets checked cooperatively at frame boundaries."""

import time
from typing import Callable, Optional, Type

from app.cv.errors import AnalysisTimeout, DrillAnalysisError


class Deadline:
    """
    Absolute expiry for one analysis or render pass.

    The engine is single-threaded, so expiry is detected at suspension
    points (each seek, each encoder write) rather than by interrupting work.
    """

    def __init__(
        self,
        timeout_seconds: Optional[float],
        error_cls: Type[DrillAnalysisError] = AnalysisTimeout,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout_seconds = timeout_seconds
        self.error_cls = error_cls
        self._clock = clock
        self._started_at = clock()
        self._expires_at = None if timeout_seconds is None else self._started_at + timeout_seconds

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started_at

    @property
    def remaining(self) -> float:
        if self._expires_at is None:
            return float("inf")
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self) -> None:
        """Raise the configured timeout error if the budget is spent."""
        if self.expired:
            raise self.error_cls(
                f"Exceeded {self.timeout_seconds:.1f}s budget after {self.elapsed:.1f}s"
            )
