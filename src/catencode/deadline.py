from __future__ import annotations

import threading
import time
from typing import Optional

from catencode.exceptions import ConfigError, DeadlineExceededError


class Deadline:
    """Optional time budget plus a cancellation flag for long-running fits.

    Both the MCMC sampler and the embedding training loop poll `check()`;
    once the budget is spent (or `cancel()` was called from another thread)
    the fit aborts with DeadlineExceededError.

        deadline = Deadline(seconds=600)
        encoder.fit(frame, "zip_code", "churned", deadline=deadline)
    """

    def __init__(self, seconds: Optional[float] = None) -> None:
        if seconds is not None and seconds <= 0:
            raise ConfigError(
                f"Deadline seconds must be positive, got {seconds!r}.",
                code="invalid_deadline",
                context={"seconds": seconds},
                location="catencode.deadline.Deadline",
            )
        self.seconds = seconds
        self._started = time.monotonic()
        self._cancelled = threading.Event()

    @classmethod
    def from_timeout(cls, seconds: Optional[float]) -> Optional[Deadline]:
        """Return a Deadline for `seconds`, or None when no timeout is set."""
        if seconds is None:
            return None
        return cls(seconds)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    @property
    def remaining(self) -> Optional[float]:
        if self.seconds is None:
            return None
        return max(0.0, self.seconds - self.elapsed)

    @property
    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self.seconds is not None and self.elapsed >= self.seconds

    def check(self, location: str) -> None:
        """Raise DeadlineExceededError if the deadline passed or was cancelled."""
        if not self.expired:
            return
        reason = "cancelled" if self.cancelled else "timed out"
        raise DeadlineExceededError(
            f"Fit {reason} after {self.elapsed:.1f}s.",
            code="fit_cancelled" if self.cancelled else "deadline_exceeded",
            context={"seconds": self.seconds, "elapsed": round(self.elapsed, 3)},
            location=location,
        )
