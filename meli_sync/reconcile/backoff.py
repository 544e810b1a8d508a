"""Cancellable fixed-delay polling for eventually-consistent upstream fields.

The wait blocks the calling worker on a shared ``threading.Event`` so that
shutdown can interrupt it immediately instead of waiting out the delay.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, TypeVar

from meli_sync.errors import RetryCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellableBackoff:
    """Bounded poll: wait ``delay_seconds``, probe, repeat up to ``attempts`` times.

    Args:
        attempts: Maximum number of re-probes after the initial value.
        delay_seconds: Wait before each re-probe.
        cancel_event: Set on shutdown; an in-progress wait raises RetryCancelled.
    """

    def __init__(
        self,
        attempts: int = 1,
        delay_seconds: float = 5.0,
        cancel_event: threading.Event | None = None,
    ):
        self.attempts = max(0, attempts)
        self.delay_seconds = max(0.0, delay_seconds)
        self.cancel_event = cancel_event or threading.Event()

    def sleep(self) -> None:
        if self.cancel_event.wait(self.delay_seconds):
            raise RetryCancelled("shutdown requested during backoff")

    def poll(self, probe: Callable[[], T | None], label: str = "") -> T | None:
        """Re-run ``probe`` until it returns a value or attempts are exhausted.

        Returns None when every attempt came back empty.
        """
        for attempt in range(1, self.attempts + 1):
            logger.info(
                "Waiting %.1fs before retry %d/%d for %s",
                self.delay_seconds,
                attempt,
                self.attempts,
                label or "probe",
            )
            self.sleep()
            value = probe()
            if value is not None:
                return value
        return None
