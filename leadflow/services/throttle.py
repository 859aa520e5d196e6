"""
leadflow/services/throttle.py — Minimum spacing between calls to an external collaborator.

Each collaborator (enrichment, email, calendar) gets one process-wide
Throttle. Calls from every worker thread go through the same instance, so
the delay holds across the whole process, not just within one sweep.
"""

import logging
import threading
import time
from typing import Callable, Optional

from leadflow.config import settings

logger = logging.getLogger(__name__)

ENRICHMENT = "enrichment"
EMAIL = "email"
CALENDAR = "calendar"


class Throttle:
    """Blocks until at least `min_interval` seconds have passed since the previous call."""

    def __init__(
        self,
        name: str,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.name = name
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_allowed = 0.0

    def wait(self, stop_event: Optional[threading.Event] = None) -> float:
        """
        Reserve the next slot and sleep until it arrives.

        If a stop event is given the sleep ends early when it is set.
        Returns the number of seconds waited.
        """
        with self._lock:
            now = self._clock()
            start = max(now, self._next_allowed)
            self._next_allowed = start + self.min_interval
            delay = start - now

        if delay > 0:
            logger.debug("Throttle %s: waiting %.2fs", self.name, delay)
            if stop_event is not None:
                stop_event.wait(delay)
            else:
                self._sleep(delay)
        return delay

    def defer(self, seconds: float) -> None:
        """Push the next slot out, e.g. after a 429 with Retry-After."""
        with self._lock:
            self._next_allowed = max(self._next_allowed, self._clock() + seconds)
        logger.info("Throttle %s: backing off %.1fs", self.name, seconds)


_registry: dict[str, Throttle] = {}
_registry_lock = threading.Lock()


def _default_interval(name: str) -> float:
    return {
        ENRICHMENT: settings.enrichment_min_delay_seconds,
        EMAIL: settings.email_min_delay_seconds,
        CALENDAR: settings.calendar_min_delay_seconds,
    }.get(name, 0.0)


def get_throttle(name: str) -> Throttle:
    """Return the shared throttle for a collaborator, creating it on first use."""
    with _registry_lock:
        throttle = _registry.get(name)
        if throttle is None:
            throttle = Throttle(name, _default_interval(name))
            _registry[name] = throttle
        return throttle
