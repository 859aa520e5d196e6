"""
leadflow/workers/supervisor.py — Supervised polling workers.

Each PollingWorker runs one sweep function on its own daemon thread, every
`interval` seconds. A failing sweep is retried with exponential backoff
(tenacity); shutdown sets a stop event that both the sleep between runs
and the sweep itself observe, so the item in flight finishes and nothing
new starts.
"""

import logging
import threading
from typing import Any, Callable, Optional

from tenacity import (
    Retrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from leadflow.config import settings
from leadflow.db.models import utcnow
from leadflow.errors import ConfigError
from leadflow.services.results import SweepResult

logger = logging.getLogger(__name__)

SweepTask = Callable[[threading.Event], Optional[SweepResult]]


class PollingWorker:
    def __init__(
        self,
        name: str,
        task: SweepTask,
        interval: float,
        max_retries: Optional[int] = None,
        backoff_max: Optional[float] = None,
    ):
        self.name = name
        self.task = task
        self.interval = interval
        self.max_retries = max_retries or settings.worker_max_retries
        self.backoff_max = backoff_max or settings.worker_backoff_max_seconds

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

        self.runs = 0
        self.consecutive_failures = 0
        self.last_started_at = None
        self.last_success_at = None
        self.last_error: Optional[str] = None
        self.last_result: Optional[dict[str, Any]] = None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the worker thread. Returns False if it was already running."""
        with self._lock:
            if self.running:
                return False
            self._stop_event = threading.Event()
            self._thread = threading.Thread(target=self._loop, daemon=True, name=f"worker-{self.name}")
            self._thread.start()
        logger.info("▶️  Worker %s started (every %.0fs)", self.name, self.interval)
        return True

    def request_stop(self) -> None:
        """Signal the worker to stop without waiting for it."""
        self._stop_event.set()

    def stop(self, timeout: Optional[float] = 30.0) -> bool:
        """Ask the worker to stop and wait for the in-flight item. Returns False if it was not running."""
        with self._lock:
            thread = self._thread
            if thread is None or not thread.is_alive():
                return False
            self._stop_event.set()
        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning("Worker %s did not stop within %.0fs", self.name, timeout)
        else:
            logger.info("⏹️  Worker %s stopped", self.name)
        return True

    # ── Execution ─────────────────────────────────────────────────────────────

    def run_once(self) -> Optional[SweepResult]:
        """
        Run the sweep with retries. ConfigError is never retried.

        Raises the last error once retries are exhausted.
        """
        retryer = Retrying(
            stop=stop_after_attempt(self.max_retries) | stop_when_event_set(self._stop_event),
            wait=wait_exponential(multiplier=1, min=1, max=self.backoff_max),
            retry=retry_if_not_exception_type(ConfigError),
            sleep=self._stop_event.wait,
            before_sleep=lambda state: logger.warning(
                "Worker %s attempt %d failed: %s", self.name, state.attempt_number, state.outcome.exception(),
            ),
            reraise=True,
        )
        self.runs += 1
        self.last_started_at = utcnow()
        result = retryer(self.task, self._stop_event)

        self.consecutive_failures = 0
        self.last_error = None
        self.last_success_at = utcnow()
        self.last_result = result.as_dict() if result is not None else None
        return result

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except ConfigError:
                logger.exception("Worker %s stopped on configuration error", self.name)
                self.last_error = "configuration error"
                return
            except Exception as exc:
                self.consecutive_failures += 1
                self.last_error = str(exc)
                logger.error(
                    "Worker %s sweep failed after retries (%d in a row): %s",
                    self.name, self.consecutive_failures, exc,
                )
            self._stop_event.wait(self.interval)

    def health(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "running": self.running,
            "interval_seconds": self.interval,
            "runs": self.runs,
            "consecutive_failures": self.consecutive_failures,
            "last_started_at": self.last_started_at,
            "last_success_at": self.last_success_at,
            "last_error": self.last_error,
            "last_result": self.last_result,
        }


class WorkerSupervisor:
    """Owns the named workers and starts / stops them individually or all at once."""

    def __init__(self, workers: Optional[list[PollingWorker]] = None):
        self._workers: dict[str, PollingWorker] = {}
        for worker in workers or []:
            self.register(worker)

    def register(self, worker: PollingWorker) -> None:
        self._workers[worker.name] = worker

    @property
    def names(self) -> list[str]:
        return list(self._workers)

    def get(self, name: str) -> PollingWorker:
        if name not in self._workers:
            raise KeyError(f"Unknown worker: {name}")
        return self._workers[name]

    def start(self, name: Optional[str] = None) -> list[str]:
        """Start one worker, or all. Returns the names that were actually started."""
        targets = [self.get(name)] if name else list(self._workers.values())
        return [w.name for w in targets if w.start()]

    def stop(self, name: Optional[str] = None, timeout: Optional[float] = 30.0) -> list[str]:
        """Stop one worker, or all. Returns the names that were actually stopped."""
        targets = [self.get(name)] if name else list(self._workers.values())
        running = [w for w in targets if w.running]
        # Signal all first so they wind down in parallel
        for worker in running:
            worker.request_stop()
        for worker in running:
            worker.stop(timeout=timeout)
        return [w.name for w in running]

    def status(self) -> list[dict[str, Any]]:
        return [w.health() for w in self._workers.values()]


_supervisor: Optional[WorkerSupervisor] = None
_supervisor_lock = threading.Lock()


def get_supervisor() -> WorkerSupervisor:
    """Process-wide supervisor holding the default pipeline workers."""
    global _supervisor
    with _supervisor_lock:
        if _supervisor is None:
            from leadflow.workers.tasks import build_default_workers

            _supervisor = WorkerSupervisor(build_default_workers())
        return _supervisor
