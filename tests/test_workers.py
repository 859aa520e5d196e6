"""
tests/test_workers.py — Polling workers, the supervisor and the batch admission task.

Retries use the real tenacity backoff floor (1s), so only one test waits.
"""

import threading
from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import pytest

from leadflow.db import repository
from leadflow.db.models import LeadStatus
from leadflow.errors import ConfigError
from leadflow.services import batching
from leadflow.services.results import SweepResult
from leadflow.workers import tasks
from leadflow.workers.supervisor import PollingWorker, WorkerSupervisor, get_supervisor


def _ok_task(stop_event):
    result = SweepResult(name="ok")
    result.processed = result.succeeded = 1
    return result


def _add_qualified(db, count):
    for i in range(count):
        lead = repository.create_lead(db, company_name=f"Co {i}", company_domain=f"co{i}.io")
        lead.status = LeadStatus.QUALIFIED
        lead.qualified = True
        lead.total_score = 30
    db.commit()


def _session_for(db):
    @contextmanager
    def _get_session():
        yield db
    return _get_session


# ── PollingWorker.run_once ────────────────────────────────────────────────────

class TestRunOnce:
    def test_success_records_result(self):
        worker = PollingWorker("ok", _ok_task, interval=60)
        result = worker.run_once()

        assert result.succeeded == 1
        assert worker.runs == 1
        assert worker.last_error is None
        assert worker.last_success_at is not None
        assert worker.last_result["name"] == "ok"

    def test_retries_then_succeeds(self):
        task = MagicMock(side_effect=[RuntimeError("flaky"), SweepResult(name="ok")])
        worker = PollingWorker("flaky", task, interval=60, max_retries=3, backoff_max=1)

        result = worker.run_once()

        assert result.name == "ok"
        assert task.call_count == 2

    def test_config_error_not_retried(self):
        task = MagicMock(side_effect=ConfigError("no feeds"))
        worker = PollingWorker("broken", task, interval=60, max_retries=5)

        with pytest.raises(ConfigError):
            worker.run_once()
        assert task.call_count == 1

    def test_exhausted_retries_reraise(self):
        task = MagicMock(side_effect=RuntimeError("down"))
        worker = PollingWorker("down", task, interval=60, max_retries=1)

        with pytest.raises(RuntimeError, match="down"):
            worker.run_once()

    def test_none_result(self):
        worker = PollingWorker("quiet", lambda stop_event: None, interval=60)
        assert worker.run_once() is None
        assert worker.last_result is None


# ── Threads ───────────────────────────────────────────────────────────────────

class TestWorkerThread:
    def test_start_and_stop(self):
        ran = threading.Event()

        def task(stop_event):
            ran.set()
            return None

        worker = PollingWorker("loop", task, interval=60)
        assert worker.start() is True
        assert worker.start() is False
        assert ran.wait(timeout=5)

        assert worker.stop(timeout=5) is True
        assert worker.running is False
        assert worker.stop(timeout=5) is False

    def test_config_error_ends_loop(self):
        worker = PollingWorker("broken", MagicMock(side_effect=ConfigError("bad")), interval=60)
        worker.start()
        worker._thread.join(timeout=5)

        health = worker.health()
        assert health["running"] is False
        assert health["last_error"] == "configuration error"

    def test_stop_before_start(self):
        assert PollingWorker("idle", _ok_task, interval=60).stop() is False


# ── Supervisor ────────────────────────────────────────────────────────────────

class TestWorkerSupervisor:
    def test_register_and_lookup(self):
        supervisor = WorkerSupervisor([PollingWorker("a", _ok_task, 60), PollingWorker("b", _ok_task, 60)])
        assert supervisor.names == ["a", "b"]
        assert supervisor.get("a").name == "a"
        with pytest.raises(KeyError):
            supervisor.get("missing")

    def test_start_one_then_stop_all(self):
        supervisor = WorkerSupervisor([PollingWorker("a", _ok_task, 60), PollingWorker("b", _ok_task, 60)])

        assert supervisor.start("a") == ["a"]
        assert supervisor.start("a") == []
        assert supervisor.stop(timeout=5) == ["a"]
        assert supervisor.stop(timeout=5) == []

    def test_status_lists_every_worker(self):
        supervisor = WorkerSupervisor([PollingWorker("a", _ok_task, 60)])
        status = supervisor.status()
        assert [s["name"] for s in status] == ["a"]
        assert status[0]["running"] is False

    def test_process_wide_singleton(self):
        supervisor = get_supervisor()
        assert supervisor is get_supervisor()
        assert supervisor.names == [
            "discovery", "qualification", "batch_admission", "research", "outreach", "replies",
        ]


# ── Tasks ─────────────────────────────────────────────────────────────────────

class TestBatchAdmissionTask:
    def test_admits_when_inventory_suffices(self, db, monkeypatch):
        monkeypatch.setattr(batching.settings, "batch_size", 2)
        _add_qualified(db, 2)

        with patch("leadflow.workers.tasks.get_session", _session_for(db)):
            result = tasks.batch_admission_task(threading.Event())

        assert result.succeeded == 1
        assert result.meta["batch_number"] == 1

    def test_waits_for_open_batch(self, db, monkeypatch):
        monkeypatch.setattr(batching.settings, "batch_size", 2)
        _add_qualified(db, 4)
        batching.create_batch(db)

        with patch("leadflow.workers.tasks.get_session", _session_for(db)):
            result = tasks.batch_admission_task(threading.Event())

        assert result.skipped == 1
        assert result.meta["open_batch"] == 1

    def test_awaits_replenishment(self, db, monkeypatch):
        monkeypatch.setattr(batching.settings, "batch_size", 5)
        _add_qualified(db, 3)

        with patch("leadflow.workers.tasks.get_session", _session_for(db)):
            result = tasks.batch_admission_task(threading.Event())

        assert result.skipped == 1
        assert result.meta["awaiting_replenishment"] == 3
