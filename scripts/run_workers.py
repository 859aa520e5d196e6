"""
scripts/run_workers.py — Run the background workers in the foreground.

Usage:
    python scripts/run_workers.py                      # all workers
    python scripts/run_workers.py --only research outreach

Ctrl+C stops every worker after its in-flight item.
"""

import argparse
import logging
import os
import signal
import sys
import threading

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from leadflow.db.session import init_db
from leadflow.logging_config import configure_logging
from leadflow.workers.supervisor import WorkerSupervisor
from leadflow.workers.tasks import build_default_workers

logger = logging.getLogger("run_workers")


def main():
    workers = build_default_workers()
    parser = argparse.ArgumentParser(description="Run Leadflow background workers.")
    parser.add_argument("--only", nargs="+", choices=[w.name for w in workers], help="Workers to run")
    args = parser.parse_args()

    configure_logging()
    init_db()

    supervisor = WorkerSupervisor([w for w in workers if not args.only or w.name in args.only])
    shutdown = threading.Event()

    def _on_signal(signum, frame):
        logger.info("Signal %d received, stopping workers...", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    print("\n" + "=" * 55)
    print(f"  🤖  Leadflow — Workers: {', '.join(supervisor.names)}")
    print("=" * 55 + "\n")

    supervisor.start()
    shutdown.wait()
    stopped = supervisor.stop()
    print(f"\n🛑 Stopped: {', '.join(stopped) or 'none'}\n")


if __name__ == "__main__":
    main()
