"""
scripts/run_outreach.py — CLI to run the batch outreach pipeline.

Steps:
  1. Admit a batch if none is open and inventory allows
  2. Research + draft emails for the open batch
  3. Dispatch approved (or auto-send) drafts via Gmail SMTP
     (or log them if MAILER_DRY_RUN=true)

Drafts that are not approved stay drafts; approve them through the API
(POST /outreach/campaigns/{id}/approve) and run this again.

Usage:
    python scripts/run_outreach.py [--limit N] [--dry-run] [--no-dry-run] [--skip-research]
"""

import argparse
import logging
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# ── Imports ───────────────────────────────────────────────────────────────────

from leadflow.config import settings
from leadflow.db import repository
from leadflow.db.session import get_session
from leadflow.errors import InsufficientInventoryError
from leadflow.logging_config import configure_logging
from leadflow.outreach.dispatcher import run_outreach_sweep, run_research_sweep
from leadflow.outreach.mailer import SmtpMailer
from leadflow.services.batching import create_batch
from leadflow.services.runtime_settings import load_snapshot

logger = logging.getLogger(__name__)


def _ensure_batch() -> None:
    with get_session() as db:
        open_batches = repository.get_open_batches(db)
        if open_batches:
            batch = open_batches[0]
            print(f"      📦 Batch #{batch.batch_number} is open ({batch.status.value}).")
            return
        try:
            batch = create_batch(db)
            print(f"      📦 Created batch #{batch.batch_number} with {batch.size} leads.")
        except InsufficientInventoryError as exc:
            print(f"      ⚠️  {exc}")


def run(limit: int, dry_run: bool, research: bool) -> None:
    print("\n[1/3] 📦 Checking batches...")
    _ensure_batch()

    if research:
        print("\n[2/3] 🔎 Researching and drafting...")
        with get_session() as db:
            result = run_research_sweep(db, limit=limit)
        print(f"      ✅ Researched {result.meta.get('researched', 0)}, "
              f"drafted {result.meta.get('drafted', 0)} "
              f"({result.meta.get('low_confidence', 0)} low confidence).")
    else:
        print("\n[2/3] ⏭️  Research skipped.")

    print("\n[3/3] 📨 Dispatching drafts...")
    with get_session() as db:
        snapshot = load_snapshot(db)
        result = run_outreach_sweep(db, snapshot=snapshot, limit=limit, mailer=SmtpMailer(dry_run=dry_run))

    print("\n" + "=" * 55)
    print("  ✅  Outreach complete!")
    print(f"     Sent        : {result.succeeded}")
    print(f"     Held        : {result.meta.get('held', 0)}")
    print(f"     Skipped     : {result.meta.get('skipped', 0) + result.meta.get('already_sent', 0)}")
    print(f"     Failed      : {result.failed}")
    if "next_batch" in result.meta:
        print(f"     Next batch  : #{result.meta['next_batch']}")
    print("=" * 55 + "\n")


# ── Entry point ───────────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="Leadflow — Outreach Pipeline")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.max_leads_per_sweep,
        help="Max leads to research / campaigns to dispatch per step",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Log emails instead of sending (overrides .env)",
    )
    parser.add_argument(
        "--no-dry-run",
        action="store_true",
        help="Force real send even if MAILER_DRY_RUN=true in .env",
    )
    parser.add_argument("--skip-research", action="store_true", help="Only dispatch existing drafts")
    args = parser.parse_args()

    # Resolve dry_run flag: CLI flag > .env setting
    if args.dry_run:
        dry_run = True
    elif args.no_dry_run:
        dry_run = False
    else:
        dry_run = settings.mailer_dry_run

    configure_logging()

    print("\n" + "=" * 55)
    print("  🤖  Leadflow — Outreach Pipeline")
    if dry_run:
        print("  ⚠️   DRY RUN MODE — no emails will be sent")
    print("=" * 55)

    run(limit=args.limit, dry_run=dry_run, research=not args.skip_research)


if __name__ == "__main__":
    main()
