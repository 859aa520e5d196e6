"""
scripts/run_ingestion.py — CLI to run discovery and (optionally) qualification.

Usage:
    python scripts/run_ingestion.py
    python scripts/run_ingestion.py --feed "Indie Hackers"
    python scripts/run_ingestion.py --qualify     # also qualify + score new leads
"""

import sys
import os
import argparse
import logging

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from leadflow.db.session import get_session
from leadflow.ingestion.discovery import run_discovery
from leadflow.ingestion.fetcher import parse_feed_configs
from leadflow.logging_config import configure_logging
from leadflow.services.batching import get_inventory_status
from leadflow.services.lead_service import process_new_leads

logger = logging.getLogger("run_ingestion")


def run(feed_name: str | None, qualify: bool) -> None:
    print("\n" + "=" * 55)
    print("  🤖  Leadflow — Discovery Pipeline")
    print("=" * 55)

    feeds = parse_feed_configs()
    if feed_name:
        feeds = [f for f in feeds if f.name.lower() == feed_name.lower()]
        if not feeds:
            print(f"      ⚠️  No configured feed named {feed_name!r}. Exiting.")
            return

    print(f"\n[1/2] 📡 Scanning {len(feeds)} feeds...")
    with get_session() as db:
        result = run_discovery(db, feeds=feeds)
    print(f"      ✅ Saved {result.succeeded} new leads. Skipped {result.skipped} duplicates.")
    if result.failed:
        print(f"      ⚠️  {result.failed} candidates could not be saved.")

    if not qualify:
        print("\n[2/2] ⏭️  Qualification skipped (use --qualify).")
    else:
        print("\n[2/2] 🎯 Qualifying and scoring new leads...")
        with get_session() as db:
            qualified = process_new_leads(db)
            inventory = get_inventory_status(db)
        print(f"      ✅ Qualified {qualified.meta.get('qualified', 0)}, "
              f"rejected {qualified.meta.get('rejected', 0)}.")
        print(f"      📦 Inventory: {inventory.available} available "
              f"({inventory.fill_percentage}% of target)")

    print("\n" + "=" * 55)
    print("  🎉 Discovery complete!")
    print("=" * 55 + "\n")


def main():
    parser = argparse.ArgumentParser(description="Run the discovery pipeline.")
    parser.add_argument("--feed", default=None, help="Only scan the feed with this name")
    parser.add_argument("--qualify", action="store_true", help="Qualify and score new leads afterwards")
    args = parser.parse_args()

    configure_logging()
    run(feed_name=args.feed, qualify=args.qualify)


if __name__ == "__main__":
    main()
