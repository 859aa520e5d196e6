"""
scripts/show_status.py — Print the pipeline's operational status.

Usage:
    python scripts/show_status.py
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from leadflow.db.session import get_session
from leadflow.logging_config import configure_logging
from leadflow.services.status import get_system_status


def main():
    configure_logging()
    with get_session() as db:
        status = get_system_status(db)

    inventory = status["inventory"]
    print("\n" + "=" * 55)
    print("  📊  Leadflow — Status")
    print("=" * 55)
    print(f"\n  Inventory      : {inventory['available']} / {inventory['target']} "
          f"({inventory['fill_percentage']}%)")
    if inventory["needs_replenishment"]:
        print("  ⚠️  Inventory below replenishment floor")
    for batch in inventory["open_batches"]:
        print(f"  Open batch     : #{batch['batch_number']} ({batch['status']}, {batch['size']} leads)")

    print("\n  Leads:")
    for key, value in status["leads_by_status"].items():
        print(f"     {key:20s} {value}")
    print("\n  Campaigns:")
    for key, value in status["campaigns_by_status"].items():
        print(f"     {key:20s} {value}")

    print(f"\n  Pending approvals     : {status['pending_approvals']}")
    print(f"  Undelivered follow-ups: {status['undelivered_responses']}")
    booking = status["booking"]
    print(f"  Meetings scheduled    : {booking['meetings_scheduled']} "
          f"(conversion {booking['conversion_rate']}%)")

    if status["stale_send_claims"]:
        print("\n  ⚠️  Stale send claims (check whether these were delivered):")
        for claim in status["stale_send_claims"]:
            print(f"     {claim['email']} (campaign {claim['campaign_id']}, claimed {claim['claimed_at']})")

    print("\n  Settings:")
    for key, value in status["settings"].items():
        print(f"     {key:32s} {value}")
    print("=" * 55 + "\n")


if __name__ == "__main__":
    main()
