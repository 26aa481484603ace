#!/usr/bin/env python3
"""
Story maintenance utility: removes approved stories whose visibility window has
ended and reports what is still waiting for review.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from mutualstate.core.errors import MutualStateError
from mutualstate.core.models import APPROVED_STORIES
from mutualstate.core.services import build_services


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Expire public stories and summarize the review queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                  # Sweep expired stories
  %(prog)s --dry-run        # Only report what would be removed
  %(prog)s --json           # Output results as JSON

Environment variables:
- DB_PATH=./data/mutualstate.db (database location)
- STORY_VISIBILITY_HOURS=24 (public visibility window)
        """
    )

    parser.add_argument(
        "--db-path",
        help="Database to operate on (defaults to DB_PATH)"
    )

    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Count expired stories without deleting them"
    )

    parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output results as JSON instead of human-readable text"
    )

    args = parser.parse_args(argv)

    try:
        services = build_services(db_path=args.db_path, notifications_enabled=False)
    except (MutualStateError, ValueError) as e:
        print(f"ERROR: Could not open store: {e}")
        return 1

    try:
        now = services.clock.now()
        visible = len(services.review.list_public(limit=sys.maxsize))
        pending = len(services.review.list_pending())

        if args.dry_run:
            deleted = services.store.count(APPROVED_STORIES) - visible
        else:
            deleted = services.review.sweep_expired()

        report = {
            "timestamp": now.isoformat(),
            "dry_run": args.dry_run,
            "expired_removed": deleted,
            "public_visible": visible,
            "pending_review": pending,
        }

        if args.json:
            print(json.dumps(report, indent=2))
        else:
            verb = "Would remove" if args.dry_run else "Removed"
            print(f"{verb} {deleted} expired stories")
            print(f"Public stories visible: {visible}")
            print(f"Stories pending review: {pending}")
        return 0

    except MutualStateError as e:
        print(f"ERROR: Sweep failed: {e.message}")
        return 1
    finally:
        services.close()


if __name__ == "__main__":
    sys.exit(main())
