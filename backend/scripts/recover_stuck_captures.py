#!/usr/bin/env python3
"""
Recovery script for capture queue entries stuck in processing.

A worker that crashes mid-capture leaves its entry in 'processing', where no
later run will pick it up. This script returns such entries to 'pending' so
the next worker run retries them. Attempt counts are kept.

Only run this once you are sure no worker is still handling the entries;
the processor call is idempotent, so a repeated capture is safe.

Usage:
    uv run python backend/scripts/recover_stuck_captures.py --env dev --region ca-central-1
    uv run python backend/scripts/recover_stuck_captures.py --env dev --older-than-minutes 30 --dry-run
"""

import argparse
import datetime as dt
import os
import sys

from ridepay.models.errors import PersistenceError
from ridepay.services.capture_queue import CaptureQueue
from ridepay.services.dynamodb import DynamoDBService


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Return capture queue entries stuck in processing to pending"
    )
    parser.add_argument(
        "--env",
        required=True,
        choices=["dev", "prod"],
        help="Environment to recover",
    )
    parser.add_argument(
        "--region",
        default="ca-central-1",
        help="AWS region (default: ca-central-1)",
    )
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=15,
        help="Only reset entries whose last attempt started this long ago (default: 15)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be reset without changing anything",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompt (required for prod)",
    )

    args = parser.parse_args()

    if args.older_than_minutes < 1:
        print("--older-than-minutes must be at least 1")
        return 1

    # Safety check for prod
    if args.env == "prod" and not args.force and not args.dry_run:
        print("⚠️  WARNING: You are about to requeue PRODUCTION captures!")
        response = input("    Type 'RECOVER PROD' to confirm: ")
        if response != "RECOVER PROD":
            print("Aborted.")
            return 1

    os.environ["AWS_DEFAULT_REGION"] = args.region
    queue = CaptureQueue(db=DynamoDBService(environment=args.env))
    now = dt.datetime.now(dt.UTC)
    cutoff = now - dt.timedelta(minutes=args.older_than_minutes)

    action = "[DRY RUN] " if args.dry_run else ""
    print(f"\n{'='*60}")
    print(f"{action}Recovering stuck captures in {args.env}")
    print(f"  Last attempt before: {cutoff.isoformat()}")
    print(f"{'='*60}")

    try:
        if args.dry_run:
            stale = queue.find_stale(cutoff)
            for entry in stale:
                print(
                    f"  [DRY RUN] Would reset {entry.entry_id} "
                    f"(attempts={entry.attempts}, last attempt {entry.last_attempt_at})"
                )
            count = len(stale)
        else:
            reset = queue.reset_stale(cutoff, now)
            for entry_id in reset:
                print(f"  Reset {entry_id} to pending")
            count = len(reset)
    except PersistenceError as e:
        print(f"  Error: {e.message}")
        return 1

    print(f"\n  Entries {'would be ' if args.dry_run else ''}reset: {count}")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
