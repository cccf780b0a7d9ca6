#!/usr/bin/env python3
"""Run contact maintenance against the configured database.

One pass (default):
    PYTHONPATH=. python scripts/maintenance.py

Specific organizations, with duplicate auto-merge:
    PYTHONPATH=. python scripts/maintenance.py --org 3 --org 7 --auto-merge

Forever, on settings.maintenance_interval_minutes:
    PYTHONPATH=. python scripts/maintenance.py --loop
"""

import argparse
import asyncio
import json

from engage.config import settings
from engage.database import SessionLocal
from engage.logging_config import setup_logging
from engage.scheduler import maintenance_loop, run_maintenance
from engage.services.heat_scorer import heat_score_distribution


def main() -> None:
    parser = argparse.ArgumentParser(description="Recalculate heat scores, response times and merge duplicates.")
    parser.add_argument("--org", type=int, action="append", help="Organization id (repeatable; default: all)")
    parser.add_argument("--auto-merge", action="store_true", help="Also merge near-certain duplicates")
    parser.add_argument("--loop", action="store_true", help="Keep running on the maintenance interval")
    args = parser.parse_args()

    setup_logging()
    if args.auto_merge:
        settings.auto_merge_enabled = True

    if args.loop:
        asyncio.run(maintenance_loop(SessionLocal))
        return

    db = SessionLocal()
    try:
        summary = run_maintenance(db, args.org)
        report = {
            org_id: {**stats, "distribution": heat_score_distribution(org_id, db)}
            for org_id, stats in summary.items()
        }
        print(json.dumps(report, indent=2))
    finally:
        db.close()


if __name__ == "__main__":
    main()
