"""Run one cron tick: create and run scheduled cover jobs for an hour.

Intended to be invoked hourly by the container scheduler. By default the
current UTC hour is used; pass --hour to replay a specific slot.

Usage (inside the api container):
    uv run python scripts/run_cron_tick.py [--hour 6] [--db-url URL]
"""

import argparse
import logging
import os
import sys
from datetime import UTC, datetime
from pathlib import Path

from dotenv import load_dotenv

_BACKEND_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_BACKEND_DIR))

load_dotenv(_BACKEND_DIR.parent / ".env")

_pre = argparse.ArgumentParser(add_help=False)
_pre.add_argument("--db-url", default=None)
_pre_args, _ = _pre.parse_known_args()
if _pre_args.db_url:
    os.environ["DATABASE_URL"] = _pre_args.db_url

from src.db import create_tables, session_factory  # noqa: E402
from src.models.job import Job  # noqa: E402
from src.services.orchestrator import scheduler, trigger_scheduled_jobs  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")


def main() -> None:
    parser = argparse.ArgumentParser(description="Create and run scheduled cover jobs for one hour.")
    parser.add_argument("--db-url", default=None, help="Database URL (defaults to DATABASE_URL)")
    parser.add_argument(
        "--hour",
        type=int,
        default=None,
        help="UTC hour to run (0-23). Defaults to the current hour.",
    )
    args = parser.parse_args()
    hour: int = datetime.now(UTC).hour if args.hour is None else args.hour
    if not 0 <= hour <= 23:
        parser.error(f"--hour must be between 0 and 23, got {hour}")

    create_tables()
    db = session_factory()
    try:
        job_ids = trigger_scheduled_jobs(db, hour)
        user_ids = (
            {job.user_id for job in db.query(Job).filter(Job.id.in_(job_ids)).all()} if job_ids else set()
        )
    finally:
        db.close()

    print(f"Hour {hour:02d}: {len(job_ids)} job(s) submitted.")
    for user_id in user_ids:
        scheduler.join(user_id)
    print("All scheduled jobs finished.")


if __name__ == "__main__":
    main()
