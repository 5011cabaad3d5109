"""Backfill cover_phash for completed generations archived before hashing existed.

For each completed generation with an r2_key and no cover_phash, reads the
archived PNG from R2, computes its perceptual hash and stores it.

Usage (inside the api container):
    uv run python scripts/backfill_cover_phash.py [--dry-run] [--db-url URL]
"""

import argparse
import os
import sys
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

from src.db import import_models, session_factory  # noqa: E402
from src.models.generation import Generation  # noqa: E402
from src.models.status import GenerationStatus  # noqa: E402
from src.services.phash import compute_perceptual_hash  # noqa: E402
from src.services.storage import R2Storage, StorageError  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Backfill perceptual hashes for archived covers.")
    parser.add_argument("--db-url", default=None, help="Database URL (defaults to DATABASE_URL)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute hashes without writing to DB.",
    )
    args = parser.parse_args()
    dry_run: bool = args.dry_run

    if dry_run:
        print("DRY RUN: no changes will be written.\n")

    import_models()
    storage = R2Storage()
    db = session_factory()
    try:
        generations: list[Generation] = (
            db.query(Generation)
            .filter(
                Generation.status == GenerationStatus.COMPLETED,
                Generation.r2_key.is_not(None),
                Generation.cover_phash.is_(None),
            )
            .order_by(Generation.created_at)
            .all()
        )
        print(f"Found {len(generations)} generation(s) without a cover hash.\n")

        updated = 0
        failed = 0
        for generation in generations:
            assert generation.r2_key is not None
            try:
                phash = compute_perceptual_hash(storage.get(generation.r2_key))
            except (StorageError, OSError, ValueError) as exc:
                print(f"  ERROR         {generation.r2_key}  ({exc})", file=sys.stderr)
                failed += 1
                continue

            if dry_run:
                print(f"  WOULD UPDATE  {generation.id}  ->  {phash}")
                updated += 1
                continue

            generation.cover_phash = phash
            db.commit()
            print(f"  UPDATED       {generation.id}  ->  {phash}")
            updated += 1
    finally:
        db.close()

    print(f"\nDone: {updated} updated, {failed} failed.")


if __name__ == "__main__":
    main()
