"""Check that the covers live on Spotify still match the last generated cover.

For each playlist with a hashed, completed generation, downloads the current
Spotify cover and compares perceptual hashes. Drifted covers (replaced by the
user or reverted by Spotify) are reported.

Usage (inside the api container):
    uv run python scripts/verify_live_covers.py [--user-id UUID] [--db-url URL]
"""

import argparse
import os
import sys
import uuid
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
from src.models.playlist import Playlist  # noqa: E402
from src.models.user import User  # noqa: E402
from src.services.integrity import CoverIntegrityChecker  # noqa: E402
from src.services.spotify import SpotifyError  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Compare live Spotify covers with generated covers.")
    parser.add_argument("--db-url", default=None, help="Database URL (defaults to DATABASE_URL)")
    parser.add_argument("--user-id", type=uuid.UUID, default=None, help="Only check this user's playlists")
    args = parser.parse_args()

    import_models()
    checker = CoverIntegrityChecker()
    db = session_factory()
    try:
        query = db.query(Playlist).filter(Playlist.generation_count > 0)
        if args.user_id is not None:
            query = query.filter(Playlist.user_id == args.user_id)
        playlists: list[Playlist] = query.order_by(Playlist.name).all()
        print(f"Checking {len(playlists)} playlist(s).\n")

        matched = drifted = skipped = 0
        for playlist in playlists:
            user = db.get(User, playlist.user_id)
            if user is None or not user.spotify_access_token:
                print(f"  SKIPPED       {playlist.name[:60]!r}  (no access token)")
                skipped += 1
                continue
            try:
                result = checker.verify_live_cover(db, playlist, user.spotify_access_token)
            except (SpotifyError, OSError) as exc:
                db.rollback()
                print(f"  ERROR         {playlist.name[:60]!r}  ({exc})", file=sys.stderr)
                skipped += 1
                continue
            if result is None:
                print(f"  NOTHING       {playlist.name[:60]!r}")
                skipped += 1
            elif result:
                print(f"  MATCH         {playlist.name[:60]!r}")
                matched += 1
            else:
                print(f"  DRIFTED       {playlist.name[:60]!r}")
                drifted += 1
    finally:
        db.close()

    print(f"\nDone: {matched} matching, {drifted} drifted, {skipped} skipped.")


if __name__ == "__main__":
    main()
