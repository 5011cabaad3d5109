"""Post-upload cover integrity: duplicate detection and live-cover verification."""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from src.models.generation import Generation
from src.models.playlist import Playlist
from src.models.status import GenerationStatus
from src.services.phash import compute_perceptual_hash, hamming_distance, is_same_cover
from src.services.spotify import SpotifyClient

logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    phash: str
    duplicate_of: uuid.UUID | None = None
    live_matches: bool | None = None


class CoverIntegrityChecker:
    def __init__(self, spotify: SpotifyClient | None = None) -> None:
        self._spotify = spotify or SpotifyClient()

    def find_duplicate(self, db: Session, generation: Generation, phash: str) -> Generation | None:
        """Return an earlier completed generation of the same playlist with a near-identical cover."""
        earlier = (
            db.query(Generation)
            .filter(
                Generation.playlist_id == generation.playlist_id,
                Generation.id != generation.id,
                Generation.status == GenerationStatus.COMPLETED,
                Generation.cover_phash.is_not(None),
            )
            .order_by(Generation.created_at.desc())
            .all()
        )
        for other in earlier:
            if other.cover_phash and is_same_cover(phash, other.cover_phash):
                return other
        return None

    def check_after_upload(
        self,
        db: Session,
        generation: Generation,
        playlist: Playlist,
        access_token: str,
        image_bytes: bytes,
    ) -> IntegrityReport:
        """Hash the uploaded cover, flag duplicates and confirm the live cover matches.

        Stores cover_phash on the generation and commits.
        """
        phash = compute_perceptual_hash(image_bytes)
        generation.cover_phash = phash
        report = IntegrityReport(phash=phash)

        duplicate = self.find_duplicate(db, generation, phash)
        if duplicate is not None:
            report.duplicate_of = duplicate.id
            logger.warning(
                "generation %s cover is a near-duplicate of %s (distance %d)",
                generation.id,
                duplicate.id,
                hamming_distance(phash, duplicate.cover_phash or phash),
            )

        report.live_matches = self._compare_live(playlist, access_token, phash)
        db.commit()
        return report

    def verify_live_cover(self, db: Session, playlist: Playlist, access_token: str) -> bool | None:
        """Check the cover currently live on Spotify against our latest completed generation.

        Returns None when there is nothing to compare (no hashed generation or no live cover).
        """
        latest = (
            db.query(Generation)
            .filter(
                Generation.playlist_id == playlist.id,
                Generation.status == GenerationStatus.COMPLETED,
                Generation.cover_phash.is_not(None),
            )
            .order_by(Generation.created_at.desc())
            .first()
        )
        if latest is None or latest.cover_phash is None:
            return None
        matches = self._compare_live(playlist, access_token, latest.cover_phash)
        db.commit()
        if matches is False:
            logger.warning("live cover for playlist %s has drifted from generation %s", playlist.id, latest.id)
        return matches

    def _compare_live(self, playlist: Playlist, access_token: str, phash: str) -> bool | None:
        url = self._spotify.fetch_cover_url(playlist.spotify_playlist_id, access_token)
        if url is None:
            return None
        live_hash = compute_perceptual_hash(self._spotify.download(url))
        playlist.last_seen_cover_url = url
        if is_same_cover(live_hash, phash):
            playlist.cover_verified_at = datetime.now(UTC).replace(tzinfo=None)
            return True
        logger.info(
            "live cover for playlist %s differs from expected (distance %d)",
            playlist.id,
            hamming_distance(live_hash, phash),
        )
        return False
