"""Convergence: reduce per-track objects to one symbolic object per playlist.

Selection is a pure function of (extractions, current claim): objects are
scored by summed tier weight, ranked, and the best candidate that does not
repeat the playlist's current claim wins. If every candidate repeats it, the
top one is reused and a collision note is recorded.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from src.models.claimed_object import ClaimedObject
from src.schemas.pipeline import ConvergenceCandidate, ConvergenceResult, TrackExtraction

logger = logging.getLogger(__name__)

TIER_WEIGHTS = {"high": 3, "medium": 2, "low": 1}
MAX_CANDIDATES = 10

_WHITESPACE_RE = re.compile(r"\s+")


class NoCandidatesError(Exception):
    """Raised when the extractions contain no objects at all."""


def normalize_object_name(name: str) -> str:
    """Trim, lowercase and collapse inner whitespace."""
    return _WHITESPACE_RE.sub(" ", name.strip().lower())


@dataclass
class ObjectScore:
    object: str
    score: int = 0
    track_count: int = 0
    reasoning: str = ""
    _tracks: set[tuple[str, str]] = field(default_factory=set, repr=False)


def score_objects(extractions: list[TrackExtraction]) -> list[ObjectScore]:
    """Score each distinct object and return them ranked.

    Order: score desc, then distinct contributing tracks desc, then first-seen.
    """
    scores: dict[str, ObjectScore] = {}
    for track in extractions:
        track_key = (track.track_name, track.artist)
        for obj in track.objects:
            key = normalize_object_name(obj.object)
            if not key:
                continue
            entry = scores.setdefault(key, ObjectScore(object=key))
            entry.score += TIER_WEIGHTS.get(obj.tier, 0)
            entry._tracks.add(track_key)
            entry.track_count = len(entry._tracks)
            if not entry.reasoning and obj.reasoning:
                entry.reasoning = obj.reasoning
    # sorted() is stable, so dict insertion order breaks remaining ties.
    return sorted(scores.values(), key=lambda s: (-s.score, -s.track_count))


class ConvergenceEngine:
    def __init__(self, max_candidates: int = MAX_CANDIDATES) -> None:
        self.max_candidates = max_candidates

    def select(
        self, extractions: list[TrackExtraction], claimed_object: str | None = None
    ) -> ConvergenceResult:
        """Choose the symbolic object for a playlist.

        Raises NoCandidatesError if no track produced any object.
        """
        ranked = score_objects(extractions)[: self.max_candidates]
        if not ranked:
            raise NoCandidatesError("No objects were extracted from any track")

        candidates = [
            ConvergenceCandidate(
                rank=i + 1,
                object=s.object,
                reasoning=s.reasoning
                or f"{s.score} pts across {s.track_count} track{'s' if s.track_count != 1 else ''}",
                score=s.score,
                track_count=s.track_count,
            )
            for i, s in enumerate(ranked)
        ]

        claimed = normalize_object_name(claimed_object) if claimed_object else None
        for i, candidate in enumerate(candidates):
            if candidate.object != claimed:
                logger.info(
                    "convergence selected %r (score %d, rank %d of %d)",
                    candidate.object,
                    candidate.score,
                    candidate.rank,
                    len(candidates),
                )
                return ConvergenceResult(candidates=candidates, selected_index=i)

        top = candidates[0]
        notes = (
            f'"{top.object}" is the only candidate and is already this playlist\'s '
            "claimed object; reusing it."
        )
        logger.info("convergence collision: %s", notes)
        return ConvergenceResult(candidates=candidates, selected_index=0, collision_notes=notes)


def current_claim(db: Session, playlist_id: uuid.UUID) -> ClaimedObject | None:
    return (
        db.query(ClaimedObject)
        .filter(ClaimedObject.playlist_id == playlist_id, ClaimedObject.superseded_at.is_(None))
        .order_by(ClaimedObject.created_at.desc())
        .first()
    )


def apply_claim(
    db: Session,
    user_id: uuid.UUID,
    playlist_id: uuid.UUID,
    object_name: str,
    aesthetic_context: str | None,
    generation_id: uuid.UUID | None,
) -> ClaimedObject:
    """Make *object_name* the playlist's current claim.

    Re-selecting the current object keeps the existing row. Otherwise the
    previous claim is superseded and a new one inserted. Flushes; the caller commits.
    """
    existing = current_claim(db, playlist_id)
    if existing is not None and normalize_object_name(existing.object_name) == normalize_object_name(
        object_name
    ):
        return existing
    if existing is not None:
        existing.superseded_at = datetime.now(UTC).replace(tzinfo=None)
    claim = ClaimedObject(
        user_id=user_id,
        playlist_id=playlist_id,
        object_name=normalize_object_name(object_name),
        aesthetic_context=aesthetic_context,
        source_generation_id=generation_id,
    )
    db.add(claim)
    db.flush()
    return claim


@dataclass
class ChangeDetection:
    tracks_added: list[str]
    tracks_removed: list[str]
    outlier_count: int
    threshold: float
    should_regenerate: bool


def regeneration_threshold(total_tracks: int) -> float:
    if total_tracks <= 2:
        return 0.5
    if total_tracks == 3:
        return 1 / 3
    return 0.25


def detect_changes(
    current: list[tuple[str, str]], previous: list[tuple[str, str]]
) -> ChangeDetection:
    """Compare (name, artist) pairs against the previous analysis snapshot."""
    current_set = set(current)
    previous_set = set(previous)
    added = [f"{name} - {artist}" for name, artist in dict.fromkeys(current) if (name, artist) not in previous_set]
    removed = [f"{name} - {artist}" for name, artist in dict.fromkeys(previous) if (name, artist) not in current_set]
    total = len(current)
    threshold = regeneration_threshold(total)
    return ChangeDetection(
        tracks_added=added,
        tracks_removed=removed,
        outlier_count=len(added),
        threshold=threshold,
        should_regenerate=total > 0 and len(added) / total >= threshold,
    )
