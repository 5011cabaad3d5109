"""Six-step cover generation pipeline for a single playlist.

fetch_tracks → fetch_lyrics → extract_themes → select_theme → generate_image → upload

Progress is written to ``playlist.progress_data`` after every transition. The
first unrecoverable error marks the Generation failed and returns the playlist
to idle; it never propagates to the caller.
"""

import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import ValidationError
from sqlalchemy.orm import Session

from src.models.generation import Generation
from src.models.playlist import Playlist
from src.models.playlist_analysis import PlaylistAnalysis
from src.models.status import TERMINAL_GENERATION_STATUSES, GenerationStatus, PlaylistStatus, TriggerType
from src.models.style import Style
from src.models.user import User
from src.schemas.cost import CostStep
from src.schemas.pipeline import (
    ConvergenceCandidate,
    ExtractThemesProgress,
    FetchLyricsProgress,
    FetchTracksProgress,
    GenerateImageProgress,
    PipelineProgress,
    SelectThemeProgress,
    StepName,
    StepProgress,
    TrackExtraction,
    TrackObjects,
    UploadProgress,
)
from src.services.convergence import ChangeDetection, ConvergenceEngine, apply_claim, current_claim, detect_changes
from src.services.gemini import ThemeExtractor
from src.services.imaging import compress_for_cover
from src.services.integrity import CoverIntegrityChecker, IntegrityReport
from src.services.lyrics import LyricsClient
from src.services.pricing import (
    DEFAULT_IMAGE_COST,
    IMAGE_PRICING,
    MODEL_PRICING,
    calculate_image_cost,
    calculate_llm_cost,
)
from src.services.replicate import GenerationClient
from src.services.spotify import SpotifyClient
from src.services.state_machine import GENERATION_TRANSITIONS, PLAYLIST_TRANSITIONS, ensure_transition
from src.services.storage import R2Storage, generation_key
from src.services.usage import build_cost_breakdown, record_usage_event

logger = logging.getLogger(__name__)

PIPELINE_TIMEOUT_SECONDS = 600
_ERROR_MESSAGE_LIMIT = 1000


class PipelineTimeoutError(Exception):
    """Raised between steps once the pipeline has run past its time limit."""


@dataclass
class PipelineOptions:
    trigger_type: str = TriggerType.MANUAL
    job_id: uuid.UUID | None = None
    custom_object: str | None = None
    revision_notes: str | None = None


@dataclass
class PipelineResult:
    generation_id: uuid.UUID
    success: bool
    symbolic_object: str | None = None
    error: str | None = None
    integrity: IntegrityReport | None = None


@dataclass
class _RunState:
    """Values accumulated across steps; read by both the success and failure paths."""

    started: float
    costs: list[CostStep] = field(default_factory=list)
    tracks: list[dict[str, str]] = field(default_factory=list)
    extractions: list[TrackExtraction] = field(default_factory=list)
    lyrics_found: int = 0
    convergence_json: str | None = None
    chosen_object: str = ""
    aesthetic_context: str = ""
    prompt: str = ""
    changes: ChangeDetection | None = None


def trigger_source(trigger_type: str) -> str:
    """Usage ledger source for a trigger type."""
    if trigger_type == TriggerType.CRON:
        return "cron"
    if trigger_type == TriggerType.AUTO:
        return "auto_detect"
    return "user"


def _now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def load_progress(raw: str | None) -> PipelineProgress | None:
    """Parse stored progress; malformed data is logged and treated as absent."""
    if not raw:
        return None
    try:
        return PipelineProgress.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning("ignoring malformed progress data: %s", exc)
        return None


def _extraction_progress(completed: int, total: int, done: list[TrackExtraction]) -> ExtractThemesProgress:
    return ExtractThemesProgress(
        completed=completed,
        total=total,
        object_count=sum(len(e.objects) for e in done),
        tracks=[TrackObjects(track_name=e.track_name, objects=[o.object for o in e.objects]) for e in done],
    )


class ProgressTracker:
    """Writes the active run's PipelineProgress to its playlist row."""

    def __init__(self, db: Session, playlist: Playlist, generation_id: uuid.UUID, started_at: datetime) -> None:
        self._db = db
        self._playlist = playlist
        self._generation_id = generation_id
        self._started_at = started_at
        self._steps: dict[StepName, StepProgress] = {}
        self.current_step: StepName = "fetch_tracks"

    def advance(self, step: StepName, payload: StepProgress | None = None) -> None:
        """Move to *step*, recording *payload* if given. Write failures are logged only."""
        self.current_step = step
        if payload is not None:
            self._steps[step] = payload
        progress = PipelineProgress(
            current_step=step,
            generation_id=str(self._generation_id),
            started_at=self._started_at,
            steps=dict(self._steps),
        )
        try:
            self._playlist.progress_data = progress.model_dump_json()
            self._db.commit()
        except Exception as exc:
            self._db.rollback()
            logger.warning("progress write failed for playlist %s: %s", self._playlist.id, exc)


class PipelineRunner:
    """Runs the generation pipeline for one playlist at a time."""

    def __init__(
        self,
        spotify: SpotifyClient | None = None,
        lyrics: LyricsClient | None = None,
        extractor: ThemeExtractor | None = None,
        convergence: ConvergenceEngine | None = None,
        generator: GenerationClient | None = None,
        storage: R2Storage | None = None,
        integrity: CoverIntegrityChecker | None = None,
        clock: Callable[[], float] = time.monotonic,
        timeout_seconds: float = PIPELINE_TIMEOUT_SECONDS,
    ) -> None:
        self.spotify = spotify or SpotifyClient()
        self.lyrics = lyrics or LyricsClient()
        self.extractor = extractor or ThemeExtractor()
        self.convergence = convergence or ConvergenceEngine()
        self.generator = generator or GenerationClient()
        self.storage = storage or R2Storage()
        self.integrity = integrity or CoverIntegrityChecker(self.spotify)
        self._clock = clock
        self.timeout_seconds = timeout_seconds

    def run(
        self,
        db: Session,
        playlist: Playlist,
        style: Style,
        user: User,
        generation: Generation | None = None,
        options: PipelineOptions | None = None,
    ) -> PipelineResult:
        """Generate and upload a new cover for *playlist*.

        *generation* is the pending row created at queue time; a new one is
        created when omitted. Never raises for pipeline failures.
        """
        options = options or PipelineOptions()
        if generation is None:
            generation = Generation(
                user_id=user.id,
                playlist_id=playlist.id,
                job_id=options.job_id,
                style_id=style.id,
                trigger_type=options.trigger_type,
            )
            db.add(generation)
            db.flush()

        ensure_transition(GENERATION_TRANSITIONS, generation.status, GenerationStatus.PROCESSING, "generation")
        ensure_transition(PLAYLIST_TRANSITIONS, playlist.status, PlaylistStatus.PROCESSING, "playlist")
        generation.status = GenerationStatus.PROCESSING
        generation.style_id = style.id
        playlist.status = PlaylistStatus.PROCESSING
        db.commit()

        state = _RunState(started=self._clock())
        tracker = ProgressTracker(db, playlist, generation.id, _now())
        logger.info("pipeline started for playlist %r (generation %s)", playlist.name, generation.id)

        try:
            image_bytes = self._run_steps(db, playlist, style, user, generation, options, state, tracker)
        except Exception as exc:
            return self._fail(db, playlist, generation, state, tracker, exc)

        integrity: IntegrityReport | None = None
        try:
            integrity = self.integrity.check_after_upload(
                db, generation, playlist, user.spotify_access_token or "", image_bytes
            )
        except Exception as exc:
            db.rollback()
            logger.warning("integrity check failed for generation %s: %s", generation.id, exc)

        logger.info(
            "pipeline completed for playlist %r: %r in %dms",
            playlist.name,
            state.chosen_object,
            generation.duration_ms or 0,
        )
        return PipelineResult(
            generation_id=generation.id,
            success=True,
            symbolic_object=state.chosen_object,
            integrity=integrity,
        )

    # ── Steps ────────────────────────────────────────────────────────────────

    def _check_timeout(self, state: _RunState) -> None:
        elapsed = self._clock() - state.started
        if elapsed > self.timeout_seconds:
            raise PipelineTimeoutError(f"Pipeline timed out after {self.timeout_seconds / 60:.0f} minutes")

    def _run_steps(
        self,
        db: Session,
        playlist: Playlist,
        style: Style,
        user: User,
        generation: Generation,
        options: PipelineOptions,
        state: _RunState,
        tracker: ProgressTracker,
    ) -> bytes:
        """Run all six steps and return the generated image bytes."""
        access_token = user.spotify_access_token
        if not access_token:
            raise ValueError("User has no Spotify access token")

        # fetch_tracks
        tracker.advance("fetch_tracks")
        tracks = self.spotify.fetch_tracks(playlist.spotify_playlist_id, access_token)
        if not tracks:
            raise ValueError("Playlist has no tracks")
        state.tracks = [dict(t) for t in tracks]
        state.changes = self._detect_changes(db, playlist, [(t["name"], t["artist"]) for t in tracks])
        tracker.advance(
            "fetch_tracks",
            FetchTracksProgress(
                track_count=len(tracks), track_names=[f"{t['name']} - {t['artist']}" for t in tracks]
            ),
        )

        if options.custom_object:
            subject = self._custom_subject(options, state, tracker, len(tracks))
        else:
            # fetch_lyrics
            self._check_timeout(state)
            tracker.advance("fetch_lyrics")
            lyrics = self.lyrics.fetch_batch(tracks)
            state.lyrics_found = sum(1 for r in lyrics if r["found"])
            logger.info("lyrics found for %d/%d tracks", state.lyrics_found, len(tracks))
            tracker.advance("fetch_lyrics", FetchLyricsProgress(found=state.lyrics_found, total=len(tracks)))

            # extract_themes
            self._check_timeout(state)
            tracker.advance("extract_themes")

            def _on_extraction(completed: int, total: int, done: list[TrackExtraction]) -> None:
                tracker.advance("extract_themes", _extraction_progress(completed, total, done))

            extractions, usage = self.extractor.extract_themes(db, tracks, lyrics, _on_extraction)
            state.extractions = extractions
            if usage["llm_calls"]:
                self._record_llm(
                    db,
                    "llm_extraction",
                    usage["tokens_in"],
                    usage["tokens_out"],
                    user,
                    playlist,
                    style,
                    generation,
                    options,
                    state,
                )
            tracker.advance("extract_themes", _extraction_progress(len(extractions), len(tracks), extractions))

            # select_theme
            self._check_timeout(state)
            tracker.advance("select_theme")
            claim = current_claim(db, playlist.id)
            result = self.convergence.select(extractions, claim.object_name if claim else None)
            state.convergence_json = result.model_dump_json()
            state.chosen_object = result.selected.object
            state.aesthetic_context = self._describe(db, playlist, extractions, user, style, generation, options, state)
            tracker.advance(
                "select_theme",
                SelectThemeProgress(
                    chosen_object=state.chosen_object,
                    candidates=result.candidates,
                    collision_notes=result.collision_notes,
                ),
            )
            subject = state.chosen_object
            if state.aesthetic_context:
                subject = f"{subject}, {state.aesthetic_context}"
            if options.revision_notes:
                subject = f"Revision guidance: {options.revision_notes}. {subject}"

        # generate_image
        self._check_timeout(state)
        tracker.advance("generate_image", GenerateImageProgress(style_name=style.name))
        generation.symbolic_object = state.chosen_object
        try:
            output = self.generator.generate_image(style, subject)
        except Exception as exc:
            self._record_image(db, user, playlist, style, generation, options, state, error=str(exc))
            raise
        self._record_image(db, user, playlist, style, generation, options, state)
        state.prompt = output["prompt"]
        generation.prompt = output["prompt"]
        generation.prediction_id = output["prediction_id"]
        tracker.advance(
            "generate_image",
            GenerateImageProgress(
                style_name=style.name, prompt=output["prompt"], prediction_id=output["prediction_id"]
            ),
        )

        # upload
        self._check_timeout(state)
        tracker.advance("upload")
        image_bytes = self.generator.download_output(output["output_url"])
        r2_key = generation_key(user.id, playlist.spotify_playlist_id, datetime.now(UTC))
        self.storage.put(r2_key, image_bytes)
        self.spotify.upload_cover(playlist.spotify_playlist_id, compress_for_cover(image_bytes), access_token)
        tracker.advance("upload", UploadProgress(r2_key=r2_key, uploaded=True))
        self._complete(db, playlist, user, style, generation, options, state, r2_key)
        return image_bytes

    def _custom_subject(
        self, options: PipelineOptions, state: _RunState, tracker: ProgressTracker, track_count: int
    ) -> str:
        """Skip lyrics, extraction and convergence for a caller-supplied object."""
        custom = (options.custom_object or "").strip()
        logger.info("custom object override: %r", custom)
        state.chosen_object = custom
        state.aesthetic_context = "user-specified"
        tracker.advance("fetch_lyrics", FetchLyricsProgress(found=0, total=track_count))
        tracker.advance("extract_themes", ExtractThemesProgress())
        tracker.advance(
            "select_theme",
            SelectThemeProgress(
                chosen_object=custom,
                candidates=[ConvergenceCandidate(rank=1, object=custom, reasoning="Custom object override")],
                custom=True,
            ),
        )
        if options.revision_notes:
            return f"Revision guidance: {options.revision_notes}. {custom}"
        return custom

    def _describe(
        self,
        db: Session,
        playlist: Playlist,
        extractions: list[TrackExtraction],
        user: User,
        style: Style,
        generation: Generation,
        options: PipelineOptions,
        state: _RunState,
    ) -> str:
        """Aesthetic context for the chosen object. Failure leaves it empty."""
        try:
            result = self.extractor.describe_aesthetic(playlist.name, state.chosen_object, extractions)
        except Exception as exc:
            logger.warning("aesthetic context failed for %r: %s", state.chosen_object, exc)
            return ""
        self._record_llm(
            db,
            "llm_convergence",
            result["tokens_in"],
            result["tokens_out"],
            user,
            playlist,
            style,
            generation,
            options,
            state,
        )
        return result["aesthetic_context"]

    def _detect_changes(
        self, db: Session, playlist: Playlist, current: list[tuple[str, str]]
    ) -> ChangeDetection | None:
        previous = (
            db.query(PlaylistAnalysis)
            .filter(PlaylistAnalysis.playlist_id == playlist.id)
            .order_by(PlaylistAnalysis.created_at.desc())
            .first()
        )
        if previous is None:
            return None
        try:
            snapshot = json.loads(previous.track_snapshot)
            pairs = [(str(t["name"]), str(t["artist"])) for t in snapshot]
        except (json.JSONDecodeError, TypeError, KeyError) as exc:
            logger.warning("ignoring malformed track snapshot of analysis %s: %s", previous.id, exc)
            return None
        changes = detect_changes(current, pairs)
        logger.info(
            "change detection: %d new tracks, threshold %.0f%%, regenerate=%s",
            changes.outlier_count,
            changes.threshold * 100,
            changes.should_regenerate,
        )
        return changes

    # ── Accounting ───────────────────────────────────────────────────────────

    def _record_llm(
        self,
        db: Session,
        action_type: str,
        tokens_in: int,
        tokens_out: int,
        user: User,
        playlist: Playlist,
        style: Style,
        generation: Generation,
        options: PipelineOptions,
        state: _RunState,
    ) -> None:
        model = self.extractor.model_name
        cost = calculate_llm_cost(model, tokens_in, tokens_out)
        state.costs.append(
            CostStep(step=action_type, model=model, tokens_in=tokens_in, tokens_out=tokens_out, cost_usd=cost)
        )
        record_usage_event(
            db,
            user_id=user.id,
            action_type=action_type,
            model=model,
            cost_usd=cost,
            generation_id=generation.id,
            playlist_id=playlist.id,
            style_id=style.id,
            job_id=options.job_id,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            model_unit_cost=(MODEL_PRICING.get(model) or {}).get("input_per_million"),
            trigger_source=trigger_source(options.trigger_type),
        )

    def _record_image(
        self,
        db: Session,
        user: User,
        playlist: Playlist,
        style: Style,
        generation: Generation,
        options: PipelineOptions,
        state: _RunState,
        error: str | None = None,
    ) -> None:
        model = style.replicate_model
        cost = 0.0 if error else calculate_image_cost(model)
        if error is None:
            state.costs.append(CostStep(step="image_generation", model=model, cost_usd=cost))
        record_usage_event(
            db,
            user_id=user.id,
            action_type="image_generation",
            model=model,
            cost_usd=cost,
            generation_id=generation.id,
            playlist_id=playlist.id,
            style_id=style.id,
            job_id=options.job_id,
            duration_ms=int((self._clock() - state.started) * 1000),
            model_unit_cost=IMAGE_PRICING.get(model, DEFAULT_IMAGE_COST),
            trigger_source=trigger_source(options.trigger_type),
            status="failed" if error else "success",
            error_message=error,
        )

    # ── Terminal transitions ─────────────────────────────────────────────────

    def _complete(
        self,
        db: Session,
        playlist: Playlist,
        user: User,
        style: Style,
        generation: Generation,
        options: PipelineOptions,
        state: _RunState,
        r2_key: str,
    ) -> None:
        changes = state.changes
        analysis = PlaylistAnalysis(
            user_id=user.id,
            playlist_id=playlist.id,
            track_snapshot=json.dumps(state.tracks),
            track_extractions=json.dumps([e.model_dump() for e in state.extractions]),
            convergence_result=state.convergence_json,
            chosen_object=state.chosen_object,
            aesthetic_context=state.aesthetic_context,
            style_id=style.id,
            tracks_added=json.dumps(changes.tracks_added) if changes else None,
            tracks_removed=json.dumps(changes.tracks_removed) if changes else None,
            outlier_count=changes.outlier_count if changes else 0,
            outlier_threshold=changes.threshold if changes else 0.25,
            regeneration_triggered=changes.should_regenerate if changes else False,
            status="partial" if state.lyrics_found < len(state.tracks) and not options.custom_object else "completed",
            trigger_type=options.trigger_type,
        )
        db.add(analysis)
        db.flush()

        apply_claim(db, user.id, playlist.id, state.chosen_object, state.aesthetic_context, generation.id)

        breakdown = build_cost_breakdown(state.costs)
        ensure_transition(GENERATION_TRANSITIONS, generation.status, GenerationStatus.COMPLETED, "generation")
        generation.status = GenerationStatus.COMPLETED
        generation.r2_key = r2_key
        generation.analysis_id = analysis.id
        generation.duration_ms = int((self._clock() - state.started) * 1000)
        generation.cost_usd = breakdown.total_usd
        generation.cost_breakdown = breakdown.model_dump_json()

        playlist.status = PlaylistStatus.IDLE
        playlist.progress_data = None
        playlist.job_id = None
        playlist.last_generated_at = _now()
        playlist.generation_count = (playlist.generation_count or 0) + 1
        db.commit()

    def _fail(
        self,
        db: Session,
        playlist: Playlist,
        generation: Generation,
        state: _RunState,
        tracker: ProgressTracker,
        exc: Exception,
    ) -> PipelineResult:
        message = str(exc) or type(exc).__name__
        logger.error(
            "pipeline failed for playlist %r at step %s: %s", playlist.name, tracker.current_step, message
        )
        db.rollback()
        breakdown = build_cost_breakdown(state.costs)
        if generation.status not in TERMINAL_GENERATION_STATUSES:
            generation.status = GenerationStatus.FAILED
        generation.error_message = message[:_ERROR_MESSAGE_LIMIT]
        generation.duration_ms = int((self._clock() - state.started) * 1000)
        generation.cost_usd = breakdown.total_usd
        generation.cost_breakdown = breakdown.model_dump_json() if state.costs else None
        playlist.status = PlaylistStatus.IDLE
        playlist.progress_data = None
        playlist.job_id = None
        db.commit()
        return PipelineResult(generation_id=generation.id, success=False, error=message)
