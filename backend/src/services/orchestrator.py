"""Job orchestration: create jobs, run their playlists one at a time, cancel them.

A Job is created synchronously (targets queued before the caller returns) and
then handed to the JobScheduler, which runs it on a per-user worker thread.
"""

import logging
import os
import queue
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy.orm import Session

from src.db import session_factory
from src.models.generation import Generation
from src.models.job import Job
from src.models.playlist import Playlist
from src.models.status import GenerationStatus, JobStatus, PlaylistStatus, TriggerType
from src.models.style import Style
from src.models.user import User
from src.schemas.job import JobStatusResponse, TargetStatus
from src.services.pipeline import PIPELINE_TIMEOUT_SECONDS, PipelineOptions, PipelineRunner, load_progress
from src.services.state_machine import JOB_TRANSITIONS, ensure_transition, is_job_active

logger = logging.getLogger(__name__)

_WORKER_IDLE_SECONDS = 60.0

# A live worker touches the playlist it is running at least once per pipeline.
STALE_JOB_SECONDS = 3 * PIPELINE_TIMEOUT_SECONDS
_STALE_MESSAGE = "Worker stopped before the pipeline finished"

# Serialises the active-job check with job creation.
_create_lock = threading.Lock()


class JobAlreadyActiveError(Exception):
    """Raised when the user already has a processing job."""


class NoEligibleTargetsError(Exception):
    """Raised when every requested playlist was excluded."""


class JobNotFoundError(Exception):
    """Raised when there is no (active) job for the user."""


class StyleNotFoundError(Exception):
    """Raised when the requested or default style does not exist."""


class UserNotFoundError(Exception):
    """Raised when the triggering user does not exist."""


@dataclass
class JobSubmission:
    job_id: uuid.UUID
    queued_ids: list[uuid.UUID] = field(default_factory=list)
    skipped: int = 0


@dataclass
class CancelResult:
    job_id: uuid.UUID
    cancelled_playlists: int
    cancelled_generations: int


@dataclass
class StaleRecovery:
    expired_jobs: int = 0
    released_playlists: int = 0


def _now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def is_eligible(playlist: Playlist, user: User) -> bool:
    """Shared or foreign playlists are never generation targets."""
    return (
        playlist.contributor_count <= 1
        and not playlist.is_collaborative
        and playlist.owner_spotify_id == user.spotify_user_id
    )


def active_job(db: Session, user_id: uuid.UUID) -> Job | None:
    return (
        db.query(Job)
        .filter(Job.user_id == user_id, Job.status == JobStatus.PROCESSING)
        .order_by(Job.started_at.desc())
        .first()
    )


def resolve_style(db: Session, user: User, style_id: str | None) -> Style:
    """Explicit style, else the user's preference, else DEFAULT_STYLE_ID."""
    resolved = style_id or user.style_preference or os.environ.get("DEFAULT_STYLE_ID", "").strip()
    if not resolved:
        raise StyleNotFoundError("No style given and no default style configured")
    style = db.get(Style, resolved)
    if style is None:
        raise StyleNotFoundError(f"Style not found: {resolved!r}")
    return style


def create_job(
    db: Session,
    user_id: uuid.UUID,
    playlist_ids: list[uuid.UUID],
    style_id: str | None = None,
    trigger_type: str = TriggerType.MANUAL,
    options: dict[str, str] | None = None,
) -> JobSubmission:
    """Create a job and queue its eligible targets before returning.

    Unknown, shared or foreign playlists are skipped and counted.
    Raises UserNotFoundError, JobAlreadyActiveError, StyleNotFoundError,
    NoEligibleTargetsError.
    """
    with _create_lock:
        user = db.get(User, user_id)
        if user is None:
            raise UserNotFoundError(f"User not found: {user_id}")
        recover_stale_jobs(db, user_id)
        existing = active_job(db, user_id)
        if existing is not None:
            raise JobAlreadyActiveError(f"Job {existing.id} is already processing for this user")
        style = resolve_style(db, user, style_id)

        requested = list(dict.fromkeys(playlist_ids))
        found = {
            p.id: p
            for p in db.query(Playlist)
            .filter(Playlist.user_id == user_id, Playlist.id.in_(requested))
            .all()
        }
        targets: list[Playlist] = []
        for pid in requested:
            playlist = found.get(pid)
            if playlist is None:
                logger.info("skipping unknown playlist %s", pid)
            elif not is_eligible(playlist, user):
                logger.info("skipping ineligible playlist %r (shared or not owned)", playlist.name)
            elif playlist.status != PlaylistStatus.IDLE:
                logger.warning("skipping playlist %r in unexpected status %s", playlist.name, playlist.status)
            else:
                targets.append(playlist)
        skipped = len(requested) - len(targets)
        if not targets:
            raise NoEligibleTargetsError(
                f"No eligible playlists: all {len(requested)} requested playlists were excluded"
            )

        job = Job(
            user_id=user_id,
            status=JobStatus.PROCESSING,
            trigger_type=trigger_type,
            style_id=style.id,
            playlist_ids=[str(p.id) for p in targets],
            options={k: v for k, v in (options or {}).items() if v},
            total_playlists=len(targets),
            started_at=_now(),
        )
        db.add(job)
        db.flush()
        for playlist in targets:
            playlist.status = PlaylistStatus.QUEUED
            playlist.job_id = job.id
            playlist.progress_data = None
            db.add(
                Generation(
                    user_id=user_id,
                    playlist_id=playlist.id,
                    job_id=job.id,
                    style_id=style.id,
                    trigger_type=trigger_type,
                    status=GenerationStatus.PENDING,
                )
            )
        db.commit()

    logger.info("job %s created: %d queued, %d skipped", job.id, len(targets), skipped)
    return JobSubmission(job_id=job.id, queued_ids=[p.id for p in targets], skipped=skipped)


def cancel_remaining(db: Session, job: Job) -> tuple[int, int]:
    """Return the job's queued playlists to idle and cancel their open generations.

    Playlists already processing are left alone. Returns (playlists, generations) reset.
    """
    queued = (
        db.query(Playlist)
        .filter(Playlist.job_id == job.id, Playlist.status == PlaylistStatus.QUEUED)
        .all()
    )
    playlist_ids = [p.id for p in queued]
    for playlist in queued:
        playlist.status = PlaylistStatus.IDLE
        playlist.progress_data = None
        playlist.job_id = None

    generations: list[Generation] = []
    if playlist_ids:
        generations = (
            db.query(Generation)
            .filter(
                Generation.job_id == job.id,
                Generation.playlist_id.in_(playlist_ids),
                Generation.status.in_([GenerationStatus.PENDING, GenerationStatus.PROCESSING]),
            )
            .all()
        )
        for generation in generations:
            generation.status = GenerationStatus.CANCELLED
    db.commit()
    return len(queued), len(generations)


def cancel_active_job(db: Session, user_id: uuid.UUID) -> CancelResult:
    """Cancel the user's processing job. Raises JobNotFoundError if there is none."""
    job = active_job(db, user_id)
    if job is None:
        raise JobNotFoundError("No active job for this user")
    ensure_transition(JOB_TRANSITIONS, job.status, JobStatus.CANCELLED, "job")
    job.status = JobStatus.CANCELLED
    job.completed_at = _now()
    playlists, generations = cancel_remaining(db, job)
    logger.info("job %s cancelled: %d playlists reset, %d generations cancelled", job.id, playlists, generations)
    return CancelResult(job_id=job.id, cancelled_playlists=playlists, cancelled_generations=generations)


def _touched_since(playlist: Playlist, cutoff: datetime) -> bool:
    return playlist.updated_at is not None and playlist.updated_at >= cutoff


def _release_stale_playlist(db: Session, playlist: Playlist, job_id: uuid.UUID) -> bool:
    """Return *playlist* to idle and close its open generations.

    A generation that was mid-pipeline is failed; one still waiting is cancelled.
    Returns True if the playlist was mid-pipeline.
    """
    was_processing = playlist.status == PlaylistStatus.PROCESSING
    open_generations = (
        db.query(Generation)
        .filter(
            Generation.job_id == job_id,
            Generation.playlist_id == playlist.id,
            Generation.status.in_([GenerationStatus.PENDING, GenerationStatus.PROCESSING]),
        )
        .all()
    )
    for generation in open_generations:
        if was_processing:
            generation.status = GenerationStatus.FAILED
            generation.error_message = _STALE_MESSAGE
        else:
            generation.status = GenerationStatus.CANCELLED
    playlist.status = PlaylistStatus.IDLE
    playlist.progress_data = None
    playlist.job_id = None
    return was_processing


def recover_stale_jobs(
    db: Session, user_id: uuid.UUID | None = None, now: datetime | None = None
) -> StaleRecovery:
    """Release jobs and playlists left behind by a worker that died.

    A processing job is stale once it started more than STALE_JOB_SECONDS ago
    and none of its playlists has been touched since; it is cancelled and its
    playlists go back to idle. A playlist still held by a job that is no longer
    processing is released after the same quiet period.
    """
    now = now or _now()
    cutoff = now - timedelta(seconds=STALE_JOB_SECONDS)
    result = StaleRecovery()

    held_query = db.query(Playlist).filter(
        Playlist.job_id.is_not(None),
        Playlist.status.in_([PlaylistStatus.QUEUED, PlaylistStatus.PROCESSING]),
    )
    jobs_query = db.query(Job).filter(Job.status == JobStatus.PROCESSING)
    if user_id is not None:
        held_query = held_query.filter(Playlist.user_id == user_id)
        jobs_query = jobs_query.filter(Job.user_id == user_id)
    held: dict[uuid.UUID, list[Playlist]] = {}
    for playlist in held_query.all():
        held.setdefault(playlist.job_id, []).append(playlist)

    for job in jobs_query.all():
        owned = held.pop(job.id, [])
        if job.started_at >= cutoff or any(_touched_since(p, cutoff) for p in owned):
            continue
        ensure_transition(JOB_TRANSITIONS, job.status, JobStatus.CANCELLED, "job")
        job.status = JobStatus.CANCELLED
        job.completed_at = now
        for playlist in owned:
            if _release_stale_playlist(db, playlist, job.id):
                job.failed_playlists += 1
        result.expired_jobs += 1
        result.released_playlists += len(owned)
        logger.warning(
            "job %s stalled since before %s: cancelled, %d playlists released", job.id, cutoff, len(owned)
        )

    for job_id, owned in held.items():
        for playlist in owned:
            if _touched_since(playlist, cutoff):
                continue
            _release_stale_playlist(db, playlist, job_id)
            result.released_playlists += 1
            logger.warning("playlist %r released from finished job %s", playlist.name, job_id)

    if result.expired_jobs or result.released_playlists:
        db.commit()
    return result


def _pending_generation(db: Session, job: Job, playlist: Playlist) -> Generation | None:
    return (
        db.query(Generation)
        .filter(
            Generation.job_id == job.id,
            Generation.playlist_id == playlist.id,
            Generation.status == GenerationStatus.PENDING,
        )
        .first()
    )


def _fail_target(db: Session, job: Job, playlist: Playlist, message: str) -> None:
    generation = _pending_generation(db, job, playlist)
    if generation is not None:
        generation.status = GenerationStatus.FAILED
        generation.error_message = message
    playlist.status = PlaylistStatus.IDLE
    playlist.progress_data = None
    playlist.job_id = None
    job.failed_playlists += 1
    db.commit()


def run_job(job_id: uuid.UUID, db: Session, runner: PipelineRunner | None = None) -> None:
    """Run every target of *job_id* strictly in order.

    The job row is re-read before each target so a cancellation takes effect
    at the next playlist boundary. One playlist's failure never stops the job.
    """
    job = db.get(Job, job_id)
    if job is None:
        logger.error("run_job: job %s not found", job_id)
        return
    user = db.get(User, job.user_id)
    style = db.get(Style, job.style_id)
    runner = runner or PipelineRunner()
    options = PipelineOptions(
        trigger_type=job.trigger_type,
        job_id=job.id,
        custom_object=job.options.get("custom_object"),
        revision_notes=job.options.get("revision_notes"),
    )
    logger.info("job %s started: %d playlists", job.id, len(job.playlist_ids))

    for raw_id in job.playlist_ids:
        db.refresh(job)
        if job.status == JobStatus.CANCELLED:
            playlists, generations = cancel_remaining(db, job)
            logger.info(
                "job %s cancelled mid-run: %d playlists reset, %d generations cancelled",
                job.id,
                playlists,
                generations,
            )
            break

        playlist = db.get(Playlist, uuid.UUID(raw_id))
        if playlist is None or playlist.job_id != job.id or playlist.status != PlaylistStatus.QUEUED:
            continue
        if user is None or style is None:
            _fail_target(db, job, playlist, "User or style no longer exists")
            continue

        try:
            result = runner.run(db, playlist, style, user, _pending_generation(db, job, playlist), options)
        except Exception as exc:
            logger.exception("job %s: unexpected error on playlist %s", job.id, playlist.id)
            db.rollback()
            _fail_target(db, job, playlist, str(exc))
            continue

        db.refresh(job)
        if result.success:
            job.completed_playlists += 1
        else:
            job.failed_playlists += 1
        db.commit()

    db.refresh(job)
    if is_job_active(job.status):
        ensure_transition(JOB_TRANSITIONS, job.status, JobStatus.COMPLETED, "job")
        job.status = JobStatus.COMPLETED
        job.completed_at = _now()
        db.commit()
    logger.info(
        "job %s finished (%s): %d completed, %d failed",
        job.id,
        job.status,
        job.completed_playlists,
        job.failed_playlists,
    )


def get_job_status(db: Session, user_id: uuid.UUID) -> JobStatusResponse:
    """Most recent job for the user with per-target progress. Raises JobNotFoundError."""
    recover_stale_jobs(db, user_id)
    job = (
        db.query(Job)
        .filter(Job.user_id == user_id)
        .order_by(Job.started_at.desc())
        .first()
    )
    if job is None:
        raise JobNotFoundError("No jobs for this user")

    targets: list[TargetStatus] = []
    for raw_id in job.playlist_ids:
        playlist = db.get(Playlist, uuid.UUID(raw_id))
        if playlist is None:
            continue
        generation = (
            db.query(Generation)
            .filter(Generation.job_id == job.id, Generation.playlist_id == playlist.id)
            .order_by(Generation.created_at.desc())
            .first()
        )
        progress = load_progress(playlist.progress_data) if playlist.job_id == job.id else None
        targets.append(
            TargetStatus(
                playlist_id=playlist.id,
                name=playlist.name,
                status=playlist.status,
                current_step=progress.current_step if progress else None,
                generation_id=generation.id if generation else None,
                generation_status=generation.status if generation else None,
                error_message=generation.error_message if generation else None,
            )
        )

    return JobStatusResponse(
        job_id=job.id,
        status=job.status,
        trigger_type=job.trigger_type,
        style_id=job.style_id,
        total_playlists=job.total_playlists,
        completed_playlists=job.completed_playlists,
        failed_playlists=job.failed_playlists,
        started_at=job.started_at,
        completed_at=job.completed_at,
        targets=targets,
    )


class JobScheduler:
    """Runs submitted jobs on one worker thread per user.

    Each user has a FIFO queue of job ids; the worker drains it and exits
    after sitting idle for a while. Submission never blocks on job execution.
    """

    def __init__(
        self,
        make_session: Callable[[], Session] = session_factory,
        make_runner: Callable[[], PipelineRunner] = PipelineRunner,
        idle_seconds: float = _WORKER_IDLE_SECONDS,
    ) -> None:
        self._make_session = make_session
        self._make_runner = make_runner
        self._idle_seconds = idle_seconds
        self._queues: dict[uuid.UUID, queue.Queue[uuid.UUID]] = {}
        self._threads: dict[uuid.UUID, threading.Thread] = {}
        self._lock = threading.Lock()

    def submit(self, job_id: uuid.UUID, user_id: uuid.UUID) -> None:
        with self._lock:
            q = self._queues.setdefault(user_id, queue.Queue())
            q.put(job_id)
            thread = self._threads.get(user_id)
            if thread is None or not thread.is_alive():
                thread = threading.Thread(
                    target=self._worker, args=(user_id, q), name=f"job-worker-{user_id}", daemon=True
                )
                self._threads[user_id] = thread
                thread.start()

    def join(self, user_id: uuid.UUID) -> None:
        """Block until every job submitted for *user_id* has run."""
        with self._lock:
            q = self._queues.get(user_id)
        if q is not None:
            q.join()

    def _worker(self, user_id: uuid.UUID, q: queue.Queue[uuid.UUID]) -> None:
        while True:
            try:
                job_id = q.get(timeout=self._idle_seconds)
            except queue.Empty:
                with self._lock:
                    if q.empty():
                        self._threads.pop(user_id, None)
                        return
                continue
            db = self._make_session()
            try:
                run_job(job_id, db, self._make_runner())
            except Exception:
                logger.exception("job worker: job %s crashed", job_id)
            finally:
                db.close()
                q.task_done()


scheduler = JobScheduler()


def trigger_scheduled_jobs(db: Session, hour: int, job_scheduler: JobScheduler | None = None) -> list[uuid.UUID]:
    """Create and submit cron jobs for users scheduled at *hour* (UTC).

    Users with an active job or no eligible playlist are skipped.
    """
    job_scheduler = job_scheduler or scheduler
    users = db.query(User).filter(User.cron_enabled.is_(True), User.cron_hour == hour).all()
    created: list[uuid.UUID] = []
    for user in users:
        playlist_ids = [
            p.id
            for p in db.query(Playlist)
            .filter(Playlist.user_id == user.id, Playlist.cron_enabled.is_(True))
            .order_by(Playlist.name)
            .all()
        ]
        if not playlist_ids:
            logger.info("cron: user %s has no cron-enabled playlists", user.id)
            continue
        try:
            submission = create_job(db, user.id, playlist_ids, trigger_type=TriggerType.CRON)
        except (JobAlreadyActiveError, NoEligibleTargetsError, StyleNotFoundError) as exc:
            logger.info("cron: skipping user %s: %s", user.id, exc)
            continue
        job_scheduler.submit(submission.job_id, user.id)
        created.append(submission.job_id)
    logger.info("cron tick for hour %d: %d jobs created for %d users", hour, len(created), len(users))
    return created
