"""Unit tests for the job orchestrator, stale-job recovery and the per-user scheduler."""

import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session

from src.models.generation import Generation
from src.models.job import Job
from src.models.playlist import Playlist
from src.models.status import GenerationStatus, JobStatus, PlaylistStatus, TriggerType
from src.models.style import Style
from src.models.user import User
from src.services import orchestrator
from src.services.orchestrator import (
    STALE_JOB_SECONDS,
    JobAlreadyActiveError,
    JobNotFoundError,
    JobScheduler,
    NoEligibleTargetsError,
    StyleNotFoundError,
    UserNotFoundError,
    cancel_active_job,
    create_job,
    get_job_status,
    is_eligible,
    recover_stale_jobs,
    resolve_style,
    run_job,
    trigger_scheduled_jobs,
)
from src.services.pipeline import PipelineResult


def _ago(seconds: float) -> datetime:
    return datetime.now(UTC).replace(tzinfo=None) - timedelta(seconds=seconds)


def _finishing_runner(db: Session, outcomes: dict[uuid.UUID, bool] | None = None) -> MagicMock:
    """Runner double that completes or fails each playlist like the real pipeline would."""
    runner = MagicMock()
    order: list[uuid.UUID] = []

    def _run(session, playlist, style, user, generation, options):  # type: ignore[no-untyped-def]
        order.append(playlist.id)
        success = (outcomes or {}).get(playlist.id, True)
        generation.status = GenerationStatus.COMPLETED if success else GenerationStatus.FAILED
        playlist.status = PlaylistStatus.IDLE
        playlist.job_id = None
        session.commit()
        return PipelineResult(generation_id=generation.id, success=success)

    runner.run.side_effect = _run
    runner.order = order
    return runner


class TestIsEligible:
    def test_solo_owned_playlist_is_eligible(self) -> None:
        user = User(spotify_user_id="me")
        playlist = Playlist(owner_spotify_id="me", is_collaborative=False, contributor_count=1)

        assert is_eligible(playlist, user)

    def test_collaborative_playlist_is_ineligible(self) -> None:
        user = User(spotify_user_id="me")
        playlist = Playlist(owner_spotify_id="me", is_collaborative=True, contributor_count=1)

        assert not is_eligible(playlist, user)

    def test_multi_contributor_playlist_is_ineligible(self) -> None:
        user = User(spotify_user_id="me")
        playlist = Playlist(owner_spotify_id="me", is_collaborative=False, contributor_count=3)

        assert not is_eligible(playlist, user)

    def test_foreign_playlist_is_ineligible(self) -> None:
        user = User(spotify_user_id="me")
        playlist = Playlist(owner_spotify_id="someone-else", is_collaborative=False, contributor_count=1)

        assert not is_eligible(playlist, user)


class TestResolveStyle:
    def test_prefers_explicit_style(
        self, sqlite_session: Session, make_user: Callable[..., User], make_style: Callable[..., Style]
    ) -> None:
        make_style("watercolor")
        make_style("neon", name="Neon")
        user = make_user(style_preference="watercolor")

        assert resolve_style(sqlite_session, user, "neon").id == "neon"

    def test_falls_back_to_user_preference(
        self, sqlite_session: Session, make_user: Callable[..., User], make_style: Callable[..., Style]
    ) -> None:
        make_style("watercolor")
        user = make_user(style_preference="watercolor")

        assert resolve_style(sqlite_session, user, None).id == "watercolor"

    def test_falls_back_to_default_style(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        make_style("default-style")
        monkeypatch.setenv("DEFAULT_STYLE_ID", "default-style")

        assert resolve_style(sqlite_session, make_user(), None).id == "default-style"

    def test_unknown_style_raises(
        self, sqlite_session: Session, make_user: Callable[..., User], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("DEFAULT_STYLE_ID", raising=False)

        with pytest.raises(StyleNotFoundError):
            resolve_style(sqlite_session, make_user(), "missing")


class TestCreateJob:
    def test_queues_eligible_playlists_and_creates_pending_generations(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        b = make_playlist(user, "B")

        submission = create_job(sqlite_session, user.id, [a.id, b.id], style_id="watercolor")

        assert submission.queued_ids == [a.id, b.id]
        assert submission.skipped == 0
        job = sqlite_session.get(Job, submission.job_id)
        assert job is not None
        assert job.status == JobStatus.PROCESSING
        assert job.total_playlists == 2
        assert job.playlist_ids == [str(a.id), str(b.id)]
        assert a.status == PlaylistStatus.QUEUED
        assert a.job_id == job.id
        generations = sqlite_session.query(Generation).filter(Generation.job_id == job.id).all()
        assert len(generations) == 2
        assert {g.status for g in generations} == {GenerationStatus.PENDING}

    def test_skips_ineligible_and_unknown_playlists(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        solo = make_playlist(user, "Solo")
        shared = make_playlist(user, "Shared", is_collaborative=True)
        foreign = make_playlist(user, "Followed", owner_spotify_id="someone-else")

        submission = create_job(
            sqlite_session, user.id, [solo.id, shared.id, foreign.id, uuid.uuid4()], style_id="watercolor"
        )

        assert submission.queued_ids == [solo.id]
        assert submission.skipped == 3
        assert shared.status == PlaylistStatus.IDLE

    def test_all_excluded_raises_no_eligible_targets(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        shared = make_playlist(user, "Shared", contributor_count=4)

        with pytest.raises(NoEligibleTargetsError):
            create_job(sqlite_session, user.id, [shared.id], style_id="watercolor")

        assert sqlite_session.query(Job).count() == 0

    def test_second_job_while_active_raises(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        b = make_playlist(user, "B")
        create_job(sqlite_session, user.id, [a.id], style_id="watercolor")

        with pytest.raises(JobAlreadyActiveError):
            create_job(sqlite_session, user.id, [b.id], style_id="watercolor")

    def test_unknown_user_raises(self, sqlite_session: Session) -> None:
        with pytest.raises(UserNotFoundError):
            create_job(sqlite_session, uuid.uuid4(), [uuid.uuid4()], style_id="watercolor")

    def test_duplicate_ids_are_queued_once(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")

        submission = create_job(sqlite_session, user.id, [a.id, a.id], style_id="watercolor")

        assert submission.queued_ids == [a.id]

    def test_stores_pipeline_options(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")

        submission = create_job(
            sqlite_session,
            user.id,
            [a.id],
            style_id="watercolor",
            options={"custom_object": "paper crane", "revision_notes": ""},
        )

        job = sqlite_session.get(Job, submission.job_id)
        assert job is not None
        assert job.options == {"custom_object": "paper crane"}


class TestRunJob:
    def test_runs_targets_in_order_and_completes(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        playlists = [make_playlist(user, name) for name in ("A", "B", "C")]
        submission = create_job(sqlite_session, user.id, [p.id for p in playlists], style_id="watercolor")
        runner = _finishing_runner(sqlite_session)

        run_job(submission.job_id, sqlite_session, runner)

        assert runner.order == [p.id for p in playlists]
        job = sqlite_session.get(Job, submission.job_id)
        assert job is not None
        assert job.status == JobStatus.COMPLETED
        assert job.completed_playlists == 3
        assert job.failed_playlists == 0
        assert job.completed_at is not None

    def test_failure_does_not_stop_remaining_targets(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        b = make_playlist(user, "B")
        submission = create_job(sqlite_session, user.id, [a.id, b.id], style_id="watercolor")
        runner = _finishing_runner(sqlite_session, outcomes={a.id: False})

        run_job(submission.job_id, sqlite_session, runner)

        job = sqlite_session.get(Job, submission.job_id)
        assert job is not None
        assert job.completed_playlists == 1
        assert job.failed_playlists == 1
        assert job.status == JobStatus.COMPLETED

    def test_unexpected_runner_error_fails_only_that_target(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        b = make_playlist(user, "B")
        submission = create_job(sqlite_session, user.id, [a.id, b.id], style_id="watercolor")
        runner = _finishing_runner(sqlite_session)
        real_run = runner.run.side_effect

        def _explode_first(session, playlist, *args):  # type: ignore[no-untyped-def]
            if playlist.id == a.id:
                raise RuntimeError("worker crashed")
            return real_run(session, playlist, *args)

        runner.run.side_effect = _explode_first

        run_job(submission.job_id, sqlite_session, runner)

        job = sqlite_session.get(Job, submission.job_id)
        assert job is not None
        assert job.failed_playlists == 1
        assert job.completed_playlists == 1
        assert a.status == PlaylistStatus.IDLE
        failed = (
            sqlite_session.query(Generation)
            .filter(Generation.playlist_id == a.id, Generation.job_id == job.id)
            .one()
        )
        assert failed.status == GenerationStatus.FAILED
        assert failed.error_message == "worker crashed"

    def test_cancel_mid_job_stops_at_next_boundary(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        playlists = [make_playlist(user, name) for name in ("A", "B", "C")]
        submission = create_job(sqlite_session, user.id, [p.id for p in playlists], style_id="watercolor")
        runner = _finishing_runner(sqlite_session)
        real_run = runner.run.side_effect

        def _cancel_during_first(session, playlist, *args):  # type: ignore[no-untyped-def]
            result = real_run(session, playlist, *args)
            cancel_active_job(session, user.id)
            return result

        runner.run.side_effect = _cancel_during_first

        run_job(submission.job_id, sqlite_session, runner)

        assert runner.order == [playlists[0].id]
        job = sqlite_session.get(Job, submission.job_id)
        assert job is not None
        assert job.status == JobStatus.CANCELLED
        assert job.completed_playlists == 1
        for playlist in playlists[1:]:
            assert playlist.status == PlaylistStatus.IDLE
            assert playlist.job_id is None
        cancelled = sqlite_session.query(Generation).filter(Generation.status == GenerationStatus.CANCELLED).count()
        assert cancelled == 2

    def test_passes_job_options_to_runner(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        submission = create_job(
            sqlite_session,
            user.id,
            [a.id],
            style_id="watercolor",
            trigger_type=TriggerType.CRON,
            options={"custom_object": "lantern"},
        )
        runner = _finishing_runner(sqlite_session)

        run_job(submission.job_id, sqlite_session, runner)

        options = runner.run.call_args.args[5]
        assert options.custom_object == "lantern"
        assert options.trigger_type == TriggerType.CRON
        assert options.job_id == submission.job_id

    def test_missing_job_is_ignored(self, sqlite_session: Session) -> None:
        runner = MagicMock()

        run_job(uuid.uuid4(), sqlite_session, runner)

        runner.run.assert_not_called()


class TestCancelActiveJob:
    def test_resets_queued_playlists_and_cancels_generations(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        b = make_playlist(user, "B")
        submission = create_job(sqlite_session, user.id, [a.id, b.id], style_id="watercolor")

        result = cancel_active_job(sqlite_session, user.id)

        assert result.job_id == submission.job_id
        assert result.cancelled_playlists == 2
        assert result.cancelled_generations == 2
        assert a.status == PlaylistStatus.IDLE
        job = sqlite_session.get(Job, submission.job_id)
        assert job is not None
        assert job.status == JobStatus.CANCELLED

    def test_leaves_processing_playlist_alone(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        b = make_playlist(user, "B")
        create_job(sqlite_session, user.id, [a.id, b.id], style_id="watercolor")
        a.status = PlaylistStatus.PROCESSING
        sqlite_session.commit()

        result = cancel_active_job(sqlite_session, user.id)

        assert result.cancelled_playlists == 1
        assert a.status == PlaylistStatus.PROCESSING

    def test_no_active_job_raises(self, sqlite_session: Session, make_user: Callable[..., User]) -> None:
        with pytest.raises(JobNotFoundError):
            cancel_active_job(sqlite_session, make_user().id)

    def test_new_job_allowed_after_cancel(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        create_job(sqlite_session, user.id, [a.id], style_id="watercolor")
        cancel_active_job(sqlite_session, user.id)

        submission = create_job(sqlite_session, user.id, [a.id], style_id="watercolor")

        assert submission.queued_ids == [a.id]


def _generation_for(db: Session, job_id: uuid.UUID, playlist: Playlist) -> Generation:
    return (
        db.query(Generation)
        .filter(Generation.job_id == job_id, Generation.playlist_id == playlist.id)
        .one()
    )


class TestRecoverStaleJobs:
    def test_expires_job_abandoned_mid_pipeline(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        b = make_playlist(user, "B")
        first = create_job(sqlite_session, user.id, [a.id, b.id], style_id="watercolor")
        job = sqlite_session.get(Job, first.job_id)
        assert job is not None
        job.started_at = _ago(STALE_JOB_SECONDS + 60)
        a.status = PlaylistStatus.PROCESSING
        a.updated_at = _ago(STALE_JOB_SECONDS + 30)
        b.updated_at = _ago(STALE_JOB_SECONDS + 60)
        _generation_for(sqlite_session, job.id, a).status = GenerationStatus.PROCESSING
        sqlite_session.commit()

        second = create_job(sqlite_session, user.id, [a.id, b.id], style_id="watercolor")

        assert second.queued_ids == [a.id, b.id]
        job = sqlite_session.get(Job, first.job_id)
        assert job is not None
        assert job.status == JobStatus.CANCELLED
        assert job.completed_at is not None
        assert job.failed_playlists == 1
        interrupted = _generation_for(sqlite_session, first.job_id, a)
        assert interrupted.status == GenerationStatus.FAILED
        assert interrupted.error_message == "Worker stopped before the pipeline finished"
        assert _generation_for(sqlite_session, first.job_id, b).status == GenerationStatus.CANCELLED

    def test_releases_playlist_left_processing_after_cancel(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        first = create_job(sqlite_session, user.id, [a.id], style_id="watercolor")
        a.status = PlaylistStatus.PROCESSING
        _generation_for(sqlite_session, first.job_id, a).status = GenerationStatus.PROCESSING
        sqlite_session.commit()
        cancel_active_job(sqlite_session, user.id)
        assert a.status == PlaylistStatus.PROCESSING
        a.updated_at = _ago(STALE_JOB_SECONDS + 1)
        sqlite_session.commit()

        second = create_job(sqlite_session, user.id, [a.id], style_id="watercolor")

        assert second.queued_ids == [a.id]
        assert a.job_id == second.job_id
        assert _generation_for(sqlite_session, first.job_id, a).status == GenerationStatus.FAILED

    def test_recent_playlist_activity_keeps_long_job_active(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        b = make_playlist(user, "B")
        c = make_playlist(user, "C")
        first = create_job(sqlite_session, user.id, [a.id, b.id], style_id="watercolor")
        job = sqlite_session.get(Job, first.job_id)
        assert job is not None
        job.started_at = _ago(STALE_JOB_SECONDS * 4)
        a.status = PlaylistStatus.PROCESSING
        a.updated_at = _ago(5)
        b.updated_at = _ago(STALE_JOB_SECONDS * 4)
        sqlite_session.commit()

        with pytest.raises(JobAlreadyActiveError):
            create_job(sqlite_session, user.id, [c.id], style_id="watercolor")

        assert b.status == PlaylistStatus.QUEUED

    def test_fresh_job_is_left_alone(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        submission = create_job(sqlite_session, user.id, [a.id], style_id="watercolor")

        result = recover_stale_jobs(sqlite_session)

        assert result.expired_jobs == 0
        assert result.released_playlists == 0
        assert a.status == PlaylistStatus.QUEUED
        job = sqlite_session.get(Job, submission.job_id)
        assert job is not None
        assert job.status == JobStatus.PROCESSING

    def test_status_reports_expired_job(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        submission = create_job(sqlite_session, user.id, [a.id], style_id="watercolor")
        job = sqlite_session.get(Job, submission.job_id)
        assert job is not None
        job.started_at = _ago(STALE_JOB_SECONDS + 60)
        a.updated_at = _ago(STALE_JOB_SECONDS + 60)
        sqlite_session.commit()

        status = get_job_status(sqlite_session, user.id)

        assert status.status == JobStatus.CANCELLED
        assert status.targets[0].status == PlaylistStatus.IDLE
        assert status.targets[0].generation_status == GenerationStatus.CANCELLED


class TestJobScheduler:
    @staticmethod
    def _scheduler(sessions: list[MagicMock], idle_seconds: float = 5.0) -> JobScheduler:
        def _make_session() -> MagicMock:
            session = MagicMock()
            sessions.append(session)
            return session

        return JobScheduler(make_session=_make_session, make_runner=MagicMock, idle_seconds=idle_seconds)

    def test_runs_jobs_in_submission_order_on_one_thread(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[tuple[uuid.UUID, threading.Thread]] = []

        def _fake_run_job(job_id: uuid.UUID, db: MagicMock, runner: MagicMock) -> None:
            calls.append((job_id, threading.current_thread()))

        monkeypatch.setattr(orchestrator, "run_job", _fake_run_job)
        sessions: list[MagicMock] = []
        scheduler = self._scheduler(sessions)
        user_id, first, second = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

        scheduler.submit(first, user_id)
        scheduler.submit(second, user_id)
        scheduler.join(user_id)

        assert [job_id for job_id, _ in calls] == [first, second]
        assert calls[0][1] is calls[1][1]
        assert calls[0][1] is not threading.current_thread()
        assert len(sessions) == 2
        assert all(session.close.called for session in sessions)

    def test_join_waits_and_jobs_never_overlap(self, monkeypatch: pytest.MonkeyPatch) -> None:
        release = threading.Event()
        first_started = threading.Event()
        started: list[uuid.UUID] = []

        def _fake_run_job(job_id: uuid.UUID, db: MagicMock, runner: MagicMock) -> None:
            started.append(job_id)
            first_started.set()
            release.wait(timeout=5)

        monkeypatch.setattr(orchestrator, "run_job", _fake_run_job)
        scheduler = self._scheduler([])
        user_id, first, second = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        scheduler.submit(first, user_id)
        scheduler.submit(second, user_id)
        joined = threading.Event()

        def _wait() -> None:
            scheduler.join(user_id)
            joined.set()

        waiter = threading.Thread(target=_wait, daemon=True)
        waiter.start()

        assert first_started.wait(timeout=5)
        assert not joined.wait(timeout=0.2)
        assert started == [first]

        release.set()
        waiter.join(timeout=5)

        assert joined.is_set()
        assert started == [first, second]

    def test_crashing_job_does_not_stop_the_worker(self, monkeypatch: pytest.MonkeyPatch) -> None:
        ran: list[uuid.UUID] = []
        user_id, first, second = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

        def _fake_run_job(job_id: uuid.UUID, db: MagicMock, runner: MagicMock) -> None:
            if job_id == first:
                raise RuntimeError("database went away")
            ran.append(job_id)

        monkeypatch.setattr(orchestrator, "run_job", _fake_run_job)
        sessions: list[MagicMock] = []
        scheduler = self._scheduler(sessions)

        scheduler.submit(first, user_id)
        scheduler.submit(second, user_id)
        scheduler.join(user_id)

        assert ran == [second]
        assert all(session.close.called for session in sessions)

    def test_idle_worker_exits_and_next_submit_starts_a_new_one(self, monkeypatch: pytest.MonkeyPatch) -> None:
        threads: list[threading.Thread] = []

        def _fake_run_job(job_id: uuid.UUID, db: MagicMock, runner: MagicMock) -> None:
            threads.append(threading.current_thread())

        monkeypatch.setattr(orchestrator, "run_job", _fake_run_job)
        scheduler = self._scheduler([], idle_seconds=0.05)
        user_id = uuid.uuid4()

        scheduler.submit(uuid.uuid4(), user_id)
        scheduler.join(user_id)
        threads[0].join(timeout=5)
        assert not threads[0].is_alive()

        scheduler.submit(uuid.uuid4(), user_id)
        scheduler.join(user_id)

        assert len(threads) == 2
        assert threads[1] is not threads[0]


class TestGetJobStatus:
    def test_reports_targets(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        user = make_user()
        make_style()
        a = make_playlist(user, "A")
        submission = create_job(sqlite_session, user.id, [a.id], style_id="watercolor")

        status = get_job_status(sqlite_session, user.id)

        assert status.job_id == submission.job_id
        assert status.status == JobStatus.PROCESSING
        assert len(status.targets) == 1
        assert status.targets[0].name == "A"
        assert status.targets[0].status == PlaylistStatus.QUEUED
        assert status.targets[0].generation_status == GenerationStatus.PENDING

    def test_no_jobs_raises(self, sqlite_session: Session, make_user: Callable[..., User]) -> None:
        with pytest.raises(JobNotFoundError):
            get_job_status(sqlite_session, make_user().id)


class TestTriggerScheduledJobs:
    def test_creates_jobs_for_users_at_hour(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        make_style()
        due = make_user(cron_enabled=True, cron_hour=6, style_preference="watercolor")
        later = make_user(cron_enabled=True, cron_hour=9, style_preference="watercolor")
        disabled = make_user(cron_enabled=False, cron_hour=6, style_preference="watercolor")
        make_playlist(due, "Morning", cron_enabled=True)
        make_playlist(due, "Manual only", cron_enabled=False)
        make_playlist(later, "Evening", cron_enabled=True)
        make_playlist(disabled, "Off", cron_enabled=True)
        scheduler = MagicMock()

        created = trigger_scheduled_jobs(sqlite_session, 6, job_scheduler=scheduler)

        assert len(created) == 1
        job = sqlite_session.get(Job, created[0])
        assert job is not None
        assert job.user_id == due.id
        assert job.trigger_type == TriggerType.CRON
        assert job.total_playlists == 1
        scheduler.submit.assert_called_once_with(created[0], due.id)

    def test_skips_user_with_active_job(
        self,
        sqlite_session: Session,
        make_user: Callable[..., User],
        make_style: Callable[..., Style],
        make_playlist: Callable[..., Playlist],
    ) -> None:
        make_style()
        user = make_user(cron_enabled=True, cron_hour=6, style_preference="watercolor")
        manual = make_playlist(user, "Manual")
        make_playlist(user, "Cron", cron_enabled=True)
        create_job(sqlite_session, user.id, [manual.id])
        scheduler = MagicMock()

        created = trigger_scheduled_jobs(sqlite_session, 6, job_scheduler=scheduler)

        assert created == []
        scheduler.submit.assert_not_called()
