"""Job trigger, cancel and status API router."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from src.db import get_session
from src.schemas.job import (
    CancelRequest,
    CancelResponse,
    JobStatusResponse,
    TriggerRequest,
    TriggerResponse,
)
from src.services import orchestrator
from src.services.orchestrator import (
    JobAlreadyActiveError,
    JobNotFoundError,
    NoEligibleTargetsError,
    StyleNotFoundError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/trigger", status_code=202)
def trigger_job(body: TriggerRequest, db: Session = Depends(get_session)) -> TriggerResponse:
    """Queue the eligible playlists and start the job in the background.

    Returns as soon as targets are queued; poll GET /jobs/status for progress.
    """
    try:
        submission = orchestrator.create_job(
            db,
            body.user_id,
            body.playlist_ids,
            style_id=body.style_id,
            trigger_type=body.trigger_type,
            options={
                "custom_object": body.custom_object or "",
                "revision_notes": body.revision_notes or "",
            },
        )
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except JobAlreadyActiveError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (NoEligibleTargetsError, StyleNotFoundError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    orchestrator.scheduler.submit(submission.job_id, body.user_id)
    return TriggerResponse(
        job_id=submission.job_id,
        queued=len(submission.queued_ids),
        skipped=submission.skipped,
    )


@router.post("/cancel")
def cancel_job(body: CancelRequest, db: Session = Depends(get_session)) -> CancelResponse:
    try:
        result = orchestrator.cancel_active_job(db, body.user_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return CancelResponse(
        job_id=result.job_id,
        cancelled_playlists=result.cancelled_playlists,
        cancelled_generations=result.cancelled_generations,
    )


@router.get("/status")
def job_status(user_id: uuid.UUID, db: Session = Depends(get_session)) -> JobStatusResponse:
    """Return the user's current or most recent job with per-playlist progress."""
    try:
        return orchestrator.get_job_status(db, user_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
