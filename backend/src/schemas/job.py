"""Pydantic schemas for job trigger, cancel and status endpoints."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from src.schemas.pipeline import StepName


class TriggerRequest(BaseModel):
    user_id: uuid.UUID
    playlist_ids: list[uuid.UUID] = Field(..., min_length=1)
    style_id: str | None = None
    trigger_type: Literal["manual", "cron", "auto"] = "manual"
    custom_object: str | None = Field(None, max_length=200)
    revision_notes: str | None = Field(None, max_length=500)


class TriggerResponse(BaseModel):
    job_id: uuid.UUID
    queued: int
    skipped: int


class CancelRequest(BaseModel):
    user_id: uuid.UUID


class CancelResponse(BaseModel):
    job_id: uuid.UUID
    cancelled_playlists: int
    cancelled_generations: int


class TargetStatus(BaseModel):
    playlist_id: uuid.UUID
    name: str
    status: str  # idle | queued | processing
    current_step: StepName | None = None
    generation_id: uuid.UUID | None = None
    generation_status: str | None = None
    error_message: str | None = None


class JobStatusResponse(BaseModel):
    job_id: uuid.UUID
    status: str  # processing | completed | cancelled
    trigger_type: str
    style_id: str
    total_playlists: int
    completed_playlists: int
    failed_playlists: int
    started_at: datetime
    completed_at: datetime | None
    targets: list[TargetStatus]


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
