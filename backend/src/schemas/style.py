"""Pydantic schemas for style preview endpoints."""

import uuid

from pydantic import BaseModel, Field


class PreviewRequest(BaseModel):
    user_id: uuid.UUID
    subjects: list[str] = Field(..., min_length=1, max_length=8)


class PreviewImage(BaseModel):
    subject: str
    url: str | None
    error: str | None = None


class PreviewResponse(BaseModel):
    style_id: str
    previews: list[PreviewImage]
