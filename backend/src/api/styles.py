"""Style preview API router."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from src.db import get_session
from src.models.style import Style
from src.schemas.style import PreviewRequest, PreviewResponse
from src.services.pricing import calculate_image_cost
from src.services.replicate import GenerationClient
from src.services.usage import record_usage_event

logger = logging.getLogger(__name__)

router = APIRouter()


def get_generation_client() -> GenerationClient:
    return GenerationClient()


@router.post("/{style_id}/previews")
def generate_previews(
    style_id: str,
    body: PreviewRequest,
    db: Session = Depends(get_session),
    client: GenerationClient = Depends(get_generation_client),
) -> PreviewResponse:
    """Render each subject in the style concurrently; failures are reported per subject."""
    style = db.get(Style, style_id)
    if style is None:
        raise HTTPException(status_code=404, detail=f"Style not found: {style_id!r}")
    previews = client.generate_previews(style, body.subjects)
    for preview in previews:
        record_usage_event(
            db,
            user_id=body.user_id,
            action_type="image_preview",
            model=style.replicate_model,
            cost_usd=0.0 if preview.error else calculate_image_cost(style.replicate_model),
            style_id=style.id,
            status="failed" if preview.error else "success",
            error_message=preview.error,
        )
    failed = sum(1 for p in previews if p.error)
    logger.info("previews for style %s: %d ok, %d failed", style_id, len(previews) - failed, failed)
    return PreviewResponse(style_id=style_id, previews=previews)
