"""Usage ledger writes and per-generation cost breakdowns."""

import logging
import uuid

from pydantic import ValidationError
from sqlalchemy.orm import Session

from src.models.usage_event import UsageEvent
from src.schemas.cost import CostBreakdown, CostStep

logger = logging.getLogger(__name__)


def record_usage_event(
    db: Session,
    *,
    user_id: uuid.UUID,
    action_type: str,
    model: str,
    cost_usd: float,
    generation_id: uuid.UUID | None = None,
    playlist_id: uuid.UUID | None = None,
    style_id: str | None = None,
    job_id: uuid.UUID | None = None,
    tokens_in: int | None = None,
    tokens_out: int | None = None,
    duration_ms: int | None = None,
    model_unit_cost: float | None = None,
    trigger_source: str = "user",
    status: str = "success",
    error_message: str | None = None,
) -> UsageEvent | None:
    """Append one row to the usage ledger and commit it.

    Failures are logged and swallowed; returns None when the insert failed.
    """
    event = UsageEvent(
        user_id=user_id,
        action_type=action_type,
        model=model,
        cost_usd=cost_usd,
        generation_id=generation_id,
        playlist_id=playlist_id,
        style_id=style_id,
        job_id=job_id,
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        duration_ms=duration_ms,
        model_unit_cost=model_unit_cost,
        trigger_source=trigger_source,
        status=status,
        error_message=error_message,
    )
    try:
        db.add(event)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.error("failed to insert usage event (%s, %s): %s", action_type, model, exc)
        return None
    return event


def build_cost_breakdown(steps: list[CostStep]) -> CostBreakdown:
    return CostBreakdown(steps=steps, total_usd=round(sum(s.cost_usd for s in steps), 6))


def parse_cost_breakdown(raw: str | None) -> CostBreakdown | None:
    """Parse a stored breakdown; malformed data means no breakdown is available."""
    if not raw:
        return None
    try:
        return CostBreakdown.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning("ignoring malformed cost breakdown: %s", exc)
        return None
