"""UsageEvent ORM model: append-only ledger of billable actions."""

import uuid
from datetime import datetime

from sqlalchemy import Float, Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from src.db import Base


class UsageEvent(Base):
    __tablename__ = "usage_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    # action_type: llm_extraction | llm_convergence | image_generation | image_preview
    action_type: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    model: Mapped[str] = mapped_column(Text, nullable=False)
    generation_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    playlist_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    style_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    tokens_in: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tokens_out: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    model_unit_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    cost_usd: Mapped[float] = mapped_column(Float, nullable=False)
    trigger_source: Mapped[str] = mapped_column(Text, nullable=False, default="user")
    # status: success | failed
    status: Mapped[str] = mapped_column(Text, nullable=False, default="success")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
