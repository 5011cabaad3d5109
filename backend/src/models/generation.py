"""Generation ORM model: one attempt at producing a cover for a playlist."""

import uuid
from datetime import datetime

from sqlalchemy import Float, ForeignKey, Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from src.db import Base
from src.models.status import GenerationStatus


class Generation(Base):
    __tablename__ = "generations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    playlist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("playlists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    job_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    style_id: Mapped[str] = mapped_column(Text, nullable=False)
    symbolic_object: Mapped[str] = mapped_column(Text, nullable=False, default="")
    prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # status: pending | processing | completed | failed | cancelled
    status: Mapped[str] = mapped_column(Text, nullable=False, default=GenerationStatus.PENDING)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    prediction_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set only once the artifact is durably stored.
    r2_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_phash: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost_usd: Mapped[float | None] = mapped_column(Float, nullable=True)
    # Serialised CostBreakdown; see src.services.usage.parse_cost_breakdown.
    cost_breakdown: Mapped[str | None] = mapped_column(Text, nullable=True)
    trigger_type: Mapped[str] = mapped_column(Text, nullable=False)
    analysis_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
