"""Job ORM model: one trigger run over a set of playlists."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, ForeignKey, Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from src.db import Base
from src.models.status import JobStatus


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # status: processing | completed | cancelled
    status: Mapped[str] = mapped_column(Text, nullable=False, default=JobStatus.PROCESSING)
    trigger_type: Mapped[str] = mapped_column(Text, nullable=False)
    style_id: Mapped[str] = mapped_column(Text, nullable=False)
    # Ordered target list (stringified playlist ids); processed in this order.
    playlist_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # Pipeline options for every target: custom_object, revision_notes.
    options: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)
    total_playlists: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_playlists: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_playlists: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
