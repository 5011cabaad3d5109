"""PlaylistAnalysis ORM model: the report persisted with each successful run."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Float, ForeignKey, Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from src.db import Base


class PlaylistAnalysis(Base):
    __tablename__ = "playlist_analyses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    playlist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("playlists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # JSON blobs; readers treat malformed content as absent.
    track_snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    track_extractions: Mapped[str] = mapped_column(Text, nullable=False)
    convergence_result: Mapped[str | None] = mapped_column(Text, nullable=True)
    chosen_object: Mapped[str] = mapped_column(Text, nullable=False)
    aesthetic_context: Mapped[str] = mapped_column(Text, nullable=False, default="")
    style_id: Mapped[str] = mapped_column(Text, nullable=False)
    tracks_added: Mapped[str | None] = mapped_column(Text, nullable=True)
    tracks_removed: Mapped[str | None] = mapped_column(Text, nullable=True)
    outlier_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    outlier_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=0.25)
    regeneration_triggered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # status: completed | partial (partial = lyrics missing for some tracks)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    trigger_type: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
