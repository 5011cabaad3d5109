"""Playlist ORM model: a generation target."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from src.db import Base
from src.models.status import PlaylistStatus


class Playlist(Base):
    __tablename__ = "playlists"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    spotify_playlist_id: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    owner_spotify_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_collaborative: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    contributor_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    cron_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # status: idle | queued | processing
    status: Mapped[str] = mapped_column(Text, nullable=False, default=PlaylistStatus.IDLE)
    # Set only while a job owns this playlist.
    job_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    # Serialised PipelineProgress of the active run; NULL when idle.
    progress_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_generated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    generation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_seen_cover_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, server_default=func.now(), onupdate=func.now()
    )
