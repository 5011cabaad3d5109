"""ClaimedObject ORM model: the symbolic object currently in use by a playlist."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from src.db import Base


class ClaimedObject(Base):
    __tablename__ = "claimed_objects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    playlist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("playlists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    object_name: Mapped[str] = mapped_column(Text, nullable=False)
    aesthetic_context: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_generation_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
    # NULL means this is the playlist's current claim.
    superseded_at: Mapped[datetime | None] = mapped_column(nullable=True)
