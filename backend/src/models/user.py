"""User ORM model: the account that owns playlists and jobs."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from src.db import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    spotify_user_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Kept fresh by the web app's auth layer; the worker only reads it.
    spotify_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    style_preference: Mapped[str | None] = mapped_column(Text, nullable=True)
    cron_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Hour of day (UTC, 0-23) at which the scheduled job runs.
    cron_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
