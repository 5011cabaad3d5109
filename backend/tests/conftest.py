"""Shared pytest fixtures."""

import uuid
from collections.abc import Callable, Generator
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.db import create_tables, make_engine
from src.models.playlist import Playlist
from src.models.style import Style
from src.models.user import User


@pytest.fixture()
def db_session() -> MagicMock:
    """Mock database session for unit tests."""
    return MagicMock()


@pytest.fixture()
def sqlite_session() -> Generator[Session, None, None]:
    """In-memory SQLite session with every table created."""
    engine = make_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_tables(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = factory()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def mock_httpx_client() -> MagicMock:
    """Mock httpx client."""
    return MagicMock()


@pytest.fixture()
def make_user(sqlite_session: Session) -> Callable[..., User]:
    """Factory inserting a User; keyword arguments override the defaults."""

    def _make(**overrides: object) -> User:
        values: dict[str, object] = {
            "spotify_user_id": f"spotify-{uuid.uuid4().hex[:8]}",
            "display_name": "Test User",
            "spotify_access_token": "access-token",
        }
        values.update(overrides)
        user = User(**values)
        sqlite_session.add(user)
        sqlite_session.commit()
        return user

    return _make


@pytest.fixture()
def make_style(sqlite_session: Session) -> Callable[..., Style]:
    def _make(style_id: str = "watercolor", **overrides: object) -> Style:
        values: dict[str, object] = {
            "id": style_id,
            "name": "Watercolor",
            "replicate_model": "black-forest-labs/flux-dev",
            "prompt_template": "A watercolor painting of {subject}",
        }
        values.update(overrides)
        style = Style(**values)
        sqlite_session.add(style)
        sqlite_session.commit()
        return style

    return _make


@pytest.fixture()
def make_playlist(sqlite_session: Session) -> Callable[..., Playlist]:
    """Factory inserting a solo playlist owned by *user*."""

    def _make(user: User, name: str = "Road Trip", **overrides: object) -> Playlist:
        values: dict[str, object] = {
            "user_id": user.id,
            "spotify_playlist_id": f"pl-{uuid.uuid4().hex[:8]}",
            "name": name,
            "owner_spotify_id": user.spotify_user_id,
        }
        values.update(overrides)
        playlist = Playlist(**values)
        sqlite_session.add(playlist)
        sqlite_session.commit()
        return playlist

    return _make
