"""Allowed status transitions for jobs, playlists and generations."""

from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from src.models.status import GenerationStatus, JobStatus, PlaylistStatus

JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

PLAYLIST_TRANSITIONS: dict[PlaylistStatus, frozenset[PlaylistStatus]] = {
    PlaylistStatus.IDLE: frozenset({PlaylistStatus.QUEUED, PlaylistStatus.PROCESSING}),
    PlaylistStatus.QUEUED: frozenset({PlaylistStatus.PROCESSING, PlaylistStatus.IDLE}),
    PlaylistStatus.PROCESSING: frozenset({PlaylistStatus.IDLE}),
}

GENERATION_TRANSITIONS: dict[GenerationStatus, frozenset[GenerationStatus]] = {
    GenerationStatus.PENDING: frozenset(
        {GenerationStatus.PROCESSING, GenerationStatus.FAILED, GenerationStatus.CANCELLED}
    ),
    GenerationStatus.PROCESSING: frozenset(
        {GenerationStatus.COMPLETED, GenerationStatus.FAILED, GenerationStatus.CANCELLED}
    ),
    GenerationStatus.COMPLETED: frozenset(),
    GenerationStatus.FAILED: frozenset(),
    GenerationStatus.CANCELLED: frozenset(),
}


def can_transition(
    table: Mapping[Any, frozenset[Any]], current: str, target: StrEnum
) -> bool:
    """Return True if *current* may move to *target* under *table*.

    Re-entering the current state is always allowed.
    """
    if current == target:
        return True
    allowed = {str(s): targets for s, targets in table.items()}.get(current)
    if allowed is None:
        return False
    return target in allowed


def ensure_transition(
    table: Mapping[Any, frozenset[Any]], current: str, target: StrEnum, entity: str = "entity"
) -> None:
    """Raise ValueError if *current* → *target* is not allowed."""
    if not can_transition(table, current, target):
        raise ValueError(f"Invalid {entity} transition: {current} -> {target}")


def is_job_active(status: str) -> bool:
    return status == JobStatus.PROCESSING
