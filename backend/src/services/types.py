"""Shared typed return types for backend services."""

from typing import TypedDict


class PlaylistTrack(TypedDict):
    id: str
    name: str
    artist: str
    album: str


class LyricsResult(TypedDict):
    track_id: str
    lyrics: str | None
    found: bool


class PredictionOutput(TypedDict):
    prediction_id: str
    output_url: str
    model: str
    prompt: str


class ExtractionUsage(TypedDict):
    tokens_in: int
    tokens_out: int
    llm_calls: int
    cache_hits: int


class AestheticResult(TypedDict):
    aesthetic_context: str
    tokens_in: int
    tokens_out: int
