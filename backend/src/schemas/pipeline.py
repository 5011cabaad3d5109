"""Pydantic schemas for pipeline data: extractions, convergence and progress."""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field

Tier = Literal["high", "medium", "low"]

StepName = Literal[
    "fetch_tracks",
    "fetch_lyrics",
    "extract_themes",
    "select_theme",
    "generate_image",
    "upload",
]


class TieredObject(BaseModel):
    object: str
    tier: Tier
    reasoning: str = ""


class TrackExtraction(BaseModel):
    track_name: str
    artist: str
    lyrics_found: bool = False
    objects: list[TieredObject] = Field(default_factory=list)


class ConvergenceCandidate(BaseModel):
    rank: int
    object: str
    reasoning: str
    score: int = 0
    track_count: int = 0


class ConvergenceResult(BaseModel):
    candidates: list[ConvergenceCandidate]
    selected_index: int
    collision_notes: str | None = None

    @property
    def selected(self) -> ConvergenceCandidate:
        return self.candidates[self.selected_index]


# ── Per-step progress payloads (tagged on "step") ─────────────────────────────


class FetchTracksProgress(BaseModel):
    step: Literal["fetch_tracks"] = "fetch_tracks"
    track_count: int = 0
    track_names: list[str] = Field(default_factory=list)


class FetchLyricsProgress(BaseModel):
    step: Literal["fetch_lyrics"] = "fetch_lyrics"
    found: int = 0
    total: int = 0


class TrackObjects(BaseModel):
    track_name: str
    objects: list[str]


class ExtractThemesProgress(BaseModel):
    step: Literal["extract_themes"] = "extract_themes"
    completed: int = 0
    total: int = 0
    object_count: int = 0
    tracks: list[TrackObjects] = Field(default_factory=list)


class SelectThemeProgress(BaseModel):
    step: Literal["select_theme"] = "select_theme"
    chosen_object: str = ""
    candidates: list[ConvergenceCandidate] = Field(default_factory=list)
    collision_notes: str | None = None
    custom: bool = False


class GenerateImageProgress(BaseModel):
    step: Literal["generate_image"] = "generate_image"
    style_name: str = ""
    prompt: str = ""
    prediction_id: str | None = None


class UploadProgress(BaseModel):
    step: Literal["upload"] = "upload"
    r2_key: str | None = None
    uploaded: bool = False


StepProgress = Annotated[
    FetchTracksProgress
    | FetchLyricsProgress
    | ExtractThemesProgress
    | SelectThemeProgress
    | GenerateImageProgress
    | UploadProgress,
    Field(discriminator="step"),
]


class PipelineProgress(BaseModel):
    current_step: StepName
    generation_id: str
    started_at: datetime
    steps: dict[StepName, StepProgress] = Field(default_factory=dict)
