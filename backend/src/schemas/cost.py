"""Pydantic schemas for per-generation cost breakdowns."""

from pydantic import BaseModel, Field


class CostStep(BaseModel):
    step: str  # llm_extraction | llm_convergence | image_generation
    model: str
    tokens_in: int | None = None
    tokens_out: int | None = None
    cost_usd: float


class CostBreakdown(BaseModel):
    steps: list[CostStep] = Field(default_factory=list)
    total_usd: float = 0.0
