"""Style ORM model: image model and prompt template used for generation."""

from datetime import datetime

from sqlalchemy import Float, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.db import Base


class Style(Base):
    __tablename__ = "styles"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    replicate_model: Mapped[str] = mapped_column(Text, nullable=False)
    # Must contain the literal "{subject}" placeholder.
    prompt_template: Mapped[str] = mapped_column(Text, nullable=False)
    negative_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    guidance_scale: Mapped[float] = mapped_column(Float, nullable=False, default=3.5)
    num_inference_steps: Mapped[int] = mapped_column(Integer, nullable=False, default=28)
    seed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lora_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    lora_scale: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())

    def render_prompt(self, subject: str) -> str:
        return self.prompt_template.replace("{subject}", subject)
