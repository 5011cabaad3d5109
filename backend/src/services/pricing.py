"""Model pricing constants for cost tracking."""

# Per-million-token rates (USD) for the LLMs the worker calls.
MODEL_PRICING: dict[str, dict[str, float]] = {
    "gemini-2.5-flash": {"input_per_million": 0.30, "output_per_million": 2.50},
    "gemini-2.5-flash-lite": {"input_per_million": 0.10, "output_per_million": 0.40},
    "gemini-2.5-pro": {"input_per_million": 1.25, "output_per_million": 10.00},
}

# Per-image rates (USD) for known Replicate models.
IMAGE_PRICING: dict[str, float] = {
    "black-forest-labs/flux-dev": 0.025,
    "black-forest-labs/flux-schnell": 0.003,
    "black-forest-labs/flux-2-pro": 0.05,
    "stability-ai/stable-diffusion-3.5-large": 0.035,
}

DEFAULT_IMAGE_COST = 0.04


def calculate_llm_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    """Return the USD cost of an LLM call.

    Unknown models cost 0.0 so a missing pricing entry shows up as free spend
    in the ledger instead of a guessed number.
    """
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        return 0.0
    return (tokens_in / 1_000_000) * pricing["input_per_million"] + (
        tokens_out / 1_000_000
    ) * pricing["output_per_million"]


def calculate_image_cost(model: str) -> float:
    """Return the USD cost of one image; unknown models fall back to DEFAULT_IMAGE_COST."""
    return IMAGE_PRICING.get(model, DEFAULT_IMAGE_COST)
