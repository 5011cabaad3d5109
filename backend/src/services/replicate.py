"""Replicate REST client: create a prediction and poll it to a terminal state."""

import logging
import os
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import httpx

from src.models.style import Style
from src.schemas.style import PreviewImage
from src.services.retry import with_retry
from src.services.types import PredictionOutput

logger = logging.getLogger(__name__)

REPLICATE_API_BASE = "https://api.replicate.com/v1"
POLL_INTERVAL_SECONDS = 2.0
POLL_REQUEST_TIMEOUT_SECONDS = 15.0
MAX_CONSECUTIVE_POLL_ERRORS = 3
DEFAULT_TIMEOUT_SECONDS = 120.0
PREVIEW_CONCURRENCY = 4


class GenerationError(Exception):
    """Base class for image generation failures."""


class PredictionFailedError(GenerationError):
    """The backend reported status=failed; the message carries its error."""


class PredictionCanceledError(GenerationError):
    """The prediction was canceled on the backend."""


class PredictionTimeoutError(GenerationError):
    """The prediction did not finish before the deadline."""


class PollingError(GenerationError):
    """Too many consecutive poll requests failed."""


def _timeout_from_env() -> float:
    raw = os.environ.get("REPLICATE_TIMEOUT_SECONDS", "").strip()
    if not raw:
        return DEFAULT_TIMEOUT_SECONDS
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"REPLICATE_TIMEOUT_SECONDS must be a number, got {raw!r}") from exc


def build_input(style: Style, prompt: str) -> dict[str, Any]:
    """Model input for *style*. flux-2 models take "steps", older models "num_inference_steps"."""
    steps_key = "steps" if "flux-2-" in style.replicate_model else "num_inference_steps"
    payload: dict[str, Any] = {
        "prompt": prompt,
        "aspect_ratio": "1:1",
        steps_key: style.num_inference_steps,
        "guidance": style.guidance_scale,
        "output_format": "png",
    }
    if style.lora_url:
        payload["hf_lora"] = style.lora_url
        payload["lora_scale"] = style.lora_scale
    if style.negative_prompt:
        payload["negative_prompt"] = style.negative_prompt
    if style.seed is not None:
        payload["seed"] = style.seed
    return payload


def _output_url(prediction: dict[str, Any]) -> str:
    # Some models return a list of URLs, others a single string.
    output = prediction.get("output")
    url = output[0] if isinstance(output, list) and output else output
    if not url or not isinstance(url, str):
        raise GenerationError(f"Prediction {prediction.get('id')} returned no output")
    return url


class GenerationClient:
    """Drives one image generation through Replicate's prediction API."""

    def __init__(
        self,
        http: httpx.Client | None = None,
        api_token: str | None = None,
        timeout_seconds: float | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._http = http or httpx.Client(timeout=60)
        self._api_token = api_token
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else _timeout_from_env()
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    def _headers(self) -> dict[str, str]:
        if self._api_token is None:
            token = os.environ.get("REPLICATE_API_TOKEN", "").strip()
            if not token:
                raise ValueError("REPLICATE_API_TOKEN environment variable is not set")
            self._api_token = token
        return {"Authorization": f"Bearer {self._api_token}"}

    @with_retry(max_attempts=3)
    def resolve_version(self, model: str) -> str:
        """Return the latest version id of *model*."""
        response = self._http.get(f"{REPLICATE_API_BASE}/models/{model}", headers=self._headers(), timeout=15)
        response.raise_for_status()
        version = (response.json().get("latest_version") or {}).get("id")
        if not version:
            raise GenerationError(f"No latest version found for model {model}")
        return str(version)

    @with_retry(max_attempts=3, initial_delay=5.0)
    def create_prediction(self, version: str, model_input: dict[str, Any]) -> dict[str, Any]:
        """Create a prediction. ``Prefer: wait`` lets fast models finish in this call."""
        response = self._http.post(
            f"{REPLICATE_API_BASE}/predictions",
            headers={**self._headers(), "Prefer": "wait"},
            json={"version": version, "input": model_input},
            timeout=60,
        )
        response.raise_for_status()
        prediction: dict[str, Any] = response.json()
        return prediction

    def _terminal(self, prediction: dict[str, Any]) -> bool:
        """Return True on success, False while running; raise on failed/canceled."""
        status = prediction.get("status")
        if status == "succeeded":
            return True
        if status == "failed":
            raise PredictionFailedError(
                f"Prediction {prediction.get('id')} failed: {prediction.get('error')}"
            )
        if status == "canceled":
            raise PredictionCanceledError(f"Prediction {prediction.get('id')} was canceled")
        return False

    def wait_for_prediction(self, prediction: dict[str, Any]) -> dict[str, Any]:
        """Poll until *prediction* reaches a terminal state or the deadline passes.

        A poll that raises, returns a non-2xx response or an unreadable body
        counts as an error. Each request is bounded by the time left.
        MAX_CONSECUTIVE_POLL_ERRORS in a row abort with PollingError; any
        successful poll resets the count.
        """
        if self._terminal(prediction):
            return prediction

        prediction_id = prediction["id"]
        deadline = self._clock() + self.timeout_seconds
        consecutive_errors = 0
        while self._clock() < deadline:
            try:
                response = self._http.get(
                    f"{REPLICATE_API_BASE}/predictions/{prediction_id}",
                    headers=self._headers(),
                    timeout=max(0.0, min(POLL_REQUEST_TIMEOUT_SECONDS, deadline - self._clock())),
                )
                response.raise_for_status()
                polled: dict[str, Any] = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                consecutive_errors += 1
                if consecutive_errors >= MAX_CONSECUTIVE_POLL_ERRORS:
                    raise PollingError(
                        f"Replicate poll failed after {consecutive_errors} consecutive errors: {exc}"
                    ) from exc
                logger.warning(
                    "poll error for %s (%d/%d): %s",
                    prediction_id,
                    consecutive_errors,
                    MAX_CONSECUTIVE_POLL_ERRORS,
                    exc,
                )
            else:
                consecutive_errors = 0
                prediction = polled
                if self._terminal(prediction):
                    return prediction
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(self.poll_interval, remaining))

        raise PredictionTimeoutError(
            f"Prediction {prediction_id} timed out after {self.timeout_seconds:.0f}s"
        )

    def run(self, model: str, prompt: str, model_input: dict[str, Any]) -> PredictionOutput:
        logger.info("resolving latest version for %s", model)
        version = self.resolve_version(model)
        logger.info("creating prediction with version %s", version[:12])
        prediction = self.create_prediction(version, model_input)
        if prediction.get("status") != "succeeded":
            logger.info("polling prediction %s", prediction.get("id"))
        prediction = self.wait_for_prediction(prediction)
        url = _output_url(prediction)
        logger.info("image generated: %s", prediction.get("id"))
        return PredictionOutput(
            prediction_id=str(prediction.get("id")), output_url=url, model=model, prompt=prompt
        )

    def generate_image(self, style: Style, subject: str) -> PredictionOutput:
        """Render *subject* in *style* and return the output URL and prediction id."""
        prompt = style.render_prompt(subject)
        return self.run(style.replicate_model, prompt, build_input(style, prompt))

    def generate_previews(self, style: Style, subjects: list[str]) -> list[PreviewImage]:
        """Render several subjects concurrently; one failure never affects the others."""
        if not subjects:
            return []

        def _one(subject: str) -> PreviewImage:
            try:
                output = self.generate_image(style, subject)
            except Exception as exc:
                logger.warning("preview failed for %r: %s", subject, exc)
                return PreviewImage(subject=subject, url=None, error=str(exc))
            return PreviewImage(subject=subject, url=output["output_url"])

        with ThreadPoolExecutor(max_workers=min(PREVIEW_CONCURRENCY, len(subjects))) as pool:
            return list(pool.map(_one, subjects))

    def download_output(self, url: str) -> bytes:
        response = self._http.get(url, follow_redirects=True, timeout=60)
        response.raise_for_status()
        return response.content
