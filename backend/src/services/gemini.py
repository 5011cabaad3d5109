"""Gemini LLM service: per-track theme extraction and aesthetic context for the chosen object."""

import json
import logging
import os
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed

from google import genai
from pydantic import ValidationError
from sqlalchemy.orm import Session

from src.models.song_extraction import SongExtraction
from src.schemas.pipeline import TieredObject, TrackExtraction
from src.services.lyrics import fallback_context
from src.services.types import AestheticResult, ExtractionUsage, LyricsResult, PlaylistTrack

logger = logging.getLogger(__name__)

EXTRACTION_CONCURRENCY = 5
DEFAULT_THEME_MODEL = "gemini-2.5-flash"

_EXTRACTION_PROMPT = (
    "You are a music analyst. Given a single song (with lyrics or metadata), "
    "extract symbolic objects that represent the song's themes.\n"
    "Identify 1-3 concrete, visual objects (nouns) that could appear in cover art, "
    "not abstract concepts.\n"
    "Tier each object:\n"
    '  "high": directly referenced in lyrics or strongly evoked\n'
    '  "medium": thematically implied\n'
    '  "low": loosely connected, creative interpretation\n'
    "Return ONLY a valid JSON object with these keys:\n"
    '  "objects": array of {"object": string, "tier": "high"|"medium"|"low", "reasoning": string}\n'
    "Return nothing except the JSON object, no markdown, no explanation."
)

_AESTHETIC_PROMPT = (
    "You are a creative director writing art direction for a playlist cover. "
    "The cover shows a single symbolic object. In one or two sentences describe how the "
    "object should look and feel: mood, lighting, composition, texture. "
    "Return plain text only."
)

ProgressCallback = Callable[[int, int, list[TrackExtraction]], None]


def theme_model_name() -> str:
    return os.environ.get("GEMINI_THEME_MODEL", "").strip() or DEFAULT_THEME_MODEL


def _strip_code_fence(raw: str) -> str:
    raw = raw.strip()
    # Strip optional markdown code fence
    if raw.startswith("```"):
        raw = raw.split("```", 2)[1]
        if raw.startswith("json"):
            raw = raw[4:]
        raw = raw.rsplit("```", 1)[0].strip()
    return raw


def _parse_objects(raw: str) -> list[TieredObject]:
    """Parse the LLM's JSON reply into tiered objects; malformed items are dropped."""
    try:
        data: object = json.loads(_strip_code_fence(raw))
    except json.JSONDecodeError:
        return []
    if not isinstance(data, dict):
        return []
    items = data.get("objects", [])
    if not isinstance(items, list):
        return []
    objects: list[TieredObject] = []
    for item in items:
        try:
            objects.append(TieredObject.model_validate(item))
        except ValidationError:
            continue
    return objects


def _usage_tokens(response: object) -> tuple[int, int]:
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return 0, 0
    return (
        int(getattr(usage, "prompt_token_count", 0) or 0),
        int(getattr(usage, "candidates_token_count", 0) or 0),
    )


class ThemeExtractor:
    """Calls the Gemini API to turn tracks into tiered symbolic objects."""

    def __init__(self, client: genai.Client | None = None, model_name: str | None = None) -> None:
        self._client = client
        self.model_name = model_name or theme_model_name()

    def _get_client(self) -> genai.Client:
        if self._client is None:
            api_key = os.environ.get("GEMINI_API_KEY", "").strip()
            if not api_key:
                raise ValueError("GEMINI_API_KEY environment variable is not set")
            self._client = genai.Client(api_key=api_key)
        return self._client

    def extract_track(self, track: PlaylistTrack, lyrics: str | None) -> tuple[TrackExtraction, int, int]:
        """Run one extraction call; returns (extraction, tokens_in, tokens_out)."""
        context = f"Lyrics (truncated):\n{lyrics}" if lyrics else fallback_context(track)
        prompt = (
            f'Analyze this track and extract symbolic objects:\n\n"{track["name"]}" by {track["artist"]}\n'
            f"{context}"
        )
        response = self._get_client().models.generate_content(
            model=self.model_name,
            contents=[_EXTRACTION_PROMPT, prompt],
        )
        tokens_in, tokens_out = _usage_tokens(response)
        extraction = TrackExtraction(
            track_name=track["name"],
            artist=track["artist"],
            lyrics_found=lyrics is not None,
            objects=_parse_objects(response.text or ""),
        )
        return extraction, tokens_in, tokens_out

    def extract_themes(
        self,
        db: Session,
        tracks: list[PlaylistTrack],
        lyrics: list[LyricsResult],
        on_progress: ProgressCallback | None = None,
    ) -> tuple[list[TrackExtraction], ExtractionUsage]:
        """Extract objects for every track, consulting and then populating the cache.

        A track whose LLM call fails gets an empty object list. Token counts
        cover fresh LLM calls only; cache hits cost nothing. Results follow *tracks* order.
        """
        lyrics_by_id = {r["track_id"]: r for r in lyrics}
        results: list[TrackExtraction | None] = [None] * len(tracks)
        usage = ExtractionUsage(tokens_in=0, tokens_out=0, llm_calls=0, cache_hits=0)

        cached = {
            row.spotify_track_id: row
            for row in db.query(SongExtraction)
            .filter(SongExtraction.spotify_track_id.in_([t["id"] for t in tracks]))
            .all()
        }
        uncached: list[int] = []
        for i, track in enumerate(tracks):
            row = cached.get(track["id"])
            extraction = self._load_cached(row) if row is not None else None
            if row is None or extraction is None:
                uncached.append(i)
                continue
            results[i] = extraction
            usage["cache_hits"] += 1
        if usage["cache_hits"]:
            logger.info("extraction cache: %d hits, %d misses", usage["cache_hits"], len(uncached))

        def _report() -> None:
            if on_progress is None:
                return
            done = [r for r in results if r is not None]
            try:
                on_progress(len(done), len(tracks), done)
            except Exception:
                logger.warning("extraction progress callback failed", exc_info=True)

        if usage["cache_hits"]:
            _report()

        fresh: list[tuple[int, TrackExtraction, int, int]] = []
        if uncached:
            with ThreadPoolExecutor(max_workers=min(EXTRACTION_CONCURRENCY, len(uncached))) as pool:
                futures = {
                    pool.submit(
                        self.extract_track,
                        tracks[i],
                        (lyrics_by_id.get(tracks[i]["id"]) or {}).get("lyrics"),
                    ): i
                    for i in uncached
                }
                for future in as_completed(futures):
                    i = futures[future]
                    track = tracks[i]
                    try:
                        extraction, tokens_in, tokens_out = future.result()
                    except Exception as exc:
                        logger.warning("extraction failed for %r: %s", track["name"], exc)
                        found = bool((lyrics_by_id.get(track["id"]) or {}).get("found"))
                        results[i] = TrackExtraction(
                            track_name=track["name"], artist=track["artist"], lyrics_found=found
                        )
                    else:
                        results[i] = extraction
                        usage["tokens_in"] += tokens_in
                        usage["tokens_out"] += tokens_out
                        usage["llm_calls"] += 1
                        fresh.append((i, extraction, tokens_in, tokens_out))
                    _report()

        self._store_cache(db, tracks, fresh)
        return [r for r in results if r is not None], usage

    def _load_cached(self, row: SongExtraction) -> TrackExtraction | None:
        try:
            return TrackExtraction.model_validate_json(row.extraction_json)
        except ValidationError:
            logger.warning("ignoring malformed cached extraction for track %s", row.spotify_track_id)
            return None

    def _store_cache(
        self,
        db: Session,
        tracks: list[PlaylistTrack],
        fresh: list[tuple[int, TrackExtraction, int, int]],
    ) -> None:
        if not fresh:
            return
        try:
            for i, extraction, tokens_in, tokens_out in fresh:
                db.merge(
                    SongExtraction(
                        spotify_track_id=tracks[i]["id"],
                        track_name=tracks[i]["name"],
                        artist_name=tracks[i]["artist"],
                        extraction_json=extraction.model_dump_json(),
                        model_name=self.model_name,
                        input_tokens=tokens_in,
                        output_tokens=tokens_out,
                    )
                )
            db.commit()
            logger.info("cached %d new extractions", len(fresh))
        except Exception as exc:
            db.rollback()
            logger.warning("extraction cache write failed: %s", exc)

    def describe_aesthetic(
        self, playlist_name: str, object_name: str, extractions: list[TrackExtraction]
    ) -> AestheticResult:
        """Ask the LLM how *object_name* should look on this playlist's cover."""
        track_lines = "\n".join(
            f'- "{e.track_name}" by {e.artist}: {", ".join(o.object for o in e.objects) or "(none)"}'
            for e in extractions
        )
        prompt = (
            f'Playlist: "{playlist_name}"\n'
            f"Chosen object: {object_name}\n\n"
            f"Per-track objects:\n{track_lines}"
        )
        response = self._get_client().models.generate_content(
            model=self.model_name,
            contents=[_AESTHETIC_PROMPT, prompt],
        )
        tokens_in, tokens_out = _usage_tokens(response)
        return AestheticResult(
            aesthetic_context=(response.text or "").strip(),
            tokens_in=tokens_in,
            tokens_out=tokens_out,
        )
