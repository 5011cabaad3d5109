"""Best-effort lyrics lookup via lyrics.ovh (no auth)."""

import logging
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import quote

import httpx

from src.services.types import LyricsResult, PlaylistTrack

logger = logging.getLogger(__name__)

LYRICS_API_BASE = "https://api.lyrics.ovh/v1"
LYRICS_TIMEOUT_SECONDS = 5.0
LYRICS_CONCURRENCY = 5
LYRICS_TRUNCATE_CHARS = 800


def fallback_context(track: PlaylistTrack) -> str:
    """Context string used in place of lyrics when none were found."""
    return f'Track: "{track["name"]}" by {track["artist"]} from album "{track["album"]}"'


class LyricsClient:
    def __init__(self, http: httpx.Client | None = None) -> None:
        self._http = http or httpx.Client(timeout=LYRICS_TIMEOUT_SECONDS)

    def fetch(self, track: PlaylistTrack) -> LyricsResult:
        """Return lyrics for *track*; misses and errors yield found=False, never raise."""
        artist = track["artist"].split(",")[0].strip()
        url = f"{LYRICS_API_BASE}/{quote(artist, safe='')}/{quote(track['name'], safe='')}"
        miss = LyricsResult(track_id=track["id"], lyrics=None, found=False)
        try:
            response = self._http.get(url, timeout=LYRICS_TIMEOUT_SECONDS)
        except httpx.HTTPError as exc:
            logger.info("lyrics lookup failed for %r: %s", track["name"], exc)
            return miss
        if response.status_code != 200:
            return miss
        try:
            lyrics = response.json().get("lyrics")
        except ValueError:
            return miss
        if not isinstance(lyrics, str) or not lyrics.strip():
            return miss
        return LyricsResult(track_id=track["id"], lyrics=lyrics[:LYRICS_TRUNCATE_CHARS], found=True)

    def fetch_batch(self, tracks: list[PlaylistTrack]) -> list[LyricsResult]:
        """Fetch lyrics for every track, at most LYRICS_CONCURRENCY at a time, in input order."""
        if not tracks:
            return []
        with ThreadPoolExecutor(max_workers=min(LYRICS_CONCURRENCY, len(tracks))) as pool:
            return list(pool.map(self.fetch, tracks))
