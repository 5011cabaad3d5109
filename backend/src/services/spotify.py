"""Spotify Web API client: playlist tracks, cover upload and live cover lookup."""

import logging

import httpx

from src.services.retry import with_retry
from src.services.types import PlaylistTrack

logger = logging.getLogger(__name__)

SPOTIFY_API_BASE = "https://api.spotify.com/v1"
MAX_TRACKS_PER_PLAYLIST = 15
_TRACK_FIELDS = "items(track(id,name,artists(name),album(name)))"


class SpotifyError(Exception):
    """Raised when a Spotify request fails after retries."""


class SpotifyClient:
    """Thin wrapper around the Spotify endpoints the pipeline needs."""

    def __init__(self, http: httpx.Client | None = None) -> None:
        self._http = http or httpx.Client(timeout=30)

    @with_retry(max_attempts=3)
    def _request(self, method: str, url: str, access_token: str, **kwargs: object) -> httpx.Response:
        headers = {"Authorization": f"Bearer {access_token}"}
        extra = kwargs.pop("headers", None)
        if isinstance(extra, dict):
            headers.update(extra)
        response = self._http.request(method, url, headers=headers, **kwargs)  # type: ignore[arg-type]
        response.raise_for_status()
        return response

    def fetch_tracks(
        self, spotify_playlist_id: str, access_token: str, limit: int = MAX_TRACKS_PER_PLAYLIST
    ) -> list[PlaylistTrack]:
        """Return up to *limit* tracks; local/removed entries (null track) are skipped."""
        url = f"{SPOTIFY_API_BASE}/playlists/{spotify_playlist_id}/tracks"
        try:
            response = self._request(
                "GET", url, access_token, params={"fields": _TRACK_FIELDS, "limit": limit}
            )
        except httpx.HTTPError as exc:
            raise SpotifyError(f"Spotify playlist tracks fetch failed: {exc}") from exc

        items = response.json().get("items") or []
        tracks: list[PlaylistTrack] = []
        for item in items:
            track = item.get("track")
            if not track or not track.get("id"):
                continue
            tracks.append(
                PlaylistTrack(
                    id=track["id"],
                    name=track.get("name", ""),
                    artist=", ".join(a["name"] for a in track.get("artists", [])),
                    album=(track.get("album") or {}).get("name", ""),
                )
            )
        return tracks[:limit]

    def upload_cover(self, spotify_playlist_id: str, base64_jpeg: str, access_token: str) -> None:
        """Upload a base64-encoded JPEG as the playlist cover."""
        url = f"{SPOTIFY_API_BASE}/playlists/{spotify_playlist_id}/images"
        try:
            self._request(
                "PUT",
                url,
                access_token,
                content=base64_jpeg,
                headers={"Content-Type": "image/jpeg"},
            )
        except httpx.HTTPError as exc:
            raise SpotifyError(f"Spotify cover upload failed: {exc}") from exc
        logger.info("cover uploaded for playlist %s", spotify_playlist_id)

    def fetch_cover_url(self, spotify_playlist_id: str, access_token: str) -> str | None:
        """Return the URL of the playlist's current cover, or None if it has none."""
        url = f"{SPOTIFY_API_BASE}/playlists/{spotify_playlist_id}/images"
        try:
            response = self._request("GET", url, access_token)
        except httpx.HTTPError as exc:
            raise SpotifyError(f"Spotify cover lookup failed: {exc}") from exc
        images = response.json() or []
        if not images:
            return None
        return str(images[0]["url"])

    def download(self, url: str) -> bytes:
        """Fetch raw bytes (e.g. the live cover image) from a public URL."""
        try:
            response = self._http.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SpotifyError(f"Cover download failed: {exc}") from exc
        return response.content
