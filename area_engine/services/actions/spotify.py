"""
spotify_has_likes: fires when the user saves a new track.

Polls /v1/me/tracks?limit=1 and compares the item's `added_at`
(ISO-8601, string-ordered) against the watermark.
"""
from __future__ import annotations

from typing import Any, Optional

from area_engine.services.actions.base import ActionDetector
from area_engine.services.fields import Placeholder
from area_engine.services.gateway import RequestSpec

SAVED_TRACKS_URL = "https://api.spotify.com/v1/me/tracks"

_PLACEHOLDERS = [
    Placeholder("SPOTIFY_LIKED_SONG_NAME", "The name of the liked song", "Bohemian Rhapsody"),
    Placeholder("SPOTIFY_LIKED_SONG_ARTIST", "The artist(s) of the liked song", "Queen"),
    Placeholder("SPOTIFY_LIKED_SONG_ALBUM", "The album name of the liked song", "A Night at the Opera"),
    Placeholder("SPOTIFY_LIKED_SONG_ALBUM_RELEASE_DATE", "The release date of the album", "1975-11-21"),
    Placeholder("SPOTIFY_LIKED_SONG_DURATION_MS", "Duration of the song in milliseconds", "354320"),
    Placeholder(
        "SPOTIFY_LIKED_SONG_URL",
        "Spotify URL of the song",
        "https://open.spotify.com/track/7tFiyTwD0nx5a1eklYtX2J",
    ),
    Placeholder("SPOTIFY_LIKED_SONG_ID", "Spotify ID of the song", "7tFiyTwD0nx5a1eklYtX2J"),
    Placeholder("SPOTIFY_LIKED_SONG_ADDED_AT", "When the song was liked (ISO 8601)", "2023-12-10T15:30:00Z"),
]


class SpotifyLikeDetector(ActionDetector):
    action_name = "spotify_has_likes"
    provider = "spotify"
    description = "Check if user has liked songs on Spotify"

    def __init__(self, auth, watermarks, poll_interval: float = 20.0) -> None:
        super().__init__(auth, watermarks)
        self.poll_interval = poll_interval

    def resource(self, config: dict[str, Any]) -> str:
        return "liked_tracks"

    def placeholders(self) -> list[Placeholder]:
        return list(_PLACEHOLDERS)

    async def fetch_latest(self, user_id: str, config: dict[str, Any]) -> Optional[dict[str, Any]]:
        response = await self._auth.authenticated_request(
            self.provider,
            user_id,
            RequestSpec(url=SAVED_TRACKS_URL, params={"limit": 1}),
        )
        items = response.json().get("items") or []
        return items[0] if items else None

    def marker(self, item: dict[str, Any]) -> Optional[str]:
        track = item.get("track") or {}
        if not (track.get("id") or item.get("id")):
            return None
        return item.get("added_at")

    def extract_placeholders(self, item: dict[str, Any]) -> dict[str, str]:
        track = item.get("track") or {}
        album = track.get("album") or {}
        artists = ", ".join(a.get("name", "") for a in track.get("artists") or [] if a.get("name"))
        duration = track.get("duration_ms")
        return {
            "SPOTIFY_LIKED_SONG_NAME": track.get("name") or "Unknown",
            "SPOTIFY_LIKED_SONG_ARTIST": artists or "Unknown",
            "SPOTIFY_LIKED_SONG_ALBUM": album.get("name") or "Unknown",
            "SPOTIFY_LIKED_SONG_ALBUM_RELEASE_DATE": album.get("release_date") or "Unknown",
            "SPOTIFY_LIKED_SONG_DURATION_MS": str(duration) if duration is not None else "0",
            "SPOTIFY_LIKED_SONG_URL": (track.get("external_urls") or {}).get("spotify") or "",
            "SPOTIFY_LIKED_SONG_ID": track.get("id") or item.get("id") or "",
            "SPOTIFY_LIKED_SONG_ADDED_AT": item.get("added_at") or "",
        }
