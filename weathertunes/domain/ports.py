from __future__ import annotations

from typing import List, Protocol

from .entities import CreatedPlaylist, TrackCandidate


class TrackSearch(Protocol):
    """Port resolving a free-text query to candidate tracks."""

    def search(self, access_token: str, query: str, limit: int = 1) -> List[TrackCandidate]:
        """Return up to limit candidates in service ranking order.

        Raises CredentialExpired when the token is rejected as expired and
        UpstreamError for any other failure.
        """


class CredentialExchange(Protocol):
    """Port exchanging a refresh token for a fresh access token."""

    def refresh(self, refresh_token: str) -> str:
        """Return a new access token or raise when the exchange is rejected."""


class PlaylistService(Protocol):
    """Port for creating playlists and populating them."""

    def create_playlist(self, access_token: str, name: str, description: str,
                        public: bool = True) -> CreatedPlaylist:
        """Create an empty playlist and return its handle."""

    def add_tracks(self, playlist_id: str, access_token: str, track_uris: List[str]) -> None:
        """Add at most 100 uris. The batch either fully succeeds or raises."""


class MusicService(TrackSearch, PlaylistService, Protocol):
    """Combined contract implemented by a concrete music provider."""
