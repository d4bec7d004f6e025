import os
from typing import List, Optional, Dict, Any
import logging

import requests
import spotipy
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from weathertunes.domain.entities import CreatedPlaylist, TrackCandidate
from weathertunes.domain.errors import CredentialExpired, UpstreamError
from weathertunes.domain.ports import MusicService

logger = logging.getLogger(__name__)

MAX_TRACKS_PER_REQUEST = 100
_EXPIRED_MARKER = 'access token expired'


class SpotifyProvider(MusicService):
    """Spotify implementation of track search and playlist creation.

    The provider is stateless with respect to credentials: every call receives
    the access token to use, so the credential refresher stays the single
    owner of the current token.
    """

    def __init__(self,
                 market: Optional[str] = None,
                 requests_timeout: int = 15):
        """Initialize Spotify provider.

        Args:
            market: Market code used for search (defaults to WEATHERTUNES_MARKET or US)
            requests_timeout: Per-request HTTP timeout in seconds
        """
        self._market = market or os.getenv('WEATHERTUNES_MARKET', 'US')
        self._requests_timeout = requests_timeout

    def _client(self, access_token: str) -> spotipy.Spotify:
        return spotipy.Spotify(auth=access_token, requests_timeout=self._requests_timeout)

    def _translate_error(self, error: Exception, operation: str) -> Exception:
        """Map a spotipy/requests failure onto the domain error taxonomy."""
        if isinstance(error, SpotifyException):
            message = str(error.msg or error)
            if error.http_status == 401 or _EXPIRED_MARKER in message.lower():
                logger.warning(f"Spotify access token expired during {operation}")
                return CredentialExpired(message)
            logger.error(f"Spotify {operation} failed with status {error.http_status}: {message}")
            return UpstreamError(error.http_status, message)
        logger.error(f"Spotify {operation} failed: {error}")
        return UpstreamError(None, str(error))

    def _spotify_track_to_candidate(self, spotify_track: Dict[str, Any], query: str) -> Optional[TrackCandidate]:
        """Convert a Spotify track object to a TrackCandidate."""
        track_id = spotify_track.get('id')
        uri = spotify_track.get('uri') or (f"spotify:track:{track_id}" if track_id else None)
        if not uri:
            return None

        artists = spotify_track.get('artists') or []
        first_artist = artists[0] if artists else None
        artist_name = (first_artist or {}).get('name') or ''

        return TrackCandidate(
            id=track_id or '',
            name=spotify_track.get('name', ''),
            artist=artist_name,
            uri=uri,
            popularity=spotify_track.get('popularity') or 0,
            source_query=query
        )

    def search(self, access_token: str, query: str, limit: int = 1) -> List[TrackCandidate]:
        """Search tracks.

        Args:
            access_token: Current Spotify access token
            query: Free-text search query
            limit: Maximum number of results

        Returns:
            Candidates in Spotify's relevance order, empty when nothing matched
        """
        logger.debug(f"Searching: {query} (market={self._market}, limit={limit})")
        try:
            results = self._client(access_token).search(query, limit=limit, type='track', market=self._market)
        except (SpotifyException, requests.exceptions.RequestException) as e:
            raise self._translate_error(e, "search") from e

        items = ((results or {}).get('tracks') or {}).get('items') or []
        candidates = []
        for item in items:
            if not item:
                continue
            candidate = self._spotify_track_to_candidate(item, query)
            if candidate:
                candidates.append(candidate)
        return candidates

    def create_playlist(self, access_token: str, name: str, description: str,
                        public: bool = True) -> CreatedPlaylist:
        """Create an empty playlist owned by the current user."""
        logger.info(f"Creating playlist: {name}")
        try:
            client = self._client(access_token)
            user_id = client.current_user()['id']
            result = client.user_playlist_create(
                user_id,
                name,
                public=public,
                description=description
            )
        except (SpotifyException, requests.exceptions.RequestException) as e:
            raise self._translate_error(e, "create playlist") from e
        except (KeyError, TypeError) as e:
            logger.error(f"Spotify returned a malformed user profile: {e!r}")
            raise UpstreamError(None, "Malformed user profile response") from e

        if not isinstance(result, dict) or not result.get('id'):
            logger.error(f"Spotify returned a malformed playlist: {result!r}")
            raise UpstreamError(None, "Failed to create playlist")

        return CreatedPlaylist(
            id=result['id'],
            name=result.get('name') or name,
            url=(result.get('external_urls') or {}).get('spotify', ''),
            track_count=0
        )

    def add_tracks(self, playlist_id: str, access_token: str, track_uris: List[str]) -> None:
        """Add one batch of tracks to a playlist.

        Args:
            playlist_id: Target playlist ID
            access_token: Current Spotify access token
            track_uris: At most 100 track URIs
        """
        if not track_uris:
            return
        if len(track_uris) > MAX_TRACKS_PER_REQUEST:
            raise ValueError(f"Spotify accepts at most {MAX_TRACKS_PER_REQUEST} tracks per request")

        try:
            result = self._client(access_token).playlist_add_items(playlist_id, track_uris)
        except (SpotifyException, requests.exceptions.RequestException) as e:
            raise self._translate_error(e, "add tracks") from e

        if not result or 'snapshot_id' not in result:
            raise UpstreamError(None, "Failed to add tracks")


class SpotifyTokenExchange:
    """Exchanges a Spotify refresh token for a new access token."""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str,
                 scope: str = 'playlist-modify-public'):
        self._oauth = SpotifyOAuth(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scope=scope,
            cache_handler=MemoryCacheHandler()
        )
        self.last_token_info: Optional[Dict[str, Any]] = None

    def refresh(self, refresh_token: str) -> str:
        try:
            token_info = self._oauth.refresh_access_token(refresh_token)
        except (SpotifyOauthError, requests.exceptions.RequestException) as e:
            raise UpstreamError(None, f"Failed to refresh token: {e}") from e

        if not token_info or 'access_token' not in token_info:
            raise UpstreamError(None, "Failed to refresh token: invalid response")

        self.last_token_info = token_info
        return token_info['access_token']
