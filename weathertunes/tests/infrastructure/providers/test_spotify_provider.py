from unittest.mock import Mock, patch

import pytest
import requests
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOauthError

from weathertunes.domain.errors import CredentialExpired, UpstreamError
from weathertunes.infrastructure.providers.spotify import SpotifyProvider, SpotifyTokenExchange


SPOTIFY_CLIENT = 'weathertunes.infrastructure.providers.spotify.spotipy.Spotify'


class TestSpotifyProvider:
    """Contract tests for Spotify provider adapter."""

    def setup_method(self):
        """Set up test fixtures."""
        self.patcher = patch(SPOTIFY_CLIENT)
        self.mock_spotify_class = self.patcher.start()
        self.mock_spotify = Mock()
        self.mock_spotify_class.return_value = self.mock_spotify
        self.provider = SpotifyProvider(market="DE")

    def teardown_method(self):
        self.patcher.stop()

    def test_search_maps_items_to_candidates(self):
        """Test that search results become candidates in relevance order."""
        self.mock_spotify.search.return_value = {
            'tracks': {
                'items': [
                    {'id': 'abc', 'uri': 'spotify:track:abc', 'name': 'Believer',
                     'artists': [{'name': 'Imagine Dragons'}], 'popularity': 85},
                    {'id': 'def', 'uri': 'spotify:track:def', 'name': 'Thunder',
                     'artists': [{'name': 'Imagine Dragons'}]},
                ]
            }
        }

        candidates = self.provider.search("token_1", "Imagine Dragons Believer", limit=2)

        assert [c.uri for c in candidates] == ['spotify:track:abc', 'spotify:track:def']
        assert candidates[0].artist == 'Imagine Dragons'
        assert candidates[0].popularity == 85
        assert candidates[1].popularity == 0
        assert candidates[0].source_query == "Imagine Dragons Believer"
        self.mock_spotify_class.assert_called_once_with(auth="token_1", requests_timeout=15)
        self.mock_spotify.search.assert_called_once_with(
            "Imagine Dragons Believer", limit=2, type='track', market="DE"
        )

    def test_search_without_matches_returns_empty_list(self):
        """Test that an empty search response is not an error."""
        self.mock_spotify.search.return_value = {'tracks': {'items': []}}

        assert self.provider.search("token_1", "nothing here") == []

    def test_search_builds_uri_from_id(self):
        """Test that items without uri fall back to the track id."""
        self.mock_spotify.search.return_value = {
            'tracks': {'items': [None, {'id': 'xyz', 'name': 'Song', 'artists': []}]}
        }

        candidates = self.provider.search("token_1", "song")

        assert [c.uri for c in candidates] == ['spotify:track:xyz']
        assert candidates[0].artist == ''

    def test_market_defaults_to_environment(self, monkeypatch):
        """Test that market comes from WEATHERTUNES_MARKET when not given."""
        monkeypatch.setenv('WEATHERTUNES_MARKET', 'IN')
        self.mock_spotify.search.return_value = {'tracks': {'items': []}}

        SpotifyProvider().search("token_1", "q")

        assert self.mock_spotify.search.call_args.kwargs['market'] == 'IN'

    def test_401_is_credential_expired(self):
        """Test that 401 responses map to CredentialExpired."""
        self.mock_spotify.search.side_effect = SpotifyException(401, -1, "The access token expired")

        with pytest.raises(CredentialExpired):
            self.provider.search("token_1", "q")

    def test_expired_message_is_credential_expired(self):
        """Test that the expiry message is recognized even without a 401."""
        self.mock_spotify.search.side_effect = SpotifyException(400, -1, "The access token expired")

        with pytest.raises(CredentialExpired):
            self.provider.search("token_1", "q")

    def test_other_api_errors_are_upstream_errors(self):
        """Test that non-credential API failures carry their status."""
        self.mock_spotify.search.side_effect = SpotifyException(503, -1, "Service unavailable")

        with pytest.raises(UpstreamError) as exc_info:
            self.provider.search("token_1", "q")

        assert exc_info.value.status == 503

    def test_network_errors_are_upstream_errors(self):
        """Test that transport failures map to UpstreamError without status."""
        self.mock_spotify.search.side_effect = requests.exceptions.ConnectionError("reset")

        with pytest.raises(UpstreamError) as exc_info:
            self.provider.search("token_1", "q")

        assert exc_info.value.status is None

    def test_create_playlist(self):
        """Test playlist creation for the current user."""
        self.mock_spotify.current_user.return_value = {'id': 'user_1'}
        self.mock_spotify.user_playlist_create.return_value = {
            'id': 'pl1',
            'name': 'WeatherTunes: Rain in Oslo (English)',
            'external_urls': {'spotify': 'https://open.spotify.com/playlist/pl1'}
        }

        playlist = self.provider.create_playlist(
            "token_1", "WeatherTunes: Rain in Oslo (English)", "desc"
        )

        assert playlist.id == 'pl1'
        assert playlist.url == 'https://open.spotify.com/playlist/pl1'
        self.mock_spotify.user_playlist_create.assert_called_once_with(
            'user_1', "WeatherTunes: Rain in Oslo (English)", public=True, description="desc"
        )

    def test_create_playlist_expired(self):
        """Test that expiry during creation maps to CredentialExpired."""
        self.mock_spotify.current_user.side_effect = SpotifyException(401, -1, "The access token expired")

        with pytest.raises(CredentialExpired):
            self.provider.create_playlist("token_1", "name", "desc")

    def test_create_playlist_without_id_is_upstream_error(self):
        """Test that a playlist response without an id is an upstream failure."""
        self.mock_spotify.current_user.return_value = {'id': 'user_1'}
        self.mock_spotify.user_playlist_create.return_value = {}

        with pytest.raises(UpstreamError):
            self.provider.create_playlist("token_1", "name", "desc")

    def test_create_playlist_malformed_user_is_upstream_error(self):
        """Test that a user profile without an id is an upstream failure."""
        self.mock_spotify.current_user.return_value = None

        with pytest.raises(UpstreamError):
            self.provider.create_playlist("token_1", "name", "desc")

        self.mock_spotify.user_playlist_create.assert_not_called()

    def test_search_tolerates_missing_artist_objects(self):
        """Test that a null artist entry yields an empty artist name."""
        self.mock_spotify.search.return_value = {
            'tracks': {'items': [{'id': 'abc', 'uri': 'spotify:track:abc', 'name': 'Song', 'artists': [None]}]}
        }

        candidates = self.provider.search("token_1", "Song")

        assert [(c.uri, c.artist) for c in candidates] == [('spotify:track:abc', '')]

    def test_add_tracks(self):
        """Test adding one batch of tracks."""
        self.mock_spotify.playlist_add_items.return_value = {'snapshot_id': 'snap'}
        uris = ['spotify:track:1', 'spotify:track:2']

        self.provider.add_tracks('pl1', "token_1", uris)

        self.mock_spotify.playlist_add_items.assert_called_once_with('pl1', uris)

    def test_add_tracks_rejects_oversized_batch(self):
        """Test that more than 100 uris are refused before any request."""
        with pytest.raises(ValueError):
            self.provider.add_tracks('pl1', "token_1", [f'spotify:track:{i}' for i in range(101)])

        self.mock_spotify.playlist_add_items.assert_not_called()

    def test_add_tracks_without_snapshot_fails(self):
        """Test that a response without snapshot id is an upstream failure."""
        self.mock_spotify.playlist_add_items.return_value = {}

        with pytest.raises(UpstreamError):
            self.provider.add_tracks('pl1', "token_1", ['spotify:track:1'])


class TestSpotifyTokenExchange:
    """Tests for refresh token exchange."""

    def setup_method(self):
        """Set up test fixtures."""
        self.patcher = patch('weathertunes.infrastructure.providers.spotify.SpotifyOAuth')
        self.mock_oauth_class = self.patcher.start()
        self.mock_oauth = Mock()
        self.mock_oauth_class.return_value = self.mock_oauth
        self.exchange = SpotifyTokenExchange("id", "secret", "http://localhost:3000/callback")

    def teardown_method(self):
        self.patcher.stop()

    def test_refresh_returns_new_access_token(self):
        """Test successful refresh."""
        self.mock_oauth.refresh_access_token.return_value = {
            'access_token': 'new_token', 'refresh_token': 'refresh_2'
        }

        assert self.exchange.refresh('refresh_1') == 'new_token'
        self.mock_oauth.refresh_access_token.assert_called_once_with('refresh_1')
        assert self.exchange.last_token_info['refresh_token'] == 'refresh_2'

    def test_oauth_rejection_is_upstream_error(self):
        """Test that a rejected refresh token maps to UpstreamError."""
        self.mock_oauth.refresh_access_token.side_effect = SpotifyOauthError("invalid_grant")

        with pytest.raises(UpstreamError):
            self.exchange.refresh('refresh_1')

    def test_malformed_response_is_upstream_error(self):
        """Test that a response without access token is rejected."""
        self.mock_oauth.refresh_access_token.return_value = {'token_type': 'Bearer'}

        with pytest.raises(UpstreamError):
            self.exchange.refresh('refresh_1')
