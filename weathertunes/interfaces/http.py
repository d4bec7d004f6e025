import os
import logging
import threading
from typing import Any, Dict, Optional, Tuple
from datetime import datetime

from flask import Flask, request, jsonify

from weathertunes.application.credentials import CredentialRefresher
from weathertunes.application.pipeline import AssemblyPipeline
from weathertunes.crosscutting.config import ConfigError, SecretManager, get_secret_manager
from weathertunes.domain.entities import AssemblySession, CredentialState, MoodContext, SongHint
from weathertunes.domain.errors import (
    EmptyResult, SessionExpired, UpstreamError, ValidationError
)
from weathertunes.domain.ports import MusicService
from weathertunes.infrastructure.providers.spotify import SpotifyProvider, SpotifyTokenExchange


def parse_session(payload: Dict[str, Any]) -> AssemblySession:
    """Build an assembly session from a JSON request body."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    mood_data = payload.get('mood') or {}
    if not isinstance(mood_data, dict) or not mood_data.get('type'):
        raise ValidationError("mood.type is required")

    hints = []
    for item in payload.get('hints') or payload.get('songs') or []:
        if isinstance(item, dict) and item.get('artist') and item.get('title'):
            hints.append(SongHint(artist=str(item['artist']), title=str(item['title'])))

    language = payload.get('language') or 'english'
    return AssemblySession(
        hints=hints,
        mood=MoodContext(
            type=mood_data['type'],
            genres=tuple(mood_data.get('genres') or ()),
            suggestion=mood_data.get('suggestion', '')
        ),
        language=language,
        language_name=payload.get('languageName') or language.capitalize(),
        location_name=payload.get('location', ''),
        condition=payload.get('condition', '')
    )


class HTTPServer:
    """HTTP server exposing playlist assembly and health checks."""

    def __init__(self, host: str = 'localhost', port: int = 3000, debug: bool = False,
                 secret_manager: Optional[SecretManager] = None,
                 service: Optional[MusicService] = None,
                 refresher: Optional[CredentialRefresher] = None):
        """Initialize HTTP server.

        Args:
            host: Bind address
            port: Bind port
            debug: Flask debug mode
            secret_manager: Token store; the global one when omitted
            service: Music service; Spotify when omitted
            refresher: Shared credential refresher; built from stored tokens when omitted
        """
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)

        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self.secret_manager = secret_manager or get_secret_manager()
        self.service = service or SpotifyProvider()
        self._refresher = refresher
        self._refresher_lock = threading.Lock()

        self._setup_routes()

    def _get_refresher(self) -> CredentialRefresher:
        """Process-wide refresher, created on first use from stored tokens.

        While logged out, every call re-reads the token store so a new login
        takes effect without a restart.
        """
        with self._refresher_lock:
            if self._refresher is not None and not self._refresher.access_token:
                tokens = self.secret_manager.get_spotify_tokens()
                if tokens.get('access_token'):
                    self.logger.info("Picked up stored Spotify credentials after logout")
                    state = self._refresher.state
                    state.access_token = tokens['access_token']
                    state.refresh_token = tokens.get('refresh_token')
                    state.expired = False
            if self._refresher is None:
                tokens = self.secret_manager.get_spotify_tokens()
                client_config = self.secret_manager.get_spotify_client_config()
                exchange = SpotifyTokenExchange(
                    client_id=client_config['client_id'],
                    client_secret=client_config['client_secret'],
                    redirect_uri=client_config['redirect_uri'],
                    scope=self.secret_manager.get_spotify_scope_string()
                )
                self._refresher = CredentialRefresher(
                    CredentialState(
                        access_token=tokens.get('access_token'),
                        refresh_token=tokens.get('refresh_token')
                    ),
                    exchange,
                    on_refresh=lambda s: self.secret_manager.save_spotify_tokens(s.access_token, s.refresh_token)
                )
            return self._refresher

    def _logout(self) -> None:
        """Invalidate credentials in memory and on disk.

        The refresher is dropped so the next request rebuilds it from the
        token store and picks up credentials saved by a new login.
        """
        with self._refresher_lock:
            if self._refresher is not None:
                self._refresher.state.clear()
            self._refresher = None
        self.secret_manager.clear_spotify_tokens()

    def _error(self, status: int, message: str, **extra) -> Tuple[Any, int]:
        return jsonify({'error': message, **extra}), status

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'WeatherTunes HTTP Interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'playlists': '/playlists',
                    'logout': '/logout'
                }
            }), 200

        @self.app.route('/playlists', methods=['POST'])
        def create_playlist():
            """Assemble and publish a playlist for the posted session."""
            try:
                session = parse_session(request.get_json(silent=True))
                refresher = self._get_refresher()
            except ValidationError as e:
                return self._error(400, str(e))
            except ConfigError as e:
                self.logger.error(f"Server configuration error: {e}")
                return self._error(500, 'Server is not configured for Spotify')

            pipeline = AssemblyPipeline(service=self.service, refresher=refresher)

            try:
                playlist = pipeline.assemble(session)
            except ValidationError as e:
                return self._error(400, str(e))
            except SessionExpired as e:
                self._logout()
                return self._error(401, str(e), logout=True)
            except EmptyResult as e:
                return self._error(404, str(e))
            except UpstreamError as e:
                return self._error(502, e.message, upstream_status=e.status)

            return jsonify({
                'success': True,
                'playlist': {
                    'id': playlist.id,
                    'name': playlist.name,
                    'url': playlist.url,
                    'tracks': playlist.track_count
                }
            }), 200

        @self.app.route('/logout', methods=['POST'])
        def logout():
            """Forget stored credentials."""
            self._logout()
            return jsonify({'status': 'logged_out'}), 200

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting WeatherTunes HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug
        )


def create_app(**kwargs) -> Flask:
    """Create Flask app for testing."""
    server = HTTPServer(**kwargs)
    return server.app


if __name__ == '__main__':
    server = HTTPServer()
    server.run()
