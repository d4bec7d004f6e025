import argparse
import json
import logging
import signal
import sys
import time
from typing import List, Optional

from dotenv import load_dotenv

from weathertunes.application.credentials import CredentialRefresher
from weathertunes.application.pipeline import AssemblyPipeline
from weathertunes.crosscutting.config import ConfigError, SecretManager, get_secret_manager
from weathertunes.crosscutting.logging import setup_logging
from weathertunes.domain.entities import AssemblySession, CredentialState, MoodContext, SongHint
from weathertunes.domain.errors import AssemblyError, SessionExpired
from weathertunes.infrastructure.providers.spotify import SpotifyProvider, SpotifyTokenExchange

EXIT_FAILURE = 1
EXIT_SESSION_EXPIRED = 2


def load_hints(path: str) -> List[SongHint]:
    """Read song hints from a JSON file.

    Accepts either a list of {"artist", "title"} objects or an object with
    a "songs" list in that shape.
    """
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get('songs', [])
    if not isinstance(data, list):
        raise ValueError(f"Hints file {path} must contain a list of songs")

    hints = []
    for item in data:
        if not isinstance(item, dict):
            continue
        artist = str(item.get('artist') or '').strip()
        title = str(item.get('title') or '').strip()
        if artist and title:
            hints.append(SongHint(artist=artist, title=title))
    return hints


class CLI:
    """Command Line Interface for WeatherTunes."""

    def __init__(self, secret_manager: Optional[SecretManager] = None):
        """Initialize CLI."""
        self.secret_manager = secret_manager
        self.parser = self._create_parser()
        self._start_time = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='weathertunes',
            description='Assemble a weather and mood playlist on Spotify'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        assemble_parser = subparsers.add_parser('assemble', help='Assemble and publish a playlist')
        assemble_parser.add_argument(
            '--hints',
            help='Path to a JSON file with suggested songs'
        )
        assemble_parser.add_argument(
            '--mood',
            required=True,
            help='Mood descriptor (e.g. cozy, upbeat)'
        )
        assemble_parser.add_argument(
            '--genres',
            nargs='*',
            default=[],
            help='Genres for supplemental search (first three are used)'
        )
        assemble_parser.add_argument(
            '--suggestion',
            default='',
            help='Mood suggestion text used in the playlist description'
        )
        assemble_parser.add_argument(
            '--language',
            default='english',
            help='Language key (default: english)'
        )
        assemble_parser.add_argument(
            '--language-name',
            default=None,
            help='Display name of the language (defaults to the capitalized key)'
        )
        assemble_parser.add_argument(
            '--location',
            required=True,
            help='Location name used in the playlist title'
        )
        assemble_parser.add_argument(
            '--condition',
            required=True,
            help='Weather condition used in the playlist title'
        )
        assemble_parser.add_argument(
            '--max-workers',
            type=int,
            default=30,
            help='Maximum concurrent hint searches (default: 30)'
        )
        assemble_parser.add_argument(
            '--metrics-path',
            default=None,
            help='Write session metrics as JSON to this file'
        )
        assemble_parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='INFO',
            help='Set logging level'
        )

        config_parser = subparsers.add_parser('config', help='Show configuration status without secrets')
        config_parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='WARNING',
            help='Set logging level'
        )

        logout_parser = subparsers.add_parser('logout', help='Forget stored Spotify credentials')
        logout_parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='INFO',
            help='Set logging level'
        )

        return parser

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            logger.warning(f"Received signal {signum}, shutting down...")
            self._cleanup_resources()
            sys.exit(130)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        """Log execution time on exit."""
        logger = logging.getLogger(__name__)
        if self._start_time:
            duration = time.time() - self._start_time
            logger.info(f"CLI execution time: {duration:.2f}s")

    def _secrets(self) -> SecretManager:
        if self.secret_manager is None:
            self.secret_manager = get_secret_manager()
        return self.secret_manager

    def _create_refresher(self) -> CredentialRefresher:
        """Build the credential refresher from stored tokens."""
        secrets = self._secrets()
        tokens = secrets.get_spotify_tokens()
        if not tokens.get('access_token'):
            raise ConfigError("No Spotify access token stored. Set SPOTIFY_ACCESS_TOKEN or log in first.")

        client_config = secrets.get_spotify_client_config()
        exchange = SpotifyTokenExchange(
            client_id=client_config['client_id'],
            client_secret=client_config['client_secret'],
            redirect_uri=client_config['redirect_uri'],
            scope=secrets.get_spotify_scope_string()
        )
        state = CredentialState(
            access_token=tokens['access_token'],
            refresh_token=tokens.get('refresh_token')
        )
        return CredentialRefresher(
            state,
            exchange,
            on_refresh=lambda s: secrets.save_spotify_tokens(s.access_token, s.refresh_token)
        )

    def _build_session(self, args: argparse.Namespace) -> AssemblySession:
        hints = load_hints(args.hints) if args.hints else []
        return AssemblySession(
            hints=hints,
            mood=MoodContext(type=args.mood, genres=tuple(args.genres or ()), suggestion=args.suggestion),
            language=args.language,
            language_name=args.language_name or args.language.capitalize(),
            location_name=args.location,
            condition=args.condition
        )

    def _assemble(self, args: argparse.Namespace) -> int:
        """Assemble and publish one playlist."""
        logger = logging.getLogger(__name__)

        try:
            session = self._build_session(args)
            refresher = self._create_refresher()
        except (ConfigError, ValueError, OSError) as e:
            logger.error(f"Cannot start assembly: {e}")
            return EXIT_FAILURE

        pipeline = AssemblyPipeline(
            service=SpotifyProvider(),
            refresher=refresher,
            max_workers=args.max_workers
        )

        try:
            playlist = pipeline.assemble(session)
        except SessionExpired as e:
            logger.error(f"{e} Stored credentials were cleared.")
            self._secrets().clear_spotify_tokens()
            return EXIT_SESSION_EXPIRED
        except AssemblyError as e:
            logger.error(f"Assembly failed: {e}")
            return EXIT_FAILURE
        finally:
            if args.metrics_path and pipeline.last_metrics:
                pipeline.last_metrics.save_to_file(args.metrics_path)

        print(f"Created playlist '{playlist.name}' with {playlist.track_count} tracks: {playlist.url}")
        return 0

    def _config(self, args: argparse.Namespace) -> int:
        """Print the configuration summary; fail when anything required is missing."""
        try:
            summary = self._secrets().get_config_summary()
        except ConfigError as e:
            logging.getLogger(__name__).error(f"Cannot read configuration: {e}")
            return EXIT_FAILURE
        print(json.dumps(summary, indent=2, ensure_ascii=False))

        missing = [name for name, present in summary['validation'].items()
                   if not present and name != 'spotify_refresh_token']
        if missing:
            logging.getLogger(__name__).warning(f"Missing configuration: {', '.join(missing)}")
            return EXIT_FAILURE
        return 0

    def _logout(self, args: argparse.Namespace) -> int:
        self._secrets().clear_spotify_tokens()
        logging.getLogger(__name__).info("Stored Spotify credentials cleared")
        return 0

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run the CLI and return the exit code."""
        self._start_time = time.time()
        args = self.parser.parse_args(argv)

        if not args.command:
            self.parser.print_help()
            return EXIT_FAILURE

        setup_logging(args.log_level)

        try:
            if args.command == 'assemble':
                return self._assemble(args)
            if args.command == 'config':
                return self._config(args)
            if args.command == 'logout':
                return self._logout(args)
            self.parser.print_help()
            return EXIT_FAILURE
        except KeyboardInterrupt:
            logging.getLogger(__name__).warning("Operation cancelled by user")
            return 130
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    load_dotenv()
    cli = CLI()
    cli._setup_signal_handlers()
    sys.exit(cli.run())


if __name__ == '__main__':
    main()
