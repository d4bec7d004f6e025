import os
import json
from typing import Dict, Any, Optional
from pathlib import Path

from dotenv import dotenv_values


class ConfigError(Exception):
    """Configuration error."""
    pass


class SecretManager:
    """Manages stored Spotify credentials and client configuration."""

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize secret manager."""
        self.config_dir = Path(config_dir) if config_dir else Path.home() / '.weathertunes'
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.tokens_file = self.config_dir / 'tokens.json'
        self.env_file = self.config_dir / '.env'

    def get_spotify_scopes(self) -> list:
        """Get minimal required Spotify scopes."""
        return [
            'playlist-modify-public',     # Create and populate public playlists
        ]

    def get_spotify_scope_string(self) -> str:
        """Get Spotify scopes as space-separated string."""
        return ' '.join(self.get_spotify_scopes())

    def load_tokens(self) -> Dict[str, Any]:
        """Load tokens from tokens.json file."""
        if not self.tokens_file.exists():
            return {}

        try:
            with open(self.tokens_file, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load tokens from {self.tokens_file}: {e}")

    def save_tokens(self, tokens: Dict[str, Any]) -> None:
        """Merge tokens into tokens.json file."""
        existing_tokens = self.load_tokens()
        existing_tokens.update(tokens)

        try:
            with open(self.tokens_file, 'w') as f:
                json.dump(existing_tokens, f, indent=2, ensure_ascii=False)
        except IOError as e:
            raise ConfigError(f"Failed to save tokens to {self.tokens_file}: {e}")

    def get_spotify_tokens(self) -> Dict[str, Optional[str]]:
        """Get Spotify tokens, environment first, then tokens.json."""
        stored = self.load_tokens().get('spotify') or {}
        return {
            'access_token': os.getenv('SPOTIFY_ACCESS_TOKEN') or stored.get('access_token'),
            'refresh_token': os.getenv('SPOTIFY_REFRESH_TOKEN') or stored.get('refresh_token'),
        }

    def save_spotify_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Save Spotify tokens, keeping the stored refresh token when none is given."""
        current = self.load_tokens().get('spotify') or {}
        self.save_tokens({
            'spotify': {
                'access_token': access_token,
                'refresh_token': refresh_token or current.get('refresh_token')
            }
        })

    def clear_spotify_tokens(self) -> None:
        """Forget stored Spotify credentials (logout)."""
        tokens = self.load_tokens()
        if 'spotify' not in tokens:
            return
        del tokens['spotify']
        if tokens:
            with open(self.tokens_file, 'w') as f:
                json.dump(tokens, f, indent=2, ensure_ascii=False)
        else:
            self.clear_tokens()

    def load_env_vars(self) -> Dict[str, str]:
        """Load variables from the config directory's .env file."""
        if not self.env_file.exists():
            return {}
        return {k: v for k, v in dotenv_values(self.env_file).items() if v is not None}

    def get_spotify_client_config(self) -> Dict[str, str]:
        """Get Spotify client configuration from environment or .env."""
        env_vars = self.load_env_vars()

        def lookup(key: str, default: Optional[str] = None) -> Optional[str]:
            return os.getenv(key) or env_vars.get(key) or default

        client_id = lookup('SPOTIFY_CLIENT_ID')
        client_secret = lookup('SPOTIFY_CLIENT_SECRET')
        redirect_uri = lookup('SPOTIFY_REDIRECT_URI', 'http://localhost:3000/callback')

        if not client_id:
            raise ConfigError("SPOTIFY_CLIENT_ID not found in environment")
        if not client_secret:
            raise ConfigError("SPOTIFY_CLIENT_SECRET not found in environment")

        return {
            'client_id': client_id,
            'client_secret': client_secret,
            'redirect_uri': redirect_uri
        }

    def validate_configuration(self) -> Dict[str, bool]:
        """Report which pieces of configuration are present."""
        env_vars = self.load_env_vars()
        tokens = self.get_spotify_tokens()

        return {
            'spotify_client_id': bool(os.getenv('SPOTIFY_CLIENT_ID') or env_vars.get('SPOTIFY_CLIENT_ID')),
            'spotify_client_secret': bool(os.getenv('SPOTIFY_CLIENT_SECRET') or env_vars.get('SPOTIFY_CLIENT_SECRET')),
            'spotify_access_token': bool(tokens.get('access_token')),
            'spotify_refresh_token': bool(tokens.get('refresh_token')),
        }

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        return {
            'config_dir': str(self.config_dir),
            'tokens_file': str(self.tokens_file),
            'env_file': str(self.env_file),
            'validation': self.validate_configuration(),
            'spotify_scopes': self.get_spotify_scopes(),
        }

    def clear_tokens(self) -> None:
        """Clear all stored tokens."""
        if self.tokens_file.exists():
            self.tokens_file.unlink()


# Global instance, created on first use
secret_manager: Optional[SecretManager] = None


def get_secret_manager() -> SecretManager:
    """Get global secret manager instance."""
    global secret_manager
    if secret_manager is None:
        secret_manager = SecretManager()
    return secret_manager


def setup_config(config_dir: Optional[str] = None) -> SecretManager:
    """Setup configuration with custom directory."""
    global secret_manager
    secret_manager = SecretManager(config_dir)
    return secret_manager
