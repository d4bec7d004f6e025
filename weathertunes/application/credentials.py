import logging
import threading
from typing import Callable, Optional, TypeVar

from weathertunes.domain.entities import CredentialState
from weathertunes.domain.errors import CredentialExpired, SessionExpired, UpstreamError
from weathertunes.domain.ports import CredentialExchange


logger = logging.getLogger(__name__)

T = TypeVar('T')


class CredentialRefresher:
    """Owns the process-wide credential state and its one-shot refresh policy.

    Refreshes are serialized behind a lock. A caller presenting a token that
    another thread already replaced gets the current token back without a
    second exchange, so one refresh token is never consumed twice.
    """

    def __init__(self,
                 state: CredentialState,
                 exchange: CredentialExchange,
                 on_refresh: Optional[Callable[[CredentialState], None]] = None):
        """Initialize credential refresher.

        Args:
            state: Shared credential state, mutated in place
            exchange: Refresh-token exchange capability
            on_refresh: Called with the state after every successful refresh
        """
        self.state = state
        self.exchange = exchange
        self.on_refresh = on_refresh
        self.refresh_count = 0
        self._lock = threading.Lock()

    @property
    def access_token(self) -> Optional[str]:
        return self.state.access_token

    def refresh(self, stale_token: Optional[str] = None) -> str:
        """Replace the access token using the stored refresh token.

        Args:
            stale_token: Token that was rejected as expired

        Returns:
            The access token to use from now on

        Raises:
            SessionExpired: No refresh token, or the exchange was rejected
        """
        with self._lock:
            current = self.state.access_token
            if stale_token is not None and current and current != stale_token and not self.state.expired:
                logger.debug("Access token already refreshed by another caller")
                return current

            self.state.expired = True

            if not self.state.refresh_token:
                logger.error("Cannot refresh access token: no refresh token stored")
                raise SessionExpired()

            logger.info("Refreshing access token...")
            try:
                new_token = self.exchange.refresh(self.state.refresh_token)
            except UpstreamError as e:
                logger.error(f"Access token refresh rejected: {e}")
                raise SessionExpired() from e

            if not new_token:
                logger.error("Access token refresh returned no token")
                raise SessionExpired()

            self.state.access_token = new_token
            self.state.expired = False
            self.refresh_count += 1
            logger.info("Access token refreshed successfully")

        if self.on_refresh:
            self.on_refresh(self.state)
        return new_token

    def call_with_refresh(self, operation: Callable[[str], T]) -> T:
        """Run a single request, refreshing and retrying once on expiry.

        Args:
            operation: Callable receiving the access token to use

        Raises:
            SessionExpired: Refresh was impossible or rejected
            UpstreamError: The retried request failed, including a second expiry
        """
        token = self.state.access_token
        if not token:
            raise SessionExpired("No access token available. Please log in.")

        try:
            return operation(token)
        except CredentialExpired:
            new_token = self.refresh(token)

        try:
            return operation(new_token)
        except CredentialExpired as e:
            raise UpstreamError(401, f"Access token rejected after refresh: {e}") from e
