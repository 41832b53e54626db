"""Credential lifecycle management.

This module decides when OAuth credentials are stale and renews them
transparently before CRM requests. It is the layer the CLI and the CRM
client use; the token endpoint itself lives in exchange.py.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from .constants import REFRESH_BUFFER_MS
from .exchange import TokenExchangeError, refresh_access_token
from .tokens import OAuthCredentials, now_ms

if TYPE_CHECKING:
    from ..config import ConfigStore

logger = logging.getLogger(__name__)


class ReauthenticationRequiredError(Exception):
    """Stored OAuth credentials cannot be used or renewed."""

    pass


def is_expired(credentials: OAuthCredentials | None, now: int | None = None) -> bool:
    """Check whether credentials must be renewed before use.

    Credentials count as expired from REFRESH_BUFFER_MS before their real
    expiry, leaving time to refresh before a request goes out.

    Args:
        credentials: Stored credentials, or None
        now: Current epoch milliseconds (defaults to the clock)

    Returns:
        True if there are no credentials or they are inside the buffer
    """
    if credentials is None:
        return True
    current = now if now is not None else now_ms()
    return current >= credentials.expires_at - REFRESH_BUFFER_MS


def time_until_expiry(credentials: OAuthCredentials | None, now: int | None = None) -> int:
    """Milliseconds until the access token expires, never negative."""
    if credentials is None:
        return 0
    current = now if now is not None else now_ms()
    return max(0, credentials.expires_at - current)


def format_time_remaining(ms: int) -> str:
    """Format a remaining duration for display.

    Examples:
        - "expired"
        - "45 seconds"
        - "12 minutes"
        - "5h 30m"
    """
    if ms <= 0:
        return "expired"

    seconds = ms // 1000
    minutes = seconds // 60
    hours = minutes // 60

    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"


@dataclass
class AuthStatus:
    """Authentication status, computed without network access.

    Attributes:
        method: "oauth", "token", or None when not authenticated
        authenticated: Whether any credentials are configured
        expired: Whether the OAuth token is inside the refresh buffer
        expires_at: OAuth expiry as epoch milliseconds
        expires_in_ms: Milliseconds until expiry (0 when expired)
        expires_in_human: Human-readable remaining validity
        scopes: Scopes of the OAuth token
        has_app_config: Whether a client id/secret is stored
        config_path: Path of the config file
    """

    method: str | None = None
    authenticated: bool = False
    expired: bool = False
    expires_at: int | None = None
    expires_in_ms: int | None = None
    expires_in_human: str | None = None
    scopes: list[str] = field(default_factory=list)
    has_app_config: bool = False
    config_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "method": self.method,
            "authenticated": self.authenticated,
            "expired": self.expired,
            "expires_at": self.expires_at,
            "expires_in_ms": self.expires_in_ms,
            "expires_in_human": self.expires_in_human,
            "scopes": list(self.scopes),
            "has_app_config": self.has_app_config,
            "config_path": self.config_path,
        }


class CredentialManager:
    """Keeps stored OAuth credentials usable.

    Usage:
        manager = CredentialManager(store)
        credentials = await manager.get_valid_credentials()
        headers = {"Authorization": credentials.get_auth_header()}
    """

    def __init__(
        self,
        store: "ConfigStore",
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the manager.

        Args:
            store: Config store holding credentials and app config
            http_client: Optional HTTP client for refresh requests
        """
        self.store = store
        self.http_client = http_client

    async def get_valid_credentials(self) -> OAuthCredentials:
        """Return credentials that are safe to use, refreshing if needed.

        Returns:
            Unexpired OAuthCredentials

        Raises:
            ReauthenticationRequiredError: If there are no credentials, no
                app config, or the refresh was rejected
        """
        credentials = self.store.get_oauth_credentials()
        if credentials is None:
            raise ReauthenticationRequiredError(
                "Not authenticated with OAuth. Run 'hs auth login' to sign in."
            )

        if not is_expired(credentials):
            logger.debug("OAuth token still valid, no refresh needed")
            return credentials

        logger.info("OAuth token expired or about to expire, refreshing")
        return await self.refresh(credentials)

    async def refresh(self, credentials: OAuthCredentials) -> OAuthCredentials:
        """Refresh credentials and persist the result.

        Stored credentials are only replaced after a successful refresh.

        Raises:
            ReauthenticationRequiredError: If the refresh cannot be performed
        """
        app_config = self.store.get_oauth_app_config()
        if app_config is None:
            raise ReauthenticationRequiredError(
                "OAuth app credentials are missing. Run 'hs auth login' to sign in again."
            )

        try:
            renewed = await refresh_access_token(
                credentials.refresh_token,
                app_config,
                scopes=credentials.scopes,
                http_client=self.http_client,
            )
        except TokenExchangeError as e:
            logger.warning(f"Token refresh failed: {e}")
            raise ReauthenticationRequiredError(
                f"OAuth token refresh failed: {e}. Run 'hs auth login' to sign in again."
            ) from e

        self.store.set_oauth_credentials(renewed)
        logger.info("OAuth token refreshed")
        return renewed

    def get_status(self) -> AuthStatus:
        """Summarize the configured authentication without network calls."""
        from ..config import AuthMethod

        config_path = str(self.store.path)
        credentials = self.store.get_oauth_credentials()

        if self.store.get_auth_method() is AuthMethod.OAUTH and credentials is not None:
            remaining = time_until_expiry(credentials)
            return AuthStatus(
                method=AuthMethod.OAUTH.value,
                authenticated=True,
                expired=is_expired(credentials),
                expires_at=credentials.expires_at,
                expires_in_ms=remaining,
                expires_in_human=format_time_remaining(remaining),
                scopes=list(credentials.scopes),
                has_app_config=self.store.get_oauth_app_config() is not None,
                config_path=config_path,
            )

        if self.store.is_configured():
            return AuthStatus(
                method=AuthMethod.TOKEN.value,
                authenticated=True,
                config_path=config_path,
            )

        return AuthStatus(config_path=config_path)
