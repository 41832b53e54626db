"""OAuth authorization code flow.

This module orchestrates one complete login attempt:
1. Generate a fresh CSRF state
2. Build the authorization URL
3. Bind the localhost callback listener
4. Open the browser (non-fatal on failure, URL always printed)
5. Wait for the callback with the authorization code
6. Exchange the code for tokens

Nothing is persisted here; the caller stores the returned credentials
only after the whole flow has succeeded.
"""

import logging
from typing import Callable
from urllib.parse import urlencode

import httpx

from .browser import BrowserLaunchError, BrowserLauncher, get_browser_launcher
from .callback import CallbackListener
from .constants import (
    CALLBACK_PATH,
    CALLBACK_PORT,
    CALLBACK_TIMEOUT,
    CALLBACK_URL,
    DEFAULT_SCOPES,
    HUBSPOT_AUTH_URL,
)
from .exchange import exchange_code_for_tokens
from .state import PendingAuthorization
from .tokens import OAuthAppConfig, OAuthCredentials

logger = logging.getLogger(__name__)


def build_authorization_url(
    client_id: str,
    state: str,
    scopes: list[str] | None = None,
    redirect_uri: str = CALLBACK_URL,
) -> str:
    """Build the HubSpot authorization URL for browser redirect.

    Args:
        client_id: The app's client ID
        state: State parameter for CSRF protection
        scopes: Scopes to request, in order (default DEFAULT_SCOPES)
        redirect_uri: The callback URI

    Returns:
        Complete authorization URL
    """
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes if scopes is not None else DEFAULT_SCOPES),
        "state": state,
    }
    return f"{HUBSPOT_AUTH_URL}?{urlencode(params)}"


def callback_url_for_port(port: int) -> str:
    """Redirect URI served by a listener on the given port."""
    return f"http://localhost:{port}{CALLBACK_PATH}"


class OAuthFlow:
    """Runs the authorization code flow end to end.

    Usage:
        flow = OAuthFlow(app_config, on_status=click.echo)
        credentials = await flow.run()
        store.save_oauth_login(credentials, app_config)
    """

    def __init__(
        self,
        app_config: OAuthAppConfig,
        scopes: list[str] | None = None,
        callback_port: int = CALLBACK_PORT,
        callback_timeout: float = CALLBACK_TIMEOUT,
        launcher: BrowserLauncher | None = None,
        on_status: Callable[[str], None] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize OAuth flow.

        Args:
            app_config: Client id and secret of the HubSpot app
            scopes: Scopes to request (default DEFAULT_SCOPES)
            callback_port: Port for the callback listener
            callback_timeout: Seconds to wait for the callback
            launcher: Browser launcher (default for the current platform)
            on_status: Optional callback for status messages
            http_client: Optional HTTP client for the token exchange
        """
        self.app_config = app_config
        self.scopes = list(scopes if scopes is not None else DEFAULT_SCOPES)
        self.callback_port = callback_port
        self.callback_timeout = callback_timeout
        self.launcher = launcher or get_browser_launcher()
        self.on_status = on_status or (lambda msg: None)
        self.http_client = http_client

    @property
    def redirect_uri(self) -> str:
        return callback_url_for_port(self.callback_port)

    def _emit_status(self, message: str) -> None:
        """Emit a status message."""
        logger.info(message)
        self.on_status(message)

    def _open_browser(self, auth_url: str) -> None:
        """Open the browser; failures only produce a message."""
        self._emit_status("Opening browser for HubSpot authorization...")
        try:
            self.launcher.launch(auth_url)
        except BrowserLaunchError as e:
            logger.warning(f"Browser launch failed: {e}")
            self._emit_status(f"Could not open browser: {e}")

        self._emit_status(
            f"If the browser did not open, visit this URL manually:\n{auth_url}"
        )

    async def run(self) -> OAuthCredentials:
        """Execute the complete OAuth flow.

        Returns:
            OAuthCredentials from the token exchange

        Raises:
            CallbackError: Bind failure, timeout, provider denial or
                invalid callback
            TokenExchangeError: If the code exchange fails
        """
        pending = PendingAuthorization.create(CALLBACK_PATH)
        auth_url = build_authorization_url(
            self.app_config.client_id,
            pending.state,
            self.scopes,
            redirect_uri=self.redirect_uri,
        )

        # The listener must be accepting connections before the browser opens
        async with CallbackListener(
            pending.state,
            port=self.callback_port,
            path=pending.expected_redirect_path,
            timeout=self.callback_timeout,
        ) as listener:
            self._open_browser(auth_url)
            self._emit_status("Waiting for authorization...")
            result = await listener.wait_for_callback()

        self._emit_status("Exchanging authorization code for tokens...")
        return await exchange_code_for_tokens(
            result.code,
            self.app_config,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
            http_client=self.http_client,
        )
