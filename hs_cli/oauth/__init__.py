"""OAuth 2.0 authentication for hs.

This package implements the HubSpot Authorization Code flow with a
fixed localhost redirect, plus refresh-token renewal of stored
credentials.

Main Components:
    OAuthFlow: Authorization code flow orchestration
    CredentialManager: Expiry checks and transparent refresh
    CallbackListener: Single-shot localhost redirect listener
    OAuthCredentials: Token data structure

Quick Start:
    from hs_cli.oauth import CredentialManager, OAuthFlow

    credentials = await OAuthFlow(app_config, on_status=print).run()
    store.save_oauth_login(credentials, app_config)

    # Later, before a CRM request
    credentials = await CredentialManager(store).get_valid_credentials()
"""

from .browser import BrowserLaunchError, BrowserLauncher, get_browser_launcher
from .callback import (
    AuthorizationResult,
    CallbackBindError,
    CallbackError,
    CallbackListener,
    CallbackStateMismatchError,
    CallbackTimeoutError,
    CallbackValidationError,
    ListenerState,
    ProviderDeniedError,
)
from .constants import CALLBACK_URL, DEFAULT_SCOPES, REFRESH_BUFFER_MS
from .exchange import TokenExchangeError, exchange_code_for_tokens, refresh_access_token
from .flow import OAuthFlow, build_authorization_url
from .manager import (
    AuthStatus,
    CredentialManager,
    ReauthenticationRequiredError,
    format_time_remaining,
    is_expired,
    time_until_expiry,
)
from .state import PendingAuthorization, generate_state
from .tokens import OAuthAppConfig, OAuthCredentials

__all__ = [
    # Flow
    "OAuthFlow",
    "build_authorization_url",
    "generate_state",
    "PendingAuthorization",
    # Lifecycle
    "CredentialManager",
    "AuthStatus",
    "ReauthenticationRequiredError",
    "is_expired",
    "time_until_expiry",
    "format_time_remaining",
    # Token endpoint
    "exchange_code_for_tokens",
    "refresh_access_token",
    "TokenExchangeError",
    # Tokens
    "OAuthCredentials",
    "OAuthAppConfig",
    # Callback
    "CallbackListener",
    "AuthorizationResult",
    "ListenerState",
    "CallbackError",
    "CallbackBindError",
    "CallbackTimeoutError",
    "CallbackValidationError",
    "CallbackStateMismatchError",
    "ProviderDeniedError",
    # Browser
    "BrowserLauncher",
    "BrowserLaunchError",
    "get_browser_launcher",
    # Constants
    "CALLBACK_URL",
    "DEFAULT_SCOPES",
    "REFRESH_BUFFER_MS",
]
