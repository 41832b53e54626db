"""Token endpoint client.

Performs the two grants HubSpot's token endpoint supports for this CLI:
authorization code -> tokens, and refresh token -> tokens.
"""

import logging
from typing import Any

import httpx

from .constants import CALLBACK_URL, DEFAULT_SCOPES, HTTP_TIMEOUT, HUBSPOT_TOKEN_URL
from .tokens import OAuthAppConfig, OAuthCredentials, now_ms

logger = logging.getLogger(__name__)


class TokenExchangeError(Exception):
    """Error during token exchange or refresh.

    Attributes:
        status_code: HTTP status from the token endpoint, if one was received
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _error_message(response: httpx.Response, default: str) -> str:
    """Extract a human-readable message from a token endpoint error body.

    Only the message fields are used; the raw body is never included
    since it may echo back secrets.
    """
    try:
        error_data = response.json()
    except ValueError:
        return default

    if not isinstance(error_data, dict):
        return default

    message = error_data.get("message") or error_data.get("error_description")
    if isinstance(message, str) and message:
        return message
    return default


async def _request_tokens(
    form: dict[str, str],
    scopes: list[str],
    failure_label: str,
    http_client: httpx.AsyncClient | None = None,
    previous_refresh_token: str | None = None,
) -> OAuthCredentials:
    """POST a grant to the token endpoint and build credentials.

    Args:
        form: Form fields of the grant
        scopes: Scopes to attach to the credentials
        failure_label: Prefix for the generic error message
        http_client: Optional HTTP client
        previous_refresh_token: Refresh token kept if none is returned

    Returns:
        OAuthCredentials with expires_at computed from expires_in

    Raises:
        TokenExchangeError: If the request fails or the response is unusable
    """
    http = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
    should_close = http_client is None

    try:
        issued_at = now_ms()
        response = await http.post(
            HUBSPOT_TOKEN_URL,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        if response.status_code != 200:
            raise TokenExchangeError(
                _error_message(response, f"{failure_label}: {response.status_code}"),
                status_code=response.status_code,
            )

        try:
            data: dict[str, Any] = response.json()
            return OAuthCredentials.from_token_response(
                data,
                scopes,
                issued_at_ms=issued_at,
                previous_refresh_token=previous_refresh_token,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TokenExchangeError(
                f"{failure_label}: malformed token response",
                status_code=response.status_code,
            ) from e

    except httpx.RequestError as e:
        raise TokenExchangeError(f"{failure_label}: network error: {e}") from e
    finally:
        if should_close:
            await http.aclose()


async def exchange_code_for_tokens(
    code: str,
    app_config: OAuthAppConfig,
    redirect_uri: str = CALLBACK_URL,
    scopes: list[str] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> OAuthCredentials:
    """Exchange an authorization code for tokens.

    Args:
        code: Authorization code from the callback
        app_config: Client id and secret
        redirect_uri: The redirect URI used in the authorization request
        scopes: The scopes that were requested
        http_client: Optional HTTP client

    Returns:
        OAuthCredentials for the new session

    Raises:
        TokenExchangeError: If the exchange fails
    """
    logger.debug("Exchanging authorization code for tokens")
    return await _request_tokens(
        {
            "grant_type": "authorization_code",
            "client_id": app_config.client_id,
            "client_secret": app_config.client_secret,
            "redirect_uri": redirect_uri,
            "code": code,
        },
        scopes if scopes is not None else DEFAULT_SCOPES,
        "Token exchange failed",
        http_client,
    )


async def refresh_access_token(
    refresh_token: str,
    app_config: OAuthAppConfig,
    scopes: list[str] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> OAuthCredentials:
    """Obtain a new access token with a refresh token.

    Args:
        refresh_token: The stored refresh token
        app_config: Client id and secret
        scopes: Scopes of the stored credentials
        http_client: Optional HTTP client

    Returns:
        Renewed OAuthCredentials. If the provider does not rotate the
        refresh token, the given one is carried over.

    Raises:
        TokenExchangeError: If the refresh fails
    """
    logger.debug("Refreshing access token")
    return await _request_tokens(
        {
            "grant_type": "refresh_token",
            "client_id": app_config.client_id,
            "client_secret": app_config.client_secret,
            "refresh_token": refresh_token,
        },
        scopes if scopes is not None else DEFAULT_SCOPES,
        "Token refresh failed",
        http_client,
        previous_refresh_token=refresh_token,
    )
