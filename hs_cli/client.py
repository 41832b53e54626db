"""Authenticated HubSpot API client.

Picks the credential path from the configured auth method: a private
app token is sent as-is, OAuth credentials are checked for expiry and
refreshed before every request.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .config import AuthMethod, ConfigStore, ConfigurationError
from .oauth.manager import CredentialManager, ReauthenticationRequiredError

logger = logging.getLogger(__name__)

HUBSPOT_API_BASE = "https://api.hubapi.com"
DEFAULT_TIMEOUT = 30.0  # seconds


class CRMRequestError(Exception):
    """A HubSpot API request failed.

    Attributes:
        status_code: HTTP status, if a response was received
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class PortalInfo:
    """Account details of the authenticated HubSpot portal."""

    portal_id: int
    time_zone: str | None = None
    currency: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "portalId": self.portal_id,
            "timeZone": self.time_zone,
            "currency": self.currency,
        }


class HubSpotClient:
    """Async HubSpot API client with auth-method aware credentials.

    Usage:
        async with HubSpotClient(store) as client:
            info = await client.get_portal_info()
    """

    def __init__(
        self,
        store: ConfigStore,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the client.

        Args:
            store: Config store with the configured credentials
            http_client: Optional HTTP client (shared with token refresh)
        """
        self.store = store
        self._http = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        self._owns_http = http_client is None
        self.credentials = CredentialManager(store, http_client=self._http)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "HubSpotClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def get_auth_header(self) -> str:
        """Authorization header for the configured auth method.

        Raises:
            ConfigurationError: If no credentials are configured
            ReauthenticationRequiredError: If OAuth credentials cannot be renewed
        """
        if self.store.get_auth_method() is AuthMethod.OAUTH:
            credentials = await self.credentials.get_valid_credentials()
            return credentials.get_auth_header()

        token = self.store.get_access_token()
        if not token:
            raise ConfigurationError(
                "Not configured. Run 'hs auth' to set a private app token "
                "or 'hs auth login' to sign in with OAuth."
            )
        return f"Bearer {token}"

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Send an authenticated request and return the decoded JSON body.

        Raises:
            ReauthenticationRequiredError: OAuth token rejected or not renewable
            CRMRequestError: Any other failed request
        """
        headers = {"Authorization": await self.get_auth_header()}

        try:
            response = await self._http.request(
                method, f"{HUBSPOT_API_BASE}{path}", params=params, json=json, headers=headers
            )
        except httpx.RequestError as e:
            raise CRMRequestError(f"Network error calling HubSpot: {e}") from e

        if response.status_code == 401:
            if self.store.get_auth_method() is AuthMethod.OAUTH:
                raise ReauthenticationRequiredError(
                    "HubSpot rejected the OAuth token. Run 'hs auth login' to sign in again."
                )
            raise CRMRequestError(
                "Invalid or expired access token. Run 'hs auth' to reconfigure.",
                status_code=401,
            )

        if response.status_code >= 400:
            message = f"HubSpot API request failed: {response.status_code}"
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = f"{message} - {body['message']}"
            except ValueError:
                pass
            raise CRMRequestError(message, status_code=response.status_code)

        if not response.content:
            return None
        return response.json()

    async def get_portal_info(self) -> PortalInfo:
        """Fetch account details and remember the portal id."""
        data = await self.request("GET", "/account-info/v3/details")

        try:
            info = PortalInfo(
                portal_id=int(data["portalId"]),
                time_zone=data.get("timeZone"),
                currency=data.get("currency") or data.get("companyCurrency"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CRMRequestError("Unexpected account info response from HubSpot") from e

        self.store.set_portal_id(str(info.portal_id))
        return info
