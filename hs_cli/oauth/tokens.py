"""OAuth credential data structures.

This module provides the OAuthCredentials dataclass for the tokens
returned by HubSpot, and OAuthAppConfig for the app's client id and
secret. Both serialize to the camelCase records kept in the config file.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class OAuthCredentials:
    """OAuth token set issued by the token endpoint.

    Attributes:
        access_token: Bearer token for CRM requests
        refresh_token: Token used to obtain a new access token
        expires_at: When the access token expires (epoch milliseconds)
        token_type: Token type reported by the provider (typically "bearer")
        scopes: Scopes requested for this token, in request order
    """

    access_token: str
    refresh_token: str
    expires_at: int
    token_type: str = "bearer"
    scopes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted record shape."""
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at,
            "tokenType": self.token_type,
            "scopes": list(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OAuthCredentials":
        """Deserialize from a persisted record.

        Raises:
            KeyError: If a required field is missing
            ValueError: If expiresAt is not a number
        """
        return cls(
            access_token=data["accessToken"],
            refresh_token=data["refreshToken"],
            expires_at=int(data["expiresAt"]),
            token_type=data.get("tokenType", "bearer"),
            scopes=list(data.get("scopes", [])),
        )

    @classmethod
    def from_token_response(
        cls,
        response: dict[str, Any],
        scopes: list[str],
        issued_at_ms: int | None = None,
        previous_refresh_token: str | None = None,
    ) -> "OAuthCredentials":
        """Create credentials from a token endpoint response.

        HubSpot does not echo scopes back, so the requested list is
        attached. If the response carries no refresh_token (possible on
        a refresh grant), the previous one is kept.

        Args:
            response: JSON body from the token endpoint
            scopes: The scopes that were requested
            issued_at_ms: Issue time, defaults to now
            previous_refresh_token: Refresh token to keep if none is returned

        Returns:
            OAuthCredentials instance

        Raises:
            KeyError: If access_token or expires_in is missing
        """
        issued = issued_at_ms if issued_at_ms is not None else now_ms()
        expires_at = issued + int(response["expires_in"]) * 1000

        refresh_token = response.get("refresh_token") or previous_refresh_token
        if not refresh_token:
            raise KeyError("refresh_token")
        if not response.get("refresh_token"):
            logger.debug("Token response had no refresh_token, keeping the previous one")

        return cls(
            access_token=response["access_token"],
            refresh_token=refresh_token,
            expires_at=expires_at,
            token_type=response.get("token_type", "bearer"),
            scopes=list(scopes),
        )

    def get_auth_header(self) -> str:
        """Get the Authorization header value for this token."""
        return f"Bearer {self.access_token}"


@dataclass(frozen=True)
class OAuthAppConfig:
    """Client id and secret of the HubSpot app used for OAuth."""

    client_id: str
    client_secret: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted record shape."""
        return {"clientId": self.client_id, "clientSecret": self.client_secret}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OAuthAppConfig":
        """Deserialize from a persisted record."""
        return cls(client_id=data["clientId"], client_secret=data["clientSecret"])

    def __repr__(self) -> str:
        return f"OAuthAppConfig(client_id={self.client_id!r}, client_secret='***')"
