"""Shared fixtures and utilities for hs tests."""

import asyncio
import socket
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from hs_cli.config import ConfigStore
from hs_cli.oauth.tokens import OAuthAppConfig, OAuthCredentials, now_ms


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def app_config() -> OAuthAppConfig:
    """Create a sample OAuth app configuration."""
    return OAuthAppConfig(client_id="test-client-id", client_secret="test-client-secret")


@pytest.fixture
def valid_credentials() -> OAuthCredentials:
    """Create credentials that expire in one hour."""
    return OAuthCredentials(
        access_token="access-123",
        refresh_token="refresh-456",
        expires_at=now_ms() + 3600 * 1000,
        token_type="bearer",
        scopes=["crm.objects.contacts.read", "oauth"],
    )


@pytest.fixture
def expired_credentials() -> OAuthCredentials:
    """Create credentials that expired a minute ago."""
    return OAuthCredentials(
        access_token="old-access",
        refresh_token="old-refresh",
        expires_at=now_ms() - 60 * 1000,
        token_type="bearer",
        scopes=["crm.objects.contacts.read", "oauth"],
    )


def token_response(**overrides: Any) -> dict[str, Any]:
    """Build a token endpoint JSON body."""
    body: dict[str, Any] = {
        "access_token": "new-access",
        "refresh_token": "new-refresh",
        "expires_in": 1800,
        "token_type": "bearer",
    }
    body.update(overrides)
    return body


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HS_CONFIG_DIR at a temporary directory and clear OAuth env vars."""
    directory = tmp_path / "hs-config"
    monkeypatch.setenv("HS_CONFIG_DIR", str(directory))
    # setenv first so monkeypatch restores anything a .env file loads
    for name in ("HUBSPOT_CLIENT_ID", "HUBSPOT_CLIENT_SECRET"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    # Keep a stray ./.env in the working directory out of the tests
    monkeypatch.chdir(tmp_path)
    return directory


@pytest.fixture
def store(config_dir: Path) -> ConfigStore:
    """Create a ConfigStore in the temporary config directory."""
    return ConfigStore(config_dir=config_dir)


@pytest.fixture
def unused_port() -> int:
    """Find a free loopback port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# ============================================================================
# HTTP Helpers
# ============================================================================


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it handled."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


def mock_http_client(
    handler: Callable[[httpx.Request], httpx.Response],
) -> tuple[httpx.AsyncClient, RecordingTransport]:
    """AsyncClient backed by a RecordingTransport."""
    transport = RecordingTransport(handler)
    return httpx.AsyncClient(transport=transport), transport


async def send_http_request(
    port: int, target: str, method: str = "GET", host: str = "127.0.0.1"
) -> tuple[int, str]:
    """Send a raw HTTP request to the loopback listener.

    Returns:
        Tuple of (status code, response body)
    """
    reader, writer = await asyncio.open_connection(host, port)
    writer.write(
        f"{method} {target} HTTP/1.1\r\nHost: localhost:{port}\r\nConnection: close\r\n\r\n".encode()
    )
    await writer.drain()
    raw = await reader.read()
    writer.close()
    try:
        await writer.wait_closed()
    except (ConnectionError, OSError):
        pass

    head, _, body = raw.decode("utf-8", errors="replace").partition("\r\n\r\n")
    status = int(head.split(" ")[1])
    return status, body
