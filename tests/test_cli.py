"""Tests for CLI commands."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from hs_cli import __version__
from hs_cli.cli import main
from hs_cli.client import CRMRequestError, PortalInfo
from hs_cli.config import ConfigStore
from hs_cli.oauth.manager import ReauthenticationRequiredError

PORTAL = PortalInfo(portal_id=12345, time_zone="US/Eastern", currency="USD")


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


def mock_client(info: PortalInfo | None = None, error: Exception | None = None) -> MagicMock:
    """Patchable HubSpotClient class used as an async context manager."""
    client_cls = MagicMock()
    instance = MagicMock()
    instance.get_portal_info = AsyncMock(return_value=info, side_effect=error)
    client_cls.return_value.__aenter__ = AsyncMock(return_value=instance)
    client_cls.return_value.__aexit__ = AsyncMock(return_value=None)
    return client_cls


class TestMainCommand:
    """Tests for the main command group."""

    def test_version(self, runner: CliRunner):
        """Test --version flag."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help(self, runner: CliRunner):
        """Test --help flag."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "auth" in result.output
        assert "check" in result.output
        assert "whoami" in result.output

    def test_auth_help_lists_subcommands(self, runner: CliRunner):
        result = runner.invoke(main, ["auth", "--help"])
        assert result.exit_code == 0
        for name in ("login", "logout", "status"):
            assert name in result.output

    def test_env_file_must_exist(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, ["--env-file", str(tmp_path / "missing.env"), "auth", "status"])
        assert result.exit_code == 2


class TestCheckCommand:
    """Tests for the check command."""

    def test_not_configured(self, runner: CliRunner, config_dir: Path):
        """Test check with no credentials at all."""
        result = runner.invoke(main, ["check"])

        assert result.exit_code == 1
        assert "Not configured" in result.output

    def test_success(self, runner: CliRunner, store: ConfigStore):
        store.set_access_token("pat-na1-abc")

        with patch("hs_cli.cli.HubSpotClient", mock_client(PORTAL)):
            result = runner.invoke(main, ["check"])

        assert result.exit_code == 0, result.output
        assert "Connection successful!" in result.output
        assert "12345" in result.output
        assert "US/Eastern" in result.output

    def test_json(self, runner: CliRunner, store: ConfigStore):
        store.set_access_token("pat-na1-abc")

        with patch("hs_cli.cli.HubSpotClient", mock_client(PORTAL)):
            result = runner.invoke(main, ["--json", "check"])

        assert result.exit_code == 0
        assert json.loads(result.output)["data"] == {
            "connected": True,
            "portalId": 12345,
            "timeZone": "US/Eastern",
            "currency": "USD",
        }

    def test_refresh_failure(self, runner: CliRunner, config_dir: Path):
        """Test that a failed OAuth refresh asks for a new login."""
        error = ReauthenticationRequiredError(
            "OAuth token refresh failed: invalid_grant. Run 'hs auth login' to sign in again."
        )

        with patch("hs_cli.cli.HubSpotClient", mock_client(error=error)):
            result = runner.invoke(main, ["check"])

        assert result.exit_code == 1
        assert "invalid_grant" in result.output
        assert "hs auth login" in result.output

    def test_api_error(self, runner: CliRunner, config_dir: Path):
        error = CRMRequestError("Invalid or expired access token. Run 'hs auth' to reconfigure.", 401)

        with patch("hs_cli.cli.HubSpotClient", mock_client(error=error)):
            result = runner.invoke(main, ["--json", "check"])

        assert result.exit_code == 1
        payload = json.loads(result.output)
        assert payload["success"] is False
        assert payload["error"]["type"] == "CRMRequestError"


class TestWhoamiCommand:
    """Tests for the whoami command."""

    def test_human(self, runner: CliRunner, store: ConfigStore):
        store.set_access_token("pat-na1-abc")

        with patch("hs_cli.cli.HubSpotClient", mock_client(PORTAL)):
            result = runner.invoke(main, ["whoami"])

        assert result.exit_code == 0
        assert "Portal ID:   12345" in result.output
        assert "Auth method: token" in result.output

    def test_json(self, runner: CliRunner, store: ConfigStore):
        store.set_access_token("pat-na1-abc")

        with patch("hs_cli.cli.HubSpotClient", mock_client(PORTAL)):
            result = runner.invoke(main, ["--json", "whoami"])

        assert result.exit_code == 0
        assert json.loads(result.output)["data"] == {
            "portalId": 12345,
            "timeZone": "US/Eastern",
            "currency": "USD",
            "authMethod": "token",
        }
