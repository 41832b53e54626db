"""Tests for the persisted config store."""

import json
import os
import stat
import sys
from pathlib import Path

import pytest

from hs_cli.config import (
    AuthMethod,
    ConfigStore,
    ConfigurationError,
    find_env_file,
    get_config_dir,
    load_env_file,
    resolve_oauth_app_config,
)
from hs_cli.oauth.tokens import OAuthAppConfig, OAuthCredentials


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestGetConfigDir:
    """Tests for config directory resolution."""

    def test_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HS_CONFIG_DIR", str(tmp_path / "custom"))
        assert get_config_dir() == tmp_path / "custom"

    def test_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("HS_CONFIG_DIR", raising=False)
        assert get_config_dir() == Path.home() / ".config" / "hs"


class TestConfigStore:
    """Tests for ConfigStore reads and writes."""

    def test_empty_when_missing(self, store: ConfigStore) -> None:
        """Test that a missing file yields an empty config."""
        assert store.load() == {}
        assert store.get_access_token() is None
        assert not store.is_configured()
        assert store.get_auth_method() is AuthMethod.TOKEN

    def test_save_merges_existing_keys(self, store: ConfigStore) -> None:
        """Test read-merge-write keeps unrelated keys."""
        store.set_access_token("pat-na1-abc")
        store.set_portal_id("12345")

        data = json.loads(store.path.read_text())
        assert data == {"accessToken": "pat-na1-abc", "portalId": "12345"}

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_and_directory_permissions(self, store: ConfigStore) -> None:
        """Test owner-only permissions on the config file and directory."""
        store.set_access_token("pat-na1-abc")

        assert stat.S_IMODE(os.stat(store.path).st_mode) == 0o600
        assert stat.S_IMODE(os.stat(store.config_dir).st_mode) == 0o700

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_existing_file_permissions_tightened(self, store: ConfigStore) -> None:
        """Test that a pre-existing world-readable file becomes 0600."""
        store.config_dir.mkdir(parents=True)
        store.path.write_text("{}")
        store.path.chmod(0o644)

        store.set_access_token("pat-na1-abc")

        assert stat.S_IMODE(os.stat(store.path).st_mode) == 0o600

    def test_invalid_json_treated_as_empty(self, store: ConfigStore) -> None:
        """Test that a corrupt file does not crash reads."""
        store.config_dir.mkdir(parents=True)
        store.path.write_text("{not json")

        assert store.get_access_token() is None
        assert store.load() == {}

    def test_non_object_json_treated_as_empty(self, store: ConfigStore) -> None:
        store.config_dir.mkdir(parents=True)
        store.path.write_text("[1, 2, 3]")

        assert store.get_access_token() is None

    def test_cache_serves_reads_within_ttl(self, config_dir: Path) -> None:
        """Test that outside edits are seen only after the TTL."""
        clock = FakeClock()
        store = ConfigStore(config_dir=config_dir, clock=clock)
        store.set_access_token("first")
        assert store.get_access_token() == "first"

        # Edit behind the store's back
        store.path.write_text(json.dumps({"accessToken": "second"}))
        clock.now += 0.5
        assert store.get_access_token() == "first"

        clock.now += 0.6
        assert store.get_access_token() == "second"

    def test_write_invalidates_cache(self, config_dir: Path) -> None:
        """Test that a write is visible immediately."""
        clock = FakeClock()
        store = ConfigStore(config_dir=config_dir, clock=clock)
        store.set_access_token("first")
        assert store.get_access_token() == "first"

        store.set_access_token("second")
        assert store.get_access_token() == "second"

    def test_unknown_auth_method_falls_back_to_token(self, store: ConfigStore) -> None:
        store.save({"authMethod": "magic"})
        assert store.get_auth_method() is AuthMethod.TOKEN


class TestOAuthPersistence:
    """Tests for OAuth records in the config file."""

    def test_credentials_round_trip_millisecond_precision(
        self, store: ConfigStore, valid_credentials: OAuthCredentials
    ) -> None:
        """Test that expiresAt is stored and read back exactly."""
        valid_credentials.expires_at = 1767225600123
        store.set_oauth_credentials(valid_credentials)

        fresh = ConfigStore(config_dir=store.config_dir)
        restored = fresh.get_oauth_credentials()

        assert restored == valid_credentials
        assert json.loads(store.path.read_text())["oauth"]["expiresAt"] == 1767225600123

    def test_save_oauth_login_single_record(
        self,
        store: ConfigStore,
        app_config: OAuthAppConfig,
        valid_credentials: OAuthCredentials,
    ) -> None:
        """Test that a login persists credentials, app config and method together."""
        store.set_access_token("pat-na1-keep")
        store.save_oauth_login(valid_credentials, app_config)

        data = json.loads(store.path.read_text())
        assert data["authMethod"] == "oauth"
        assert data["oauthApp"] == {"clientId": "test-client-id", "clientSecret": "test-client-secret"}
        assert data["oauth"]["accessToken"] == "access-123"
        assert data["accessToken"] == "pat-na1-keep"
        assert store.is_oauth_configured()
        assert store.get_oauth_app_config() == app_config

    def test_invalid_credentials_record(self, store: ConfigStore) -> None:
        """Test that a damaged oauth record reads as not configured."""
        store.save({"oauth": {"accessToken": "a"}})
        assert store.get_oauth_credentials() is None
        assert not store.is_oauth_configured()

    def test_logout_keeps_private_token(
        self,
        store: ConfigStore,
        app_config: OAuthAppConfig,
        valid_credentials: OAuthCredentials,
    ) -> None:
        """Test that logout reverts to the private app token."""
        store.set_access_token("pat-na1-keep")
        store.save_oauth_login(valid_credentials, app_config)

        store.clear_oauth_credentials()

        data = json.loads(store.path.read_text())
        assert "oauth" not in data
        assert data["oauthApp"] == app_config.to_dict()
        assert data["accessToken"] == "pat-na1-keep"
        assert data["authMethod"] == "token"

    def test_logout_without_token_removes_method(
        self,
        store: ConfigStore,
        app_config: OAuthAppConfig,
        valid_credentials: OAuthCredentials,
    ) -> None:
        store.save_oauth_login(valid_credentials, app_config)

        store.clear_oauth_credentials(forget_app=True)

        data = json.loads(store.path.read_text())
        assert data == {}


class TestResolveOAuthAppConfig:
    """Tests for client id/secret precedence."""

    def test_flags_win(self, store: ConfigStore, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HUBSPOT_CLIENT_ID", "env-id")
        monkeypatch.setenv("HUBSPOT_CLIENT_SECRET", "env-secret")

        config = resolve_oauth_app_config(store, "flag-id", "flag-secret")

        assert config == OAuthAppConfig("flag-id", "flag-secret")

    def test_env_over_saved(
        self, store: ConfigStore, monkeypatch: pytest.MonkeyPatch, app_config: OAuthAppConfig
    ) -> None:
        store.set_oauth_app_config(app_config)
        monkeypatch.setenv("HUBSPOT_CLIENT_ID", "env-id")

        config = resolve_oauth_app_config(store)

        # Each field resolves on its own
        assert config == OAuthAppConfig("env-id", "test-client-secret")

    def test_saved_config(self, store: ConfigStore, app_config: OAuthAppConfig) -> None:
        store.set_oauth_app_config(app_config)
        assert resolve_oauth_app_config(store) == app_config

    def test_missing(self, store: ConfigStore) -> None:
        with pytest.raises(ConfigurationError, match="client id and client secret"):
            resolve_oauth_app_config(store)

    def test_missing_secret_only(self, store: ConfigStore) -> None:
        with pytest.raises(ConfigurationError, match="client secret not configured"):
            resolve_oauth_app_config(store, client_id="flag-id")


class TestEnvFile:
    """Tests for .env discovery and loading."""

    def test_explicit_path(self, tmp_path: Path) -> None:
        env = tmp_path / "custom.env"
        env.write_text("X=1\n")
        assert find_env_file(env) == env
        assert find_env_file(tmp_path / "missing.env") is None

    def test_project_env_first(self, config_dir: Path, tmp_path: Path) -> None:
        """Test that ./.env wins over the config directory copy."""
        config_dir.mkdir(parents=True)
        (config_dir / ".env").write_text("X=1\n")
        (tmp_path / ".env").write_text("X=2\n")

        assert find_env_file() == Path(".env")

    def test_config_dir_env(self, config_dir: Path) -> None:
        config_dir.mkdir(parents=True)
        (config_dir / ".env").write_text("X=1\n")

        assert find_env_file() == config_dir / ".env"

    def test_load_does_not_override(
        self, config_dir: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that already-set variables win over the file."""
        (tmp_path / ".env").write_text("HUBSPOT_CLIENT_ID=from-file\nHUBSPOT_CLIENT_SECRET=file-secret\n")
        monkeypatch.setenv("HUBSPOT_CLIENT_ID", "from-env")

        assert load_env_file() == Path(".env")
        assert os.environ["HUBSPOT_CLIENT_ID"] == "from-env"
        assert os.environ["HUBSPOT_CLIENT_SECRET"] == "file-secret"
