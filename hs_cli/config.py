"""Persisted configuration for hs.

Configuration lives in a single JSON object at ~/.config/hs/config.json
(overridable with HS_CONFIG_DIR). Writes are read-merge-write rewrites of
the whole file with owner-only permissions. There is no locking between
concurrent hs processes.

ConfigStore keeps a short-lived in-memory copy of the file so that one
command does not re-read it for every lookup. Every write invalidates
that copy.
"""

import enum
import json
import logging
import os
import stat
import time
from pathlib import Path
from typing import Any, Callable

from dotenv import load_dotenv

from .oauth.tokens import OAuthAppConfig, OAuthCredentials

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
ENV_FILE = ".env"

# Seconds a loaded config stays cached
CONFIG_CACHE_TTL = 1.0

# Persisted keys
ACCESS_TOKEN_KEY = "accessToken"
PORTAL_ID_KEY = "portalId"
AUTH_METHOD_KEY = "authMethod"
OAUTH_KEY = "oauth"
OAUTH_APP_KEY = "oauthApp"

CLIENT_ID_ENV = "HUBSPOT_CLIENT_ID"
CLIENT_SECRET_ENV = "HUBSPOT_CLIENT_SECRET"


class ConfigurationError(Exception):
    """Required configuration is missing or invalid."""

    pass


class AuthMethod(str, enum.Enum):
    """Which credentials the CRM client uses."""

    TOKEN = "token"
    OAUTH = "oauth"


def get_config_dir() -> Path:
    """Directory holding config.json and the optional .env file."""
    override = os.environ.get("HS_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "hs"


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking the project then the config directory."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in (Path(ENV_FILE), get_config_dir() / ENV_FILE):
        if path.exists():
            return path
    return None


def load_env_file(explicit_path: Path | None = None) -> Path | None:
    """Load a .env file into the environment without overriding set variables.

    Returns:
        The loaded file, or None if none was found
    """
    env_file = find_env_file(explicit_path)
    if env_file:
        load_dotenv(env_file)
        logger.debug(f"Loaded environment from {env_file}")
    return env_file


class ConfigStore:
    """Key-value view of the persisted config file.

    Usage:
        store = ConfigStore()
        store.set_oauth_credentials(credentials)
        store.get_oauth_credentials()  # sees the write immediately
    """

    def __init__(
        self,
        config_dir: Path | None = None,
        cache_ttl: float = CONFIG_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the store.

        Args:
            config_dir: Directory for config.json (default from get_config_dir)
            cache_ttl: Seconds a loaded config is reused
            clock: Monotonic clock, injectable for tests
        """
        self.config_dir = config_dir or get_config_dir()
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: dict[str, Any] | None = None
        self._cache_time = 0.0

    @property
    def path(self) -> Path:
        """Path of the config file."""
        return self.config_dir / CONFIG_FILE

    def invalidate(self) -> None:
        """Drop the cached copy so the next read hits the file."""
        self._cache = None

    def _read_file(self) -> dict[str, Any]:
        """Read the config file, returning {} if missing or unreadable."""
        if not self.path.exists():
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to parse config at {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(
                f"Config at {self.path} must be an object, got {type(data).__name__}"
            )
            return {}

        return data

    def _write_file(self, data: dict[str, Any]) -> None:
        """Rewrite the whole config file with owner-only permissions."""
        if not self.config_dir.exists():
            self.config_dir.mkdir(parents=True, exist_ok=True)
            try:
                self.config_dir.chmod(stat.S_IRWXU)  # 0700
            except OSError as e:
                logger.warning(f"Could not set directory permissions: {e}")

        content = json.dumps(data, indent=2)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)

        # O_CREAT's mode does not apply to a file that already existed
        try:
            self.path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600
        except OSError as e:
            logger.warning(f"Could not set file permissions: {e}")

    def load(self) -> dict[str, Any]:
        """Load the config file, using the cache when fresh."""
        now = self._clock()
        if self._cache is not None and (now - self._cache_time) < self.cache_ttl:
            return self._cache

        self._cache = self._read_file()
        self._cache_time = now
        return self._cache

    def save(self, updates: dict[str, Any]) -> None:
        """Merge updates into the file and invalidate the cache."""
        merged = {**self._read_file(), **updates}
        self._write_file(merged)
        self.invalidate()

    def get(self, key: str, default: Any = None) -> Any:
        """Get a single config value."""
        return self.load().get(key, default)

    # Private app token

    def get_access_token(self) -> str | None:
        token = self.get(ACCESS_TOKEN_KEY)
        return token or None

    def set_access_token(self, token: str) -> None:
        self.save({ACCESS_TOKEN_KEY: token})

    def is_configured(self) -> bool:
        """Whether a private app token is configured."""
        return self.get_access_token() is not None

    # Portal

    def get_portal_id(self) -> str | None:
        return self.get(PORTAL_ID_KEY)

    def set_portal_id(self, portal_id: str) -> None:
        self.save({PORTAL_ID_KEY: portal_id})

    # Auth method

    def get_auth_method(self) -> AuthMethod:
        """Configured auth method, defaulting to the private app token."""
        value = self.get(AUTH_METHOD_KEY)
        try:
            return AuthMethod(value) if value else AuthMethod.TOKEN
        except ValueError:
            logger.warning(f"Unknown auth method {value!r} in config, using token")
            return AuthMethod.TOKEN

    def set_auth_method(self, method: AuthMethod) -> None:
        self.save({AUTH_METHOD_KEY: method.value})

    # OAuth credentials

    def get_oauth_credentials(self) -> OAuthCredentials | None:
        data = self.get(OAUTH_KEY)
        if not data:
            return None

        try:
            return OAuthCredentials.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Invalid OAuth credentials in config: {e}")
            return None

    def set_oauth_credentials(self, credentials: OAuthCredentials) -> None:
        self.save({OAUTH_KEY: credentials.to_dict()})

    def is_oauth_configured(self) -> bool:
        """Whether OAuth credentials are stored."""
        return self.get_oauth_credentials() is not None

    def get_oauth_app_config(self) -> OAuthAppConfig | None:
        data = self.get(OAUTH_APP_KEY)
        if not data:
            return None

        try:
            return OAuthAppConfig.from_dict(data)
        except (KeyError, TypeError) as e:
            logger.warning(f"Invalid OAuth app config in config: {e}")
            return None

    def set_oauth_app_config(self, app_config: OAuthAppConfig) -> None:
        self.save({OAUTH_APP_KEY: app_config.to_dict()})

    def save_oauth_login(self, credentials: OAuthCredentials, app_config: OAuthAppConfig) -> None:
        """Persist a completed login in a single write."""
        self.save(
            {
                OAUTH_KEY: credentials.to_dict(),
                OAUTH_APP_KEY: app_config.to_dict(),
                AUTH_METHOD_KEY: AuthMethod.OAUTH.value,
            }
        )

    def clear_oauth_credentials(self, forget_app: bool = False) -> None:
        """Remove OAuth credentials, keeping any private app token.

        The auth method falls back to the private app token when one is
        configured, and is removed otherwise.

        Args:
            forget_app: Also remove the stored client id and secret
        """
        keys = [OAUTH_KEY]
        if forget_app:
            keys.append(OAUTH_APP_KEY)

        existing = self._read_file()
        for key in keys:
            existing.pop(key, None)

        if existing.get(ACCESS_TOKEN_KEY):
            existing[AUTH_METHOD_KEY] = AuthMethod.TOKEN.value
        else:
            existing.pop(AUTH_METHOD_KEY, None)

        self._write_file(existing)
        self.invalidate()


def resolve_oauth_app_config(
    store: ConfigStore,
    client_id: str | None = None,
    client_secret: str | None = None,
) -> OAuthAppConfig:
    """Resolve the OAuth app config from flags, environment, then the store.

    Each field is resolved independently in that precedence order.

    Raises:
        ConfigurationError: If the client id or secret is unavailable
    """
    saved = store.get_oauth_app_config()

    resolved_id = (
        client_id
        or os.environ.get(CLIENT_ID_ENV)
        or (saved.client_id if saved else None)
    )
    resolved_secret = (
        client_secret
        or os.environ.get(CLIENT_SECRET_ENV)
        or (saved.client_secret if saved else None)
    )

    if not resolved_id or not resolved_secret:
        missing = [
            name
            for name, value in (("client id", resolved_id), ("client secret", resolved_secret))
            if not value
        ]
        raise ConfigurationError(f"OAuth app {' and '.join(missing)} not configured")

    return OAuthAppConfig(client_id=resolved_id, client_secret=resolved_secret)
