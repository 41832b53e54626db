"""CSRF state generation for the authorization request.

The state parameter binds the browser redirect to the flow that started
it. A fresh value is generated for every login attempt and is never
persisted.
"""

import secrets
from dataclasses import dataclass, field

from .constants import CALLBACK_PATH

# 32 random bytes -> 256 bits of entropy, 64 hex characters
STATE_BYTES = 32


def generate_state() -> str:
    """Generate a cryptographically random state parameter.

    Returns:
        64-character random hex string
    """
    return secrets.token_hex(STATE_BYTES)


@dataclass(frozen=True)
class PendingAuthorization:
    """An authorization request awaiting its redirect.

    Attributes:
        state: The opaque state value sent to the provider
        expected_redirect_path: Path the provider redirects back to
    """

    state: str = field(default_factory=generate_state)
    expected_redirect_path: str = CALLBACK_PATH

    @classmethod
    def create(cls, redirect_path: str = CALLBACK_PATH) -> "PendingAuthorization":
        """Start a new pending authorization with a fresh state."""
        return cls(state=generate_state(), expected_redirect_path=redirect_path)
