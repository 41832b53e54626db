"""hs - A command-line client for the HubSpot CRM."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("hs-cli")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    # Core modules
    "ConfigStore",
    "AuthMethod",
    "HubSpotClient",
    "OutputHandler",
]

# Lazy imports to keep CLI startup light
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("ConfigStore", "AuthMethod"):
        from .config import AuthMethod, ConfigStore
        return {"ConfigStore": ConfigStore, "AuthMethod": AuthMethod}[name]
    elif name == "HubSpotClient":
        from .client import HubSpotClient
        return HubSpotClient
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
