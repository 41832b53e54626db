"""Cross-platform browser launching for the authorization page.

The browser is started as a detached process and never waited on, so
the CLI keeps running while the user authorizes in the browser.
"""

import logging
import subprocess
import sys
import webbrowser
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class BrowserLaunchError(Exception):
    """The browser could not be opened. Never fatal to the OAuth flow."""

    pass


class BrowserLauncher(ABC):
    """Opens a URL in the user's browser."""

    @abstractmethod
    def launch(self, url: str) -> None:
        """Open the URL without waiting for the browser.

        Raises:
            BrowserLaunchError: If the browser could not be started
        """
        pass


class CommandBrowserLauncher(BrowserLauncher):
    """Launch the browser through a platform opener command."""

    def __init__(self, command: list[str]) -> None:
        self.command = command

    def build_args(self, url: str) -> list[str]:
        """Full argument list for the opener."""
        return [*self.command, url]

    def launch(self, url: str) -> None:
        args = self.build_args(url)
        try:
            if sys.platform == "win32":
                DETACHED_PROCESS = 0x00000008
                CREATE_NEW_PROCESS_GROUP = 0x00000200
                subprocess.Popen(
                    args,
                    creationflags=DETACHED_PROCESS | CREATE_NEW_PROCESS_GROUP,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            else:
                subprocess.Popen(
                    args,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    start_new_session=True,
                )
        except OSError as e:
            raise BrowserLaunchError(f"Failed to open browser with '{args[0]}': {e}") from e

        logger.debug(f"Launched browser with {args[0]}")


class WebbrowserLauncher(BrowserLauncher):
    """Fallback for platforms without a known opener command."""

    def launch(self, url: str) -> None:
        try:
            opened = webbrowser.open(url)
        except webbrowser.Error as e:
            raise BrowserLaunchError(f"Failed to open browser: {e}") from e

        if not opened:
            raise BrowserLaunchError("No usable browser found")


# Opener commands per platform; the URL is appended as the last argument
PLATFORM_COMMANDS: dict[str, list[str]] = {
    "darwin": ["open"],
    # The empty string is the window title "start" expects before the URL
    "win32": ["cmd", "/c", "start", ""],
    "linux": ["xdg-open"],
}

XDG_PLATFORM_PREFIXES = ("linux", "freebsd", "openbsd", "netbsd")


def get_browser_launcher(platform: str | None = None) -> BrowserLauncher:
    """Create the browser launcher for a platform.

    Args:
        platform: A sys.platform value, defaults to the current platform

    Returns:
        A launcher for the platform's opener, or the webbrowser fallback
    """
    platform = platform or sys.platform

    if platform in PLATFORM_COMMANDS:
        return CommandBrowserLauncher(PLATFORM_COMMANDS[platform])

    if platform.startswith(XDG_PLATFORM_PREFIXES):
        return CommandBrowserLauncher(PLATFORM_COMMANDS["linux"])

    logger.debug(f"No opener command for platform {platform}, using webbrowser")
    return WebbrowserLauncher()
