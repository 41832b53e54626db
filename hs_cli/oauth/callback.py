"""Localhost callback listener for the OAuth redirect.

This module provides a single-shot HTTP listener that receives the
HubSpot authorization redirect. It:
- Binds the fixed callback port on both loopback families before the
  browser is opened, and times out on its own after a deadline
- Validates the state parameter against the pending authorization
- Accepts exactly one terminal outcome (success, failure or timeout)
- Returns a user-friendly HTML page for the browser tab
- Ignores unrelated requests (favicon, prefetch) with a 404
"""

import asyncio
import enum
import errno
import hmac
import html
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlparse

from .constants import (
    CALLBACK_HOST,
    CALLBACK_IPV6_HOST,
    CALLBACK_PATH,
    CALLBACK_PORT,
    CALLBACK_TIMEOUT,
)

logger = logging.getLogger(__name__)


class CallbackError(Exception):
    """Error during OAuth callback handling."""

    pass


class CallbackBindError(CallbackError):
    """The callback port could not be bound."""

    pass


class CallbackTimeoutError(CallbackError):
    """Timeout waiting for OAuth callback."""

    pass


class ProviderDeniedError(CallbackError):
    """The provider redirected back with an error parameter."""

    def __init__(self, error: str, description: str | None = None):
        self.error = error
        self.description = description
        super().__init__(description or error)


class CallbackValidationError(CallbackError):
    """The callback was missing parameters or failed validation."""

    pass


class CallbackStateMismatchError(CallbackValidationError):
    """The callback state did not match the pending authorization."""

    pass


class ListenerState(enum.Enum):
    """Lifecycle of a CallbackListener."""

    IDLE = "idle"
    LISTENING = "listening"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    BIND_FAILED = "bind_failed"


TERMINAL_STATES = frozenset(
    {
        ListenerState.SUCCEEDED,
        ListenerState.FAILED,
        ListenerState.TIMED_OUT,
        ListenerState.BIND_FAILED,
    }
)


@dataclass(frozen=True)
class AuthorizationResult:
    """Validated authorization redirect.

    Attributes:
        code: The authorization code to exchange
        state: The state parameter, already checked against the expected value
    """

    code: str
    state: str


@dataclass
class CallbackParams:
    """Raw query parameters of a callback request."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None


# HTML templates for callback responses
SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Authorization Successful</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: linear-gradient(135deg, #ff7a59 0%, #ff5c35 100%);
        }}
        .card {{
            background: white;
            padding: 40px 60px;
            border-radius: 16px;
            text-align: center;
            box-shadow: 0 10px 40px rgba(0,0,0,0.2);
        }}
        .icon {{ font-size: 64px; margin-bottom: 16px; }}
        h1 {{ color: #1a1a1a; margin: 0 0 8px 0; font-size: 24px; }}
        p {{ color: #666; margin: 0; }}
    </style>
</head>
<body>
    <div class="card">
        <div class="icon">&#10003;</div>
        <h1>Authorization Successful</h1>
        <p>You can close this window and return to the terminal.</p>
    </div>
</body>
</html>"""

ERROR_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Authorization Failed</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: linear-gradient(135deg, #e74c3c 0%, #c0392b 100%);
        }}
        .card {{
            background: white;
            padding: 40px 60px;
            border-radius: 16px;
            text-align: center;
            box-shadow: 0 10px 40px rgba(0,0,0,0.2);
            max-width: 400px;
        }}
        .icon {{ font-size: 64px; margin-bottom: 16px; }}
        h1 {{ color: #1a1a1a; margin: 0 0 8px 0; font-size: 24px; }}
        p {{ color: #666; margin: 0 0 16px 0; }}
        .error {{
            background: #fee;
            padding: 12px;
            border-radius: 8px;
            color: #c0392b;
            font-family: monospace;
            font-size: 14px;
        }}
    </style>
</head>
<body>
    <div class="card">
        <div class="icon">&#10007;</div>
        <h1>Authorization Failed</h1>
        <div class="error">{message}</div>
        <p>Please try again from the terminal.</p>
    </div>
</body>
</html>"""


def parse_callback_params(target: str) -> CallbackParams:
    """Parse OAuth callback query parameters.

    Args:
        target: The request target, e.g. "/callback?code=abc&state=xyz"

    Returns:
        CallbackParams with the first value of each parameter
    """
    params = parse_qs(urlparse(target).query)

    def get_param(name: str) -> str | None:
        values = params.get(name, [])
        return values[0] if values else None

    return CallbackParams(
        code=get_param("code"),
        state=get_param("state"),
        error=get_param("error"),
        error_description=get_param("error_description"),
    )


def validate_callback(params: CallbackParams, expected_state: str) -> AuthorizationResult:
    """Validate callback parameters against the expected state.

    Checks run in a fixed order: provider error, missing parameters,
    then state mismatch.

    Raises:
        ProviderDeniedError: If the provider reported an error
        CallbackValidationError: If code or state is missing
        CallbackStateMismatchError: If state does not match
    """
    if params.error:
        raise ProviderDeniedError(params.error, params.error_description)

    if not params.code or not params.state:
        raise CallbackValidationError("Missing authorization code or state parameter")

    # Constant-time comparison to avoid leaking the expected state
    if not hmac.compare_digest(params.state.encode(), expected_state.encode()):
        raise CallbackStateMismatchError("State parameter mismatch - possible CSRF attack")

    return AuthorizationResult(code=params.code, state=params.state)


class CallbackListener:
    """Single-shot HTTP listener for the OAuth redirect.

    Binds the fixed callback port and resolves with the first callback
    that reaches a terminal outcome. Once resolved, the server stops
    accepting connections and later requests cannot change the result.

    Usage:
        async with CallbackListener(expected_state) as listener:
            # Open browser with the authorization URL
            result = await listener.wait_for_callback()
    """

    def __init__(
        self,
        expected_state: str,
        port: int = CALLBACK_PORT,
        path: str = CALLBACK_PATH,
        timeout: float = CALLBACK_TIMEOUT,
        host: str = CALLBACK_HOST,
        ipv6_host: str | None = CALLBACK_IPV6_HOST,
    ):
        """Initialize the listener.

        Args:
            expected_state: State value of the pending authorization
            port: Port to bind (0 lets the OS choose, for tests)
            path: URL path that receives the redirect
            timeout: Seconds from start() until the listener times out
            host: Interface to bind
            ipv6_host: Additional IPv6 loopback to bind if available
        """
        self.expected_state = expected_state
        self.port = port
        self.path = path
        self.timeout = timeout
        self.host = host
        self.ipv6_host = ipv6_host
        self.state = ListenerState.IDLE

        self._servers: list[asyncio.Server] = []
        self._result: asyncio.Future[AuthorizationResult] | None = None
        self._writers: set[asyncio.StreamWriter] = set()
        self._deadline: asyncio.TimerHandle | None = None
        self._stop_task: asyncio.Task[None] | None = None

    @property
    def is_terminal(self) -> bool:
        """Whether the listener has reached its single terminal outcome."""
        return self.state in TERMINAL_STATES

    async def start(self) -> None:
        """Bind the callback port and start accepting connections.

        The timeout deadline is armed here, so it runs whether or not
        anyone is waiting for the callback yet.

        Raises:
            CallbackBindError: If the port cannot be bound
        """
        if self.state is not ListenerState.IDLE:
            raise CallbackError("Callback listener can only be started once")

        loop = asyncio.get_running_loop()
        self._result = loop.create_future()

        try:
            server = await asyncio.start_server(
                self._handle_connection,
                self.host,
                self.port,
            )
        except OSError as e:
            self.state = ListenerState.BIND_FAILED
            if e.errno == errno.EADDRINUSE:
                raise CallbackBindError(
                    f"Port {self.port} is already in use. "
                    f"Close any other running hs instances and try again."
                ) from e
            raise CallbackBindError(f"Failed to start callback server: {e}") from e

        self._servers.append(server)
        if server.sockets:
            self.port = server.sockets[0].getsockname()[1]

        if self.ipv6_host:
            try:
                self._servers.append(await asyncio.start_server(
                    self._handle_connection,
                    self.ipv6_host,
                    self.port,
                ))
            except OSError as e:
                logger.debug(f"IPv6 loopback unavailable, listening on {self.host} only: {e}")

        self.state = ListenerState.LISTENING
        self._deadline = loop.call_later(self.timeout, self._on_deadline)
        logger.debug(f"Callback listener bound on port {self.port}{self.path}")

    async def stop(self) -> None:
        """Stop the listener and release the port. Safe to call repeatedly."""
        self._cancel_deadline()
        if not self._servers:
            return

        servers, self._servers = self._servers, []
        for server in servers:
            server.close()
        # Idle connections (e.g. browser preconnects) would block wait_closed
        for writer in list(self._writers):
            writer.close()
        for server in servers:
            await server.wait_closed()
        logger.debug("Callback listener stopped")

    async def wait_for_callback(self) -> AuthorizationResult:
        """Wait for the first terminal outcome.

        The port is released before this returns or raises.

        Returns:
            AuthorizationResult with the validated code and state

        Raises:
            CallbackTimeoutError: If no callback arrived before the deadline
            CallbackError: Any failure reported by the callback
        """
        if self._result is None or self.state is ListenerState.IDLE:
            raise CallbackError("Callback listener not started")

        try:
            return await asyncio.shield(self._result)
        finally:
            if self.is_terminal:
                await self.stop()

    def _on_deadline(self) -> None:
        """Time the listener out and release the port."""
        self._deadline = None
        timed_out = self._settle(ListenerState.TIMED_OUT, error=CallbackTimeoutError(
            f"Authorization timed out after {self.timeout:g} seconds. "
            f"Run 'hs auth login' to try again."
        ))
        if timed_out:
            self._stop_task = asyncio.get_running_loop().create_task(self.stop())

    def _cancel_deadline(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    def _settle(
        self,
        state: ListenerState,
        result: AuthorizationResult | None = None,
        error: BaseException | None = None,
    ) -> bool:
        """Record the terminal outcome. Only the first call has any effect.

        Returns:
            True if this call performed the transition
        """
        if self.is_terminal or self._result is None or self._result.done():
            return False

        self.state = state
        self._cancel_deadline()
        if error is not None:
            self._result.set_exception(error)
        else:
            self._result.set_result(result)  # type: ignore[arg-type]

        # Stop accepting new connections; in-flight handlers finish normally
        for server in self._servers:
            server.close()
        return True

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle incoming HTTP connection."""
        self._writers.add(writer)
        on_callback_path = False
        try:
            # Read HTTP request
            request_line = await reader.readline()
            request_text = request_line.decode("utf-8", errors="replace")

            # Parse request line (e.g., "GET /callback?code=xxx HTTP/1.1")
            parts = request_text.strip().split(" ")
            if len(parts) < 2:
                await self._send_response(writer, HTTPStatus.BAD_REQUEST, "Invalid request")
                return

            method, target = parts[0], parts[1]

            # Consume headers, they carry nothing we need
            while True:
                header_line = await reader.readline()
                if header_line in (b"\r\n", b"\n", b""):
                    break

            # Anything outside the callback path leaves the listener untouched
            if urlparse(target).path != self.path:
                await self._send_response(writer, HTTPStatus.NOT_FOUND, "Not found")
                return

            if method != "GET":
                await self._send_response(
                    writer, HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed"
                )
                return

            if self.is_terminal:
                await self._send_error_page(
                    writer,
                    HTTPStatus.BAD_REQUEST,
                    "This authorization request has already been completed.",
                )
                return

            on_callback_path = True
            await self._handle_callback(target, writer)

        except Exception as e:
            logger.warning(f"Error handling callback request: {e}")
            if on_callback_path:
                self._settle(ListenerState.FAILED, error=CallbackError(
                    f"Internal error while handling the OAuth callback: {e}"
                ))
            try:
                await self._send_error_page(
                    writer, HTTPStatus.INTERNAL_SERVER_ERROR, "Internal server error"
                )
            except Exception:
                pass

        finally:
            self._writers.discard(writer)
            try:
                writer.close()
                await writer.wait_closed()
            except Exception:
                pass

    async def _handle_callback(self, target: str, writer: asyncio.StreamWriter) -> None:
        """Validate a callback request and settle the listener.

        The browser page is written before the outcome is settled so the
        tab gets its response even if the flow tears the listener down
        right away.
        """
        params = parse_callback_params(target)

        try:
            result = validate_callback(params, self.expected_state)
        except CallbackError as e:
            logger.debug(f"Rejected OAuth callback: {type(e).__name__}")
            try:
                await self._send_error_page(writer, HTTPStatus.BAD_REQUEST, str(e))
            finally:
                self._settle(ListenerState.FAILED, error=e)
            return

        try:
            await self._send_html_response(writer, HTTPStatus.OK, SUCCESS_HTML.format())
        finally:
            self._settle(ListenerState.SUCCEEDED, result=result)

    async def _send_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
    ) -> None:
        """Send a plain text HTTP response."""
        encoded = body.encode("utf-8")
        response = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/plain; charset=utf-8\r\n"
            f"Content-Length: {len(encoded)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(response.encode("utf-8") + encoded)
        await writer.drain()

    async def _send_error_page(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        message: str,
    ) -> None:
        """Send the failure page with an escaped message."""
        await self._send_html_response(
            writer, status, ERROR_HTML.format(message=html.escape(message))
        )

    async def _send_html_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        html_content: str,
    ) -> None:
        """Send an HTML HTTP response with security headers."""
        body = html_content.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/html; charset=utf-8\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"X-Content-Type-Options: nosniff\r\n"
            f"X-Frame-Options: DENY\r\n"
            f"Content-Security-Policy: default-src 'none'; style-src 'unsafe-inline'\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("utf-8") + body)
        await writer.drain()

    async def __aenter__(self) -> "CallbackListener":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.stop()
