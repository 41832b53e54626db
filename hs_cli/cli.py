"""CLI entry point for hs."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import NoReturn

import click

from . import __version__
from .client import CRMRequestError, HubSpotClient, PortalInfo
from .config import AuthMethod, ConfigStore, ConfigurationError, load_env_file, resolve_oauth_app_config
from .oauth.callback import CallbackBindError, CallbackError
from .oauth.constants import CALLBACK_TIMEOUT, CALLBACK_URL
from .oauth.exchange import TokenExchangeError
from .oauth.flow import OAuthFlow
from .oauth.manager import (
    CredentialManager,
    ReauthenticationRequiredError,
    format_time_remaining,
    time_until_expiry,
)
from .output import OutputHandler

# Logger for CLI
logger = logging.getLogger("hs")

TOKEN_INSTRUCTIONS = """\
To get a Private App access token:
1. Go to your HubSpot account Settings
2. Navigate to Integrations > Private Apps
3. Create a Private App with the CRM scopes you need
   (account-info.security.read is required for 'hs check')
4. Copy the access token (starts with pat-)
"""

OAUTH_SETUP_HELP = f"""\
OAuth requires a HubSpot App with a client ID and secret.

To create a HubSpot App:
1. Go to https://developers.hubspot.com/
2. Create or select an App
3. Go to App Settings > Auth
4. Copy the Client ID and Client Secret
5. Add redirect URI: {CALLBACK_URL}

Then run:
  hs auth login --client-id <YOUR_CLIENT_ID> --client-secret <YOUR_SECRET>

Or set environment variables (a .env file works too):
  export HUBSPOT_CLIENT_ID=<YOUR_CLIENT_ID>
  export HUBSPOT_CLIENT_SECRET=<YOUR_SECRET>
  hs auth login"""

AUTH_METHODS_HELP = """\
Authentication methods:
  hs auth                 Configure a private app token (interactive)
  hs auth -t <token>      Configure a private app token (non-interactive)
  hs auth login           Authenticate with OAuth 2.0
  hs auth logout          Clear OAuth credentials
  hs auth status          Show current authentication status"""


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, env_path: str | None, verbose: bool) -> None:
    """hs - Work with the HubSpot CRM from the command line."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["output"] = OutputHandler(json_mode, verbose)

    # Configure logging based on verbosity
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    load_env_file(Path(env_path) if env_path else None)
    ctx.obj["store"] = ConfigStore()


def _fail(output: OutputHandler, error: Exception, help_text: str | None = None) -> NoReturn:
    output.error(error, help_text=help_text)
    raise SystemExit(1)  # Never reached due to sys.exit in output.error


@main.group(invoke_without_command=True)
@click.option("--token", "-t", help="Private app access token (prompted for when omitted)")
@click.pass_context
def auth(ctx: click.Context, token: str | None) -> None:
    """Configure HubSpot authentication.

    Without a subcommand this stores a private app token, or shows the
    current method when one is already configured. Use 'hs auth login'
    to sign in with OAuth 2.0 instead.
    """
    if ctx.invoked_subcommand is not None:
        return

    output: OutputHandler = ctx.obj["output"]
    store: ConfigStore = ctx.obj["store"]

    if token is None:
        method = store.get_auth_method()
        if method is AuthMethod.OAUTH and store.is_oauth_configured():
            current = "Currently authenticated with OAuth.\nRun 'hs auth status' for details."
        elif store.is_configured():
            method = AuthMethod.TOKEN
            current = (
                "Already configured with a private app token.\n"
                "Run 'hs check' to verify the connection, or 'hs auth -t <token>' to replace it."
            )
        else:
            current = None

        # Configured already: show the overview rather than prompting
        if current is not None:
            output.success(
                {"configured": True, "method": method.value, "config_path": str(store.path)},
                human_message=f"{current}\n\n{AUTH_METHODS_HELP}",
            )
            return

        output.status(TOKEN_INSTRUCTIONS)
        token = click.prompt(
            "Enter your HubSpot private app access token",
            hide_input=True,
            default="",
            show_default=False,
            err=ctx.obj["json_mode"],
        )

    token = token.strip()
    if not token:
        _fail(output, ConfigurationError("No token provided"), help_text="Run 'hs auth -t <token>' to set a token.")

    if not token.startswith("pat-"):
        click.secho(
            "Warning: Token does not start with 'pat-'. Make sure you are using a Private App token.",
            fg="yellow",
            err=True,
        )

    store.set_access_token(token)
    store.set_auth_method(AuthMethod.TOKEN)
    logger.debug(f"Private app token saved to {store.path}")

    output.success(
        {"configured": True, "method": AuthMethod.TOKEN.value, "config_path": str(store.path)},
        human_message="Access token saved. Run 'hs check' to verify the connection.",
    )


@auth.command("login")
@click.option("--client-id", help="OAuth client ID (or set HUBSPOT_CLIENT_ID)")
@click.option("--client-secret", help="OAuth client secret (or set HUBSPOT_CLIENT_SECRET)")
@click.option(
    "--timeout",
    default=CALLBACK_TIMEOUT,
    type=click.IntRange(min=1),
    show_default=True,
    help="Seconds to wait for the browser authorization",
)
@click.pass_context
def auth_login(ctx: click.Context, client_id: str | None, client_secret: str | None, timeout: int) -> None:
    """Sign in to HubSpot with OAuth 2.0.

    Opens a browser for authorization and captures the redirect on
    a local port. Credentials are stored only when the whole flow
    succeeds.
    """
    output: OutputHandler = ctx.obj["output"]
    store: ConfigStore = ctx.obj["store"]

    try:
        app_config = resolve_oauth_app_config(store, client_id, client_secret)
    except ConfigurationError as e:
        _fail(output, e, help_text=OAUTH_SETUP_HELP)

    output.status("Starting OAuth login flow...")
    flow = OAuthFlow(app_config, callback_timeout=timeout, on_status=output.status)

    try:
        credentials = asyncio.run(flow.run())
    except CallbackBindError as e:
        _fail(output, e, help_text=f"The redirect URI {CALLBACK_URL} needs this port to be free.")
    except CallbackError as e:
        _fail(output, e)
    except TokenExchangeError as e:
        _fail(
            output,
            e,
            help_text=(
                "Check the client ID and secret, and that the app's redirect URI "
                f"is {CALLBACK_URL}. Then run 'hs auth login' again."
            ),
        )

    store.save_oauth_login(credentials, app_config)

    remaining = time_until_expiry(credentials)
    output.success(
        {
            "authenticated": True,
            "method": AuthMethod.OAUTH.value,
            "expires_at": credentials.expires_at,
            "expires_in_ms": remaining,
            "scopes": credentials.scopes,
        },
        human_message=(
            "OAuth authentication successful!\n"
            f"Token expires in: {format_time_remaining(remaining)}\n"
            "Run 'hs check' to verify the connection."
        ),
    )


@auth.command("logout")
@click.option("--forget-app", is_flag=True, help="Also remove the stored OAuth client ID and secret")
@click.pass_context
def auth_logout(ctx: click.Context, forget_app: bool) -> None:
    """Clear stored OAuth credentials.

    A configured private app token is kept and becomes the active
    auth method again.
    """
    output: OutputHandler = ctx.obj["output"]
    store: ConfigStore = ctx.obj["store"]

    if not store.is_oauth_configured() and not forget_app:
        output.success(
            {"logged_out": False, "message": "Not currently authenticated with OAuth"},
            human_message="Not currently authenticated with OAuth.",
        )
        return

    store.clear_oauth_credentials(forget_app=forget_app)

    method = store.get_auth_method().value if store.is_configured() else None
    message = "OAuth credentials cleared. You have been logged out."
    if method == AuthMethod.TOKEN.value:
        message += "\nThe private app token is still configured and is now used."

    output.success(
        {"logged_out": True, "forgot_app": forget_app, "method": method},
        human_message=message,
    )


@auth.command("status")
@click.pass_context
def auth_status(ctx: click.Context) -> None:
    """Show the current authentication status (no network access)."""
    output: OutputHandler = ctx.obj["output"]
    store: ConfigStore = ctx.obj["store"]

    status = CredentialManager(store).get_status()

    if ctx.obj["json_mode"]:
        output.success(status.to_dict())
        return

    click.secho("\nAuthentication Status\n", bold=True)
    if status.method == AuthMethod.OAUTH.value:
        click.echo("  Method: OAuth 2.0")
        if status.expired:
            click.secho("  Token status: Expired (will refresh on next request)", fg="yellow")
            click.echo("  Token expires: now")
        else:
            click.secho("  Token status: Valid", fg="green")
            click.echo(f"  Token expires: in {status.expires_in_human}")
        if status.scopes:
            click.echo(f"  Scopes: {', '.join(status.scopes)}")
    elif status.method == AuthMethod.TOKEN.value:
        click.echo("  Method: Private App Token")
        click.echo("  Status: Configured")
    else:
        click.secho("  Status: Not authenticated", fg="red")
        click.echo("\nTo authenticate:")
        click.echo("  hs auth          - Use a Private App Token")
        click.echo("  hs auth login    - Use OAuth 2.0")

    click.echo(f"\nConfig file: {status.config_path}")


def _fetch_portal_info(ctx: click.Context) -> PortalInfo:
    """Fetch portal info, routing auth and API failures to the output handler."""
    output: OutputHandler = ctx.obj["output"]
    store: ConfigStore = ctx.obj["store"]

    async def fetch() -> PortalInfo:
        async with HubSpotClient(store) as client:
            return await client.get_portal_info()

    try:
        return asyncio.run(fetch())
    except ConfigurationError as e:
        _fail(output, e)
    except ReauthenticationRequiredError as e:
        _fail(output, e, help_text="Run 'hs auth login' to sign in again.")
    except CRMRequestError as e:
        _fail(output, e)


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify the connection to HubSpot."""
    output: OutputHandler = ctx.obj["output"]

    if not ctx.obj["json_mode"]:
        click.echo("Checking HubSpot connection...")

    info = _fetch_portal_info(ctx)

    if ctx.obj["json_mode"]:
        output.success({"connected": True, **info.to_dict()})
    else:
        click.secho("Connection successful!", fg="green")
        click.echo("  Portal ID: ", nl=False)
        click.secho(str(info.portal_id), fg="cyan")
        click.echo(f"  Timezone:  {info.time_zone or 'unknown'}")
        click.echo(f"  Currency:  {info.currency or 'unknown'}")


@main.command()
@click.pass_context
def whoami(ctx: click.Context) -> None:
    """Show the current HubSpot portal."""
    output: OutputHandler = ctx.obj["output"]
    store: ConfigStore = ctx.obj["store"]

    info = _fetch_portal_info(ctx)

    data = {**info.to_dict(), "authMethod": store.get_auth_method().value}
    if ctx.obj["json_mode"]:
        output.success(data)
    else:
        click.echo(f"Portal ID:   {info.portal_id}")
        click.echo(f"Timezone:    {info.time_zone or 'unknown'}")
        click.echo(f"Currency:    {info.currency or 'unknown'}")
        click.echo(f"Auth method: {data['authMethod']}")


if __name__ == "__main__":
    main()
