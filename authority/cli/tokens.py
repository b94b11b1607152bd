"""Flask CLI commands for operating on refresh tokens."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import click
from flask.cli import with_appcontext

from authority.core.logger import token_digest
from authority.factory import get_auth_service
from authority.services._shared.errors import StoreUnavailableError
from authority.services._shared.ports import RefreshToken
from authority.services.auth import Ok

LOGGER = logging.getLogger(__name__)

OPERATOR_IP = "cli"


def _state(record: RefreshToken, now: datetime) -> str:
    if record.is_revoked:
        return "rotated" if record.replaced_by_token else "revoked"
    if record.is_expired(now):
        return "expired"
    return "active"


def _echo_records(records: list[RefreshToken], *, show_tokens: bool) -> None:
    """Pretty-print refresh token records, one per line."""
    now = datetime.now(UTC)
    if not records:
        click.echo("  (none)")
        return
    for r in records:
        shown = r.token if show_tokens else token_digest(r.token)
        click.echo(
            f"  {shown}  user={r.user_id}  family={r.family}  "
            f"state={_state(r, now):<7}  created={r.created_at.isoformat()}  "
            f"expires={r.expires_at.isoformat()}"
        )


@click.group("tokens")
def tokens_cli() -> None:
    """Inspect and revoke refresh tokens."""


@tokens_cli.command("revoke-user")
@click.argument("user_id")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
@with_appcontext
def revoke_user_command(user_id: str, yes: bool) -> None:
    """Revoke every refresh token of USER_ID (sign out everywhere)."""
    if not yes:
        click.confirm(f"Revoke all refresh tokens of user {user_id}?", abort=True)

    result = get_auth_service().revoke_all(user_id, OPERATOR_IP)
    if not isinstance(result, Ok):
        raise click.ClickException(result.message)
    LOGGER.info("Operator revoked %d refresh tokens of user %s", result.value, user_id)
    click.echo(f"Revoked {result.value} refresh token(s) for user {user_id}.")


@tokens_cli.command("chain")
@click.argument("token")
@click.option("--show-tokens", is_flag=True, help="Print raw token values instead of digests.")
@with_appcontext
def chain_command(token: str, show_tokens: bool) -> None:
    """Follow the rotation chain that starts at TOKEN."""
    result = get_auth_service().audit_chain(token)
    if not isinstance(result, Ok):
        raise click.ClickException(result.message)
    if not result.value:
        raise click.ClickException("Refresh token not found.")
    click.echo(f"Rotation chain ({len(result.value)} token(s)):")
    _echo_records(result.value, show_tokens=show_tokens)


@tokens_cli.command("active")
@click.argument("user_id")
@click.option("--show-tokens", is_flag=True, help="Print raw token values instead of digests.")
@with_appcontext
def active_command(user_id: str, show_tokens: bool) -> None:
    """List the active refresh tokens of USER_ID."""
    service = get_auth_service()
    try:
        records = service.refresh_store.get_all_active_by_user(user_id, datetime.now(UTC))
    except StoreUnavailableError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Active refresh tokens for user {user_id}:")
    _echo_records(records, show_tokens=show_tokens)
