"""SafeSpace CLI — bootstrap the database, mint tokens, check live delivery.

Usage:
    safespace init-db                              # Create all tables
    safespace create-user "Ada" ada@x.org -r admin # Provision a user
    safespace token 1                              # Print a JWT for user 1
    safespace test-broadcast user.1                # Publish test.ping on user.1
    safespace alerts                               # Recent panic alerts (via API)
    safespace failures                             # Lost critical broadcasts (via API)

The last two talk to a running server at SAFESPACE_API_URL using the
bearer token in SAFESPACE_TOKEN.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import os
import sys
from typing import Optional

import click
import httpx
from redis.exceptions import RedisError

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("SAFESPACE_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the SafeSpace backend."""
    token = os.environ.get("SAFESPACE_TOKEN")
    if not token:
        click.secho("Error: set SAFESPACE_TOKEN (see `safespace token`)", fg="red", err=True)
        sys.exit(1)
    return httpx.AsyncClient(
        base_url=_api_url(),
        headers={"Authorization": f"Bearer {token}"},
        timeout=30.0,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous click handler.

    Inside an already running loop (e.g. CliRunner within an async test)
    the coroutine is run on a worker thread with its own loop.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _status_color(status: str) -> str:
    colors = {
        "active": "red",
        "acknowledged": "yellow",
        "resolved": "green",
    }
    return colors.get(status, "white")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="safespace")
def cli():
    """SafeSpace — real-time messaging and emergency alerts."""


# ---------------------------------------------------------------------------
# Local commands (database / Redis on this machine's settings)
# ---------------------------------------------------------------------------


@cli.command("init-db")
def init_db():
    """Create all database tables."""
    from safespace.db.engine import create_schema, engine

    async def _impl():
        await create_schema()
        await engine.dispose()

    _run(_impl())
    click.secho("Database schema created", fg="green")


@cli.command("create-user")
@click.argument("name")
@click.argument("email")
@click.option("--role", "-r", "roles", multiple=True, required=True,
              help="admin, therapist, guardian or child (repeatable)")
@click.option("--guardian-id", type=int, help="Guardian user id (for children)")
def create_user(name: str, email: str, roles: tuple[str, ...], guardian_id: Optional[int]):
    """Provision a user directly in the database."""
    from safespace.db.engine import async_session_factory, engine
    from safespace.services.user_service import (
        DuplicateEmailError,
        UserNotFoundError,
        UserService,
    )

    async def _impl():
        try:
            async with async_session_factory() as db:
                return await UserService(db).create(
                    name=name, email=email, roles=list(roles), guardian_id=guardian_id
                )
        finally:
            await engine.dispose()

    try:
        user = _run(_impl())
    except (DuplicateEmailError, UserNotFoundError, ValueError) as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
    click.secho(f"Created user {user.id} ({', '.join(user.roles)})", fg="green")


@cli.command()
@click.argument("user_id", type=int)
@click.option("--minutes", "-m", type=int, help="Lifetime (default from settings)")
def token(user_id: int, minutes: Optional[int]):
    """Print an access token for USER_ID."""
    from safespace.auth.jwt import create_access_token

    click.echo(create_access_token(user_id, expires_minutes=minutes))


@cli.command("test-broadcast")
@click.argument("channel")
@click.option("--note", default="ping", help="Text carried in the payload")
def test_broadcast(channel: str, note: str):
    """Publish a test.ping event on CHANNEL (e.g. user.1, emergency-alerts)."""
    from safespace.realtime.broadcaster import Broadcaster
    from safespace.realtime.events import DiagnosticPing
    from safespace.realtime.pubsub import close_redis, init_redis
    from safespace.realtime.transport import RedisTransport

    try:
        event = DiagnosticPing(channel, note)
    except ValueError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)

    async def _impl() -> bool:
        try:
            redis = await init_redis()
        except (RedisError, OSError) as e:
            click.secho(f"Redis unreachable: {e}", fg="red", err=True)
            await close_redis()
            return False
        try:
            return await Broadcaster(RedisTransport(redis)).dispatch(event)
        finally:
            await close_redis()

    if not _run(_impl()):
        click.secho("Broadcast failed", fg="red", err=True)
        sys.exit(1)
    click.secho(f"Published test.ping on {channel}", fg="green")


# ---------------------------------------------------------------------------
# Remote commands (talk to a running server)
# ---------------------------------------------------------------------------


@cli.command()
def alerts():
    """Recent panic alerts visible to the token's user."""
    _run(_alerts_impl(_client()))


async def _alerts_impl(client: httpx.AsyncClient):
    async with client as c:
        r = await c.get("/api/v1/panic-alerts")
        r.raise_for_status()
        rows = r.json()

    if not rows:
        click.secho("No recent panic alerts.", fg="green")
        return
    for row in rows:
        row["child_name"] = (row.get("child") or {}).get("name", "—")
    click.echo()
    _print_table(rows, [
        ("ID", "id", 6),
        ("Child", "child_name", 20),
        ("Status", "status", 13),
        ("Triggered", "triggered_at", 27),
    ])
    active = sum(1 for row in rows if row["status"] == "active")
    if active:
        click.secho(f"\n{active} alert(s) still active", fg=_status_color("active"), bold=True)


@cli.command()
@click.option("--limit", "-l", default=50, help="Max results")
def failures(limit: int):
    """Safety-critical broadcasts that never reached Redis (admins only)."""
    _run(_failures_impl(_client(), limit))


async def _failures_impl(client: httpx.AsyncClient, limit: int):
    async with client as c:
        r = await c.get("/api/v1/admin/broadcast-failures", params={"limit": limit})
        r.raise_for_status()
        rows = r.json()

    if not rows:
        click.secho("No lost broadcasts recorded.", fg="green")
        return
    for row in rows:
        row["broadcast"] = row["data"].get("broadcast")
        row["channels"] = ",".join(row["data"].get("channels", []))
    _print_table(rows, [
        ("ID", "id", 6),
        ("Broadcast", "broadcast", 28),
        ("Channels", "channels", 40),
        ("When", "created_at", 27),
    ])


if __name__ == "__main__":
    cli()
