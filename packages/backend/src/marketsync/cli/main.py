"""MarketSync CLI — run the server and inspect the catalog.

Usage:
    marketsync serve                      # Start the realtime server (uvicorn)
    marketsync init-db                    # Create the listings table
    marketsync health                     # Ask a running server for its status
    marketsync listings                   # Print the catalog, newest first
    marketsync listings --seller u1       # Only one seller's listings
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from datetime import datetime
from typing import Optional

import click
import httpx

from marketsync import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3000"


def _api_url() -> str:
    return os.environ.get("MARKETSYNC_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the MarketSync server."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


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


def _format_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


async def _get(path: str) -> dict | list:
    async with _client() as c:
        try:
            r = await c.get(path)
            r.raise_for_status()
        except httpx.HTTPError as e:
            click.secho(f"Request to {_api_url()}{path} failed: {e}", fg="red", err=True)
            sys.exit(1)
        return r.json()


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="marketsync")
def main():
    """MarketSync — real-time marketplace listing server."""


@main.command()
@click.option("--host", help="Bind address (default: MARKETSYNC_HOST)")
@click.option("--port", "-p", type=int, help="Port (default: MARKETSYNC_PORT)")
@click.option("--reload", is_flag=True, help="Restart on code changes (development)")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the HTTP + WebSocket server."""
    import uvicorn

    from marketsync.config import settings

    uvicorn.run(
        "marketsync.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@main.command("init-db")
def init_db_command():
    """Create the listings table in MARKETSYNC_DATABASE_URL."""
    from marketsync.config import settings
    from marketsync.db.engine import engine, init_db

    async def _init():
        try:
            await init_db(engine)
        finally:
            await engine.dispose()

    asyncio.run(_init())
    click.secho(f"Database ready: {settings.database_url}", fg="green")


@main.command()
def health():
    """Show the status of a running server."""
    data = asyncio.run(_get("/api/v1/health"))
    color = "green" if data.get("status") == "healthy" else "yellow"
    click.secho(f"Status: {data.get('status')}", fg=color, bold=True)
    click.echo(_pretty_json(data))


@main.command()
@click.option("--seller", "-s", help="Only listings of this seller id")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def listings(seller: Optional[str], as_json: bool):
    """Print the catalog of a running server, newest first."""
    path = f"/api/v1/sellers/{seller}/listings" if seller else "/api/v1/listings"
    rows = asyncio.run(_get(path))

    if as_json:
        click.echo(_pretty_json(rows))
        return
    if not rows:
        click.echo("No listings found.")
        return

    for row in rows:
        row["updated"] = _format_ms(row["createdOrUpdatedAt"])
    click.secho(f"Listings ({len(rows)}):", bold=True)
    _print_table(rows, [
        ("ID", "id", 32),
        ("NAME", "name", 24),
        ("PRICE", "price", 10),
        ("CATEGORY", "category", 14),
        ("SELLER", "sellerId", 12),
        ("UPDATED", "updated", 19),
    ])


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
