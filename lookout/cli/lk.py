#!/usr/bin/env python3
"""
CLI for lookout - the launcher query engine.

Usage:
    lk search "query"           - Run a query and show ranked results
    lk select ID                - Act on a result of the last query
    lk alias add KEY ...        - Create an alias
    lk alias list               - List aliases
    lk alias remove KEY         - Remove an alias
    lk sources move ID up|down  - Change source priority
    lk daemon start|stop|status - Manage the daemon
"""

import asyncio
import os
from typing import Optional

import click
import httpx
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.text import Text
from loguru import logger

console = Console()

# Default daemon URL
DAEMON_URL = "http://localhost:8765"

# Replaced in tests with an httpx.MockTransport
_transport: Optional[httpx.AsyncBaseTransport] = None


def daemon_url() -> str:
    return os.environ.get("LOOKOUT_URL", DAEMON_URL)


def make_client(timeout: float = 5.0) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=daemon_url(), transport=_transport, timeout=timeout)


def print_error(response: httpx.Response, prefix: str) -> None:
    try:
        message = response.json().get("error", {}).get("message", response.text)
    except ValueError:
        message = response.text
    console.print(f"[red]{prefix}:[/red] {message}")


def not_running() -> None:
    console.print("[red]Cannot connect to daemon. Is it running?[/red]")
    console.print("Start with: [cyan]lk daemon start[/cyan]")


async def request(method: str, path: str, **kwargs) -> Optional[httpx.Response]:
    """Send one request to the daemon. Returns None when it is unreachable."""
    try:
        async with make_client() as client:
            return await client.request(method, path, **kwargs)
    except httpx.ConnectError:
        not_running()
        return None


@click.group()
def cli():
    """lookout - launcher query engine CLI."""


@cli.command()
@click.argument("query", default="")
@click.option("--limit", "-l", default=20, help="Max results to show")
def search(query: str, limit: int):
    """Run a query. An empty query lists the defaults."""
    asyncio.run(search_query(query, limit))


async def search_query(query: str, limit: int):
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console
    ) as progress:
        progress.add_task(description="Searching...", total=None)
        response = await request("GET", "/search", params={"q": query})

    if response is None:
        return
    if response.status_code != 200:
        print_error(response, "Search failed")
        return
    display_results(response.json(), limit)


def highlight(title: str, positions) -> Text:
    text = Text(title)
    for index in positions or ():
        if 0 <= index < len(title):
            text.stylize("bold yellow", index, index + 1)
    return text


def display_results(data: dict, limit: int = 20):
    """Display ranked candidates in a table."""
    if data.get("superseded"):
        console.print("[yellow]Query was superseded by a newer one[/yellow]")
        return

    candidates = data.get("candidates", [])
    if not candidates:
        console.print("[yellow]No results found[/yellow]")
        return

    if data.get("alias"):
        console.print(f"[magenta]Alias:[/magenta] {data['alias']}")

    table = Table(title=f"Results ({data.get('latency_ms', 0):.1f}ms)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Title", no_wrap=False)
    table.add_column("Subtitle", style="dim", no_wrap=False)
    table.add_column("Source", style="magenta")
    table.add_column("Score", justify="right")
    table.add_column("ID", style="cyan")

    for i, c in enumerate(candidates[:limit], 1):
        score = c.get("score")
        table.add_row(
            str(i),
            highlight(c.get("title", ""), c.get("title_matches")),
            c.get("subtitle") or "",
            c.get("source", "unknown"),
            "" if score is None else str(score),
            c.get("id", ""),
        )

    console.print(table)

    timed_out = data.get("timed_out") or []
    if timed_out:
        console.print(f"[yellow]Timed out:[/yellow] {', '.join(timed_out)}")


@cli.command()
@click.argument("candidate_id")
def select(candidate_id: str):
    """Act on a result of the last query."""
    asyncio.run(select_candidate(candidate_id))


async def select_candidate(candidate_id: str):
    response = await request("POST", "/select", json={"id": candidate_id})
    if response is None:
        return
    if response.status_code == 200:
        console.print(f"[green]✓[/green] Selected {candidate_id}")
    else:
        print_error(response, "Select failed")


@cli.group()
def alias():
    """Manage aliases."""


@alias.command(name="add")
@click.argument("key", required=False)
@click.option("--from-result", "candidate_id", help="Bind to the target of a result of the last query")
@click.option("--site", "site_id", help="Web search site id")
@click.option("--app", "app_id", help="Application id")
@click.option("--quicklink", "link_id", help="Quicklink id")
@click.option("--label", help="Display label for the target")
def alias_add(
    key: Optional[str],
    candidate_id: Optional[str],
    site_id: Optional[str],
    app_id: Optional[str],
    link_id: Optional[str],
    label: Optional[str],
):
    """Create an alias KEY for a result, site, app or quicklink."""
    chosen = [v for v in (candidate_id, site_id, app_id, link_id) if v]
    if len(chosen) != 1:
        raise click.UsageError("Give exactly one of --from-result, --site, --app, --quicklink")

    if candidate_id:
        body = {"candidate_id": candidate_id}
        if key:
            body["alias"] = key
    else:
        if not key:
            raise click.UsageError("KEY is required unless --from-result is used")
        if site_id:
            target = {"type": "web-search", "siteId": site_id, "displayName": label or site_id}
        elif app_id:
            target = {"type": "app-launch", "packageName": app_id, "label": label or app_id}
        else:
            target = {"type": "quicklink", "quicklinkId": link_id, "title": label or link_id}
        body = {"alias": key, "target": target}

    asyncio.run(add_alias(body))


async def add_alias(body: dict):
    response = await request("POST", "/aliases", json=body)
    if response is None:
        return
    if response.status_code == 201:
        data = response.json()
        console.print(f"[green]✓[/green] Alias [cyan]{data['alias']}[/cyan] created")
    else:
        print_error(response, "Could not create alias")


@alias.command(name="list")
def alias_list():
    """List aliases in lookup order."""
    asyncio.run(list_aliases())


async def list_aliases():
    response = await request("GET", "/aliases")
    if response is None:
        return
    if response.status_code != 200:
        print_error(response, "Could not list aliases")
        return

    entries = response.json().get("aliases", [])
    if not entries:
        console.print("[yellow]No aliases defined[/yellow]")
        return

    table = Table(title="Aliases")
    table.add_column("Alias", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Target")
    for entry in entries:
        target = entry.get("target", {})
        name = target.get("displayName") or target.get("label") or target.get("title") or ""
        table.add_row(entry.get("alias", ""), target.get("type", ""), name)
    console.print(table)


@alias.command(name="remove")
@click.argument("key")
def alias_remove(key: str):
    """Remove an alias."""
    asyncio.run(remove_alias(key))


async def remove_alias(key: str):
    response = await request("DELETE", f"/aliases/{key}")
    if response is None:
        return
    if response.status_code != 200:
        print_error(response, "Could not remove alias")
    elif response.json().get("removed"):
        console.print(f"[green]✓[/green] Removed alias {key}")
    else:
        console.print(f"[yellow]No alias named {key}[/yellow]")


@cli.group()
def sources():
    """Manage result sources."""


@sources.command(name="move")
@click.argument("source_id")
@click.argument("direction", type=click.Choice(["up", "down"]))
def sources_move(source_id: str, direction: str):
    """Move a source up or down in priority."""
    asyncio.run(move_source(source_id, direction))


async def move_source(source_id: str, direction: str):
    response = await request("POST", f"/sources/{source_id}/move", json={"direction": direction})
    if response is None:
        return
    if response.status_code != 200:
        print_error(response, "Could not move source")
        return

    data = response.json()
    if not data.get("moved"):
        console.print(f"[yellow]{source_id} cannot move {direction}[/yellow]")
    console.print(f"Order: {' > '.join(data.get('order', []))}")


@cli.group()
def daemon():
    """Manage the lookout daemon."""


@daemon.command()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
def start(config: Optional[str]):
    """Start the lookout daemon."""
    console.print("[cyan]Starting lookout daemon...[/cyan]")

    # Import here so client commands stay light
    from ..daemon.main import main as daemon_main

    try:
        asyncio.run(daemon_main(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Daemon stopped by user[/yellow]")
    except Exception as e:
        console.print(f"[red]Daemon error:[/red] {e}")
        logger.exception("Daemon crashed")


@daemon.command()
def stop():
    """Stop the lookout daemon."""
    asyncio.run(stop_daemon())


async def stop_daemon():
    """Send stop signal to daemon."""
    try:
        async with make_client() as client:
            response = await client.post("/shutdown")
    except httpx.ConnectError:
        console.print("[yellow]Daemon not running[/yellow]")
        return

    if response.status_code == 200:
        console.print("[green]Daemon stopped[/green]")
    else:
        print_error(response, "Failed to stop daemon")


@daemon.command()
def status():
    """Check daemon status."""
    asyncio.run(check_status())


async def check_status():
    """Check if daemon is running and get stats."""
    try:
        async with make_client(timeout=2.0) as client:
            response = await client.get("/status")
    except httpx.ConnectError:
        console.print("[red]✗ Daemon is not running[/red]")
        console.print("Start with: [cyan]lk daemon start[/cyan]")
        return

    if response.status_code != 200:
        console.print("[red]Daemon error[/red]")
        return

    data = response.json()
    console.print("[green]✓ Daemon is running[/green]")
    console.print(f"\nUptime: {data.get('uptime', 'unknown')}")

    stats = data.get("stats", {})
    console.print(f"Searches: {stats.get('search_count', 0)}")
    console.print(f"Selections: {stats.get('selection_count', 0)}")
    console.print(f"Memory: {stats.get('memory_mb', 0):.1f} MB")

    engine = data.get("engine", {})
    if engine.get("sources"):
        table = Table(title="Sources")
        table.add_column("#", justify="right")
        table.add_column("Source", style="cyan")
        table.add_column("Enabled")
        table.add_column("Health")
        for s in sorted(engine["sources"], key=lambda s: s.get("rank", 0)):
            table.add_row(
                str(s.get("rank", 0) + 1),
                s.get("id", ""),
                "yes" if s.get("enabled") else "no",
                s.get("health", {}).get("state", "unknown"),
            )
        console.print(table)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
