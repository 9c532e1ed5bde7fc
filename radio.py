"""torjolan — continuous station radio in the terminal. Entry point."""
import asyncio
import logging
import sys
from typing import Optional

import click
import httpx
from rich.logging import RichHandler

from torjolan.api import ApiClient
from torjolan.config import APP_VERSION, LOG_LEVEL, WEB_HOST, WEB_PORT
from torjolan.credentials import CredentialStore
from torjolan.errors import TorjolanError, Unauthorized
from torjolan.input import _read_key_timeout, key_action
from torjolan.models import Phase, Station, Track
from torjolan.nowplaying import NowPlayingPublisher, RemoteCommands
from torjolan.player import FFPlayEngine
from torjolan.session import SessionController
from torjolan.ui import (
    console,
    print_header,
    print_help,
    print_now_playing,
    print_search_results,
    print_stations,
    show_feedback,
    status_line,
)

SEEK_STEP = 10.0


def _setup_logging():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _require_host(store: CredentialStore) -> str:
    host = store.host
    if not host:
        console.print("  [red]No server configured.[/red] Run: [bold]python radio.py host https://your.server[/bold]")
        sys.exit(1)
    return host


def _require_login(store: CredentialStore) -> str:
    _require_host(store)
    token = store.load()
    if not token:
        console.print("  [red]Not logged in.[/red] Run: [bold]python radio.py login <username>[/bold]")
        sys.exit(1)
    return token


def _fail(store: CredentialStore, e: Exception):
    if isinstance(e, Unauthorized):
        store.delete()
        console.print("  [red]Session expired.[/red] Log in again: [bold]python radio.py login <username>[/bold]")
    else:
        console.print(f"  [red]{e}[/red]")
    sys.exit(1)


# ── Commands ─────────────────────────────────────────────────────────────────

@click.group()
@click.version_option(version=APP_VERSION)
@click.pass_context
def cli(ctx):
    """♪ Internet radio for your station server."""
    _setup_logging()
    ctx.obj = CredentialStore()


@cli.command()
@click.argument("url")
@click.pass_obj
def host(store: CredentialStore, url: str):
    """Set the server host, e.g. https://music.example.com"""
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        parsed = None
    if parsed is None or parsed.scheme not in ("http", "https") or not parsed.host:
        console.print(f"  [red]Not a valid server URL:[/red] {url}")
        sys.exit(1)
    store.host = url
    console.print(f"  [green]✓[/green] Server set to [bold]{store.host}[/bold]")


@cli.command()
@click.argument("username")
@click.pass_obj
def login(store: CredentialStore, username: str):
    """Log in and remember the token."""
    async def _login():
        async with ApiClient(_require_host(store)) as api:
            return await api.login(username)

    try:
        auth = asyncio.run(_login())
    except TorjolanError as e:
        _fail(store, e)
    store.save(auth.token)
    console.print(f"  [green]✓[/green] Logged in as [bold]{auth.username}[/bold]")


@cli.command()
@click.pass_obj
def logout(store: CredentialStore):
    """Forget the saved token."""
    store.delete()
    console.print("  Logged out.")


@cli.command()
@click.pass_obj
def stations(store: CredentialStore):
    """List your stations."""
    async def _list():
        async with ApiClient(store.host, _require_login(store)) as api:
            return await api.list_stations()

    try:
        print_stations(asyncio.run(_list()))
    except TorjolanError as e:
        _fail(store, e)


@cli.command()
@click.argument("title", required=False)
@click.option("--artist", help="Match on artist instead of (or as well as) title")
@click.pass_obj
def search(store: CredentialStore, title: Optional[str], artist: Optional[str]):
    """Search songs to seed a station with."""
    if not title and not artist:
        console.print("  [yellow]Give a title and/or --artist.[/yellow]")
        sys.exit(1)

    async def _search():
        async with ApiClient(store.host, _require_login(store)) as api:
            return await api.search(artist=artist, title=title)

    try:
        print_search_results(asyncio.run(_search()))
    except TorjolanError as e:
        _fail(store, e)


@cli.command()
@click.argument("name")
@click.argument("seed")
@click.option("--song-id", is_flag=True, help="SEED is a song id from `search`, not a title")
@click.pass_obj
def create(store: CredentialStore, name: str, seed: str, song_id: bool):
    """Create station NAME seeded by SEED and start playing it."""
    async def _create():
        async with ApiClient(store.host, _require_login(store)) as api:
            if song_id:
                created = await api.create_station(name, seed)
            else:
                created = await api.create_station_from_query(name, seed)
            console.print(f"  [green]✓[/green] Created [bold]{created[0].name}[/bold]")
            await _play(store, api, created[0], created[1])

    try:
        asyncio.run(_create())
    except LookupError as e:
        console.print(f"  [yellow]{e}[/yellow]")
        sys.exit(1)
    except TorjolanError as e:
        _fail(store, e)


@cli.command()
@click.argument("station_id")
@click.pass_obj
def play(store: CredentialStore, station_id: str):
    """Play station STATION_ID as continuous radio."""
    async def _start():
        async with ApiClient(store.host, _require_login(store)) as api:
            found = [s for s in await api.list_stations() if str(s.id) == station_id]
            if not found:
                raise LookupError(f"No station with id {station_id}")
            await _play(store, api, found[0])

    try:
        asyncio.run(_start())
    except LookupError as e:
        console.print(f"  [yellow]{e}[/yellow]")
        sys.exit(1)
    except TorjolanError as e:
        _fail(store, e)


@cli.command()
@click.option("--host", "bind", default=WEB_HOST, show_default=True)
@click.option("--port", default=WEB_PORT, show_default=True, type=int)
def serve(bind: str, port: int):
    """Run the web remote (now-playing feed + controls over WebSocket)."""
    import uvicorn

    from torjolan.web.server import create_app

    uvicorn.run(create_app(), host=bind, port=port, log_level=LOG_LEVEL.lower())


# ── Player loop ──────────────────────────────────────────────────────────────

async def _play(store: CredentialStore, api: ApiClient, station: Station, first: Optional[Track] = None):
    publisher = NowPlayingPublisher()
    events = publisher.subscribe("terminal")
    controller = SessionController(api, FFPlayEngine(), publisher)
    remote = RemoteCommands(controller)
    loop = asyncio.get_running_loop()

    print_header()
    print_help()

    async with controller:
        if first is not None:
            await controller.start_new_station(station, first)
        else:
            await controller.start_station(station)

        printer = asyncio.create_task(_print_events(events, station))
        try:
            while not printer.done():
                key = await loop.run_in_executor(None, _read_key_timeout, 0.3)
                action = key_action(key)
                if action is None:
                    continue
                if action == "quit":
                    break
                if action == "seek_back":
                    await controller.seek(controller.session.position - SEEK_STEP)
                elif action == "seek_forward":
                    await controller.seek(controller.session.position + SEEK_STEP)
                elif action == "dislike":
                    if await remote.handle(action):
                        show_feedback("👎 Skipping — won't play that again.", "yellow")
                else:
                    await remote.handle(action)
                console.print(status_line(controller.session))
        except Unauthorized as e:
            _fail(store, e)
        finally:
            printer.cancel()

    if printer.done() and not printer.cancelled() and printer.result() == "unauthorized":
        _fail(store, Unauthorized("session expired"))
    console.print("\n  [bold cyan]♪[/bold cyan]  See you next time.\n")


async def _print_events(events: asyncio.Queue, station: Station) -> str:
    """Render publisher events until the session loses its auth."""
    thumbed_up = False
    while True:
        event, data = await events.get()
        if event == "now_playing":
            thumbed_up = False
            print_now_playing(
                Track(id=data["track_id"], title=data["title"], artist=data["artist"],
                      album=data["album"], url="", cover_url=data["cover_url"]),
                station,
            )
        elif event == "session":
            if data["thumbed_up"] and not thumbed_up:
                show_feedback("👍 Noted — more like this.", "green")
            thumbed_up = data["thumbed_up"]
            if data["phase"] == Phase.PAUSED.value:
                show_feedback("⏸ paused — Space to resume", "yellow")
        elif event == "error":
            show_feedback(data["message"], "yellow")
        elif event == "unauthorized":
            return "unauthorized"


if __name__ == "__main__":
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n\n  [bold]Goodbye.[/bold]\n")
        sys.exit(0)
