"""UI display helpers — print functions for the terminal client."""
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import APP_VERSION
from .models import Phase, PlaybackSession, SearchResult, Station, Track

console = Console()


def fmt_time(seconds: float) -> str:
    m, s = divmod(int(seconds), 60)
    return f"{m}:{s:02d}"


def print_header():
    console.print(
        f"\n  [bold cyan]♪  torjolan[/bold cyan]"
        f"  [dim]v{APP_VERSION}[/dim]"
    )


def print_stations(stations: list[Station], current: Optional[Station] = None):
    if not stations:
        console.print("  [dim]No stations yet. Create one with: radio.py create <name> <song>[/dim]")
        return
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("ID", style="dim", width=6)
    table.add_column("Station", style="white")
    table.add_column("", width=12)
    for s in stations:
        status = "[bold green]● playing[/bold green]" if current and current.id == s.id else ""
        table.add_row(str(s.id), s.name, status)
    console.print(table)


def print_search_results(results: list[SearchResult]):
    if not results:
        console.print("  [dim]No matches.[/dim]")
        return
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("ID", style="dim")
    table.add_column("Title", style="white")
    table.add_column("Artist")
    table.add_column("Album", style="dim")
    for r in results:
        table.add_row(r.id, r.title, r.artist, r.album)
    console.print(table)


def print_now_playing(track: Track, station: Optional[Station] = None):
    """Panel with title, artist and album."""
    lines = [f"  [bold]{track.title}[/bold]", f"  {track.artist}"]
    if track.album:
        lines.append(f"  [dim]{track.album}[/dim]")

    console.print(Panel(
        "\n".join(lines),
        title=f"[bold green]♫[/bold green] {station.name if station else 'Now playing'}",
        border_style="green",
        expand=False,
        padding=(0, 1),
    ))


def status_line(session: PlaybackSession) -> str:
    """One-liner with phase, progress bar and thumbs state."""
    if session.phase == Phase.RECOVERING:
        return "  [yellow]↻ recovering — finding another track...[/yellow]"
    if session.phase in (Phase.LOADING, Phase.STOPPED) or session.track is None:
        return "  [dim]… loading next track[/dim]"

    elapsed, dur = session.position, session.duration
    if dur and dur > 0:
        bar_len = 20
        filled = min(bar_len, int(elapsed / dur * bar_len))
        bar_filled = "[green]" + "━" * filled + "[/green]"
        bar_empty = "[dim]" + "·" * (bar_len - filled) + "[/dim]"
        progress = f"  {fmt_time(elapsed)}/{fmt_time(dur)} {bar_filled}{bar_empty}"
    else:
        progress = f"  {fmt_time(elapsed)}"

    icon = "[yellow]⏸[/yellow]" if session.phase == Phase.PAUSED else "[green]♫[/green]"
    thumbs = "  [green]👍[/green]" if session.thumbed_up else ""
    return f"  {icon}{progress}  [dim]{session.track.artist} — {session.track.title}[/dim]{thumbs}"


def print_help():
    console.print(
        "  [dim]Space[/dim] play/pause   "
        "[dim]+[/dim] thumbs up   "
        "[dim]-[/dim] thumbs down   "
        "[dim]←/→[/dim] seek 10s   "
        "[dim]q[/dim] quit"
    )


def show_feedback(message: str, style: str = "dim"):
    console.print(f"  [{style}]{message}[/{style}]")
