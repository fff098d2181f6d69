"""Interactive setup wizard for nanomuz.

Guides the user through:
  1. Last.fm API account key and shared secret
  2. The now-playing command and poll interval
"""

from __future__ import annotations

import shutil

from pydantic import SecretStr
from rich.console import Console
from rich.prompt import Confirm, Prompt

from nanomuz.config import AppConfig, LastfmConfig, PlayerConfig

console = Console()

_DEFAULT_LINUX_COMMAND = (
    "playerctl metadata --format "
    '\'{"title": "{{title}}", "artist": "{{artist}}", "album": "{{album}}", '
    '"isPlaying": {{lc(status) == "playing"}}, "duration": {{mpris:length / 1000000}}}\''
)


# ---------------------------------------------------------------------------
# Last.fm
# ---------------------------------------------------------------------------


def _wizard_lastfm() -> LastfmConfig:
    """Prompt for the Last.fm API account credentials."""
    console.print("[bold]Step 1: Last.fm API account[/bold]")
    console.print(
        "Create an API account at "
        "[link]https://www.last.fm/api/account/create[/link]\n"
        "and copy its API key and shared secret.\n"
    )

    while True:
        api_key = Prompt.ask("Last.fm API key").strip()
        api_secret = Prompt.ask("Last.fm shared secret", password=True).strip()
        if api_key and api_secret:
            break
        retry = Confirm.ask("[red]Both values are required.[/red] Try again?", default=True)
        if not retry:
            console.print("[yellow]Skipping Last.fm setup; scrobbling stays inactive.[/yellow]\n")
            return LastfmConfig()

    console.print("[green]Saved.[/green] Run [bold]nanomuz login[/bold] afterwards to connect your account.\n")
    return LastfmConfig(api_key=api_key, api_secret=SecretStr(api_secret))


# ---------------------------------------------------------------------------
# Player
# ---------------------------------------------------------------------------


def _wizard_player() -> PlayerConfig:
    """Let the user pick the now-playing command and poll interval."""
    console.print("[bold]Step 2: Player[/bold]")
    console.print(
        "nanomuz runs a command that prints the current track as JSON\n"
        '([dim]{"title", "artist", "album", "isPlaying", "duration"}[/dim]).\n'
    )

    default_command = _DEFAULT_LINUX_COMMAND if shutil.which("playerctl") else ""
    command = Prompt.ask("Now-playing command", default=default_command).strip()

    interval_str = Prompt.ask("Poll interval in seconds", default="3")
    try:
        interval = int(interval_str)
        if interval < 1:
            raise ValueError
    except ValueError:
        console.print("[yellow]Invalid interval, using default 3 seconds.[/yellow]")
        interval = 3

    console.print()
    return PlayerConfig(command=command, poll_interval_seconds=interval)


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def run_wizard() -> AppConfig:
    """Run the interactive setup wizard and return a populated AppConfig."""
    console.print("\n[bold cyan]nanomuz Setup Wizard[/bold cyan]")
    console.print("Let's configure Last.fm scrobbling.\n")

    lastfm_cfg = _wizard_lastfm()
    player_cfg = _wizard_player()

    console.print("[green bold]Configuration complete![/green bold]\n")

    return AppConfig(
        lastfm=lastfm_cfg,
        player=player_cfg,
    )
