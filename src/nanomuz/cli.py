"""CLI interface for the nanomuz daemon."""

from __future__ import annotations

import asyncio
import contextlib
import tomllib
from collections import deque
from pathlib import Path

import httpx
import typer
from pydantic import SecretStr, ValidationError
from rich.console import Console

from nanomuz.config import config_exists, ensure_dirs, get_base_dir, load_config, save_config

app = typer.Typer(
    name="nanomuz",
    help="Background daemon that scrobbles your local music player to Last.fm.",
    add_completion=False,
)
console = Console()


def main() -> None:
    """Entry point that wraps ``app()`` with clean KeyboardInterrupt and bad-config handling."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None
    except (tomllib.TOMLDecodeError, ValidationError) as exc:
        console.print(f"[red]Invalid configuration in {get_base_dir() / 'config.toml'}:[/red]\n{exc}")
        raise SystemExit(1) from None


# ---------------------------------------------------------------------------
# RPC helper
# ---------------------------------------------------------------------------


def _socket_path() -> Path:
    return get_base_dir() / "daemon.sock"


def send_command(cmd: str, params: dict | None = None) -> dict:
    """Send a JSON-RPC-style command to the running daemon over UDS.

    Raises a user-friendly error (via ``typer.Exit``) when the daemon
    socket does not exist or the connection is refused.
    """
    sock = _socket_path()
    if not sock.exists():
        console.print(
            f"[red]Daemon is not running.[/red]  (socket not found at [bold]{sock}[/bold])",
        )
        raise typer.Exit(1)

    payload: dict = {"cmd": cmd}
    if params is not None:
        payload["params"] = params

    transport = httpx.HTTPTransport(uds=str(sock))
    try:
        with httpx.Client(transport=transport, base_url="http://localhost") as client:
            response = client.post("/rpc", json=payload, timeout=10.0)
            response.raise_for_status()
            return response.json()
    except httpx.ConnectError:
        console.print(
            "[red]Could not connect to daemon.[/red]  Is it running?  Try [bold]nanomuz start[/bold].",
        )
        raise typer.Exit(1) from None
    except httpx.HTTPStatusError as exc:
        console.print(f"[red]Daemon returned an error:[/red] {exc.response.status_code}")
        raise typer.Exit(1) from exc


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _format_duration(seconds: float) -> str:
    """Format seconds into a human-readable duration string."""
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {minutes}m"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h"


# ---------------------------------------------------------------------------
# Daemon commands
# ---------------------------------------------------------------------------


@app.command()
def start() -> None:
    """Start the nanomuz background daemon (runs setup wizard on first launch)."""
    from nanomuz.daemon import Daemon

    ensure_dirs()

    if not config_exists():
        from nanomuz.wizard import run_wizard

        console.print("[yellow]No configuration found. Starting setup wizard...[/yellow]\n")
        cfg = run_wizard()
        save_config(cfg)
        console.print("[green]Configuration saved.[/green]\n")

    daemon = Daemon()
    if daemon.is_running():
        console.print(f"[yellow]Daemon is already running[/yellow] (PID {daemon.get_pid()}).")
        raise typer.Exit(0)

    daemon.start()
    console.print(f"[green]Daemon started[/green] (PID {daemon.get_pid()}).")


@app.command()
def stop() -> None:
    """Stop the running daemon gracefully (falls back to SIGTERM if RPC unavailable)."""
    from nanomuz.daemon import Daemon

    sock = _socket_path()
    if sock.exists():
        try:
            send_command("shutdown")
            console.print("[green]Daemon stopped.[/green]")
            return
        except SystemExit:
            # send_command raises typer.Exit on connection errors; fall through
            # to the PID-based fallback.
            pass

    daemon = Daemon()
    if not daemon.is_running():
        console.print("[yellow]Daemon is not running.[/yellow]")
        raise typer.Exit(0)

    daemon.stop()
    console.print("[green]Daemon stopped.[/green]")


@app.command()
def restart() -> None:
    """Restart the daemon: performs stop followed by start."""
    from nanomuz.daemon import Daemon

    sock = _socket_path()
    if sock.exists():
        with contextlib.suppress(SystemExit):
            send_command("shutdown")

    daemon = Daemon()
    if daemon.is_running():
        daemon.stop()

    ensure_dirs()
    daemon = Daemon()
    daemon.start()
    console.print(f"[green]Daemon restarted[/green] (PID {daemon.get_pid()}).")


@app.command()
def status() -> None:
    """Show daemon uptime, the current listening session and scrobble counters."""
    result = send_command("status")
    data = result.get("data", result) if isinstance(result, dict) else result

    console.print()

    uptime_secs = data.get("uptime_seconds")
    if uptime_secs is not None:
        console.print(f"  [bold]Uptime:[/bold]  {_format_duration(uptime_secs)}")

    scrobbler = data.get("scrobbler")
    if scrobbler:
        enabled = scrobbler.get("enabled")
        authenticated = scrobbler.get("authenticated")
        console.print(f"  [bold]Scrobbling:[/bold] {'[green]on[/green]' if enabled else '[yellow]off[/yellow]'}")
        console.print(
            f"  [bold]Last.fm:[/bold]    {'[green]connected[/green]' if authenticated else '[red]not connected[/red]'}"
        )

        session = scrobbler.get("session")
        console.print("\n  [bold cyan]Now playing[/bold cyan]")
        if session:
            state = "playing" if session.get("playing") else "paused"
            console.print(f"    {session['artist']} - {session['track']}", highlight=False, markup=False)
            if session.get("album"):
                console.print(f"    album:    {session['album']}", highlight=False, markup=False)
            console.print(f"    state:    {state}")
            console.print(f"    played:   {_format_duration(session.get('played_seconds', 0))}")
            console.print(f"    scrobbled: {session.get('scrobbled')}")
        else:
            console.print("    [dim]nothing[/dim]")

        stats = scrobbler.get("stats")
        if stats:
            console.print("\n  [bold cyan]Counters[/bold cyan]")
            for k, v in stats.items():
                console.print(f"    {k}: {v}")

    poller = data.get("poller")
    if poller:
        console.print("\n  [bold cyan]Poller[/bold cyan]")
        console.print(f"    running:  {poller.get('running')}")
        console.print(f"    interval: {poller.get('interval_seconds')}s")

    console.print()


@app.command()
def logs(
    tail_lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    scrobble: bool = typer.Option(False, "--scrobble", help="Show scrobble.log (JSON) instead of daemon.log"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output (like tail -f)"),
) -> None:
    """Show recent daemon log output (supports --scrobble for the JSON scrobble log, --follow for live tail)."""
    filename = "scrobble.log" if scrobble else "daemon.log"
    log_file = get_base_dir() / "logs" / filename
    if not log_file.exists():
        console.print(f"[yellow]Log file not found:[/yellow] {log_file}")
        raise typer.Exit(1)

    if follow:
        _follow_log(log_file, tail_lines)
        return

    with open(log_file, encoding="utf-8") as fh:
        last_lines = deque(fh, maxlen=tail_lines)

    if not last_lines:
        console.print("[dim]Log file is empty.[/dim]")
        return

    for line in last_lines:
        _print_log_line(line)


def _log_line_style(line: str) -> str | None:
    """Return a Rich style string based on the log level found in *line*.

    Matches structlog formats only:
    - ConsoleRenderer: ``[error    ]``
    - JSONRenderer: ``"level": "error"``
    """
    lower = line.lower()
    if "[error" in lower or "[critical" in lower or '"level": "error"' in lower or '"level": "critical"' in lower:
        return "red"
    if "[warning" in lower or '"level": "warning"' in lower:
        return "yellow"
    if "[debug" in lower or '"level": "debug"' in lower:
        return "dim"
    return None


def _print_log_line(line: str) -> None:
    """Print a single log line with level-based color highlighting."""
    line = line.rstrip("\n")
    if not line:
        return
    console.print(line, style=_log_line_style(line), highlight=False, markup=False)


def _follow_log(log_file: Path, initial_lines: int = 10) -> None:
    """Follow a log file, printing new lines as they appear (like ``tail -f``)."""
    import time

    with open(log_file, encoding="utf-8") as fh:
        last = deque(fh, maxlen=initial_lines)
    for line in last:
        _print_log_line(line)

    with open(log_file, encoding="utf-8") as fh:
        fh.seek(0, 2)  # seek to end
        try:
            while True:
                line = fh.readline()
                if line:
                    _print_log_line(line)
                else:
                    time.sleep(0.5)
        except KeyboardInterrupt:
            pass


# ---------------------------------------------------------------------------
# Last.fm account
# ---------------------------------------------------------------------------


def _open_browser(url: str) -> None:
    import webbrowser

    console.print(f"If the browser does not open, visit:\n  [link]{url}[/link]\n")
    webbrowser.open(url)


async def _run_login(api_key: str, api_secret: str):
    from nanomuz.lastfm import AuthService, CredentialStore, LastFMClient

    async with LastFMClient(api_key, api_secret) as client:
        auth = AuthService(client, CredentialStore())
        return await auth.start_authentication(open_url=_open_browser)


@app.command()
def login() -> None:
    """Connect a Last.fm account (opens the browser and waits up to two minutes)."""
    cfg = load_config()
    if not cfg.is_lastfm_configured():
        console.print(
            "[red]Last.fm API key and secret are not set.[/red]  "
            "Run [bold]nanomuz config set lastfm.api_key <key>[/bold] and "
            "[bold]nanomuz config set lastfm.api_secret <secret>[/bold].",
        )
        raise typer.Exit(1)

    console.print("Opening browser for Last.fm authorization...")
    with console.status("Waiting for you to allow access on last.fm..."):
        result = asyncio.run(_run_login(cfg.lastfm.api_key, cfg.lastfm.api_secret.get_secret_value()))

    if not result.success:
        console.print("[red bold]Last.fm authentication failed.[/red bold]  Could not authenticate with Last.fm. Please try again.")
        raise typer.Exit(1)

    console.print(f"[green]Connected to Last.fm[/green] as [bold]{result.username}[/bold].")


@app.command()
def logout() -> None:
    """Disconnect the Last.fm account and drop the current listening session."""
    from nanomuz.lastfm import CredentialStore

    if not CredentialStore().delete():
        console.print("[red]Could not update the config file.[/red] Check ~/.nanomuz/config.toml and try again.")
        raise typer.Exit(1)
    if _socket_path().exists():
        with contextlib.suppress(SystemExit):
            send_command("reset")
    console.print("[green]Disconnected from Last.fm.[/green]")


def _set_scrobbling(enabled: bool) -> None:
    if _socket_path().exists():
        with contextlib.suppress(SystemExit):
            result = send_command("enable" if enabled else "disable")
            if result.get("ok", True):
                return
    cfg = load_config()
    cfg.lastfm.enabled = enabled
    save_config(cfg)


@app.command()
def enable() -> None:
    """Turn scrobbling on."""
    _set_scrobbling(True)
    console.print("[green]Scrobbling enabled.[/green]")


@app.command()
def disable() -> None:
    """Turn scrobbling off (the current session is dropped without scrobbling)."""
    _set_scrobbling(False)
    console.print("[yellow]Scrobbling disabled.[/yellow]")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _mask(secret: SecretStr) -> str:
    """Return '***' if the secret is non-empty, else '(not set)'."""
    return "[bold]***[/bold]" if secret.get_secret_value() else "[dim](not set)[/dim]"


config_app = typer.Typer(name="config", help="View and modify configuration.", add_completion=False)
app.add_typer(config_app)


@config_app.command(name="show")
def config_show() -> None:
    """Show current configuration (secrets are masked)."""
    cfg = load_config()

    console.print("\n[bold]Current Configuration[/bold]\n")

    console.print("[bold cyan]\\[daemon][/bold cyan]")
    console.print(f"  log_level = {cfg.daemon.log_level}")

    console.print("\n[bold cyan]\\[player][/bold cyan]")
    console.print(f"  poll_interval_seconds = {cfg.player.poll_interval_seconds}")
    console.print(f"  command               = {cfg.player.command or '[dim](not set)[/dim]'}", highlight=False)

    console.print("\n[bold cyan]\\[lastfm][/bold cyan]")
    console.print(f"  enabled     = {str(cfg.lastfm.enabled).lower()}")
    console.print(f"  api_key     = {cfg.lastfm.api_key or '[dim](not set)[/dim]'}")
    console.print(f"  api_secret  = {_mask(cfg.lastfm.api_secret)}")
    console.print(f"  username    = {cfg.lastfm.username or '[dim](not set)[/dim]'}")
    console.print(f"  session_key = {_mask(cfg.lastfm.session_key)}")
    console.print()


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. player.poll_interval_seconds"),
    value: str = typer.Argument(help="New value"),
) -> None:
    """Set a configuration value (e.g. nanomuz config set player.poll_interval_seconds 5)."""

    parts = key.split(".", maxsplit=1)
    if len(parts) != 2:
        console.print("[red]Key must be in section.field format (e.g. lastfm.api_key).[/red]")
        raise typer.Exit(1)

    section_name, field_name = parts

    cfg = load_config()
    section_map = {
        "daemon": cfg.daemon,
        "player": cfg.player,
        "lastfm": cfg.lastfm,
    }

    if section_name not in section_map:
        console.print(f"[red]Unknown section:[/red] {section_name}")
        console.print(f"[dim]Valid sections: {', '.join(section_map)}[/dim]")
        raise typer.Exit(1)

    section_model = section_map[section_name]
    fields = type(section_model).model_fields
    if field_name not in fields:
        console.print(f"[red]Unknown field:[/red] {section_name}.{field_name}")
        console.print(f"[dim]Valid fields: {', '.join(fields)}[/dim]")
        raise typer.Exit(1)

    field_type = fields[field_name].annotation

    try:
        coerced = _coerce_value(value, field_type)
        section_data = section_model.model_dump(mode="python")
        section_data[field_name] = coerced
        new_section = type(section_model)(**section_data)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid value:[/red] {exc}")
        raise typer.Exit(1) from exc

    setattr(cfg, section_name, new_section)
    save_config(cfg)

    display_val = "***" if isinstance(coerced, SecretStr) else coerced
    console.print(f"[green]Set[/green] {key} = {display_val}")


def _coerce_value(raw: str, field_type: type) -> object:
    """Coerce a string value to the expected field type."""
    if field_type is SecretStr:
        return SecretStr(raw)

    if field_type is bool:
        if raw.lower() in ("true", "1", "yes"):
            return True
        if raw.lower() in ("false", "0", "no"):
            return False
        msg = f"Cannot convert '{raw}' to bool (use true/false)"
        raise ValueError(msg)

    if field_type is int:
        return int(raw)

    return raw
