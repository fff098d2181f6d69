"""Daemon management for the nanomuz background process.

Handles daemonization (double-fork), PID tracking, graceful shutdown, and
the async main loop that polls the player, drives the scrobble service and
hosts the JSON-RPC server over a Unix domain socket.
"""

from __future__ import annotations

import asyncio
import atexit
import os
import signal
import socket
import sys
import time
from pathlib import Path

import structlog
import uvicorn

from nanomuz.config import get_base_dir

log = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants derived from the shared config layout
# ---------------------------------------------------------------------------

_PID_FILE = "daemon.pid"
_SOCKET_FILE = "daemon.sock"
_LOG_DIR = "logs"
_DAEMON_LOG = "daemon.log"


# ---------------------------------------------------------------------------
# Standalone helpers
# ---------------------------------------------------------------------------


def ensure_clean_socket(sock_path: Path) -> None:
    """Remove *sock_path* if it is a stale (unconnectable) Unix socket.

    If a living process is listening on the socket the file is left alone so
    that we don't accidentally break a running daemon.
    """
    if not sock_path.exists():
        return

    # Try to connect; if we can, somebody is already listening.
    test_sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        test_sock.connect(str(sock_path))
    except (ConnectionRefusedError, FileNotFoundError, OSError):
        # Nobody home, safe to remove the leftover file.
        log.debug("removing stale socket", path=str(sock_path))
        sock_path.unlink(missing_ok=True)
    else:
        test_sock.close()


# ---------------------------------------------------------------------------
# Daemon class
# ---------------------------------------------------------------------------


class Daemon:
    """Manages the lifecycle of the nanomuz background daemon."""

    def __init__(self) -> None:
        base = get_base_dir()
        self.base_dir: Path = base
        self.pid_path: Path = base / _PID_FILE
        self.socket_path: Path = base / _SOCKET_FILE
        self.log_dir: Path = base / _LOG_DIR
        self.log_file: Path = self.log_dir / _DAEMON_LOG

    # -- PID helpers --------------------------------------------------------

    def get_pid(self) -> int | None:
        """Read the PID from the PID file, or *None* if it does not exist."""
        try:
            return int(self.pid_path.read_text().strip())
        except (FileNotFoundError, ValueError):
            return None

    def is_running(self) -> bool:
        """Return *True* if the daemon process is alive.

        Cleans up a stale PID file when the recorded process no longer exists.
        """
        pid = self.get_pid()
        if pid is None:
            return False

        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            log.debug("removing stale pid file", pid=pid)
            self.pid_path.unlink(missing_ok=True)
            return False
        except PermissionError:
            # Process exists but we lack permission to signal it, still alive.
            return True

        return True

    def _write_pid(self) -> None:
        """Write the current process PID to the PID file."""
        self.pid_path.write_text(str(os.getpid()))

    def _cleanup(self) -> None:
        """Remove the PID file and socket file if they exist."""
        self.pid_path.unlink(missing_ok=True)
        self.socket_path.unlink(missing_ok=True)

    # -- Start / Stop -------------------------------------------------------

    def start(self) -> None:  # noqa: C901
        """Daemonize the current process using the classic double-fork.

        The *parent* returns once the grandchild has written its PID file so
        that the CLI can print a confirmation message.
        """
        if self.is_running():
            log.warning("daemon already running", pid=self.get_pid())
            return

        self.base_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        self.log_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

        # -- first fork -------------------------------------------------------
        try:
            pid = os.fork()
        except OSError as exc:
            log.error("first fork failed", error=str(exc))
            sys.exit(1)

        if pid > 0:
            for _ in range(50):
                if self.pid_path.exists():
                    break
                time.sleep(0.1)
            return

        # -- child: new session ------------------------------------------------
        os.setsid()

        # -- second fork -------------------------------------------------------
        try:
            pid = os.fork()
        except OSError as exc:
            log.error("second fork failed", error=str(exc))
            sys.exit(1)

        if pid > 0:
            os._exit(0)

        # -- grandchild: the actual daemon process -----------------------------
        sys.stdout.flush()
        sys.stderr.flush()

        devnull = open(os.devnull, "rb")  # noqa: SIM115
        log_fh = open(self.log_file, "ab")  # noqa: SIM115

        os.dup2(devnull.fileno(), sys.stdin.fileno())
        os.dup2(log_fh.fileno(), sys.stdout.fileno())
        os.dup2(log_fh.fileno(), sys.stderr.fileno())

        self._write_pid()
        atexit.register(self._cleanup)

        self._run_daemon()

    def stop(self) -> None:
        """Send SIGTERM to the running daemon and wait for it to exit."""
        pid = self.get_pid()
        if pid is None:
            log.info("no pid file found; daemon is not running")
            return

        if not self.is_running():
            log.info("daemon is not running (stale pid file cleaned up)")
            return

        log.info("sending SIGTERM to daemon", pid=pid)
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            log.info("process already gone", pid=pid)
            self._cleanup()
            return

        for _ in range(100):
            try:
                os.kill(pid, 0)
            except ProcessLookupError:
                log.info("daemon stopped", pid=pid)
                self._cleanup()
                return
            time.sleep(0.1)

        log.warning("daemon did not stop in time; sending SIGKILL", pid=pid)
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        self._cleanup()

    # -- Internal daemon loop -----------------------------------------------

    def _run_daemon(self) -> None:
        """Configure logging and start the async main loop.

        Called inside the fully daemonized grandchild process.
        """
        from nanomuz.config import load_config
        from nanomuz.logging import setup_logging

        setup_logging(load_config().daemon.log_level, self.log_dir)
        asyncio.run(self._async_main())

    async def _async_main(self) -> None:
        """Async entry point: wire the scrobbler, start polling and serve RPC until shutdown."""
        from nanomuz.config import load_config
        from nanomuz.lastfm import AuthService, CredentialStore, LastFMClient
        from nanomuz.player import PlaybackPoller, create_source
        from nanomuz.scrobbler import ScrobbleService
        from nanomuz.server.rpc import DaemonState, create_rpc_app

        state = DaemonState()
        app_config = load_config()

        client = LastFMClient(
            app_config.lastfm.api_key,
            app_config.lastfm.api_secret.get_secret_value(),
        )
        async with client:
            auth = AuthService(client, CredentialStore())
            scrobbler = ScrobbleService(client, auth, enabled=app_config.lastfm.enabled)
            poller = PlaybackPoller(
                create_source(app_config.player.command),
                scrobbler,
                interval_seconds=app_config.player.poll_interval_seconds,
            )
            state.scrobbler = scrobbler
            state.poller = poller

            if app_config.is_lastfm_configured():
                await poller.start()
            else:
                log.warning("lastfm_not_configured", hint="nanomuz config set lastfm.api_key <key>")

            # Install signal handlers via the event loop so they can safely
            # set the asyncio.Event.
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, state.request_shutdown)

            ensure_clean_socket(self.socket_path)

            rpc_app = create_rpc_app(state)
            rpc_config = uvicorn.Config(
                rpc_app,
                uds=str(self.socket_path),
                log_level="info",
                loop="asyncio",
            )
            rpc_server = uvicorn.Server(rpc_config)
            rpc_task = asyncio.create_task(rpc_server.serve())

            await state.shutdown_event.wait()

            log.info("initiating graceful shutdown")

            # Stop polling first so no new submissions are spawned, then let
            # in-flight Last.fm requests finish.
            await poller.stop()
            await scrobbler.drain()
            await auth.aclose()

            rpc_server.should_exit = True
            await rpc_task

        self._cleanup()
        log.info("daemon shut down cleanly")
