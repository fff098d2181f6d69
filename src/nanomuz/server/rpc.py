"""RPC server module for the nanomuz daemon."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI
from pydantic import BaseModel

from nanomuz import config as config_mod

if TYPE_CHECKING:
    from nanomuz.player.poller import PlaybackPoller
    from nanomuz.scrobbler.service import ScrobbleService

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class RpcRequest(BaseModel):
    """Incoming RPC call from the CLI client."""

    cmd: str
    params: dict = {}


class RpcResponse(BaseModel):
    """Outgoing RPC response sent back to the CLI client."""

    ok: bool = True
    data: dict = {}
    error: str | None = None


# ---------------------------------------------------------------------------
# Daemon runtime state
# ---------------------------------------------------------------------------


class DaemonState:
    """Holds mutable runtime state shared across the daemon."""

    def __init__(self) -> None:
        self.started_at: datetime = datetime.now(UTC)
        self.shutdown_event: asyncio.Event = asyncio.Event()
        self.scrobbler: ScrobbleService | None = None
        self.poller: PlaybackPoller | None = None

    # -- queries ------------------------------------------------------------

    def get_status(self) -> dict:
        """Return a snapshot of the current daemon status."""
        uptime = (datetime.now(UTC) - self.started_at).total_seconds()
        status: dict = {
            "uptime_seconds": round(uptime, 2),
            "started_at": self.started_at.isoformat(),
        }
        if self.scrobbler:
            status["scrobbler"] = self.scrobbler.get_status()
        if self.poller:
            status["poller"] = self.poller.get_status()
        return status

    # -- mutations ----------------------------------------------------------

    def request_shutdown(self) -> None:
        """Signal the daemon to shut down gracefully."""
        log.info("shutdown_requested")
        self.shutdown_event.set()

    def set_scrobbling(self, enabled: bool) -> None:
        """Toggle scrobbling and persist the choice to the config file."""
        cfg = config_mod.load_config()
        cfg.lastfm.enabled = enabled
        config_mod.save_config(cfg)
        if self.scrobbler:
            self.scrobbler.set_enabled(enabled)


# ---------------------------------------------------------------------------
# RPC command dispatch
# ---------------------------------------------------------------------------

_KNOWN_COMMANDS = ("status", "shutdown", "health", "ping", "poll_now", "enable", "disable", "reset")


async def _dispatch(cmd: str, params: dict, state: DaemonState) -> RpcResponse:
    """Route an RPC command string to the appropriate handler."""
    if cmd == "ping":
        return RpcResponse()

    if cmd == "status":
        return RpcResponse(data=state.get_status())

    if cmd == "health":
        uptime = (datetime.now(UTC) - state.started_at).total_seconds()
        return RpcResponse(data={"uptime_seconds": round(uptime, 2)})

    if cmd == "shutdown":
        state.request_shutdown()
        return RpcResponse(data={"message": "shutdown initiated"})

    if cmd == "poll_now":
        if not state.poller:
            return RpcResponse(ok=False, error="player polling not configured")
        state.poller.trigger_now()
        return RpcResponse(data={"message": "poll triggered"})

    if cmd in ("enable", "disable"):
        enabled = cmd == "enable"
        try:
            state.set_scrobbling(enabled)
        except (OSError, ValueError) as exc:
            return RpcResponse(ok=False, error=f"could not update config: {exc}")
        return RpcResponse(data={"message": f"scrobbling {'enabled' if enabled else 'disabled'}"})

    if cmd == "reset":
        if not state.scrobbler:
            return RpcResponse(ok=False, error="scrobbler not configured")
        state.scrobbler.reset()
        return RpcResponse(data={"message": "session reset"})

    return RpcResponse(ok=False, error=f"unknown command: {cmd}")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_rpc_app(state: DaemonState) -> FastAPI:
    """Build the FastAPI application that serves the RPC endpoint."""
    app = FastAPI(title="nanomuz-daemon", docs_url=None, redoc_url=None)

    @app.post("/rpc", response_model=RpcResponse)
    async def rpc_endpoint(request: RpcRequest) -> RpcResponse:
        log.info("rpc_request", cmd=request.cmd)
        response = await _dispatch(request.cmd, request.params, state)
        if not response.ok:
            log.warning("rpc_error", cmd=request.cmd, error=response.error)
        return response

    @app.get("/health", response_model=RpcResponse)
    async def health_endpoint() -> RpcResponse:
        uptime = (datetime.now(UTC) - state.started_at).total_seconds()
        return RpcResponse(data={"uptime_seconds": round(uptime, 2)})

    return app
