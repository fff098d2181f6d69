"""Async Last.fm Web API client using httpx.

Methods:
- auth.getToken / auth.getSession (GET, query string)
- track.updateNowPlaying / track.scrobble (POST, form-encoded body)

Every call is signed with :func:`nanomuz.lastfm.signing.sign` before
``format=json`` is appended.  Calls never raise: transport errors, bad JSON
and API-reported errors are logged and surface as ``None`` / ``False``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from nanomuz.lastfm.signing import sign

log = structlog.get_logger(__name__)

API_BASE = "https://ws.audioscrobbler.com/2.0/"
AUTH_URL = "https://www.last.fm/api/auth/"
_TIMEOUT = 30.0


@dataclass(frozen=True)
class LastFMSession:
    """Result of a successful ``auth.getSession`` call."""

    key: str
    name: str


def encode_form(params: dict[str, str]) -> str:
    """Encode *params* as an ``application/x-www-form-urlencoded`` body.

    Values are percent-encoded outside ``A-Z a-z 0-9 - . _ ~``; keys are
    written as-is.
    """
    return "&".join(f"{key}={quote(value, safe='')}" for key, value in params.items())


class LastFMClient:
    """Async Last.fm client holding only the endpoint and API credentials."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        base_url: str = API_BASE,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self._base_url = base_url
        self._transport = _transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> LastFMClient:
        kw: dict = {"timeout": _TIMEOUT}
        if self._transport is not None:
            kw["transport"] = self._transport
        self._client = httpx.AsyncClient(**kw)
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # -- request helpers --

    def _signed(self, params: dict[str, str]) -> dict[str, str]:
        signed = dict(params)
        signed["api_sig"] = sign(params, self._api_secret)
        signed["format"] = "json"
        return signed

    async def _request(self, http_method: str, params: dict[str, str]) -> dict[str, Any] | None:
        assert self._client is not None  # noqa: S101

        api_method = params.get("method")
        signed = self._signed(params)
        try:
            if http_method == "GET":
                resp = await self._client.get(self._base_url, params=signed)
            else:
                resp = await self._client.post(
                    self._base_url,
                    content=encode_form(signed).encode("utf-8"),
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as exc:
            log.warning("lastfm_transport_error", method=api_method, error=str(exc))
            return None

        try:
            data = resp.json()
        except ValueError:
            log.warning(
                "lastfm_invalid_json",
                method=api_method,
                status=resp.status_code,
                body=resp.text[:500],
            )
            return None

        if not isinstance(data, dict):
            log.warning("lastfm_unexpected_payload", method=api_method, body=resp.text[:500])
            return None

        if "error" in data:
            log.warning(
                "lastfm_api_error",
                method=api_method,
                code=data.get("error"),
                message=data.get("message"),
            )
            return None

        return data

    # -- auth --

    async def get_token(self) -> str | None:
        """Request an unauthorized request token (``auth.getToken``)."""
        data = await self._request("GET", {"method": "auth.getToken", "api_key": self._api_key})
        token = data.get("token") if data else None
        if not isinstance(token, str) or not token:
            return None
        return token

    def get_authorization_url(self, token: str) -> str:
        """Return the page where the user grants this application access."""
        return f"{AUTH_URL}?api_key={self._api_key}&token={token}"

    async def get_session(self, token: str) -> LastFMSession | None:
        """Exchange an authorized *token* for a session (``auth.getSession``)."""
        data = await self._request(
            "GET",
            {"method": "auth.getSession", "api_key": self._api_key, "token": token},
        )
        session = data.get("session") if data else None
        if not isinstance(session, dict):
            return None

        key = session.get("key")
        name = session.get("name")
        if not isinstance(key, str) or not isinstance(name, str):
            return None
        return LastFMSession(key=key, name=name)

    # -- tracks --

    async def update_now_playing(
        self,
        artist: str,
        track: str,
        album: str | None,
        duration: int | None,
        session_key: str,
    ) -> bool:
        """Send a transient "now playing" status."""
        params = {
            "method": "track.updateNowPlaying",
            "api_key": self._api_key,
            "sk": session_key,
            "artist": artist,
            "track": track,
        }
        if album:
            params["album"] = album
        if duration is not None and duration > 0:
            params["duration"] = str(duration)
        return await self._request("POST", params) is not None

    async def scrobble(
        self,
        artist: str,
        track: str,
        album: str | None,
        timestamp: int,
        session_key: str,
    ) -> bool:
        """Record a play that started at *timestamp* (Unix seconds)."""
        params = {
            "method": "track.scrobble",
            "api_key": self._api_key,
            "sk": session_key,
            "artist": artist,
            "track": track,
            "timestamp": str(timestamp),
        }
        if album:
            params["album"] = album
        return await self._request("POST", params) is not None
