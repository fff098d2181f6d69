"""Last.fm integration: request signing, API client, auth flow, credential store."""

from nanomuz.lastfm.auth import AuthResult, AuthService
from nanomuz.lastfm.client import LastFMClient, LastFMSession
from nanomuz.lastfm.credentials import Credential, CredentialStore
from nanomuz.lastfm.signing import sign

__all__ = [
    "AuthResult",
    "AuthService",
    "Credential",
    "CredentialStore",
    "LastFMClient",
    "LastFMSession",
    "sign",
]
