"""Last.fm request signing (``api_sig``)."""

from __future__ import annotations

import hashlib
from collections.abc import Mapping


def sign(params: Mapping[str, str], secret: str) -> str:
    """Return the ``api_sig`` for *params*.

    Keys are sorted, each ``key + value`` pair is concatenated without
    separators, the shared secret is appended and the UTF-8 bytes are
    MD5-hashed.  The result is 32 lowercase hex characters and does not
    depend on the insertion order of *params*.
    """
    payload = "".join(key + params[key] for key in sorted(params))
    return hashlib.md5((payload + secret).encode("utf-8")).hexdigest()  # noqa: S324
