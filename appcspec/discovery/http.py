"""Fetch discovery documents over HTTPS, falling back to HTTP when allowed."""

from __future__ import annotations

import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Callable, Optional

_DIAL_TIMEOUT = 5.0
_OK = 200


@dataclass
class HTTPResponse:
    """Status code and body of an HTTP response."""

    status: int
    body: bytes


HTTPGet = Callable[[str], HTTPResponse]


def default_http_get(url: str) -> HTTPResponse:
    """GET ``url``, honouring proxy settings from the environment."""
    try:
        with urllib.request.urlopen(url, timeout=_DIAL_TIMEOUT) as resp:
            return HTTPResponse(resp.status, resp.read())
    except urllib.error.HTTPError as err:
        with err:
            return HTTPResponse(err.code, err.read())


def _discovery_url(scheme: str, name: str) -> str:
    parts = urllib.parse.urlsplit(f"{scheme}://{name}")
    return urllib.parse.urlunsplit(
        (parts.scheme, parts.netloc, parts.path, "ac-discovery=1", parts.fragment)
    )


def https_or_http(
    name: str, insecure: bool, http_get: Optional[HTTPGet] = None
) -> tuple[str, bytes]:
    """Fetch the discovery document for ``name`` and return its URL and body.

    HTTPS is tried first; plain HTTP is tried only when ``insecure`` is set.
    Raises OSError or ValueError when no 200 response is obtained.
    """
    get = http_get or default_http_get

    def fetch(scheme: str) -> tuple[str, Optional[HTTPResponse], Optional[Exception]]:
        try:
            url = _discovery_url(scheme, name)
            return url, get(url), None
        except (OSError, ValueError) as err:
            return "", None, err

    url, resp, error = fetch("https")
    if (error is not None or resp is None or resp.status != _OK) and insecure:
        url, resp, error = fetch("http")

    if error is not None:
        raise error
    if resp is None:
        raise OSError("no response received")
    if resp.status != _OK:
        raise OSError(f"expected a 200 OK got {resp.status}")
    return url, resp.body