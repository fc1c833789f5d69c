"""URL boundary for the session cache.

Every public entry point of :class:`~crawlkit.cache.SessionCache` passes its
argument through :func:`normalize_url` first, so the cache only ever sees a
validated :class:`httpx.URL`. A session is identified by the
``(scheme, host, port)`` triple returned by :func:`key_for`, with the port
always resolved to the scheme default when the URL omits it.
"""

from __future__ import annotations

from typing import NamedTuple, Union

import httpx

from crawlkit.exceptions import InvalidURLError

DEFAULT_PORTS: dict[str, int] = {"http": 80, "https": 443}
"""Ports assumed when a URL does not name one explicitly."""

URLTypes = Union[str, httpx.URL]


class SessionKey(NamedTuple):
    """Identifies one cache slot: a destination scheme, host and port."""

    scheme: str
    host: str
    port: int

    def __str__(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{self.scheme}://{host}:{self.port}"


def normalize_url(url: URLTypes) -> httpx.URL:
    """Parse *url* into an :class:`httpx.URL` suitable for session lookup.

    Args:
        url: A URL string or an already-parsed :class:`httpx.URL`.

    Returns:
        The parsed URL. Scheme and host are lower-cased by the parser.

    Raises:
        InvalidURLError: If the URL cannot be parsed, has no host, or uses a
            scheme other than ``http`` / ``https``.
    """
    if isinstance(url, httpx.URL):
        parsed = url
    elif isinstance(url, str):
        try:
            parsed = httpx.URL(url.strip())
        except httpx.InvalidURL as exc:
            raise InvalidURLError(f"Malformed URL {url!r}: {exc}") from exc
    else:
        raise InvalidURLError(f"Expected a URL string or httpx.URL, got {type(url).__name__}")

    if parsed.scheme not in DEFAULT_PORTS:
        raise InvalidURLError(f"Unsupported URL scheme {parsed.scheme!r} in {str(parsed)!r}")
    if not parsed.host:
        raise InvalidURLError(f"URL {str(parsed)!r} has no host")
    return parsed


def resolve_port(url: httpx.URL) -> int:
    """Return the explicit port of *url*, or its scheme's default port."""
    return url.port if url.port is not None else DEFAULT_PORTS[url.scheme]


def key_for(scheme: str, host: str, port: int) -> SessionKey:
    """Build the session key for a destination."""
    return SessionKey(scheme, host, port)


def key_for_url(url: URLTypes) -> SessionKey:
    """Normalize *url* and build its session key."""
    parsed = normalize_url(url)
    return key_for(parsed.scheme, parsed.host, resolve_port(parsed))
