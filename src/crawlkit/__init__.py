"""crawlkit -- per-destination HTTP session cache for web crawlers.

Given a target URL, a :class:`~crawlkit.cache.SessionCache` returns a live
:class:`~crawlkit.client.Session` for that URL's scheme, host and port. The
session is created and configured (proxy, timeouts, TLS) on first use,
reused for every later URL on the same destination, and released with
``kill`` or ``clear``.

Typical use::

    from crawlkit import SessionCache

    with SessionCache(read_timeout=10) as cache:
        for url in frontier:
            response = cache[url].get(url)

Modules:
    cache: The :class:`SessionCache`.
    client: :class:`Session` and its single-connection transport.
    urls: URL normalization and session keys.
    models: Pydantic settings models shared across the package.
    config: XDG-aware configuration and process-wide defaults.
    exceptions: Exception hierarchy with exit-code mapping.
    app: Typer CLI entry point.
"""

__version__ = "0.1.0"

from crawlkit.cache import SessionCache  # noqa: E402
from crawlkit.client import Session  # noqa: E402
from crawlkit.models import ProxyConfig, SessionSettings  # noqa: E402
from crawlkit.urls import SessionKey  # noqa: E402

__all__ = [
    "__version__",
    "ProxyConfig",
    "Session",
    "SessionCache",
    "SessionKey",
    "SessionSettings",
]
