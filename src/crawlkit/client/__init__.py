"""HTTP session layer for crawlkit.

Classes:
    :class:`Session` -- a configured connection handle bound to one
    ``(scheme, host, port)`` destination.
    :class:`ConnectionTransport` -- the single-connection
    :class:`httpx.BaseTransport` a session sends its requests through.

Example::

    from crawlkit.client import Session

    with Session("http://example.com/") as session:
        resp = session.get("/index.html")
"""

from crawlkit.client.session import Session
from crawlkit.client.transport import ConnectionTransport, create_unverified_ssl_context

__all__ = ["Session", "ConnectionTransport", "create_unverified_ssl_context"]
