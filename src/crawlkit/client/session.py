"""The connection handle handed out by :class:`~crawlkit.cache.SessionCache`.

A :class:`Session` is bound to one ``(scheme, host, port)`` destination and
wraps an :class:`httpx.Client` whose transport holds a single persistent
connection (see :mod:`crawlkit.client.transport`). Proxy and timeout
settings are applied once at construction and never change afterwards.

Lifecycle mirrors a classic persistent HTTP connection object:

- :meth:`Session.start` opens the connection (TLS handshake included).
- :meth:`Session.finish` closes it; finishing a session that is not open
  raises :class:`~crawlkit.exceptions.SessionNotStartedError`.
- Requests on a session that is not open connect on demand and leave the
  connection open for the next request.
"""

from __future__ import annotations

import contextlib
import ssl
from typing import Any, Iterator, Optional

import httpcore
import httpx

from crawlkit.client.transport import ConnectionTransport
from crawlkit.exceptions import SessionAlreadyStartedError
from crawlkit.models import ProxyConfig, SessionSettings
from crawlkit.urls import SessionKey, URLTypes, key_for, normalize_url, resolve_port


class Session:
    """A configured HTTP connection to one destination.

    Args:
        url: Any URL on the destination; only scheme, host and port are used.
        settings: Proxy and timeout configuration. Defaults to an
            unconfigured :class:`~crawlkit.models.SessionSettings` (direct
            connection, no timeouts).
        network_backend: Optional :mod:`httpcore` network backend passed to
            the transport, mainly for tests.

    Example::

        session = Session("https://example.com/", SessionSettings(read_timeout=10))
        session.start()
        response = session.get("/robots.txt")
        session.finish()
    """

    def __init__(
        self,
        url: URLTypes,
        settings: Optional[SessionSettings] = None,
        network_backend: Optional[httpcore.NetworkBackend] = None,
    ) -> None:
        parsed = normalize_url(url)
        port = resolve_port(parsed)
        self._key = key_for(parsed.scheme, parsed.host, port)
        self._settings = settings if settings is not None else SessionSettings()
        self._base_url = f"{parsed.scheme}://{parsed.netloc.decode('ascii')}"
        self._transport = ConnectionTransport(
            httpcore.Origin(parsed.raw_scheme, parsed.raw_host, port),
            self._settings,
            network_backend=network_backend,
        )

        headers = {}
        if self._settings.user_agent:
            headers["User-Agent"] = self._settings.user_agent
        self._client = httpx.Client(
            base_url=self._base_url,
            transport=self._transport,
            timeout=httpx.Timeout(
                None,
                connect=self._settings.open_timeout,
                read=self._settings.read_timeout,
            ),
            headers=headers,
            follow_redirects=False,
            trust_env=False,
        )

    def __repr__(self) -> str:
        state = "started" if self.started else "idle"
        return f"<Session {self._key} {state}>"

    # ------------------------------------------------------------------ #
    # Configuration (read-only)
    # ------------------------------------------------------------------ #

    @property
    def key(self) -> SessionKey:
        return self._key

    @property
    def scheme(self) -> str:
        return self._key.scheme

    @property
    def host(self) -> str:
        return self._key.host

    @property
    def port(self) -> int:
        return self._key.port

    @property
    def base_url(self) -> str:
        """Origin URL that relative request paths are resolved against."""
        return self._base_url

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    @property
    def proxy(self) -> ProxyConfig:
        return self._settings.proxy

    @property
    def open_timeout(self) -> Optional[float]:
        return self._settings.open_timeout

    @property
    def ssl_timeout(self) -> Optional[float]:
        return self._settings.ssl_timeout

    @property
    def read_timeout(self) -> Optional[float]:
        return self._settings.read_timeout

    @property
    def continue_timeout(self) -> Optional[float]:
        return self._settings.continue_timeout

    @property
    def keep_alive_timeout(self) -> Optional[float]:
        return self._settings.keep_alive_timeout

    @property
    def use_ssl(self) -> bool:
        """``True`` for ``https`` destinations."""
        return self._transport.use_ssl

    @property
    def verify_mode(self) -> Optional[ssl.VerifyMode]:
        """Certificate verification mode, always ``CERT_NONE`` when TLS is used."""
        context = self._transport.ssl_context
        return context.verify_mode if context is not None else None

    @property
    def started(self) -> bool:
        """Whether the session currently holds an open connection."""
        return self._transport.is_open

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> Session:
        """Open the connection now.

        Returns:
            The session itself.

        Raises:
            SessionAlreadyStartedError: If the session is already open.
            ProxyError: If the proxy refuses the tunnel.
            ConnectionError_: On DNS, TCP or TLS failure.
        """
        if self.started:
            raise SessionAlreadyStartedError(f"HTTP session to {self._key} already opened")
        self._transport.open()
        return self

    def finish(self) -> None:
        """Close the connection.

        Raises:
            SessionNotStartedError: If the session is not open.
        """
        self._transport.close_connection()

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *args: object) -> None:
        if self.started:
            self.finish()

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    def request(self, method: str, url: URLTypes = "/", **kwargs: Any) -> httpx.Response:
        """Send a request and read the full response.

        Args:
            method: HTTP method.
            url: A path relative to :attr:`base_url`, or an absolute URL on
                the same destination.
            **kwargs: Forwarded to :meth:`httpx.Client.request` (``params``,
                ``headers``, ``content``, ``timeout``, ...).

        Raises:
            InvalidURLError: If *url* points at another destination.
            httpx.TransportError: On I/O failure. A cached session that
                fails this way should be killed and fetched again.
        """
        return self._client.request(method, url, **kwargs)

    def get(self, url: URLTypes = "/", **kwargs: Any) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def head(self, url: URLTypes = "/", **kwargs: Any) -> httpx.Response:
        return self.request("HEAD", url, **kwargs)

    def post(self, url: URLTypes = "/", **kwargs: Any) -> httpx.Response:
        return self.request("POST", url, **kwargs)

    @contextlib.contextmanager
    def stream(self, method: str, url: URLTypes = "/", **kwargs: Any) -> Iterator[httpx.Response]:
        """Send a request and yield the response without reading the body.

        The session serves no other request until the block exits.
        """
        with self._client.stream(method, url, **kwargs) as response:
            yield response
