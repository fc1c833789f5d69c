"""Single-connection httpx transport used by every :class:`~crawlkit.client.Session`.

:class:`ConnectionTransport` owns at most one HTTP/1.1 connection to one
origin. It is built directly on :mod:`httpcore` rather than on a connection
pool so that the session can decide *when* the socket is opened:

- **Eager open** -- :meth:`ConnectionTransport.open` connects, tunnels through
  the proxy when needed, and completes the TLS handshake immediately.
- **Lazy open** -- when no connection is held, the first request opens one.
- **Keep-alive expiry** -- an idle connection that has outlived
  ``keep_alive_timeout`` (or that the server closed) is reopened
  transparently on the next request.

Proxying follows the usual forward-proxy rules: ``https`` destinations are
reached through a ``CONNECT`` tunnel, plain ``http`` requests are sent to the
proxy in absolute form. TLS is negotiated with certificate verification
disabled; a crawler must not stop at a site with a broken certificate.
"""

from __future__ import annotations

import base64
import contextlib
import logging
import ssl
import threading
from typing import Iterator, Optional

import httpcore
import httpx

from crawlkit.exceptions import (
    ConnectionError_,
    InvalidURLError,
    ProxyError,
    SessionAlreadyStartedError,
    SessionBusyError,
    SessionNotStartedError,
)
from crawlkit.models import SessionSettings

logger = logging.getLogger(__name__)

# Ordered most-specific first; timeouts are subclasses of the error classes.
_HTTPCORE_EXCEPTIONS: tuple[tuple[type[Exception], type[httpx.HTTPError]], ...] = (
    (httpcore.ConnectTimeout, httpx.ConnectTimeout),
    (httpcore.ReadTimeout, httpx.ReadTimeout),
    (httpcore.WriteTimeout, httpx.WriteTimeout),
    (httpcore.PoolTimeout, httpx.PoolTimeout),
    (httpcore.ConnectError, httpx.ConnectError),
    (httpcore.ReadError, httpx.ReadError),
    (httpcore.WriteError, httpx.WriteError),
    (httpcore.ProxyError, httpx.ProxyError),
    (httpcore.UnsupportedProtocol, httpx.UnsupportedProtocol),
    (httpcore.RemoteProtocolError, httpx.RemoteProtocolError),
    (httpcore.LocalProtocolError, httpx.LocalProtocolError),
    (httpcore.TimeoutException, httpx.TimeoutException),
    (httpcore.NetworkError, httpx.NetworkError),
    (httpcore.ProtocolError, httpx.ProtocolError),
)


@contextlib.contextmanager
def _map_httpcore_exceptions(request: httpx.Request) -> Iterator[None]:
    """Re-raise httpcore errors as the matching httpx exception."""
    try:
        yield
    except Exception as exc:
        for core_exc, httpx_exc in _HTTPCORE_EXCEPTIONS:
            if isinstance(exc, core_exc):
                raise httpx_exc(str(exc) or type(exc).__name__, request=request) from exc
        raise


def create_unverified_ssl_context() -> ssl.SSLContext:
    """Return a TLS client context that accepts any server certificate."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.set_alpn_protocols(["http/1.1"])
    return context


def _authority(host: bytes, port: int) -> bytes:
    """Format ``host:port`` for a request target, bracketing IPv6 literals."""
    if b":" in host:
        host = b"[" + host + b"]"
    return host + b":" + str(port).encode("ascii")


class _ResponseStream(httpx.SyncByteStream):
    """Response body that hands the connection back to its transport when closed."""

    def __init__(
        self,
        transport: ConnectionTransport,
        connection: httpcore.HTTP11Connection,
        stream: object,
        request: httpx.Request,
    ) -> None:
        self._transport = transport
        self._connection = connection
        self._stream = stream
        self._request = request
        self._released = False

    def __iter__(self) -> Iterator[bytes]:
        with _map_httpcore_exceptions(self._request):
            for part in self._stream:  # type: ignore[attr-defined]
                yield part

    def close(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            if hasattr(self._stream, "close"):
                with _map_httpcore_exceptions(self._request):
                    self._stream.close()
        finally:
            self._transport._release(self._connection)


class ConnectionTransport(httpx.BaseTransport):
    """An :class:`httpx.BaseTransport` backed by one persistent connection.

    Args:
        origin: Destination scheme, ASCII host and resolved port.
        settings: Proxy and timeout configuration, fixed for the transport's
            lifetime.
        network_backend: Optional :mod:`httpcore` network backend. Defaults
            to :class:`httpcore.SyncBackend` (real sockets).

    The transport serves one request at a time. A request issued while a
    previous response is still open raises
    :class:`~crawlkit.exceptions.SessionBusyError`.
    """

    def __init__(
        self,
        origin: httpcore.Origin,
        settings: SessionSettings,
        network_backend: Optional[httpcore.NetworkBackend] = None,
    ) -> None:
        self._origin = origin
        self._settings = settings
        self._backend = network_backend if network_backend is not None else httpcore.SyncBackend()
        self._ssl_context = create_unverified_ssl_context() if self.use_ssl else None
        self._connection: Optional[httpcore.HTTP11Connection] = None
        self._busy = False
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def use_ssl(self) -> bool:
        """Whether connections are wrapped in TLS."""
        return self._origin.scheme == b"https"

    @property
    def ssl_context(self) -> Optional[ssl.SSLContext]:
        """The TLS context used for handshakes, or ``None`` for plain http."""
        return self._ssl_context

    @property
    def is_open(self) -> bool:
        """Whether a connection is currently held."""
        return self._connection is not None

    @property
    def _forward_proxy(self) -> bool:
        return self._settings.proxy.enabled and not self.use_ssl

    # ------------------------------------------------------------------ #
    # Explicit lifecycle
    # ------------------------------------------------------------------ #

    def open(self) -> None:
        """Open the connection now, translating failures to crawlkit errors.

        Raises:
            ProxyError: If the proxy refuses the ``CONNECT`` tunnel.
            ConnectionError_: On DNS, TCP, or TLS failure.
            SessionAlreadyStartedError: If a connection is already held.
        """
        with self._lock:
            if self._connection is not None:
                raise SessionAlreadyStartedError(f"HTTP session to {self._describe()} already opened")
            try:
                connection = self._connect()
            except httpcore.ProxyError as exc:
                raise ProxyError(f"Proxy tunnel to {self._describe()} failed: {exc}") from exc
            except (httpcore.TimeoutException, httpcore.NetworkError, httpcore.ProtocolError) as exc:
                reason = str(exc) or type(exc).__name__
                raise ConnectionError_(f"Could not connect to {self._describe()}: {reason}") from exc
            self._connection = connection

    def close_connection(self) -> None:
        """Detach and close the held connection.

        If a response is still being read, the socket is closed once that
        response is closed instead of underneath it.

        Raises:
            SessionNotStartedError: If no connection is held.
        """
        with self._lock:
            connection = self._connection
            if connection is None:
                raise SessionNotStartedError(f"HTTP session to {self._describe()} not yet started")
            self._connection = None
            busy = self._busy
        if busy:
            logger.debug("Deferring close of %s until the open response is closed", self._describe())
        else:
            connection.close()
            logger.debug("Closed connection to %s", self._describe())

    def close(self) -> None:
        if self._connection is not None:
            self.close_connection()

    # ------------------------------------------------------------------ #
    # httpx transport API
    # ------------------------------------------------------------------ #

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        assert isinstance(request.stream, httpx.SyncByteStream)
        self._check_origin(request)

        with _map_httpcore_exceptions(request):
            connection = self._acquire()
        try:
            core_request = httpcore.Request(
                method=request.method,
                url=self._target_url(request),
                headers=self._request_headers(request),
                content=request.stream,
                extensions=self._request_extensions(request),
            )
            with _map_httpcore_exceptions(request):
                core_response = connection.handle_request(core_request)
        except BaseException:
            self._release(connection)
            raise

        return httpx.Response(
            status_code=core_response.status,
            headers=core_response.headers,
            stream=_ResponseStream(self, connection, core_response.stream, request),
            extensions=core_response.extensions,
        )

    # ------------------------------------------------------------------ #
    # Connection management
    # ------------------------------------------------------------------ #

    def _acquire(self) -> httpcore.HTTP11Connection:
        with self._lock:
            if self._busy:
                raise SessionBusyError(
                    f"HTTP session to {self._describe()} is still reading a previous response"
                )
            connection = self._connection
            if connection is not None and (connection.is_closed() or connection.has_expired()):
                logger.debug("Reopening expired connection to %s", self._describe())
                connection.close()
                connection = None
            if connection is None:
                connection = self._connect()
                self._connection = connection
            self._busy = True
            return connection

    def _release(self, connection: httpcore.HTTP11Connection) -> None:
        with self._lock:
            self._busy = False
            retired = connection is not self._connection
        if retired:
            connection.close()
            logger.debug("Closed retired connection to %s", self._describe())

    def _connect(self) -> httpcore.HTTP11Connection:
        """Open a new connection. Raises raw httpcore exceptions."""
        settings = self._settings
        proxy = settings.proxy
        if proxy.enabled:
            assert proxy.host is not None
            host, port = proxy.host, proxy.port
        else:
            host, port = self._origin.host.decode("ascii"), self._origin.port

        logger.debug(
            "Opening connection to %s%s",
            self._describe(),
            f" via proxy {proxy}" if proxy.enabled else "",
        )
        stream = self._backend.connect_tcp(host, port, timeout=settings.open_timeout)
        try:
            if proxy.enabled and self.use_ssl:
                stream = self._tunnel(stream)
            if self.use_ssl:
                stream = stream.start_tls(
                    self._ssl_context,
                    server_hostname=self._origin.host.decode("ascii"),
                    timeout=settings.ssl_timeout,
                )
        except BaseException:
            stream.close()
            raise

        origin = self._proxy_origin() if self._forward_proxy else self._origin
        return httpcore.HTTP11Connection(
            origin=origin,
            stream=stream,
            keepalive_expiry=settings.keep_alive_timeout,
        )

    def _tunnel(self, stream: httpcore.NetworkStream) -> httpcore.NetworkStream:
        """Issue ``CONNECT`` through the proxy and return the tunnelled stream."""
        proxy_origin = self._proxy_origin()
        target = _authority(self._origin.host, self._origin.port)
        proxy_connection = httpcore.HTTP11Connection(origin=proxy_origin, stream=stream)
        open_timeout = self._settings.open_timeout
        connect_request = httpcore.Request(
            method=b"CONNECT",
            url=httpcore.URL(
                scheme=proxy_origin.scheme,
                host=proxy_origin.host,
                port=proxy_origin.port,
                target=target,
            ),
            headers=[(b"Host", target), (b"Accept", b"*/*"), *self._proxy_auth_headers()],
            extensions={"timeout": {"read": open_timeout, "write": open_timeout}},
        )
        response = proxy_connection.handle_request(connect_request)
        if not 200 <= response.status <= 299:
            reason = response.extensions.get("reason_phrase", b"").decode("ascii", errors="ignore")
            proxy_connection.close()
            raise httpcore.ProxyError(f"{response.status} {reason}".strip())
        return response.extensions["network_stream"]

    # ------------------------------------------------------------------ #
    # Request translation
    # ------------------------------------------------------------------ #

    def _check_origin(self, request: httpx.Request) -> None:
        url = request.url
        port = url.port if url.port is not None else {b"http": 80, b"https": 443}.get(url.raw_scheme)
        if (url.raw_scheme, url.raw_host, port) != (
            self._origin.scheme,
            self._origin.host,
            self._origin.port,
        ):
            raise InvalidURLError(f"URL {url} does not belong to session {self._describe()}")

    def _target_url(self, request: httpx.Request) -> httpcore.URL:
        if self._forward_proxy:
            proxy_origin = self._proxy_origin()
            absolute = str(request.url.copy_with(fragment=None)).encode("ascii")
            return httpcore.URL(
                scheme=proxy_origin.scheme,
                host=proxy_origin.host,
                port=proxy_origin.port,
                target=absolute,
            )
        return httpcore.URL(
            scheme=self._origin.scheme,
            host=self._origin.host,
            port=self._origin.port,
            target=request.url.raw_path,
        )

    def _request_headers(self, request: httpx.Request) -> list[tuple[bytes, bytes]]:
        headers = list(request.headers.raw)
        if self._forward_proxy:
            headers.extend(self._proxy_auth_headers())
        return headers

    def _request_extensions(self, request: httpx.Request) -> dict:
        extensions = dict(request.extensions)
        continue_timeout = self._settings.continue_timeout
        if (
            continue_timeout is not None
            and request.headers.get("expect", "").lower() == "100-continue"
        ):
            timeouts = dict(extensions.get("timeout", {}))
            timeouts["write"] = continue_timeout
            extensions["timeout"] = timeouts
        return extensions

    def _proxy_origin(self) -> httpcore.Origin:
        proxy = self._settings.proxy
        assert proxy.host is not None
        return httpcore.Origin(b"http", proxy.host.encode("ascii"), proxy.port)

    def _proxy_auth_headers(self) -> list[tuple[bytes, bytes]]:
        proxy = self._settings.proxy
        if proxy.user is None:
            return []
        userpass = f"{proxy.user}:{proxy.password or ''}".encode("utf-8")
        token = base64.b64encode(userpass)
        return [(b"Proxy-Authorization", b"Basic " + token)]

    def _describe(self) -> str:
        host = self._origin.host.decode("ascii")
        if ":" in host:
            host = f"[{host}]"
        return f"{self._origin.scheme.decode('ascii')}://{host}:{self._origin.port}"
