"""Per-destination session cache.

:class:`SessionCache` maps each ``(scheme, host, port)`` destination to one
live :class:`~crawlkit.client.Session`. Sessions are created on first use,
reused for every later URL on the same destination, and released either
individually (:meth:`SessionCache.kill`) or all at once
(:meth:`SessionCache.clear`).

The cache is safe to share between worker threads. The internal lock is held
only while the mapping is read or changed; connection setup (including the
TLS handshake) happens outside it so that a slow host never blocks lookups
for other hosts. If two threads race to create a session for the same
destination, the first one installed wins and the other is closed.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterator, Optional

import httpcore

from crawlkit.client import Session
from crawlkit.exceptions import ConfigError
from crawlkit.models import ProxyConfig, SessionSettings
from crawlkit.urls import SessionKey, URLTypes, key_for_url, normalize_url

logger = logging.getLogger(__name__)


def _close_quietly(session: Session) -> None:
    """Finish *session*, discarding any error raised while closing."""
    try:
        session.finish()
    except Exception as exc:
        logger.debug("Ignoring error while closing %r: %s", session, exc)


class SessionCache:
    """Stores active HTTP sessions organised by scheme, host and port.

    Args:
        settings: Proxy and timeout configuration for new sessions. Defaults
            to the process-wide defaults from
            :func:`crawlkit.config.get_default_settings`, read once here.
        network_backend: Optional :mod:`httpcore` network backend given to
            every session (used by tests).
        **overrides: Individual settings layered over *settings*:
            ``proxy``, ``open_timeout``, ``ssl_timeout``, ``read_timeout``,
            ``continue_timeout``, ``keep_alive_timeout``, ``user_agent``.

    Raises:
        ConfigError: If the resulting settings are invalid.

    Example::

        with SessionCache(read_timeout=5) as cache:
            session = cache["https://example.com/page"]
            response = session.get("/page")
    """

    def __init__(
        self,
        settings: Optional[SessionSettings] = None,
        *,
        network_backend: Optional[httpcore.NetworkBackend] = None,
        **overrides: Any,
    ) -> None:
        if settings is None:
            from crawlkit.config import get_default_settings

            settings = get_default_settings()
        elif not isinstance(settings, SessionSettings):
            raise ConfigError(f"Expected SessionSettings, got {type(settings).__name__}")
        if overrides:
            settings = settings.with_overrides(**overrides)

        self._settings = settings
        self._network_backend = network_backend
        self._sessions: dict[SessionKey, Session] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<SessionCache sessions={len(self)}>"

    # ------------------------------------------------------------------ #
    # Captured configuration
    # ------------------------------------------------------------------ #

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

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def active(self, url: URLTypes) -> bool:
        """Determine whether there is an active session for *url*.

        Never creates a session.

        Raises:
            InvalidURLError: If *url* is not an http(s) URL with a host.
        """
        key = key_for_url(url)
        with self._lock:
            return key in self._sessions

    def __contains__(self, url: object) -> bool:
        return self.active(url)  # type: ignore[arg-type]

    def get(self, url: URLTypes) -> Session:
        """Provide the session for *url*, creating it on first use.

        A cached session is returned as-is, without any liveness check. A new
        ``https`` session completes its TLS handshake before it is stored;
        a new ``http`` session connects on its first request.

        Raises:
            InvalidURLError: If *url* is not an http(s) URL with a host.
            ProxyError: If the proxy refuses the tunnel for a new session.
            ConnectionError_: If a new ``https`` session cannot connect.
                Nothing is cached in that case.
        """
        parsed = normalize_url(url)
        key = key_for_url(parsed)

        with self._lock:
            session = self._sessions.get(key)
        if session is not None:
            return session

        session = self._create_session(parsed)

        with self._lock:
            existing = self._sessions.setdefault(key, session)
        if existing is not session:
            logger.debug("Discarding duplicate session for %s", key)
            _close_quietly(session)
        return existing

    def __getitem__(self, url: URLTypes) -> Session:
        return self.get(url)

    def _create_session(self, url: URLTypes) -> Session:
        session = Session(url, self._settings, network_backend=self._network_backend)
        if session.use_ssl:
            session.start()
        logger.debug("Created session %r", session)
        return session

    # ------------------------------------------------------------------ #
    # Teardown
    # ------------------------------------------------------------------ #

    def kill(self, url: URLTypes) -> None:
        """Destroy the session for *url*, if there is one.

        Closing is best-effort: errors from the underlying connection are
        logged and discarded, and the entry is removed regardless.
        """
        key = key_for_url(url)
        with self._lock:
            session = self._sessions.pop(key, None)
        if session is not None:
            _close_quietly(session)
            logger.debug("Killed session for %s", key)

    def clear(self) -> SessionCache:
        """Close every session and empty the cache.

        Returns:
            The cleared cache.
        """
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            _close_quietly(session)
        if sessions:
            logger.debug("Cleared %d session(s)", len(sessions))
        return self

    def __enter__(self) -> SessionCache:
        return self

    def __exit__(self, *args: object) -> None:
        self.clear()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def keys(self) -> list[SessionKey]:
        """Return the keys of all active sessions."""
        with self._lock:
            return list(self._sessions)

    def __iter__(self) -> Iterator[SessionKey]:
        return iter(self.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
