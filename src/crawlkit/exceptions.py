"""Exception hierarchy for crawlkit.

All exceptions inherit from :class:`CrawlkitError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`crawlkit.exit_codes`.
The top-level error handler in :func:`crawlkit.app.main` catches
``CrawlkitError`` and exits with the appropriate code.

Subclass hierarchy::

    CrawlkitError (exit 1)
    +-- InvalidURLError             (exit 2)
    +-- ConfigError                 (exit 1)
    +-- ConnectionError_            (exit 6)
    |   +-- ProxyError              (exit 6)
    +-- SessionStateError           (exit 1)
        +-- SessionNotStartedError
        +-- SessionAlreadyStartedError
        +-- SessionBusyError

Request-time I/O failures on an established session are *not* wrapped here;
they surface as the matching :mod:`httpx` exception so that callers can
handle them the same way they would with a plain ``httpx.Client``.
"""

from crawlkit.exit_codes import (
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
)


class CrawlkitError(Exception):
    """Base exception for all crawlkit errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`crawlkit.exit_codes`.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidURLError(CrawlkitError):
    """Raised when a URL has no host or uses a scheme other than http/https."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(CrawlkitError):
    """Raised for configuration problems (bad timeouts, malformed proxy, invalid JSON)."""

    exit_code = EXIT_GENERIC_FAILURE


class ConnectionError_(CrawlkitError):
    """Raised when a session cannot be established (DNS, TCP connect, TLS handshake).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class ProxyError(ConnectionError_):
    """Raised when the forward proxy refuses or fails the ``CONNECT`` tunnel."""


class SessionStateError(CrawlkitError):
    """Raised when a session is started or finished in the wrong state."""


class SessionNotStartedError(SessionStateError):
    """Raised by :meth:`~crawlkit.client.Session.finish` on a session that is not open."""


class SessionAlreadyStartedError(SessionStateError):
    """Raised by :meth:`~crawlkit.client.Session.start` on a session that is already open."""


class SessionBusyError(SessionStateError):
    """Raised when a request is sent on a session whose previous response is still open."""
