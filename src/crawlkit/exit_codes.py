"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~crawlkit.exceptions.CrawlkitError` subclass.
Shell wrappers around ``crawlkit`` can inspect the exit code to tell a
bad URL from an unreachable host without parsing stderr.

Example::

    $ crawlkit session probe https://unreachable.invalid/
    $ echo $?
    6   # EXIT_CONNECTION_ERROR -- DNS, TCP, proxy or TLS setup failed
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments (including malformed URLs)."""

EXIT_CONNECTION_ERROR = 6
"""A connection could not be established (timeout, DNS failure, refused, proxy or TLS failure)."""
