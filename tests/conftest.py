"""Shared test fixtures for crawlkit.

Provides isolated config environments, output state management, a CLI
runner, and an in-memory :mod:`httpcore` network backend that records every
connection a session makes. These fixtures are automatically discovered by
pytest and available to all test modules without explicit imports.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional

import httpcore
import pytest

from crawlkit.config import ENV_PROXY, ENV_TIMEOUTS, ENV_USER_AGENT, reset_default_settings
from crawlkit.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _reset_default_settings_between_tests() -> None:
    """Forget process-wide session defaults before and after every test."""
    reset_default_settings()
    yield
    reset_default_settings()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path so
    that tests never touch real user config. Clears all CRAWLKIT_*
    environment variables and changes the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("crawlkit.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in [ENV_PROXY, ENV_USER_AGENT, *ENV_TIMEOUTS.values()]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# In-memory network backend
# ---------------------------------------------------------------------------


def http_response(
    status: int = 200,
    reason: str = "OK",
    body: bytes = b"ok",
    headers: Optional[list[tuple[str, str]]] = None,
) -> bytes:
    """Build the raw bytes of one HTTP/1.1 response."""
    lines = [f"HTTP/1.1 {status} {reason}"]
    for name, value in headers or []:
        lines.append(f"{name}: {value}")
    lines.append(f"Content-Length: {len(body)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii") + body


class RecordingStream(httpcore.MockStream):
    """A mock socket that records what was written and how TLS was started."""

    def __init__(self, buffer: list[bytes], tls_error: Optional[Exception] = None) -> None:
        super().__init__(buffer)
        self.written: list[bytes] = []
        self.tls: list[dict] = []
        self.closed = False
        self._tls_error = tls_error

    @property
    def sent(self) -> bytes:
        return b"".join(self.written)

    def write(self, buffer: bytes, timeout: Optional[float] = None) -> None:
        self.written.append(buffer)

    def start_tls(self, ssl_context, server_hostname=None, timeout=None):
        self.tls.append(
            {"ssl_context": ssl_context, "server_hostname": server_hostname, "timeout": timeout}
        )
        if self._tls_error is not None:
            raise self._tls_error
        return self

    def close(self) -> None:
        self.closed = True
        super().close()


class RecordingBackend(httpcore.MockBackend):
    """A network backend handing out a fresh :class:`RecordingStream` per connect.

    Every stream replays a copy of *buffer*. ``connect_error`` is raised from
    ``connect_tcp`` and ``tls_error`` from ``start_tls``.
    """

    def __init__(
        self,
        buffer: Optional[list[bytes]] = None,
        connect_error: Optional[Exception] = None,
        tls_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(list(buffer or []))
        self.connects: list[dict] = []
        self.streams: list[RecordingStream] = []
        self._connect_error = connect_error
        self._tls_error = tls_error
        self._record_lock = threading.Lock()

    def connect_tcp(self, host, port, timeout=None, local_address=None, socket_options=None):
        with self._record_lock:
            self.connects.append({"host": host, "port": port, "timeout": timeout})
        if self._connect_error is not None:
            raise self._connect_error
        stream = RecordingStream(list(self._buffer), tls_error=self._tls_error)
        with self._record_lock:
            self.streams.append(stream)
        return stream


@pytest.fixture
def make_backend() -> Callable[..., RecordingBackend]:
    """Factory for :class:`RecordingBackend` instances."""
    return RecordingBackend


@pytest.fixture
def ok_response() -> Callable[..., bytes]:
    """Factory for raw HTTP/1.1 response bytes (see :func:`http_response`)."""
    return http_response
