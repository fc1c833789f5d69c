"""Integration tests for the crawlkit CLI.

Runs the real Typer application (root callback included) through
``CliRunner`` with config isolated to a temporary directory. Network access
is replaced by the recording backend from ``conftest.py``.
"""

from __future__ import annotations

import json
from pathlib import Path

import httpcore
import pytest
import typer
from typer.testing import CliRunner

from crawlkit import __version__
from crawlkit.app import app as crawlkit_app
from crawlkit.app import main, register_commands
from crawlkit.config import load_global_config, save_global_config
from crawlkit.exceptions import ConfigError
from crawlkit.models import GlobalConfig, SessionSettings

CONNECT_OK = b"HTTP/1.1 200 Connection established\r\n\r\n"


@pytest.fixture
def app() -> typer.Typer:
    register_commands()
    return crawlkit_app


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def network(monkeypatch: pytest.MonkeyPatch, make_backend):
    """Route every new session through a recording backend.

    Returns a function that installs a backend built from its arguments.
    """

    def _install(*args, **kwargs):
        backend = make_backend(*args, **kwargs)
        monkeypatch.setattr(httpcore, "SyncBackend", lambda: backend)
        return backend

    return _install


def _rows(output: str) -> list[list[str]]:
    """Parse the plain-mode session table into rows (header excluded)."""
    lines = [line for line in output.strip().split("\n") if "\t" in line]
    return [line.split("\t") for line in lines[1:]]


# ---------------------------------------------------------------------------
# Root options
# ---------------------------------------------------------------------------


class TestRoot:
    def test_version(self, runner: CliRunner, app: typer.Typer) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"crawlkit {__version__}" in result.output

    def test_help_lists_groups(self, runner: CliRunner, app: typer.Typer) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "config" in result.output
        assert "session" in result.output

    def test_register_commands_idempotent(self, app: typer.Typer) -> None:
        count = len(app.registered_groups)
        register_commands()
        assert len(app.registered_groups) == count


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


class TestConfigCommands:
    def test_show_defaults(self, runner: CliRunner, app: typer.Typer, isolated_config: Path) -> None:
        result = runner.invoke(app, ["--json", "-q", "config", "show"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["robots"] is False
        assert data["session"]["read_timeout"] is None
        assert data["session"]["proxy"]["port"] == 8080

    def test_show_effective_includes_env(
        self,
        runner: CliRunner,
        app: typer.Typer,
        isolated_config: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        save_global_config(GlobalConfig(session=SessionSettings(read_timeout=8)))
        monkeypatch.setenv("CRAWLKIT_READ_TIMEOUT", "3")

        stored = json.loads(runner.invoke(app, ["--json", "-q", "config", "show"]).output)
        effective = json.loads(
            runner.invoke(app, ["--json", "-q", "config", "show", "--effective"]).output
        )

        assert stored["session"]["read_timeout"] == 8
        assert effective["session"]["read_timeout"] == 3

    def test_show_plain(self, runner: CliRunner, app: typer.Typer, isolated_config: Path) -> None:
        result = runner.invoke(app, ["--plain", "config", "show"])
        assert result.exit_code == 0
        assert "session.proxy.port\t8080" in result.output
        assert "Config file:" in result.output

    def test_set_timeout(self, runner: CliRunner, app: typer.Typer, isolated_config: Path) -> None:
        result = runner.invoke(app, ["--plain", "config", "set", "session.read_timeout", "10"])
        assert result.exit_code == 0, result.output
        assert load_global_config().session.read_timeout == 10

    def test_set_proxy_url(self, runner: CliRunner, app: typer.Typer, isolated_config: Path) -> None:
        result = runner.invoke(
            app, ["--plain", "config", "set", "session.proxy", "http://crawler:pw@proxy.local:3128"]
        )
        assert result.exit_code == 0, result.output
        proxy = load_global_config().session.proxy
        assert (proxy.host, proxy.port, proxy.user, proxy.password) == (
            "proxy.local",
            3128,
            "crawler",
            "pw",
        )

    def test_set_nested_proxy_port(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path
    ) -> None:
        runner.invoke(app, ["config", "set", "session.proxy.host", "proxy.local"])
        result = runner.invoke(app, ["config", "set", "session.proxy.port", "3128"])
        assert result.exit_code == 0, result.output
        assert load_global_config().session.proxy.port == 3128

    def test_set_bool(self, runner: CliRunner, app: typer.Typer, isolated_config: Path) -> None:
        result = runner.invoke(app, ["config", "set", "robots", "true"])
        assert result.exit_code == 0
        assert load_global_config().robots is True

    def test_set_none_clears(self, runner: CliRunner, app: typer.Typer, isolated_config: Path) -> None:
        save_global_config(GlobalConfig(session=SessionSettings(read_timeout=8)))
        result = runner.invoke(app, ["config", "set", "session.read_timeout", "none"])
        assert result.exit_code == 0
        assert load_global_config().session.read_timeout is None

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("bogus", "1"),
            ("session.bogus", "1"),
            ("robots.deep", "1"),
            ("session.read_timeout", "-4"),
            ("session.read_timeout", "soon"),
            ("session.proxy.port", "many"),
        ],
    )
    def test_set_invalid(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path, key: str, value: str
    ) -> None:
        result = runner.invoke(app, ["--no-color", "config", "set", "--", key, value])
        assert result.exit_code == 2
        assert "Error:" in result.output
        assert load_global_config() == GlobalConfig()

    def test_set_negative_timeout_reaches_validation(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path
    ) -> None:
        result = runner.invoke(
            app, ["--no-color", "config", "set", "--", "session.read_timeout", "-4"]
        )
        assert result.exit_code == 2
        assert "Validation error" in result.output
        assert "Usage:" not in result.output

    def test_reset_force(self, runner: CliRunner, app: typer.Typer, isolated_config: Path) -> None:
        save_global_config(GlobalConfig(robots=True))
        result = runner.invoke(app, ["config", "reset", "--force"])
        assert result.exit_code == 0
        assert load_global_config() == GlobalConfig()

    def test_reset_declined(self, runner: CliRunner, app: typer.Typer, isolated_config: Path) -> None:
        save_global_config(GlobalConfig(robots=True))
        result = runner.invoke(app, ["config", "reset"], input="n\n")
        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert load_global_config().robots is True


# ---------------------------------------------------------------------------
# session probe
# ---------------------------------------------------------------------------


class TestSessionProbe:
    def test_shared_https_session(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path, network
    ) -> None:
        backend = network()
        result = runner.invoke(
            app,
            ["--plain", "session", "probe", "https://example.com/", "https://example.com/about"],
        )

        assert result.exit_code == 0, result.output
        rows = _rows(result.output)
        assert [row[1] for row in rows] == ["https://example.com:443"] * 2
        assert all(row[2:] == ["yes", "yes", "ready"] for row in rows)
        assert len(backend.connects) == 1
        assert backend.streams[0].closed

    def test_http_session_is_lazy(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path, network
    ) -> None:
        backend = network()
        result = runner.invoke(app, ["--plain", "session", "probe", "http://example.com/"])
        assert result.exit_code == 0
        assert _rows(result.output) == [
            ["http://example.com/", "http://example.com:80", "no", "no", "ready"]
        ]
        assert backend.connects == []

    def test_head_request(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path, network, ok_response
    ) -> None:
        backend = network([ok_response(body=b"")])
        result = runner.invoke(
            app, ["--plain", "session", "probe", "--head", "http://example.com/index.html"]
        )
        assert result.exit_code == 0, result.output
        assert _rows(result.output)[0][3:] == ["yes", "HTTP 200"]
        assert backend.streams[0].sent.startswith(b"HEAD /index.html HTTP/1.1\r\n")

    def test_head_failure_kills_session(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path, network
    ) -> None:
        network([b"garbage\r\n\r\n"])
        result = runner.invoke(app, ["--plain", "session", "probe", "--head", "http://example.com/"])
        assert result.exit_code == 6
        assert _rows(result.output)[0][4].startswith("error:")

    def test_invalid_url(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path, network
    ) -> None:
        network()
        result = runner.invoke(
            app, ["--plain", "session", "probe", "ftp://example.com/", "http://example.com/"]
        )
        assert result.exit_code == 2
        rows = _rows(result.output)
        assert rows[0][4].startswith("error: Unsupported URL scheme")
        assert rows[1][4] == "ready"

    def test_connection_failure(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path, network
    ) -> None:
        network(connect_error=httpcore.ConnectError("Connection refused"))
        result = runner.invoke(app, ["--plain", "session", "probe", "https://example.com/"])
        assert result.exit_code == 6
        assert "Connection refused" in _rows(result.output)[0][4]

    def test_proxy_option(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path, network
    ) -> None:
        backend = network([CONNECT_OK])
        result = runner.invoke(
            app,
            [
                "--plain",
                "session",
                "probe",
                "--proxy",
                "http://proxy.local:3128",
                "--open-timeout",
                "2",
                "https://example.com/",
            ],
        )
        assert result.exit_code == 0, result.output
        assert backend.connects == [{"host": "proxy.local", "port": 3128, "timeout": 2.0}]

    def test_proxy_none_overrides_config(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path, network
    ) -> None:
        save_global_config(GlobalConfig(session=SessionSettings(proxy="proxy.local:3128")))
        backend = network()
        result = runner.invoke(
            app, ["--plain", "session", "probe", "--proxy", "none", "https://example.com/"]
        )
        assert result.exit_code == 0, result.output
        assert backend.connects[0]["host"] == "example.com"

    def test_json_output(
        self, runner: CliRunner, app: typer.Typer, isolated_config: Path, network
    ) -> None:
        network()
        result = runner.invoke(app, ["--json", "-q", "session", "probe", "http://example.com/"])
        assert result.exit_code == 0
        assert json.loads(result.output)[0]["Session"] == "http://example.com:80"


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


class TestMain:
    @pytest.fixture(autouse=True)
    def _isolate_entry_point(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("crawlkit.app._setup_signal_handlers", lambda: None)
        monkeypatch.setattr("crawlkit.app.register_commands", lambda: None)

    def test_crawlkit_error_exit_code(self, monkeypatch: pytest.MonkeyPatch, capfd) -> None:
        def _boom() -> None:
            raise ConfigError("bad proxy")

        monkeypatch.setattr("crawlkit.app.app", _boom)
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
        assert "bad proxy" in capfd.readouterr().err

    def test_unexpected_error_writes_crash_log(
        self, monkeypatch: pytest.MonkeyPatch, isolated_config: Path, capfd
    ) -> None:
        def _boom() -> None:
            raise RuntimeError("unexpected")

        monkeypatch.setattr("crawlkit.app.app", _boom)
        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        logs = list((isolated_config / "data" / "crawlkit" / "logs").glob("crash-*.log"))
        assert len(logs) == 1
        assert "RuntimeError: unexpected" in logs[0].read_text()
        assert "Debug log:" in capfd.readouterr().err
