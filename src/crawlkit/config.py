"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles the persistent, process-wide configuration of crawlkit:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.crawlkit/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Global config** -- A single :class:`~crawlkit.models.GlobalConfig`
  JSON file storing the default proxy, timeouts and user agent.
* **Precedence resolution** -- :func:`resolve_settings` merges environment
  variables over the global config over built-in defaults.
* **Process-wide defaults** -- :func:`get_default_settings` returns the
  settings every new :class:`~crawlkit.cache.SessionCache` starts from.
  They are resolved once on first use, or installed explicitly at startup
  with :func:`set_default_settings`. A cache copies them at construction,
  so changing the defaults later never affects an existing cache.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional

from crawlkit.exceptions import ConfigError
from crawlkit.models import GlobalConfig, SessionSettings

_APP_NAME = "crawlkit"
_CONFIG_FILENAME = "config.json"

ENV_PROXY = "CRAWLKIT_PROXY"
ENV_USER_AGENT = "CRAWLKIT_USER_AGENT"
ENV_TIMEOUTS: dict[str, str] = {
    "open_timeout": "CRAWLKIT_OPEN_TIMEOUT",
    "ssl_timeout": "CRAWLKIT_SSL_TIMEOUT",
    "read_timeout": "CRAWLKIT_READ_TIMEOUT",
    "continue_timeout": "CRAWLKIT_CONTINUE_TIMEOUT",
    "keep_alive_timeout": "CRAWLKIT_KEEP_ALIVE_TIMEOUT",
}
"""Environment variable overriding each timeout setting."""


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/crawlkit/`` (default ``~/.config/crawlkit/``).
    On macOS/Windows: ``~/.crawlkit/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/crawlkit/`` (default ``~/.local/share/crawlkit/``).
    On macOS/Windows: ``~/.crawlkit/logs/``.
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. On any failure the
    temp file is removed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the config directory.

    Returns:
        The deserialised :class:`~crawlkit.models.GlobalConfig`, or a
        default instance when no file exists.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    _atomic_write(global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def _env_timeout(name: str, var: str) -> Optional[float]:
    raw = os.environ[var].strip()
    if raw.lower() in ("", "none", "null"):
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{var} must be a number of seconds for {name}, got {raw!r}") from exc


def env_overrides() -> dict[str, Any]:
    """Collect session settings from ``CRAWLKIT_*`` environment variables.

    Only variables that are set appear in the result. ``CRAWLKIT_PROXY``
    takes a proxy URL (``none`` or empty disables proxying).

    Raises:
        ConfigError: If a timeout variable is not a number.
    """
    overrides: dict[str, Any] = {}
    if ENV_PROXY in os.environ:
        proxy = os.environ[ENV_PROXY].strip()
        overrides["proxy"] = None if proxy.lower() in ("", "none") else proxy
    for name, var in ENV_TIMEOUTS.items():
        if var in os.environ:
            overrides[name] = _env_timeout(name, var)
    if ENV_USER_AGENT in os.environ:
        overrides["user_agent"] = os.environ[ENV_USER_AGENT] or None
    return overrides


def resolve_settings() -> SessionSettings:
    """Resolve session settings with the full precedence chain.

    Precedence (high to low):
        1. Environment variables (``CRAWLKIT_PROXY``, ``CRAWLKIT_*_TIMEOUT``,
           ``CRAWLKIT_USER_AGENT``)
        2. User config (``~/.config/crawlkit/config.json``)
        3. Defaults

    Raises:
        ConfigError: If the config file or an environment value is invalid.
    """
    settings = load_global_config().session
    overrides = env_overrides()
    if overrides:
        settings = settings.with_overrides(**overrides)
    return settings


# --- Process-wide defaults ---

_default_settings: Optional[SessionSettings] = None
_default_lock = threading.Lock()


def get_default_settings() -> SessionSettings:
    """Return the process-wide default session settings.

    Resolved with :func:`resolve_settings` on first call unless
    :func:`set_default_settings` installed explicit ones.
    """
    global _default_settings
    with _default_lock:
        if _default_settings is None:
            _default_settings = resolve_settings()
        return _default_settings


def set_default_settings(settings: SessionSettings) -> None:
    """Install *settings* as the process-wide defaults.

    Only caches constructed afterwards see the new values.
    """
    global _default_settings
    if not isinstance(settings, SessionSettings):
        raise ConfigError(f"Expected SessionSettings, got {type(settings).__name__}")
    with _default_lock:
        _default_settings = settings


def reset_default_settings() -> None:
    """Forget the process-wide defaults so the next read resolves them again.

    Primarily useful in test suites.
    """
    global _default_settings
    with _default_lock:
        _default_settings = None
