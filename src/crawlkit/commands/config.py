"""Config commands -- view and modify the process-wide defaults.

Provides the ``crawlkit config`` sub-command group for reading, updating,
and resetting the user's global configuration file
(:class:`~crawlkit.models.GlobalConfig`). The ``session`` block of that
file holds the proxy, timeouts and user agent every new
:class:`~crawlkit.cache.SessionCache` starts from.
"""

from __future__ import annotations

from typing import Any

import typer

from crawlkit.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(
    effective: bool = typer.Option(
        False, "--effective", help="Include CRAWLKIT_* environment overrides."
    ),
) -> None:
    """Show current configuration.

    Example::

        crawlkit config show
        crawlkit config show --effective --json
    """
    from crawlkit.config import global_config_path, load_global_config, resolve_settings

    config = load_global_config()
    data = config.model_dump(mode="json")
    if effective:
        data["session"] = resolve_settings().model_dump(mode="json")
    info(f"Config file: {global_config_path()}")
    format_response(data)


def _coerce(key: str, current: Any, value: str) -> Any:
    """Coerce *value* to the type of the field it replaces."""
    if value.lower() in ("none", "null"):
        return None
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        try:
            return int(value)
        except ValueError:
            error(f"Expected integer for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    if isinstance(current, float):
        try:
            return float(value)
        except ValueError:
            error(f"Expected a number for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    return value


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'session.read_timeout')."
    ),
    value: str = typer.Argument(help="Value to set ('none' clears optional values)."),
) -> None:
    """Set a configuration value.

    The value is coerced to match the existing field's type and the updated
    config is validated against :class:`~crawlkit.models.GlobalConfig`
    before saving.

    Example::

        crawlkit config set session.read_timeout 10
        crawlkit config set session.proxy http://user:pw@proxy.local:3128
        crawlkit config set session.proxy.port 3128
        crawlkit config set robots true
    """
    from crawlkit.config import load_global_config, save_global_config
    from crawlkit.models import GlobalConfig

    config = load_global_config()
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    coerced = _coerce(key, target[final_key], value)
    target[final_key] = coerced

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_global_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Reset configuration to defaults.

    Asks for confirmation unless ``--force`` is given.
    """
    from crawlkit.config import save_global_config
    from crawlkit.models import GlobalConfig

    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
