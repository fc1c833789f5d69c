"""Built-in CLI sub-commands for crawlkit.

* :mod:`~crawlkit.commands.config` -- view and modify the process-wide
  proxy and timeout defaults.
* :mod:`~crawlkit.commands.session` -- open sessions for URLs through a
  session cache and report their state.

Each module exports a :class:`typer.Typer` sub-application registered on the
root app by :func:`crawlkit.app.register_commands`.
"""
