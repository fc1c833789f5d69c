"""Session commands -- open destinations through a session cache.

``crawlkit session probe`` is a quick way to check what the cache would do
for a list of URLs with the current defaults: which destinations share a
session, which connect eagerly over TLS, and whether a proxy or timeout
setting stops the connection from being established.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import typer

from crawlkit.exceptions import ConnectionError_, CrawlkitError, InvalidURLError
from crawlkit.exit_codes import EXIT_SUCCESS
from crawlkit.output import debug, print_table


session_app = typer.Typer(no_args_is_help=True)


@session_app.command("probe")
def session_probe(
    urls: list[str] = typer.Argument(help="URLs to open sessions for."),
    proxy: Optional[str] = typer.Option(
        None, "--proxy", help="Proxy URL (e.g. http://user:pw@proxy:3128), or 'none'."
    ),
    open_timeout: Optional[float] = typer.Option(None, "--open-timeout", help="Connect timeout (s)."),
    ssl_timeout: Optional[float] = typer.Option(None, "--ssl-timeout", help="TLS handshake timeout (s)."),
    read_timeout: Optional[float] = typer.Option(None, "--read-timeout", help="Read timeout (s)."),
    head: bool = typer.Option(
        False, "--head/--no-head", help="Send a HEAD request for each URL."
    ),
) -> None:
    """Open a session for each URL and report its state.

    URLs on the same scheme, host and port share one session. Every session
    is closed before the command exits.

    Example::

        crawlkit session probe https://example.com/ https://example.com/about
        crawlkit session probe --head --read-timeout 5 http://example.org/
    """
    from crawlkit.cache import SessionCache
    from crawlkit.urls import normalize_url

    overrides: dict[str, Any] = {
        "open_timeout": open_timeout,
        "ssl_timeout": ssl_timeout,
        "read_timeout": read_timeout,
    }
    overrides = {name: value for name, value in overrides.items() if value is not None}
    if proxy is not None:
        overrides["proxy"] = None if proxy.lower() == "none" else proxy

    rows: list[list[str]] = []
    exit_code = EXIT_SUCCESS
    with SessionCache(**overrides) as cache:
        debug(f"Session settings: {cache.settings.model_dump(mode='json')}")
        for url in urls:
            try:
                session = cache.get(url)
            except (InvalidURLError, ConnectionError_) as exc:
                rows.append([url, "-", "-", "-", f"error: {exc}"])
                exit_code = max(exit_code, exc.exit_code)
                continue

            status = "ready"
            if head:
                target = normalize_url(url).raw_path.decode("ascii")
                try:
                    response = session.head(target)
                    status = f"HTTP {response.status_code}"
                except (httpx.HTTPError, CrawlkitError) as exc:
                    cache.kill(url)
                    status = f"error: {exc}"
                    exit_code = max(exit_code, ConnectionError_.exit_code)

            rows.append([
                url,
                str(session.key),
                "yes" if session.use_ssl else "no",
                "yes" if session.started else "no",
                status,
            ])

    print_table(["URL", "Session", "TLS", "Open", "Status"], rows, title="Sessions")
    if exit_code != EXIT_SUCCESS:
        raise typer.Exit(code=exit_code)
