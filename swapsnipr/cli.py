import asyncio
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Annotated, Optional
import os
import typer
from pydantic import ValidationError
from swapsnipr.settings import Settings, load_settings

if os.getenv("DEBUG_CLI", "0") == "1":
    import debugpy

    debugpy.listen(("0.0.0.0", 5679))
    if os.getenv("DEBUGPY_WAIT", "0") == "1":
        debugpy.wait_for_client()


# ---------------------------------------------------------------------------
# Global logging configuration - set once at import time
# ---------------------------------------------------------------------------
LOG_LEVEL = logging.DEBUG if os.getenv("SWAPSNIPR_DEBUG", "0") == "1" else logging.INFO
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s -- %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
file_handler = RotatingFileHandler(
    "./swapsnipr.log", maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
)
file_handler.setLevel(LOG_LEVEL)
file_handler.setFormatter(
    logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s -- %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
)

root = logging.getLogger()  # root logger
root.addHandler(file_handler)

log = logging.getLogger("swapsnipr.cli")

app = typer.Typer(help="swapsnipr CLI")

ConfigOpt = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="TOML config (default: $SWAPSNIPR_CONFIG)"),
]


def _settings_or_exit(config: Optional[Path]) -> Settings:
    """Validate the config before anything touches a browser."""
    try:
        return load_settings(config)
    except ValidationError as exc:
        typer.echo(f"Invalid configuration:\n{exc}", err=True)
        raise typer.Exit(code=2)


@app.command()
def start(config: ConfigOpt = None):
    """Run the acquisition loop until every ticket is bought."""
    from swapsnipr.scheduler import main as run

    settings = _settings_or_exit(config)
    raise typer.Exit(code=run(settings))


@app.command()
def check(config: ConfigOpt = None):
    """Validate the configuration and print a summary."""
    s = _settings_or_exit(config)
    mode = "connection link" if s.account.exists else f"new account ({s.account.email})"
    print(f"url       : {s.url}")
    print(f"auth      : {mode}")
    print(f"buy       : {s.purchase.tickets_count} ticket(s) at <= {s.purchase.max_price}€")
    print(f"backoff   : {s.polling.min_delay_ms}-{s.polling.max_delay_ms}ms")
    print(f"logs dir  : {s.browser.logs_dir}")


@app.command()
def snapshot(
    label: Annotated[str, typer.Argument(help="Base name of the written files.")],
    config: ConfigOpt = None,
):
    """Open the home page once and write <label>.png/.html/.pdf."""
    from swapsnipr.browser import PlaywrightBrowser
    from swapsnipr.diagnostics import Diagnostics

    settings = _settings_or_exit(config)

    async def _snap():
        browser = await PlaywrightBrowser.launch(
            headless=True, timeout_ms=settings.browser.timeout_ms
        )
        try:
            page = await browser.new_context()
            await page.goto(settings.url)
            diagnostics = Diagnostics(settings.browser.logs_dir)
            await diagnostics.capture(page, label)
            await diagnostics.pdf(page, f"{label}.pdf")
        finally:
            await browser.close()

    asyncio.run(_snap())
    log.info("Snapshot %s written to %s", label, settings.browser.logs_dir)


@app.command()
def history(
    limit: Annotated[
        int, typer.Option("--limit", "-n", help="Number of purchases to show.")
    ] = 20,
):
    """Show recent purchases."""
    from swapsnipr.db import recent_purchases, units_purchased

    rows = recent_purchases(limit=limit)
    for row in rows:
        print(
            f"{row.timestamp:%Y-%m-%d %H:%M:%S} | {row.author[:30]:30} | "
            f"{row.units} x {row.unit_price:,.2f}€ | {row.url}"
        )
    print(f"{units_purchased()} ticket(s) bought in total")


if __name__ == "__main__":
    app()
