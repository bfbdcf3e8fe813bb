from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Type

from swapsnipr.core import BrowsingContext, WaitTimeout

log = logging.getLogger("swapsnipr.diagnostics")


class Diagnostics:
    """Writes screenshots and DOM dumps of a browsing context under `root`."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    async def screenshot(self, context: BrowsingContext, name: str) -> Path:
        path = self.root / name
        await context.screenshot(path)
        return path

    async def dump_html(self, context: BrowsingContext, name: str) -> Path:
        path = self.root / name
        html = await context.content()
        path.write_text(html, encoding="utf-8")
        return path

    async def pdf(self, context: BrowsingContext, name: str) -> Path:
        path = self.root / name
        await context.pdf(path)
        return path

    async def capture(self, context: BrowsingContext, label: str) -> None:
        """Write `<label>.png` and `<label>.html`.

        Called while another error is already on its way up, so a failing
        capture is only logged.
        """
        results = await asyncio.gather(
            self.screenshot(context, f"{label}.png"),
            self.dump_html(context, f"{label}.html"),
            return_exceptions=True,
        )
        failures = [res for res in results if isinstance(res, BaseException)]
        for res in failures:
            log.warning("Diagnostic capture %s failed: %s", label, res)
        if not failures:
            log.info("Diagnostic capture written: %s/%s.*", self.root, label)

    async def audit(self, context: BrowsingContext) -> Path:
        return await self.screenshot(context, f"{int(time.time() * 1000)}.png")

    @asynccontextmanager
    async def guard(
        self,
        context: BrowsingContext,
        label: str,
        error_cls: Type[WaitTimeout] = WaitTimeout,
    ) -> AsyncIterator[None]:
        """Turn a timed-out wait into `error_cls` after capturing the page."""
        try:
            yield
        except WaitTimeout as exc:
            await self.capture(context, label)
            raise error_cls(f"{label}: {exc}", label=label) from exc
