"""
Playwright implementation of the browser protocols in `swapsnipr.core`.

Every "browsing context" handed out is a tab of one shared Playwright
`BrowserContext`, so cookies set by the connection link or the sign-up
modal are visible to the catalog and to each listing tab.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from playwright.async_api import (
    Browser as PwBrowser,
    BrowserContext as PwBrowserContext,
    ElementHandle,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeout,
    async_playwright,
)

from swapsnipr.core import WaitState, WaitTimeout

log = logging.getLogger("swapsnipr.browser")

_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


class PlaywrightElement:
    def __init__(self, handle: ElementHandle):
        self._handle = handle

    async def query(self, selector: str) -> Optional["PlaywrightElement"]:
        found = await self._handle.query_selector(selector)
        return PlaywrightElement(found) if found else None

    async def query_all(self, selector: str) -> list["PlaywrightElement"]:
        return [PlaywrightElement(h) for h in await self._handle.query_selector_all(selector)]

    async def text(self) -> str:
        return await self._handle.inner_text()

    async def attribute(self, name: str) -> Optional[str]:
        # DOM property rather than raw attribute: `href` comes back absolute
        value = await self._handle.evaluate("(node, name) => node[name]", name)
        return None if value is None else str(value)

    async def click(self) -> None:
        await self._handle.click()

    async def type(self, text: str) -> None:
        await self._handle.type(text)


class PlaywrightPage:
    def __init__(self, page: Page):
        self._page = page

    async def goto(self, url: str) -> None:
        try:
            await self._page.goto(url)
        except PlaywrightTimeout as exc:
            raise WaitTimeout(f"Navigation to {url} timed out: {exc}") from exc

    async def reload(self) -> None:
        try:
            await self._page.reload()
        except PlaywrightTimeout as exc:
            raise WaitTimeout(f"Reload timed out: {exc}") from exc

    async def query(self, selector: str) -> Optional[PlaywrightElement]:
        found = await self._page.query_selector(selector)
        return PlaywrightElement(found) if found else None

    async def query_all(self, selector: str) -> list[PlaywrightElement]:
        return [PlaywrightElement(h) for h in await self._page.query_selector_all(selector)]

    async def wait_for(self, selector: str, *, state: WaitState, timeout_ms: int) -> None:
        try:
            await self._page.wait_for_selector(selector, state=state, timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise WaitTimeout(
                f"{selector!r} not {state} after {timeout_ms}ms"
            ) from exc

    async def wait_for_navigation(
        self, trigger: Callable[[], Awaitable[None]], *, timeout_ms: int
    ) -> None:
        try:
            async with self._page.expect_navigation(timeout=timeout_ms):
                await trigger()
        except PlaywrightTimeout as exc:
            raise WaitTimeout(f"No navigation after {timeout_ms}ms") from exc

    async def screenshot(self, path: Path) -> None:
        await self._page.screenshot(path=str(path), full_page=True)

    async def content(self) -> str:
        return await self._page.content()

    async def pdf(self, path: Path) -> None:
        await self._page.pdf(path=str(path), format="A4")

    async def close(self) -> None:
        await self._page.close()


class PlaywrightBrowser:
    def __init__(self, playwright: Playwright, browser: PwBrowser, context: PwBrowserContext):
        self._playwright = playwright
        self._browser = browser
        self._context = context

    @classmethod
    async def launch(
        cls, *, headless: bool = True, timeout_ms: int = 30_000
    ) -> "PlaywrightBrowser":
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(headless=headless)
            context = await browser.new_context(user_agent=_USER_AGENT)
        except Exception:
            await playwright.stop()
            raise
        # bounds goto/reload on every tab
        context.set_default_timeout(timeout_ms)
        context.set_default_navigation_timeout(timeout_ms)
        log.info("Browser started (headless=%s, timeout=%dms)", headless, timeout_ms)
        return cls(playwright, browser, context)

    async def new_context(self) -> PlaywrightPage:
        return PlaywrightPage(await self._context.new_page())

    async def close(self) -> None:
        try:
            await self._context.close()
            await self._browser.close()
        finally:
            await self._playwright.stop()
        log.info("Browser closed")
