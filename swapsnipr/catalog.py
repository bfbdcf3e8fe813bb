"""
The marketplace landing page: cookie banner, sign-up modal and the list of
offers currently on sale.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Optional

from swapsnipr.core import (
    AccountTimeout,
    Browser,
    BrowsingContext,
    ConsentControlMissing,
    ConsentTimeout,
    ControlMissing,
    Memo,
    NoContainer,
    NoListings,
)
from swapsnipr.diagnostics import Diagnostics
from swapsnipr.listing import RemoteListing
from swapsnipr.policies import first_minimum

log = logging.getLogger("swapsnipr.catalog")

# --------------------------------------------------------------------------- #
#  Selectors
# --------------------------------------------------------------------------- #

_COOKIE_BTN_SEL = "#__next > div > div > button"
_COOKIE_ICON_SEL = f"{_COOKIE_BTN_SEL} > span > svg > path"

_MENU_BUTTONS_SEL = "#__next nav > ul > li > button"
SIGN_IN_LABEL = "Connecte-toi"

_DIALOG_SEL = "div[data-testid=dialog-overlay]"
_EMAIL_SEL = f"{_DIALOG_SEL} #email"
_SUBMIT_SEL = f"{_DIALOG_SEL} form button[type=submit]"
_GIVEN_NAME_SEL = f"{_DIALOG_SEL} #firstname"
_FAMILY_NAME_SEL = f"{_DIALOG_SEL} #lastname"

_AVAILABLE_SEL = "#tickets [data-testid=available-h2]"
_CONTAINER_SEL = "#tickets > div > ul"
_LISTING_LINKS_SEL = "div > a"


class ListingCatalog:
    def __init__(
        self,
        browser: Browser,
        url: str,
        diagnostics: Diagnostics,
        *,
        timeout_ms: int,
    ):
        self._browser = browser
        self._url = url
        self._diagnostics = diagnostics
        self._timeout_ms = timeout_ms
        self._page: Memo[BrowsingContext] = Memo()
        self._listings: Memo[list[RemoteListing]] = Memo()
        self.cookies_accepted = False

    async def _get_page(self) -> BrowsingContext:
        async def load() -> BrowsingContext:
            page = await self._browser.new_context()
            try:
                async with self._diagnostics.guard(page, "HomePageTimeoutError"):
                    await page.goto(self._url)
            except Exception:
                await page.close()
                raise
            return page

        return await self._page.get(load)

    async def _missing(self, page: BrowsingContext, label: str, what: str, cls=ControlMissing):
        await self._diagnostics.capture(page, label)
        return cls(f"The {what} is not where it should be", label=label)

    # ---------------- session bootstrap ---------------- #

    async def accept_cookie_consent(self) -> None:
        if self.cookies_accepted:
            return
        page = await self._get_page()
        button = await page.query(_COOKIE_BTN_SEL)
        icon = await page.query(_COOKIE_ICON_SEL)
        if button is None or icon is None:
            raise await self._missing(
                page, "CookiesError", "cookie panel", ConsentControlMissing
            )
        await button.click()
        self.cookies_accepted = True
        async with self._diagnostics.guard(page, "CookiesTimeoutError", ConsentTimeout):
            await page.wait_for(
                _COOKIE_ICON_SEL, state="hidden", timeout_ms=self._timeout_ms
            )
        log.info("Cookies accepted")

    async def create_account(self, email: str, given_name: str, family_name: str) -> None:
        """Walk the sign-up modal: email step, then name step.

        Fails on the first missing control or expired wait; nothing is retried.
        """
        page = await self._get_page()
        timeout = self._timeout_ms

        sign_in = None
        for button in await page.query_all(_MENU_BUTTONS_SEL):
            if await button.text() == SIGN_IN_LABEL:
                sign_in = button
                break
        if sign_in is None:
            raise await self._missing(page, "CreateAccountOpenError", "connection button")
        await sign_in.click()
        async with self._diagnostics.guard(
            page, "CreateAccountOpenModalTimeoutError", AccountTimeout
        ):
            await page.wait_for(_EMAIL_SEL, state="visible", timeout_ms=timeout)

        email_field = await page.query(_EMAIL_SEL)
        if email_field is None:
            raise await self._missing(page, "CreateAccountEmailError", "email field")
        await email_field.type(email)
        email_btn = await page.query(_SUBMIT_SEL)
        if email_btn is None:
            raise await self._missing(
                page, "CreateAccountEmailSubmitError", "email validation button"
            )
        await email_btn.click()
        async with self._diagnostics.guard(
            page, "CreateAccountHideEmailTimeoutError", AccountTimeout
        ):
            await page.wait_for(_EMAIL_SEL, state="hidden", timeout_ms=timeout)
        async with self._diagnostics.guard(
            page, "CreateAccountShowFirstNameTimeoutError", AccountTimeout
        ):
            await page.wait_for(_GIVEN_NAME_SEL, state="visible", timeout_ms=timeout)

        given_field = await page.query(_GIVEN_NAME_SEL)
        if given_field is None:
            raise await self._missing(page, "CreateAccountFirstNameError", "first name field")
        family_field = await page.query(_FAMILY_NAME_SEL)
        if family_field is None:
            raise await self._missing(
                page, "CreateAccountFamilyNameError", "family name field"
            )
        await given_field.type(given_name)
        await family_field.type(family_name)
        subscribe_btn = await page.query(_SUBMIT_SEL)
        if subscribe_btn is None:
            raise await self._missing(page, "CreateAccountSubscribeError", "subscribe button")
        await subscribe_btn.click()
        async with self._diagnostics.guard(page, "ValidateTimeoutError", AccountTimeout):
            await page.wait_for(_DIALOG_SEL, state="hidden", timeout_ms=timeout)
        log.info("Account created for %s", email)

    async def open_connection_link(self, link: str) -> None:
        page = await self._browser.new_context()
        try:
            async with self._diagnostics.guard(page, "ConnectionLinkTimeoutError"):
                await page.goto(link)
        finally:
            await page.close()

    # ---------------- listings ---------------- #

    async def are_listings_available(self) -> bool:
        page = await self._get_page()
        return await page.query(_AVAILABLE_SEL) is not None

    async def get_listings(self) -> list[RemoteListing]:
        async def load() -> list[RemoteListing]:
            page = await self._get_page()
            container = await page.query(_CONTAINER_SEL)
            if container is None:
                await self._diagnostics.capture(page, "SalesContainerError")
                raise NoContainer(
                    "The sales container is not where it should be",
                    label="SalesContainerError",
                )
            children = await container.query_all(_LISTING_LINKS_SEL)
            if not children:
                await self._diagnostics.capture(page, "SalesChildrenError")
                raise NoListings("There are no sales", label="SalesChildrenError")
            capture = functools.partial(self._diagnostics.capture, page)
            return [
                RemoteListing(
                    self._browser,
                    child,
                    self._diagnostics,
                    timeout_ms=self._timeout_ms,
                    capture_catalog=capture,
                )
                for child in children
            ]

        return await self._listings.get(load)

    async def get_cheapest_listing(self) -> RemoteListing:
        listings = await self.get_listings()
        prices = await asyncio.gather(*(listing.get_price() for listing in listings))
        return listings[first_minimum(prices)]

    async def reload(self) -> None:
        """Release every cached listing, then refresh the landing page."""
        page = await self._get_page()
        listings: Optional[list[RemoteListing]] = self._listings.peek()
        self._listings.clear()
        if listings:
            results = await asyncio.gather(
                *(listing.close() for listing in listings), return_exceptions=True
            )
            for listing, res in zip(listings, results):
                if isinstance(res, BaseException):
                    log.warning("Could not close %r: %s", listing, res)
        async with self._diagnostics.guard(page, "HomePageReloadTimeoutError"):
            await page.reload()
