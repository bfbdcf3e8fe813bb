"""
One offer on the marketplace landing page.

A listing is backed by the `<a>` element the catalog found it under, so it
is only valid for the render that produced it. Author, price, url and the
dedicated purchase tab are resolved on first use and cached for the life of
the instance; a fresh price needs a fresh listing from a reloaded catalog.
"""

from __future__ import annotations

import enum
import logging
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, Optional

from swapsnipr.core import (
    Browser,
    BrowsingContext,
    CheckoutTimeout,
    CheckoutUIMismatch,
    Element,
    ListingClosed,
    Memo,
    NoUnitsAvailable,
    PriceFormatError,
    StructuralMismatch,
)
from swapsnipr.diagnostics import Diagnostics
from swapsnipr.policies import front_first_deselection

log = logging.getLogger("swapsnipr.listing")

# --------------------------------------------------------------------------- #
#  Selectors
# --------------------------------------------------------------------------- #

_FIELDS_SEL = "footer > div"
_UNIT_ROWS_SEL = "#__next > div > div > div > form > div > div > div > div"
_CHECKOUT_SEL = "#__next > div > div > div > form > button"

CURRENCY_GLYPH = "€"

CaptureCatalog = Callable[[str], Awaitable[None]]


def parse_price(text: str) -> Decimal:
    """
    "€1.234,56" -> Decimal("1234.56")

    The glyph must be the very first character. Dots are thousands
    separators, the comma is the decimal point.
    """
    if not text or text[0] != CURRENCY_GLYPH:
        first = text[:1] if text else ""
        raise PriceFormatError(
            f'Price should start with "{CURRENCY_GLYPH}", got "{first}" in {text!r}'
        )
    raw = "".join(text[1:].split()).replace(".", "").replace(",", ".")
    try:
        amount = Decimal(raw)
    except InvalidOperation as exc:
        raise PriceFormatError(f"Unreadable price {text!r}") from exc
    if not amount.is_finite():
        raise PriceFormatError(f"Unreadable price {text!r}")
    return amount


class ListingState(enum.Enum):
    UNRESOLVED = "unresolved"
    FIELDS_CACHED = "fields_cached"
    CONTEXT_OPEN = "context_open"
    UNITS_SELECTED = "units_selected"
    CHECKED_OUT = "checked_out"
    CLOSED = "closed"


class RemoteListing:
    def __init__(
        self,
        browser: Browser,
        handle: Element,
        diagnostics: Diagnostics,
        *,
        timeout_ms: int,
        capture_catalog: Optional[CaptureCatalog] = None,
    ):
        self._browser = browser
        self._handle = handle
        self._diagnostics = diagnostics
        self._timeout_ms = timeout_ms
        # snapshots the landing page the handle lives on
        self._capture_catalog = capture_catalog
        self.state = ListingState.UNRESOLVED

        self._fields: Memo[list[Element]] = Memo()
        self._author: Memo[str] = Memo()
        self._price: Memo[Decimal] = Memo()
        self._url: Memo[str] = Memo()
        self._context: Memo[BrowsingContext] = Memo()

    def __repr__(self) -> str:
        price = self._price.peek()
        return f"<RemoteListing {self.state.value} price={price}>"

    @property
    def author_known(self) -> bool:
        return self._author.resolved

    @property
    def price_known(self) -> bool:
        return self._price.resolved

    # ---------------- landing-page fields ---------------- #

    async def _mismatch(self, label: str, message: str) -> StructuralMismatch:
        if self._capture_catalog is not None:
            await self._capture_catalog(label)
        return StructuralMismatch(message, label=label)

    async def _get_fields(self) -> list[Element]:
        async def load() -> list[Element]:
            fields = await self._handle.query_all(_FIELDS_SEL)
            if len(fields) != 2:
                raise await self._mismatch(
                    "SaleFieldsError",
                    f"There are {len(fields)} fields in this listing, expected 2",
                )
            if self.state is ListingState.UNRESOLVED:
                self.state = ListingState.FIELDS_CACHED
            return fields

        return await self._fields.get(load)

    async def get_author(self) -> str:
        async def load() -> str:
            fields = await self._get_fields()
            return await fields[0].text()

        return await self._author.get(load)

    async def get_price(self) -> Decimal:
        async def load() -> Decimal:
            fields = await self._get_fields()
            return parse_price(await fields[1].text())

        return await self._price.get(load)

    async def get_url(self) -> str:
        async def load() -> str:
            href = await self._handle.attribute("href")
            if not href:
                raise await self._mismatch("SaleLinkError", "Listing link has no href")
            return href

        return await self._url.get(load)

    # ---------------- purchase tab ---------------- #

    def _ensure_open(self) -> None:
        if self.state is ListingState.CLOSED:
            raise ListingClosed("This listing has been closed")

    async def _get_context(self) -> BrowsingContext:
        self._ensure_open()

        async def load() -> BrowsingContext:
            url = await self.get_url()
            context = await self._browser.new_context()
            try:
                async with self._diagnostics.guard(context, "SaleOpenTimeoutError"):
                    await context.goto(url)
            except Exception:
                await context.close()
                raise
            self.state = ListingState.CONTEXT_OPEN
            return context

        return await self._context.get(load)

    async def select_units(self, requested: int) -> int:
        """Keep at most `requested` unit rows selected; return how many are kept.

        Every row starts selected. Excess rows are dropped from the front of
        the enumeration (see `policies.front_first_deselection`).
        """
        if requested < 1:
            raise ValueError(f"requested must be >= 1, got {requested}")
        context = await self._get_context()

        rows = await context.query_all(_UNIT_ROWS_SEL)
        if not rows:
            await self._diagnostics.capture(context, "SelectError")
            raise NoUnitsAvailable("No unit found in this listing", label="SelectError")

        deselect, granted = front_first_deselection(len(rows), requested)
        for row in rows[:deselect]:
            await row.click()
        log.debug(
            "%d row(s) available, %d deselected, %d kept", len(rows), deselect, granted
        )
        self.state = ListingState.UNITS_SELECTED
        return granted

    async def checkout(self) -> None:
        """Submit the selection and wait until the page navigates away."""
        context = await self._get_context()

        button = await context.query(_CHECKOUT_SEL)
        if button is None:
            await self._diagnostics.capture(context, "CheckoutError")
            raise CheckoutUIMismatch(
                "The checkout button is not where it should be", label="CheckoutError"
            )
        async with self._diagnostics.guard(
            context, "CheckoutTimeoutError", CheckoutTimeout
        ):
            await context.wait_for_navigation(button.click, timeout_ms=self._timeout_ms)
        self.state = ListingState.CHECKED_OUT
        await self._diagnostics.audit(context)

    async def close(self) -> None:
        if self.state is ListingState.CLOSED:
            return
        context: Optional[BrowsingContext] = self._context.peek()
        self.state = ListingState.CLOSED
        if context is not None:
            await context.close()
