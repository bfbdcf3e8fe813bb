import asyncio, enum, logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from swapsnipr.browser import PlaywrightBrowser
from swapsnipr.core import Browser, PurchaseReceipt
from swapsnipr.diagnostics import Diagnostics
from swapsnipr.marketplace import Marketplace
from swapsnipr.settings import AccountCfg, Settings

log = logging.getLogger("swapsnipr")

Sleep = Callable[[float], Awaitable[None]]
OnPurchase = Callable[[PurchaseReceipt], object]


class CycleOutcome(enum.Enum):
    NO_SALES = "no_sales"
    TOO_EXPENSIVE = "too_expensive"
    PURCHASED = "purchased"


@dataclass
class AcquisitionState:
    remaining: int
    max_unit_price: Decimal

    def __post_init__(self):
        if self.remaining < 0:
            raise ValueError(f"remaining must be >= 0, got {self.remaining}")

    def accepts(self, price: Decimal) -> bool:
        return price <= self.max_unit_price

    def record(self, granted: int) -> None:
        if granted < 0 or granted > self.remaining:
            raise ValueError(
                f"cannot record {granted} unit(s) with {self.remaining} remaining"
            )
        self.remaining -= granted


async def authenticate(market: Marketplace, account: AccountCfg) -> None:
    # cookie banner covers the menu, clear it first
    await market.accept_cookie_consent()
    if account.exists:
        log.info("Using connection link")
        await market.open_connection_link(account.connection_link)
    else:
        log.info("Creating account")
        await market.create_account(account.email, account.given_name, account.family_name)


async def _cycle(
    market: Marketplace,
    state: AcquisitionState,
    on_purchase: Optional[OnPurchase],
) -> CycleOutcome:
    if not await market.are_listings_available():
        log.info("No sales available")
        return CycleOutcome.NO_SALES

    listings = await market.get_listings()
    prices = await asyncio.gather(*(listing.get_price() for listing in listings))
    log.info("There are %d available sale(s): %s", len(listings),
             ", ".join(f"{p}€" for p in prices))

    cheapest = await market.get_cheapest_listing()
    price = await cheapest.get_price()
    log.info("Cheapest sale: %s€", price)
    if not state.accepts(price):
        log.info("Tickets too expensive (%s€ > %s€)", price, state.max_unit_price)
        return CycleOutcome.TOO_EXPENSIVE

    granted = await cheapest.select_units(state.remaining)
    await cheapest.checkout()
    state.record(granted)
    log.info("%d ticket(s) bought from %s at %s€", granted, await cheapest.get_author(), price)

    if on_purchase is not None:
        on_purchase(
            PurchaseReceipt(
                url=await cheapest.get_url(),
                author=await cheapest.get_author(),
                unit_price=price,
                units=granted,
            )
        )
    return CycleOutcome.PURCHASED


async def acquire(
    market: Marketplace,
    settings: Settings,
    state: AcquisitionState,
    *,
    sleep: Sleep = asyncio.sleep,
    on_purchase: Optional[OnPurchase] = None,
) -> AcquisitionState:
    """Poll until `state.remaining` hits zero.

    Errors are not caught here: a failed cycle ends the run.
    """
    while state.remaining > 0:
        log.info("There are %d ticket(s) left to buy", state.remaining)
        await _cycle(market, state, on_purchase)
        if state.remaining > 0:
            delay = settings.random_delay_ms()
            log.info("Next try in %dms", delay)
            await sleep(delay / 1000)
            await market.reload()
    log.info("All tickets bought")
    return state


async def run(
    settings: Settings,
    *,
    launcher: Optional[Callable[..., Awaitable[Browser]]] = None,
    on_purchase: Optional[OnPurchase] = None,
    sleep: Sleep = asyncio.sleep,
) -> int:
    launch = launcher or PlaywrightBrowser.launch
    try:
        browser = await launch(
            headless=settings.browser.headless, timeout_ms=settings.browser.timeout_ms
        )
    except Exception:
        log.exception("Acquisition stopped: browser launch failed")
        return 1
    try:
        market = Marketplace(
            browser,
            settings.url,
            Diagnostics(settings.browser.logs_dir),
            timeout_ms=settings.browser.timeout_ms,
        )
        state = AcquisitionState(
            remaining=settings.purchase.tickets_count,
            max_unit_price=settings.purchase.max_price,
        )
        await authenticate(market, settings.account)
        await acquire(market, settings, state, sleep=sleep, on_purchase=on_purchase)
        return 0
    except Exception:
        log.exception("Acquisition stopped")
        return 1
    finally:
        await browser.close()


def main(settings: Settings) -> int:
    from swapsnipr.db import record_purchase

    return asyncio.run(run(settings, on_purchase=record_purchase))
