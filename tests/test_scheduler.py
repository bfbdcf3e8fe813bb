import logging
from decimal import Decimal

import pytest

from swapsnipr.catalog import _CONTAINER_SEL, _MENU_BUTTONS_SEL, SIGN_IN_LABEL
from swapsnipr.core import NoContainer
from swapsnipr.listing import _UNIT_ROWS_SEL
from swapsnipr.marketplace import Marketplace
from swapsnipr.scheduler import (
    AcquisitionState,
    CycleOutcome,
    _cycle,
    acquire,
    authenticate,
    run,
)
from swapsnipr.settings import Settings

from fakes import HOME, FakeElement, home_layout, sale_layout

LINK = "https://market.test/login?token=abc"


def sale(i):
    return f"https://market.test/listing/{i}"


def make_settings(tmp_path, tickets=2, max_price=7, **account):
    return Settings(
        url=HOME,
        account=account or {"exists": True, "connection_link": LINK},
        purchase={"max_price": max_price, "tickets_count": tickets},
        polling={"min_delay_ms": 10, "max_delay_ms": 20},
        browser={"logs_dir": tmp_path / "logs", "timeout_ms": 1000},
    )


class Sleeper:
    """Records backoff calls; runs one queued action per call."""

    def __init__(self, *actions):
        self.calls = []
        self.actions = list(actions)

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.actions:
            self.actions.pop(0)()


@pytest.fixture
def market(browser, diagnostics):
    return Marketplace(browser, HOME, diagnostics, timeout_ms=1000)


# ---------------- state ---------------- #


def test_state_records_units():
    state = AcquisitionState(remaining=3, max_unit_price=Decimal("7"))
    state.record(2)
    state.record(1)
    assert state.remaining == 0


@pytest.mark.parametrize("granted", [-1, 4])
def test_state_refuses_impossible_counts(granted):
    state = AcquisitionState(remaining=3, max_unit_price=Decimal("7"))
    with pytest.raises(ValueError):
        state.record(granted)
    assert state.remaining == 3


def test_state_price_ceiling_is_inclusive():
    state = AcquisitionState(remaining=1, max_unit_price=Decimal("7"))
    assert state.accepts(Decimal("7"))
    assert not state.accepts(Decimal("7.01"))


# ---------------- single cycles ---------------- #


async def test_cycle_without_sales(browser, market, caplog):
    browser.layouts[HOME] = home_layout(available=False)
    state = AcquisitionState(remaining=2, max_unit_price=Decimal("7"))
    with caplog.at_level(logging.INFO, logger="swapsnipr"):
        assert await _cycle(market, state, None) is CycleOutcome.NO_SALES
    assert state.remaining == 2
    assert "No sales available" in caplog.text


async def test_cycle_too_expensive(browser, market, caplog):
    browser.layouts[HOME] = home_layout(("a", "€10", sale(0)), ("b", "€12", sale(1)))
    state = AcquisitionState(remaining=2, max_unit_price=Decimal("7"))
    with caplog.at_level(logging.INFO, logger="swapsnipr"):
        assert await _cycle(market, state, None) is CycleOutcome.TOO_EXPENSIVE
    assert state.remaining == 2
    assert "too expensive" in caplog.text
    assert browser.pages_at(sale(0)) == []


# ---------------- acquisition loop ---------------- #


async def test_buys_cheapest_acceptable_and_stops(browser, market, tmp_path):
    browser.layouts[HOME] = home_layout(("a", "€8", sale(0)), ("b", "€6", sale(1)))
    browser.layouts[sale(1)] = sale_layout(3)
    receipts = []
    sleeper = Sleeper()
    state = AcquisitionState(remaining=2, max_unit_price=Decimal("7"))

    await acquire(market, make_settings(tmp_path), state, sleep=sleeper, on_purchase=receipts.append)

    assert state.remaining == 0
    assert sleeper.calls == []
    assert browser.pages_at(sale(0)) == []
    rows = browser.pages_at(sale(1))[0].elements[_UNIT_ROWS_SEL]
    assert [row.clicks for row in rows] == [1, 0, 0]
    (receipt,) = receipts
    assert receipt.units == 2
    assert receipt.unit_price == Decimal("6")
    assert receipt.author == "b"
    assert receipt.url == sale(1)


async def test_no_sales_then_backoff_and_reload(browser, market, tmp_path, caplog):
    browser.layouts[HOME] = home_layout(available=False)
    browser.layouts[sale(0)] = sale_layout(2)

    def sales_appear():
        browser.layouts[HOME] = home_layout(("a", "€5", sale(0)))

    sleeper = Sleeper(sales_appear)
    state = AcquisitionState(remaining=2, max_unit_price=Decimal("7"))
    with caplog.at_level(logging.INFO, logger="swapsnipr"):
        await acquire(market, make_settings(tmp_path), state, sleep=sleeper)

    assert "No sales available" in caplog.text
    assert len(sleeper.calls) == 1
    assert 0.010 <= sleeper.calls[0] < 0.020
    assert browser.pages_at(HOME)[0].reloads == 1
    assert state.remaining == 0


async def test_too_expensive_then_cheaper(browser, market, tmp_path):
    browser.layouts[HOME] = home_layout(("a", "€10", sale(0)))
    browser.layouts[sale(1)] = sale_layout(2)
    seen = []

    def price_drops():
        seen.append(state.remaining)
        browser.layouts[HOME] = home_layout(("a", "€10", sale(0)), ("b", "€7", sale(1)))

    sleeper = Sleeper(price_drops)
    state = AcquisitionState(remaining=2, max_unit_price=Decimal("7"))
    await acquire(market, make_settings(tmp_path), state, sleep=sleeper)

    assert seen == [2]
    assert state.remaining == 0
    assert browser.pages_at(sale(0)) == []


async def test_partial_fulfilment_across_offers(browser, market, tmp_path):
    browser.layouts[HOME] = home_layout(("a", "€6", sale(0)))
    browser.layouts[sale(0)] = sale_layout(2)
    browser.layouts[sale(1)] = sale_layout(4)
    trajectory = []

    def next_offer():
        trajectory.append(state.remaining)
        browser.layouts[HOME] = home_layout(("b", "€5", sale(1)))

    receipts = []
    state = AcquisitionState(remaining=5, max_unit_price=Decimal("7"))
    await acquire(
        market,
        make_settings(tmp_path, tickets=5),
        state,
        sleep=Sleeper(next_offer),
        on_purchase=receipts.append,
    )

    assert trajectory == [3]
    assert state.remaining == 0
    assert [r.units for r in receipts] == [2, 3]
    assert sum(r.units for r in receipts) == 5
    # first listing's tab is released by the reload before the second purchase
    assert browser.pages_at(sale(0))[0].closed
    rows = browser.pages_at(sale(1))[0].elements[_UNIT_ROWS_SEL]
    assert [row.clicks for row in rows] == [1, 0, 0, 0]


async def test_structural_error_ends_the_loop(browser, market, tmp_path):
    def broken():
        elements = home_layout(("a", "€5", sale(0)))()
        del elements[_CONTAINER_SEL]
        return elements

    browser.layouts[HOME] = broken
    sleeper = Sleeper()
    state = AcquisitionState(remaining=1, max_unit_price=Decimal("7"))
    with pytest.raises(NoContainer):
        await acquire(market, make_settings(tmp_path), state, sleep=sleeper)
    assert sleeper.calls == []
    assert state.remaining == 1


# ---------------- setup & run ---------------- #


async def test_authenticate_with_connection_link(browser, market, tmp_path):
    browser.layouts[HOME] = home_layout()
    settings = make_settings(tmp_path)
    await authenticate(market, settings.account)

    assert market.catalog.cookies_accepted
    (link_page,) = browser.pages_at(LINK)
    assert link_page.closed


async def test_authenticate_creates_account(browser, market, tmp_path):
    def layout():
        elements = home_layout()()
        elements[_MENU_BUTTONS_SEL] = [FakeElement(SIGN_IN_LABEL)]
        for sel in (
            "div[data-testid=dialog-overlay] #email",
            "div[data-testid=dialog-overlay] form button[type=submit]",
            "div[data-testid=dialog-overlay] #firstname",
            "div[data-testid=dialog-overlay] #lastname",
        ):
            elements[sel] = [FakeElement()]
        return elements

    browser.layouts[HOME] = layout
    settings = make_settings(
        tmp_path, exists=False, email="me@example.com", given_name="Jane", family_name="Doe"
    )
    await authenticate(market, settings.account)

    assert browser.pages_at(LINK) == []
    page = browser.pages_at(HOME)[0]
    assert page.elements[_MENU_BUTTONS_SEL][0].clicks == 1


async def test_run_releases_browser_on_success(browser, tmp_path):
    browser.layouts[HOME] = home_layout(("a", "€6", sale(0)))
    browser.layouts[sale(0)] = sale_layout(2)

    async def launcher(**kwargs):
        return browser

    code = await run(make_settings(tmp_path), launcher=launcher, sleep=Sleeper())
    assert code == 0
    assert browser.closed


async def test_run_releases_browser_on_failure(browser, tmp_path, caplog):
    browser.layouts[HOME] = home_layout()  # available marker but no offers

    async def launcher(**kwargs):
        return browser

    with caplog.at_level(logging.ERROR, logger="swapsnipr"):
        code = await run(make_settings(tmp_path), launcher=launcher, sleep=Sleeper())
    assert code == 1
    assert browser.closed
    assert "Acquisition stopped" in caplog.text
    assert (tmp_path / "logs" / "SalesChildrenError.png").exists()


async def test_run_passes_browser_settings_to_launcher(browser, tmp_path):
    browser.layouts[HOME] = home_layout(("a", "€6", sale(0)))
    browser.layouts[sale(0)] = sale_layout(2)
    seen = {}

    async def launcher(**kwargs):
        seen.update(kwargs)
        return browser

    assert await run(make_settings(tmp_path), launcher=launcher, sleep=Sleeper()) == 0
    assert seen == {"headless": True, "timeout_ms": 1000}


async def test_run_reports_failed_launch(tmp_path, caplog):
    async def launcher(**kwargs):
        raise RuntimeError("chromium is not installed")

    with caplog.at_level(logging.ERROR, logger="swapsnipr"):
        code = await run(make_settings(tmp_path), launcher=launcher, sleep=Sleeper())
    assert code == 1
    assert "browser launch failed" in caplog.text
    assert "chromium is not installed" in caplog.text


async def test_run_records_purchases_in_the_audit_db(browser, tmp_path, monkeypatch):
    from swapsnipr import db

    monkeypatch.setenv("SWAPSNIPR_DB_URL", f"sqlite:///{tmp_path / 'audit.sqlite'}")
    db.get_engine.cache_clear()
    browser.layouts[HOME] = home_layout(("a", "€6", sale(0)))
    browser.layouts[sale(0)] = sale_layout(2)

    async def launcher(**kwargs):
        return browser

    try:
        code = await run(
            make_settings(tmp_path),
            launcher=launcher,
            on_purchase=db.record_purchase,
            sleep=Sleeper(),
        )
        assert code == 0
        (row,) = db.recent_purchases()
        assert row.units == 2
        assert row.author == "a"
        assert row.unit_price == Decimal("6")
        assert db.units_purchased() == 2
    finally:
        db.get_engine.cache_clear()
