from __future__ import annotations

from typing import Optional

from swapsnipr.catalog import ListingCatalog
from swapsnipr.core import Browser
from swapsnipr.diagnostics import Diagnostics
from swapsnipr.listing import RemoteListing


class Marketplace:
    """Single entry point the acquisition loop talks to."""

    def __init__(
        self,
        browser: Browser,
        home_url: str,
        diagnostics: Diagnostics,
        *,
        timeout_ms: int = 30_000,
    ):
        self._browser = browser
        self._home_url = home_url
        self._diagnostics = diagnostics
        self._timeout_ms = timeout_ms
        self._catalog: Optional[ListingCatalog] = None

    @property
    def catalog(self) -> ListingCatalog:
        if self._catalog is None:
            self._catalog = ListingCatalog(
                self._browser,
                self._home_url,
                self._diagnostics,
                timeout_ms=self._timeout_ms,
            )
        return self._catalog

    async def accept_cookie_consent(self) -> None:
        await self.catalog.accept_cookie_consent()

    async def create_account(self, email: str, given_name: str, family_name: str) -> None:
        await self.catalog.create_account(email, given_name, family_name)

    async def open_connection_link(self, link: str) -> None:
        await self.catalog.open_connection_link(link)

    async def are_listings_available(self) -> bool:
        return await self.catalog.are_listings_available()

    async def get_listings(self) -> list[RemoteListing]:
        return await self.catalog.get_listings()

    async def get_cheapest_listing(self) -> RemoteListing:
        return await self.catalog.get_cheapest_listing()

    async def reload(self) -> None:
        await self.catalog.reload()
