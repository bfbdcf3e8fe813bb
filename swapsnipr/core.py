from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Awaitable, Callable, Generic, Literal, Optional, Protocol, TypeVar

T = TypeVar("T")


# --------------------------------------------------------------------------- #
#  Errors
# --------------------------------------------------------------------------- #


class SniprError(RuntimeError):
    """Base error; `label` names the diagnostic capture tied to the failure."""

    def __init__(self, message: str, *, label: Optional[str] = None):
        super().__init__(message)
        self.label = label


class StructuralMismatch(SniprError):
    """Raised when the live page no longer matches the expected layout."""


class NoContainer(StructuralMismatch):
    """The listings container is missing from the landing page."""


class ControlMissing(SniprError):
    """An expected button, field or icon is absent."""


class ConsentControlMissing(ControlMissing):
    pass


class CheckoutUIMismatch(ControlMissing):
    pass


class WaitTimeout(SniprError, TimeoutError):
    """A visibility, hidden-state or navigation wait ran past its bound."""


class ConsentTimeout(WaitTimeout):
    pass


class AccountTimeout(WaitTimeout):
    pass


class CheckoutTimeout(WaitTimeout):
    pass


class PriceFormatError(SniprError, ValueError):
    """Raised when a price is not a euro-prefixed European-formatted number."""


class NothingToActOn(SniprError):
    """The page legitimately holds nothing to buy right now."""


class NoListings(NothingToActOn):
    pass


class NoUnitsAvailable(NothingToActOn):
    pass


class ListingClosed(SniprError):
    """A purchase operation was attempted on a released listing."""


# --------------------------------------------------------------------------- #
#  Browser collaborator
# --------------------------------------------------------------------------- #

WaitState = Literal["visible", "hidden"]


class Element(Protocol):
    async def query(self, selector: str) -> Optional["Element"]: ...

    async def query_all(self, selector: str) -> list["Element"]: ...

    async def text(self) -> str: ...

    async def attribute(self, name: str) -> Optional[str]: ...

    async def click(self) -> None: ...

    async def type(self, text: str) -> None: ...


class BrowsingContext(Protocol):
    async def goto(self, url: str) -> None: ...

    async def reload(self) -> None: ...

    async def query(self, selector: str) -> Optional[Element]: ...

    async def query_all(self, selector: str) -> list[Element]: ...

    async def wait_for(
        self, selector: str, *, state: WaitState, timeout_ms: int
    ) -> None: ...

    async def wait_for_navigation(
        self, trigger: Callable[[], Awaitable[None]], *, timeout_ms: int
    ) -> None: ...

    async def screenshot(self, path: Path) -> None: ...

    async def content(self) -> str: ...

    async def pdf(self, path: Path) -> None: ...

    async def close(self) -> None: ...


class Browser(Protocol):
    async def new_context(self) -> BrowsingContext: ...

    async def close(self) -> None: ...


# --------------------------------------------------------------------------- #
#  Small shared types
# --------------------------------------------------------------------------- #


class Memo(Generic[T]):
    """Initialize-once cell.

    The first `get` runs the factory and stores its result; concurrent
    callers wait on the same lock and share that result. A failed factory
    leaves the cell empty.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._resolved = False
        self._value: Optional[T] = None

    @property
    def resolved(self) -> bool:
        return self._resolved

    def peek(self) -> Optional[T]:
        return self._value

    async def get(self, factory: Callable[[], Awaitable[T]]) -> T:
        if self._resolved:
            return self._value  # type: ignore[return-value]
        async with self._lock:
            if not self._resolved:
                self._value = await factory()
                self._resolved = True
        return self._value  # type: ignore[return-value]

    def clear(self) -> None:
        self._resolved = False
        self._value = None


@dataclass(frozen=True)
class PurchaseReceipt:
    url: str
    author: str
    unit_price: Decimal
    units: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
