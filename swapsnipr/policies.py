"""
Tie-break policies shared by the catalog and the listings.

Both are observable from the outside (which offer gets bought, which seats
end up in the cart), so they live here under a name instead of hiding in
index arithmetic.
"""

from __future__ import annotations

from typing import Sequence, Tuple, TypeVar

Price = TypeVar("Price")


def first_minimum(prices: Sequence[Price]) -> int:
    """Index of the lowest price; on ties the earliest one wins."""
    if not prices:
        raise ValueError("cannot pick the cheapest of zero prices")
    best = 0
    for idx, price in enumerate(prices):
        if price < prices[best]:
            best = idx
    return best


def front_first_deselection(available: int, requested: int) -> Tuple[int, int]:
    """
    Return `(deselect, granted)` for a listing whose rows all start selected.

    The first `deselect` rows in enumeration order are dropped and the tail
    is kept. Which end is kept carries no meaning on the marketplace side;
    it is a fixed choice awaiting product confirmation.
    """
    if requested < 1:
        raise ValueError(f"requested must be >= 1, got {requested}")
    if available <= requested:
        return 0, available
    return available - requested, requested
