"""
Price level parsing for raw depth frames.

HOT PATH: process_levels() runs twice per admitted update (bids + asks).

Raw levels arrive as [price_str, qty_str] pairs. Anything that does not parse
to a finite, non-negative pair is dropped on its own; one bad rung never
invalidates the rest of the side.
"""

from __future__ import annotations

import math
from typing import Any

from ..config import BOOK_DEPTH, PRICE_SCALE_FIXES
from ..types import Instrument, PriceLevel


def normalize_price(price: float, instrument: Instrument) -> float:
    """
    Apply the per-instrument price scale fix, if one is configured.

    Only prices strictly above the threshold are rescaled.
    """
    fix = PRICE_SCALE_FIXES.get(instrument.symbol)
    if fix is None:
        return price
    threshold, divisor = fix
    if price > threshold:
        return price / divisor
    return price


def parse_level(raw: Any, instrument: Instrument) -> PriceLevel | None:
    """Parse one [price, qty] pair. Returns None if the pair is unusable."""
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        return None

    price_raw, amount_raw = raw
    # bool is an int subclass; a true/false rung is never valid
    if isinstance(price_raw, bool) or isinstance(amount_raw, bool):
        return None

    try:
        price = float(price_raw)
        amount = float(amount_raw)
    except (TypeError, ValueError):
        return None

    if not (math.isfinite(price) and math.isfinite(amount)):
        return None
    if price < 0 or amount < 0:
        return None

    return PriceLevel(normalize_price(price, instrument), amount)


def process_levels(
    raw_levels: Any,
    instrument: Instrument,
    *,
    ascending: bool = False,
    depth: int = BOOK_DEPTH,
) -> tuple[PriceLevel, ...]:
    """
    Parse, sort and truncate one side of the book.

    Args:
        raw_levels: Sequence of [price, qty] pairs from the feed
        instrument: Active instrument (drives price normalization)
        ascending: False for bids (best = highest), True for asks (best = lowest)
        depth: Number of levels to keep

    Returns an empty tuple if raw_levels is not a sequence at all.
    Duplicate prices are kept as separate levels.
    """
    if not isinstance(raw_levels, (list, tuple)):
        return ()

    levels = [level for level in (parse_level(raw, instrument) for raw in raw_levels) if level is not None]
    levels.sort(key=lambda level: level.price, reverse=not ascending)
    return tuple(levels[:depth])
