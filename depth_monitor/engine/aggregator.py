"""
Cumulative totals and per-rank change for one side of the book.

Input levels are already sorted best-first by the level processor, so the
running total grows from the touch outward.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from ..types import AggregatedLevel, PriceLevel


def aggregate(
    levels: Sequence[PriceLevel],
    previous: Sequence[PriceLevel | AggregatedLevel] = (),
) -> tuple[AggregatedLevel, ...]:
    """
    Attach running totals and rank-wise changes.

    Args:
        levels: One side of the book, best price first
        previous: Same side from the previously published update

    Returns AggregatedLevel tuple in the same order as `levels`.

    A non-finite amount adds nothing to the running total and reports change 0,
    so one bad value never poisons the rest of the side.
    """
    count = len(levels)
    if count == 0:
        return ()

    amounts = np.fromiter((level.amount for level in levels), dtype=np.float64, count=count)
    finite = np.isfinite(amounts)
    totals = np.cumsum(np.where(finite, amounts, 0.0))

    prev_count = len(previous)
    result: list[AggregatedLevel] = []
    for i, level in enumerate(levels):
        change = 0.0
        if finite[i] and i < prev_count:
            prev_amount = previous[i].amount
            if math.isfinite(prev_amount):
                change = level.amount - prev_amount
        result.append(AggregatedLevel(
            price=level.price,
            amount=level.amount,
            total=float(totals[i]),
            change=change,
        ))

    return tuple(result)
