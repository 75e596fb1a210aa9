import random

from depth_monitor.config import find_instrument
from depth_monitor.datafeed.levels import normalize_price, parse_level, process_levels
from depth_monitor.types import PriceLevel

BTC = find_instrument("BTC-USD")
XRP = find_instrument("XRP-USD")


def test_drops_malformed_and_keeps_duplicates():
    raw = [["100", "2"], ["105", "1"], ["abc", "3"], ["100", "1"]]
    levels = process_levels(raw, BTC)

    assert [level.price for level in levels] == [105.0, 100.0, 100.0]
    assert levels[0] == PriceLevel(105.0, 1.0)
    assert sorted(level.amount for level in levels[1:]) == [1.0, 2.0]


def test_never_more_than_depth_and_sorted_descending():
    rng = random.Random(7)
    raw = [[f"{rng.uniform(1, 1000):.2f}", f"{rng.uniform(0, 10):.3f}"] for _ in range(250)]

    levels = process_levels(raw, BTC)

    assert len(levels) == 20
    prices = [level.price for level in levels]
    assert prices == sorted(prices, reverse=True)
    # Keeps the best (highest) bids
    assert prices[0] == max(float(p) for p, _ in raw)


def test_ask_side_sorts_ascending():
    raw = [["101", "1"], ["103", "1"], ["102", "1"]]
    levels = process_levels(raw, BTC, ascending=True)
    assert [level.price for level in levels] == [101.0, 102.0, 103.0]


def test_rejects_bad_shapes_entry_by_entry():
    raw = [
        ["1", "2", "3"],
        ["1"],
        "12",
        None,
        ["nan", "1"],
        ["1", "inf"],
        ["-1", "1"],
        ["1", "-0.5"],
        [True, "1"],
        [None, "1"],
        ["10", "0.5"],
        [11, 0.25],
    ]
    levels = process_levels(raw, BTC)
    assert levels == (PriceLevel(11.0, 0.25), PriceLevel(10.0, 0.5))


def test_non_sequence_input_returns_empty():
    assert process_levels(None, BTC) == ()
    assert process_levels("bids", BTC) == ()
    assert process_levels({"100": "1"}, BTC) == ()
    assert process_levels([], BTC) == ()


def test_price_fix_applies_only_to_configured_instrument():
    assert normalize_price(45000.0, XRP) == 1.125
    assert normalize_price(45000.0, BTC) == 45000.0


def test_price_fix_only_above_threshold():
    assert normalize_price(1000.0, XRP) == 1000.0
    assert normalize_price(0.52, XRP) == 0.52
    assert parse_level(["45000", "3"], XRP) == PriceLevel(1.125, 3.0)


def test_normalized_prices_are_sorted_after_scaling():
    raw = [["0.5", "1"], ["45000", "1"], ["0.6", "1"]]
    levels = process_levels(raw, XRP)
    assert [level.price for level in levels] == [1.125, 0.6, 0.5]
