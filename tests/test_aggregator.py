import math

from depth_monitor.engine.aggregator import aggregate
from depth_monitor.types import AggregatedLevel, PriceLevel


def _levels(*pairs):
    return tuple(PriceLevel(price, amount) for price, amount in pairs)


def test_totals_are_prefix_sums():
    result = aggregate(_levels((103, 2), (102, 1), (101, 1)))
    assert [level.total for level in result] == [2.0, 3.0, 4.0]
    assert all(level.change == 0.0 for level in result)


def test_change_against_same_rank():
    previous = aggregate(_levels((103, 2), (102, 1)))
    result = aggregate(_levels((103, 2.5), (102, 0.25), (101, 4)), previous)

    assert [level.change for level in result] == [0.5, -0.75, 0.0]


def test_empty_input():
    assert aggregate(()) == ()
    assert aggregate((), _levels((1, 1))) == ()


def test_non_finite_amount_does_not_poison_running_total():
    levels = _levels((103, 2), (102, float("nan")), (101, 1))
    previous = _levels((103, 1), (102, 1), (101, 1))

    result = aggregate(levels, previous)

    assert [level.total for level in result] == [2.0, 2.0, 3.0]
    assert result[0].change == 1.0
    assert result[1].change == 0.0
    assert math.isnan(result[1].amount)
    assert result[2].change == 0.0


def test_returns_immutable_aggregated_levels():
    result = aggregate(_levels((1, 1)))
    assert isinstance(result, tuple)
    assert result[0] == AggregatedLevel(price=1.0, amount=1.0, total=1.0, change=0.0)
    assert isinstance(result[0].total, float)
