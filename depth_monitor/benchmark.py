#!/usr/bin/env python3
"""
Micro-benchmark for the Depth Monitor hot path.

Tests:
1. Frame routing throughput (JSON parse + classification)
2. Level processing (parse, normalize, sort, truncate)
3. Aggregation (totals + per-rank change)
4. Full update: route -> process -> aggregate -> imbalance/spread

Usage:
    python -m depth_monitor.benchmark
"""

from __future__ import annotations

import random
import time
from statistics import mean, stdev

import orjson

from .config import find_instrument, stream_url
from .datafeed.levels import process_levels
from .datafeed.router import MessageRouter
from .engine.aggregator import aggregate
from .engine.metrics import compute_imbalance, compute_spread
from .types import OrderBookSnapshot


def generate_mock_depth(base_price: float = 60000.0, levels: int = 20, junk_ratio: float = 0.05) -> dict:
    """Generate a mock depth20 frame, with a few malformed rungs mixed in."""
    tick_size = 0.01

    bids = []
    asks = []

    for i in range(levels):
        bid_price = base_price - (i + 1) * tick_size
        ask_price = base_price + (i + 1) * tick_size

        bids.append([f"{bid_price:.2f}", f"{random.uniform(0.001, 5):.5f}"])
        asks.append([f"{ask_price:.2f}", f"{random.uniform(0.001, 5):.5f}"])

        if random.random() < junk_ratio:
            bids.append(["abc", "1"])

    # Feed order is not guaranteed
    random.shuffle(bids)
    random.shuffle(asks)

    return {
        'lastUpdateId': random.randint(1, 10**9),
        'bids': bids,
        'asks': asks,
    }


def _report_times(label: str, times: list[float]) -> None:
    avg_time = mean(times) * 1_000_000
    std_time = stdev(times) * 1_000_000
    print(f"  Iterations: {len(times):,}")
    print(f"  Avg time: {avg_time:.1f}µs")
    print(f"  Std dev: {std_time:.1f}µs")
    print(f"  Rate: {1_000_000/avg_time:,.0f} {label}/sec")


def benchmark_routing(iterations: int = 20000) -> None:
    """Benchmark frame parse + classification."""
    print("\n=== Frame Routing Benchmark ===")

    instrument = find_instrument("BTC-USD")
    url = stream_url(instrument)
    router = MessageRouter()
    frames = [orjson.dumps(generate_mock_depth()) for _ in range(200)]

    start = time.perf_counter()
    for i in range(iterations):
        router.route(frames[i % len(frames)], instrument, epoch=1, url=url)
    elapsed = time.perf_counter() - start

    print(f"  Frames routed: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {iterations/elapsed:,.0f} frames/sec")
    print(f"  Per frame: {elapsed/iterations*1_000_000:.1f}µs")


def benchmark_level_processing(iterations: int = 20000) -> None:
    """Benchmark one side's parse/sort/truncate."""
    print("\n=== Level Processing Benchmark ===")

    instrument = find_instrument("XRP-USD")  # exercises the normalization branch
    frames = [generate_mock_depth(base_price=45000.0) for _ in range(200)]

    times = []
    for i in range(iterations):
        raw = frames[i % len(frames)]['bids']
        start = time.perf_counter()
        process_levels(raw, instrument)
        times.append(time.perf_counter() - start)

    _report_times("sides", times)


def benchmark_aggregation(iterations: int = 20000) -> None:
    """Benchmark totals + change against a previous side."""
    print("\n=== Aggregation Benchmark ===")

    instrument = find_instrument("BTC-USD")
    sides = [process_levels(generate_mock_depth()['bids'], instrument) for _ in range(200)]

    times = []
    previous = aggregate(sides[0])
    for i in range(iterations):
        levels = sides[i % len(sides)]
        start = time.perf_counter()
        previous = aggregate(levels, previous)
        times.append(time.perf_counter() - start)

    _report_times("sides", times)


def benchmark_full_update(iterations: int = 5000) -> None:
    """Benchmark everything one admitted frame costs before publishing."""
    print("\n=== Full Update Benchmark ===")

    instrument = find_instrument("BTC-USD")
    url = stream_url(instrument)
    router = MessageRouter()
    frames = [orjson.dumps(generate_mock_depth()) for _ in range(200)]

    book = OrderBookSnapshot()
    times = []
    for i in range(iterations):
        start = time.perf_counter()
        event = router.route(frames[i % len(frames)], instrument, epoch=1, url=url)
        bids = process_levels(event.bids, instrument)
        asks = process_levels(event.asks, instrument, ascending=True)
        book = OrderBookSnapshot(aggregate(bids, book.bids), aggregate(asks, book.asks))
        compute_imbalance(book)
        compute_spread(book)
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000

    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {std_time:.3f}ms")
    print(f"  Max updates/sec possible: {1000/avg_time:,.0f}")


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("Depth Monitor Performance Benchmark")
    print("=" * 60)

    benchmark_routing()
    benchmark_level_processing()
    benchmark_aggregation()
    benchmark_full_update()

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
