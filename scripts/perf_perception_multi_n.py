"""
Multi-N performance validation for the flock tick.

Runs full ticks (perception + flocking policy + integration) at 250, 500,
1000, 2000 agents on both perception backends and reports median/p90.
Single-threaded BLAS for stable measurement; log-only for N>1000.
"""

# Pin threading for stable measurement
import os
os.environ.update({
    'OPENBLAS_NUM_THREADS': '1',
    'MKL_NUM_THREADS': '1',
    'NUMEXPR_NUM_THREADS': '1',
    'OMP_NUM_THREADS': '1'
})

import numpy as np
import time
import gc

from aviary.data_types import SimulationConfig
from aviary.flocking import FlockingPolicy
from aviary.rng import make_generator
from aviary.simulation import FlockSimulation

FRAME_BUDGET_MS = 1000.0 / 60.0


def run_tick_perf_test(entity_count: int, use_ckdtree: bool, runs: int = 7) -> dict:
    """
    Run tick performance test at given agent count.

    Args:
        entity_count: Number of agents
        use_ckdtree: Perception backend
        runs: Number of measured ticks (default 7 for stable median)

    Returns:
        Dict with p50, p90, min, max, avg_neighbors
    """
    seed = 42
    neighbor_counts = []
    flocking = FlockingPolicy(rng=make_generator(seed, "flocking"))

    def counting_policy(movement_input):
        neighbor_counts.append(len(movement_input.nearby_entities))
        return flocking(movement_input)

    sim = FlockSimulation(
        policy=counting_policy,
        config=SimulationConfig(entity_count=entity_count, seed=seed, use_ckdtree=use_ckdtree)
    )

    # Warmup
    sim.tick(1.0 / 60.0)
    neighbor_counts.clear()

    # Measure (GC disabled for stable timing)
    gc.collect()
    gc.disable()

    times_ns = []
    try:
        for _ in range(runs):
            start = time.perf_counter_ns()
            sim.tick(1.0 / 60.0)
            times_ns.append(time.perf_counter_ns() - start)
    finally:
        gc.enable()

    # Statistics
    times_ms = np.array(times_ns) / 1_000_000

    return {
        'entity_count': entity_count,
        'backend': 'cKDTree' if use_ckdtree else 'O(n)',
        'runs': runs,
        'p50_ms': np.percentile(times_ms, 50),
        'p90_ms': np.percentile(times_ms, 90),
        'min_ms': np.min(times_ms),
        'max_ms': np.max(times_ms),
        'avg_neighbors': float(np.mean(neighbor_counts)) if neighbor_counts else 0.0
    }


def main():
    """Run multi-N tick performance validation."""
    print("=" * 80)
    print("Flock Tick Multi-N Performance Validation")
    print("=" * 80)
    print()

    test_sizes = [250, 500, 1000, 2000]

    results = []

    for entity_count in test_sizes:
        for use_ckdtree in (False, True):
            result = run_tick_perf_test(entity_count, use_ckdtree, runs=7)
            print(f"[N = {entity_count}, {result['backend']}]")

            print(f"  p50: {result['p50_ms']:.3f}ms")
            print(f"  p90: {result['p90_ms']:.3f}ms")
            print(f"  min: {result['min_ms']:.3f}ms, max: {result['max_ms']:.3f}ms")
            print(f"  Avg neighbors: {result['avg_neighbors']:.1f}")

            if entity_count <= 1000:
                if result['p50_ms'] >= FRAME_BUDGET_MS:
                    print(f"  WARNING: p50 {result['p50_ms']:.3f}ms >= {FRAME_BUDGET_MS:.1f}ms frame budget!")
                else:
                    headroom_pct = ((FRAME_BUDGET_MS - result['p50_ms']) / FRAME_BUDGET_MS) * 100
                    print(f"  PASS: {headroom_pct:.1f}% headroom under {FRAME_BUDGET_MS:.1f}ms frame budget")
            else:
                print(f"  (log-only, no assertion)")

            results.append(result)
            print()

    # Summary table
    print("=" * 80)
    print("Summary Table")
    print("=" * 80)
    print()
    print("| Agents | Backend | p50 (ms) | p90 (ms) | Avg neighbors |")
    print("|--------|---------|----------|----------|---------------|")
    for r in results:
        print(f"| {r['entity_count']:6d} | {r['backend']:7s} | {r['p50_ms']:8.3f} | "
              f"{r['p90_ms']:8.3f} | {r['avg_neighbors']:13.1f} |")

    print()
    print("=" * 80)


if __name__ == '__main__':
    main()
