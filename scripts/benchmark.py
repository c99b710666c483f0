#!/usr/bin/env python3
"""
Benchmark Script for Ring-Cache

Measures key resolution throughput, load balance across nodes, and the
fraction of keys that change owner when membership changes. Runs purely
in-process against a HashRing.

Usage:
    python scripts/benchmark.py                    # Run all benchmarks
    python scripts/benchmark.py --keys 50000       # Custom key count
    python scripts/benchmark.py --nodes 8 -v 200   # Custom ring shape
    python scripts/benchmark.py --profile          # Enable cProfile
"""

import argparse
import time
import random
import string
import statistics
from typing import List, Callable, Dict, Any
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ringcache.cluster import HashRing


def random_string(length: int) -> str:
    """Generate a random alphanumeric string."""
    return ''.join(random.choices(string.ascii_letters + string.digits, k=length))


def measure_time(func: Callable, iterations: int = 1) -> Dict[str, float]:
    """Measure execution time statistics."""
    times = []

    for _ in range(iterations):
        start = time.perf_counter()
        func()
        elapsed = (time.perf_counter() - start) * 1000  # Convert to ms
        times.append(elapsed)

    return {
        "min_ms": min(times),
        "max_ms": max(times),
        "mean_ms": statistics.mean(times),
        "median_ms": statistics.median(times),
        "total_ms": sum(times),
    }


class Benchmark:
    """Collection of benchmarks for the hash ring."""

    def __init__(self, keys: int = 10000, nodes: int = 5, virtual_nodes: int = 160,
                 replicas: int = 3, key_size: int = 16):
        self.count = keys
        self.node_ids = [f"cache-{i}" for i in range(nodes)]
        self.virtual_nodes = virtual_nodes
        self.replicas = replicas

        # Pre-generate test data
        self.keys = [random_string(key_size) for _ in range(keys)]

    def _ring(self) -> HashRing:
        ring = HashRing(virtual_nodes=self.virtual_nodes)
        ring.rebuild(self.node_ids)
        return ring

    def benchmark_build(self) -> Dict[str, Any]:
        """Benchmark adding every node one at a time."""
        def run():
            ring = HashRing(virtual_nodes=self.virtual_nodes)
            for node_id in self.node_ids:
                ring.add_node(node_id)

        stats = measure_time(run, iterations=5)
        stats["ops_per_second"] = len(self.node_ids) / (stats["mean_ms"] / 1000)
        stats["operation"] = "add_node"
        stats["count"] = len(self.node_ids)
        return stats

    def benchmark_resolve(self) -> Dict[str, Any]:
        """Benchmark single-owner resolution."""
        ring = self._ring()

        def run():
            for key in self.keys:
                ring.resolve(key)

        stats = measure_time(run)
        stats["ops_per_second"] = self.count / (stats["total_ms"] / 1000)
        stats["operation"] = "resolve"
        stats["count"] = self.count
        return stats

    def benchmark_resolve_n(self) -> Dict[str, Any]:
        """Benchmark replica set resolution."""
        ring = self._ring()

        def run():
            for key in self.keys:
                ring.resolve_n(key, self.replicas)

        stats = measure_time(run)
        stats["ops_per_second"] = self.count / (stats["total_ms"] / 1000)
        stats["operation"] = f"resolve_n (n={self.replicas})"
        stats["count"] = self.count
        return stats

    def distribution(self) -> Dict[str, Any]:
        """Report how evenly keys spread over the nodes."""
        counts = self._ring().key_distribution(self.keys)
        expected = self.count / len(self.node_ids)
        return {
            "counts": counts,
            "expected": expected,
            "max_deviation": max(abs(c - expected) / expected for c in counts.values()),
            "stdev": statistics.pstdev(counts.values()),
        }

    def movement(self) -> Dict[str, float]:
        """Fraction of keys that change owner when one node joins or leaves."""
        ring = self._ring()
        before = {key: ring.resolve(key) for key in self.keys}

        ring.add_node("cache-new")
        after_add = {key: ring.resolve(key) for key in self.keys}
        ring.remove_node("cache-new")
        ring.remove_node(self.node_ids[0])
        after_remove = {key: ring.resolve(key) for key in self.keys}

        def moved(other: Dict[str, str]) -> float:
            return sum(1 for key in self.keys if before[key] != other[key]) / self.count

        nodes = len(self.node_ids)
        return {
            "add_moved": moved(after_add),
            "add_ideal": 1 / (nodes + 1),
            "remove_moved": moved(after_remove),
            "remove_ideal": 1 / nodes,
        }

    def run_all(self) -> List[Dict[str, Any]]:
        """Run all throughput benchmarks."""
        benchmarks = [
            ("add_node", self.benchmark_build),
            ("resolve", self.benchmark_resolve),
            ("resolve_n", self.benchmark_resolve_n),
        ]

        results = []
        for name, func in benchmarks:
            print(f"Running: {name}...", end=" ", flush=True)
            result = func()
            print(f"{result['ops_per_second']:,.0f} ops/sec")
            results.append(result)

        return results


def print_results(results: List[Dict[str, Any]]):
    """Print benchmark results in a table."""
    print()
    print("=" * 70)
    print("                        BENCHMARK RESULTS")
    print("=" * 70)
    print(f"{'Operation':<30} {'Ops/sec':>12} {'Mean (ms)':>12} {'Total (ms)':>12}")
    print("-" * 70)

    for r in results:
        print(f"{r['operation']:<30} {r['ops_per_second']:>12,.0f} "
              f"{r['mean_ms']:>12.3f} {r['total_ms']:>12.1f}")

    print("=" * 70)


def print_balance(distribution: Dict[str, Any], movement: Dict[str, float]):
    """Print key distribution and movement figures."""
    print()
    print("Key distribution:")
    print("-" * 70)
    for node_id, count in sorted(distribution["counts"].items()):
        share = count / distribution["expected"]
        print(f"  {node_id:<20} {count:>8,}  ({share:.2f}x expected)")
    print(f"  Max deviation: {distribution['max_deviation']:.1%}")
    print(f"  Std deviation: {distribution['stdev']:.1f} keys")

    print()
    print("Keys moved on membership change:")
    print("-" * 70)
    print(f"  Add one node:    {movement['add_moved']:.1%} (ideal {movement['add_ideal']:.1%})")
    print(f"  Remove one node: {movement['remove_moved']:.1%} (ideal {movement['remove_ideal']:.1%})")


def main():
    parser = argparse.ArgumentParser(
        description="Benchmark Ring-Cache key routing",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--keys", "-n",
        type=int,
        default=10000,
        help="Number of keys to resolve"
    )
    parser.add_argument(
        "--nodes",
        type=int,
        default=5,
        help="Number of physical nodes"
    )
    parser.add_argument(
        "--virtual-nodes", "-v",
        type=int,
        default=160,
        help="Virtual nodes per physical node"
    )
    parser.add_argument(
        "--replicas", "-r",
        type=int,
        default=3,
        help="Replica count for resolve_n"
    )
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile profiling"
    )

    args = parser.parse_args()

    if args.nodes < 2 or args.keys < 1:
        parser.error("--nodes must be at least 2 and --keys positive")

    print(f"Ring-Cache Benchmark")
    print(f"====================")
    print(f"Keys: {args.keys:,}")
    print(f"Nodes: {args.nodes} x {args.virtual_nodes} virtual nodes")
    print(f"Replicas: {args.replicas}")
    print()

    benchmark = Benchmark(
        keys=args.keys,
        nodes=args.nodes,
        virtual_nodes=args.virtual_nodes,
        replicas=args.replicas,
    )

    if args.profile:
        import cProfile
        import pstats

        profiler = cProfile.Profile()
        profiler.enable()
        results = benchmark.run_all()
        profiler.disable()

        print_results(results)

        print()
        print("Profiling Results (top 20):")
        print("-" * 70)
        stats = pstats.Stats(profiler)
        stats.sort_stats('cumulative')
        stats.print_stats(20)
    else:
        results = benchmark.run_all()
        print_results(results)

    print_balance(benchmark.distribution(), benchmark.movement())


if __name__ == "__main__":
    main()
