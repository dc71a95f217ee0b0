#!/usr/bin/env python3
"""Benchmark mcp-workflow-graph on synthetic and real workflow trees.

Usage:
    # Synthetic trees (small, medium, large), generated into a temp dir:
    python benchmarks/benchmark.py

    # Benchmark against your own workflows directories:
    python benchmarks/benchmark.py /path/to/.github/workflows [...]

Synthetic trees have N top-level workflows importing from a layered pool of
shared fragments, so impact queries walk several levels of the reverse index.
"""

import os
import random
import sys
import tempfile
import time
import tracemalloc

from mcp_workflow_graph.dependency_graph import DependencyGraph


SYNTHETIC_SIZES = [
    {"name": "small", "top_level": 20, "fragments": 10, "layers": 2},
    {"name": "medium", "top_level": 200, "fragments": 80, "layers": 3},
    {"name": "large", "top_level": 2000, "fragments": 400, "layers": 4},
]


def _write(path, imports):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write("---\n")
        if imports:
            f.write("imports:\n")
            for imp in imports:
                f.write(f"  - {imp}\n")
        f.write("---\n# Workflow\n")


def generate_tree(root, top_level, fragments, layers, seed=7):
    """Write a synthetic workflows tree. Fragments in layer k import layer k+1."""
    rng = random.Random(seed)
    per_layer = max(1, fragments // layers)
    layer_names = [
        [f"layer{k}/frag{i}.md" for i in range(per_layer)] for k in range(layers)
    ]

    for k, names in enumerate(layer_names):
        for name in names:
            imports = []
            if k + 1 < layers:
                imports = ["../" + n for n in rng.sample(layer_names[k + 1], min(2, per_layer))]
            _write(os.path.join(root, "shared", name), imports)

    for i in range(top_level):
        imports = ["shared/" + n for n in rng.sample(layer_names[0], min(3, per_layer))]
        _write(os.path.join(root, f"workflow{i}.md"), imports)


def measure(name, workflows_dir):
    """Build a graph and time the impact queries."""
    print(f"\n{'='*60}")
    print(f"  Benchmarking: {name}")
    print(f"  Path: {workflows_dir}")
    print(f"{'='*60}")

    tracemalloc.start()
    start = time.perf_counter()
    graph = DependencyGraph(workflows_dir)
    warnings = graph.build()
    build_time = time.perf_counter() - start
    _, peak_mem = tracemalloc.get_traced_memory()
    tracemalloc.stop()

    stats = graph.stats()
    fragments = [p for p in graph.workflow_paths() if p not in graph.get_top_level_workflows()]

    start = time.perf_counter()
    max_affected = 0
    for path in fragments:
        max_affected = max(max_affected, len(graph.get_affected_workflows(path)))
    query_time = time.perf_counter() - start

    start = time.perf_counter()
    for path in fragments:
        graph.update(path)
    update_time = time.perf_counter() - start

    result = {
        "name": name,
        "workflows": stats.total_workflows,
        "top_level": stats.top_level_workflows,
        "edges": stats.import_edges,
        "warnings": len(warnings),
        "build_s": round(build_time, 3),
        "query_ms": round(query_time * 1000 / max(1, len(fragments)), 3),
        "update_ms": round(update_time * 1000 / max(1, len(fragments)), 3),
        "max_affected": max_affected,
        "peak_memory_mb": round(peak_mem / 1024 / 1024, 2),
    }

    print(f"\n  Workflows: {result['workflows']} ({result['top_level']} top-level)")
    print(f"  Import edges: {result['edges']}")
    print(f"  Build time: {result['build_s']}s")
    print(f"  Avg impact query: {result['query_ms']}ms (max affected: {max_affected})")
    print(f"  Avg update: {result['update_ms']}ms")
    print(f"  Peak memory: {result['peak_memory_mb']} MB")
    return result


def print_summary(results):
    print(f"\n\n{'='*80}")
    print("  BENCHMARK RESULTS")
    print(f"{'='*80}\n")
    print("| Tree | Workflows | Edges | Build | Avg Query | Avg Update | Max Affected | Peak Memory |")
    print("|------|----------:|------:|------:|----------:|-----------:|-------------:|------------:|")
    for r in results:
        print(
            f"| {r['name']} | {r['workflows']:,} | {r['edges']:,} | {r['build_s']}s | "
            f"{r['query_ms']}ms | {r['update_ms']}ms | {r['max_affected']} | {r['peak_memory_mb']} MB |"
        )


def main():
    results = []
    if len(sys.argv) > 1:
        for path in sys.argv[1:]:
            results.append(measure(os.path.basename(os.path.normpath(path)), path))
    else:
        with tempfile.TemporaryDirectory() as tmpdir:
            for size in SYNTHETIC_SIZES:
                root = os.path.join(tmpdir, size["name"])
                generate_tree(root, size["top_level"], size["fragments"], size["layers"])
                results.append(measure(size["name"], root))
    print_summary(results)


if __name__ == "__main__":
    main()
