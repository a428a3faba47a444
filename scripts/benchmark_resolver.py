"""
Micro-benchmark for the device resolver.

Tests:
1. parse_device_string() on typical manifest cells
2. match_device_string() per-row latency over a synthetic 2k-device library
3. resolve_manifest() end-to-end on a synthetic 500-row manifest

Usage:
    python scripts/benchmark_resolver.py
"""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
import time
import numpy as np
import pandas as pd
from alias_store import MemoryAliasStore
from library_cache import DeviceLibraryCache
from manifest import compute_coverage_metrics, resolve_manifest
from matcher import parse_device_string
from models import LibraryDevice
from resolver import DeviceResolver
from settings import ResolverSettings

BRAND_LINES = {
    'Apple': 'iPhone',
    'Samsung': 'Galaxy S',
    'Google': 'Pixel',
    'Xiaomi': 'Redmi Note',
    'OnePlus': 'OnePlus',
}
MODELS = ['11', '12', '13', '14', '15', '21', '22', '23']
VARIANTS = ['', ' Pro', ' Pro Max', ' Plus', ' Ultra']
STORAGE = ['64GB', '128GB', '256GB', '512GB', '1TB']


def generate_synthetic_library() -> list:
    """One device per brand/model/variant/storage combination."""
    devices = []
    for brand, line in BRAND_LINES.items():
        for model in MODELS:
            for variant in VARIANTS:
                for stor in STORAGE:
                    devices.append(LibraryDevice(
                        id=f'DEV-{len(devices):05d}',
                        make=brand,
                        model=f"{line} {model}{variant}",
                        storage=stor,
                        active=True,
                        category='phone',
                    ))
    return devices


def generate_synthetic_manifest(n_rows: int = 500, seed: int = 7) -> pd.DataFrame:
    """Manifest rows in the shapes importers actually send."""
    rng = np.random.default_rng(seed)
    rows = []
    for _ in range(n_rows):
        brand = rng.choice(list(BRAND_LINES))
        model = rng.choice(MODELS)
        variant = rng.choice(VARIANTS)
        stor = rng.choice(STORAGE)
        shape = rng.integers(0, 3)
        if shape == 0:
            cell = f"{brand} {BRAND_LINES[brand]} {model}{variant} {stor}"
        elif shape == 1:
            cell = f"{BRAND_LINES[brand]} {model}{variant}"
        else:
            cell = f"{model}{variant} {stor.lower()}"
        rows.append({'Device': cell, 'Qty': int(rng.integers(1, 5))})
    return pd.DataFrame(rows)


def build_resolver(devices: list) -> DeviceResolver:
    settings = ResolverSettings(auto_save_aliases=False)
    cache = DeviceLibraryCache(lambda: devices, ttl_seconds=settings.cache_ttl_seconds)
    return DeviceResolver(cache, MemoryAliasStore(), settings=settings)


def benchmark_parse(n_iterations: int = 10000):
    print("\n" + "="*70)
    print("BENCHMARK: parse_device_string()")
    print("="*70)

    for text in ["IPH1164G", "Samsung Galaxy S21 Ultra 256GB", "pixel 7 pro 128 gb", "Redmi Note 12 5G"]:
        start = time.perf_counter()
        for _ in range(n_iterations):
            _ = parse_device_string(text)
        elapsed_ms = (time.perf_counter() - start) * 1000
        print(f"\nInput: {text} -> {parse_device_string(text)}")
        print(f"  Per call: {elapsed_ms * 1000 / n_iterations:.2f}us")


def benchmark_single_row(resolver: DeviceResolver):
    print("\n" + "="*70)
    print("BENCHMARK: match_device_string() - per row")
    print("="*70)

    for text in ["Apple iPhone 13 Pro 256GB", "Galaxy S23 Ultra", "23 pro max 1tb", "unknown gadget xyz"]:
        start = time.perf_counter()
        result = resolver.match_device_string(text)
        elapsed_ms = (time.perf_counter() - start) * 1000
        print(f"\nInput: {text}")
        print(f"  {elapsed_ms:.2f}ms  confidence={result.match_confidence} method={result.method}")


def benchmark_manifest(resolver: DeviceResolver):
    print("\n" + "="*70)
    print("BENCHMARK: resolve_manifest() - 500 rows")
    print("="*70)

    df_manifest = generate_synthetic_manifest(500)
    start = time.perf_counter()
    df_results = resolve_manifest(df_manifest, resolver, device_col='Device', quantity_col='Qty')
    elapsed_ms = (time.perf_counter() - start) * 1000

    print(f"  Total: {elapsed_ms:.2f}ms")
    print(f"  Per row: {elapsed_ms / len(df_manifest):.2f}ms")
    metrics = compute_coverage_metrics(df_results)
    print(f"  auto={metrics['auto_rate']}%  storage={metrics['storage_rate']}%  manual={metrics['manual_rate']}%")


def main():
    devices = generate_synthetic_library()
    print(f"Synthetic library: {len(devices)} devices")
    resolver = build_resolver(devices)

    benchmark_parse()
    benchmark_single_row(resolver)
    benchmark_manifest(resolver)


if __name__ == '__main__':
    main()
