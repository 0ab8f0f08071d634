#!/usr/bin/env python3
"""
Quick validation for the reference tables in data/.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from data_loader import (  # noqa: E402
    build_credibility_store,
    build_ownership_resolver,
    load_datasets,
    official_domains,
)

EXPECTED = ("news_orgs", "source_credibility", "official_domains")


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate brand trust reference tables.")
    parser.add_argument(
        "--data-dir",
        default=str(ROOT / "data"),
        help="Path to dataset directory (default: ./data)",
    )
    args = parser.parse_args()

    datasets = load_datasets(args.data_dir)
    print(f"Loaded {len(datasets)} datasets from {args.data_dir}")
    for name, data in datasets.items():
        size = len(data) if hasattr(data, "__len__") else "n/a"
        print(f" - {name}: {size} entries")

    missing = [name for name in EXPECTED if name not in datasets]
    if missing:
        print(f"\nMissing datasets: {', '.join(missing)}")

    resolver = build_ownership_resolver(datasets)
    store = build_credibility_store(datasets)
    domains = official_domains(datasets)
    rows = datasets.get("source_credibility") or []
    skipped = len(rows) - len(store)
    print(f"\nOwnership records: {len(resolver)}")
    print(f"Credibility records: {len(store)} ({skipped} skipped)")
    print(f"Official domains: {len(domains)}")

    manifest_path = Path(args.data_dir) / "dataset_manifest.json"
    manifest = {
        "datasets": list(datasets.keys()),
        "ownership_records": len(resolver),
        "credibility_records": len(store),
        "official_domains": domains,
    }
    manifest_path.write_text(json.dumps(manifest, ensure_ascii=False, indent=2), encoding="utf-8")
    print(f"\nManifest written to {manifest_path}")
    return 1 if missing or skipped else 0


if __name__ == "__main__":
    raise SystemExit(main())
