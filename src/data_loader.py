"""
Reference-table loader for the brand trust engine.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List

from brandtrust.credibility import DEFAULT_CREDIBILITY, CredibilityStore
from brandtrust.ownership import OwnershipResolver

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


def load_json(path: Path) -> Any:
    """Load a JSON file with UTF-8 encoding."""
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _make_key(base: Path, path: Path) -> str:
    rel = path.relative_to(base)
    rel_no_suffix = rel.with_suffix("")
    return rel_no_suffix.as_posix().replace("/", "__")


def _dedup_list(values: Iterable[Any]) -> List[Any]:
    seen = set()
    output: List[Any] = []
    for val in values:
        key = json.dumps(val, sort_keys=True) if isinstance(val, (dict, list)) else val
        if key in seen:
            continue
        seen.add(key)
        output.append(val)
    return output


def _records(datasets: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    value = datasets.get(key, [])
    if isinstance(value, dict):
        # Accept {"domain": {...}} as well as a list of rows.
        value = [{"domain": k, **v} if "domain" not in v else v for k, v in value.items() if isinstance(v, dict)]
    if not isinstance(value, list):
        logger.warning("Dataset %s has unexpected type %s; ignoring", key, type(value).__name__)
        return []
    return [row for row in value if isinstance(row, dict)]


def build_ownership_resolver(datasets: Dict[str, Any]) -> OwnershipResolver:
    return OwnershipResolver.from_records(_records(datasets, "news_orgs"))


def build_credibility_store(datasets: Dict[str, Any], default: float = DEFAULT_CREDIBILITY) -> CredibilityStore:
    return CredibilityStore.from_records(_records(datasets, "source_credibility"), default=default)


def official_domains(datasets: Dict[str, Any], configured: Iterable[str] = ()) -> List[str]:
    """Configured allow-list merged with ``official_domains.json``, lowercased and de-duplicated."""
    from_file = datasets.get("official_domains", [])
    if not isinstance(from_file, list):
        logger.warning("official_domains dataset is not a list; ignoring")
        from_file = []
    merged = [str(d).strip().lower() for d in list(configured) + from_file if str(d).strip()]
    return _dedup_list(merged)


def load_datasets(data_dir: str | os.PathLike[str] | None = None) -> Dict[str, Any]:
    """
    Load all JSON files in data_dir into a dict keyed by stem.
    Unreadable files are skipped with a warning.
    """
    data_path = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
    datasets: Dict[str, Any] = {}

    if not data_path.exists():
        logger.warning("Data directory %s does not exist; using empty datasets", data_path)
        return datasets

    for fname in sorted(data_path.rglob("*.json")):
        key = _make_key(data_path, fname)
        try:
            datasets[key] = load_json(fname)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to load dataset %s: %s", fname, exc)

    logger.info(
        "Loaded datasets (%d files): news orgs %d, credibility rows %d, official domains %d",
        len(datasets),
        len(_records(datasets, "news_orgs")),
        len(_records(datasets, "source_credibility")),
        len(datasets.get("official_domains") or []),
    )
    return datasets
