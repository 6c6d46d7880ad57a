"""
utils.py - Small helpers shared by the pipeline, tracker and storage.

 - ISO-8601 (UTC, millisecond) encoding for block times
 - per-month bucket keys for account aggregates
 - argument path walking for account extraction
 - counters rollup merge
"""

from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Sequence

BUCKET_FORMAT = "%Y-%m"


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def bucket_id(dt: datetime) -> str:
    """Coarse per-month key, e.g. '2019-08'."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime(BUCKET_FORMAT)


def level_str(auth: dict) -> str:
    return f"{auth.get('actor')}@{auth.get('permission')}"


def extract_by_path(data: Any, path: Sequence[str]) -> List[Any]:
    """Collect values found at `path` inside nested action arguments.

    Lists met on the way are flattened, so ``recipients/to`` yields every
    recipient's ``to``. Missing or null fields yield nothing.
    """
    if not path or not isinstance(data, dict):
        return []
    field, rest = path[0], path[1:]
    value = data.get(field)

    if value is None:
        return []

    if isinstance(value, list):
        if not rest:
            return list(value)
        found = []
        for item in value:
            found.extend(extract_by_path(item, rest))
        return found

    if rest:
        return extract_by_path(value, rest)
    return [value]


def merge_counters(total: Optional[dict], current: Optional[dict]) -> dict:
    """Field-wise sum of two counters trees.

    Numeric leaves present on both sides are added, nested dicts are merged
    recursively and a branch missing on one side is taken from the other.
    """
    if not total:
        return deepcopy(current or {})
    if not current:
        return deepcopy(total)

    merged = {}
    keys = list(total) + [k for k in current if k not in total]
    for key in keys:
        a = total.get(key)
        b = current.get(key)
        if a is None:
            merged[key] = deepcopy(b)
        elif b is None:
            merged[key] = deepcopy(a)
        elif isinstance(a, dict) and isinstance(b, dict):
            merged[key] = merge_counters(a, b)
        elif _is_number(a) and _is_number(b):
            merged[key] = a + b
        else:
            merged[key] = deepcopy(b)
    return merged


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def chunked(items: Sequence[Any], size: int) -> Iterator[List[Any]]:
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])
