"""
Content fingerprints for sync comparison.

A fingerprint is the SHA-256 of a canonical JSON rendering of an entity's
sync projection. Keys are sorted, numbers are rendered with four fixed decimal
places, and dates and datetimes are rendered in ISO-8601 (datetimes in UTC).
Callers are responsible for putting nested lists such as line items in a
stable order before hashing.
"""

import hashlib
import json
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping

from ledger_sync.exceptions import FingerprintError

NUMERIC_QUANTUM = Decimal("0.0001")


def normalize_number(value: Any) -> str:
    try:
        number = Decimal(str(value))
    except InvalidOperation as e:
        raise FingerprintError(f"Not a number: {value!r}") from e
    if not number.is_finite():
        raise FingerprintError(f"Non-finite number: {value!r}")
    return str(number.quantize(NUMERIC_QUANTUM, rounding=ROUND_HALF_UP))


def canonicalize(value: Any) -> Any:
    """Convert a projection into JSON-safe, formatting-independent values."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, Enum):
        return canonicalize(value.value)
    if isinstance(value, (int, float, Decimal)):
        return normalize_number(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): canonicalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    raise FingerprintError(f"Cannot fingerprint value of type {type(value).__name__}")


def fingerprint(data: Mapping[str, Any], required: Iterable[str] = ()) -> str:
    """
    Compute the fingerprint of a sync projection.

    Args:
        data: Projection containing only sync-relevant fields
        required: Keys that must be present

    Raises:
        FingerprintError: if ``data`` is not a mapping, misses a required key
            or holds a value that cannot be canonicalized
    """
    if not isinstance(data, Mapping):
        raise FingerprintError(f"Expected a mapping, got {type(data).__name__}")
    missing = sorted(key for key in required if key not in data)
    if missing:
        raise FingerprintError(f"Projection is missing required keys: {', '.join(missing)}")

    payload = json.dumps(canonicalize(data), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
