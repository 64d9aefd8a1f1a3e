"""
Deterministic hashing utilities.

Audit payload hashes must be reproducible from the stored payload, so
every hash goes through the same canonical JSON form.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize so 10.50 and 10.5 hash identically
        return format(obj.normalize(), "f")
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(str(item) for item in obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, there is no whitespace, and Decimal, datetime, UUID
    and enum values are rendered consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def jsonable(payload: dict) -> dict:
    """Round-trip ``payload`` through canonical JSON so it fits a JSON column."""
    return json.loads(canonicalize_json(payload))
