"""
canonical_json.py — Record serialization for decauth

Account records are serialized deterministically before they are sealed:
- UTF-8 encoding
- Object keys sorted lexicographically
- No insignificant whitespace
- No NaN/Infinity (raises ValueError)

Identical logical records always seal over identical plaintext bytes, which
keeps snapshot hashes stable across processes.
"""

from __future__ import annotations
import hashlib
import json
from typing import Any, Dict, cast


def canonical_dumps(obj: Any) -> str:
    """Return canonical JSON string with sorted keys and no whitespace."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_bytes(obj: Any) -> bytes:
    """Return canonical JSON as UTF-8 bytes."""
    return canonical_dumps(obj).encode("utf-8")


def canonical_hash(obj: Any) -> str:
    """Return SHA-256 hex digest of canonical JSON bytes."""
    return hashlib.sha256(canonical_bytes(obj)).hexdigest()


def loads_object(text: str | bytes) -> Dict[str, Any]:
    """Parse JSON text that must hold an object.

    Raises:
        ValueError: If the text is not JSON or not a JSON object.
    """
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("Record payload must be a JSON object")
    return cast(Dict[str, Any], parsed)
