"""Core primitives for the tradedoc stack.

This module provides the foundational utilities used throughout the stack:
- Cryptographic hashing (SHA-256, optionally SHA3-256)
- Canonical JSON serialization for records and signing inputs
- JSON loading and writing with consistent encoding
- Hex digest normalization

Design principles:
- Pure functions where possible
- No global mutable state
- Explicit error handling
"""

from __future__ import annotations

import hashlib
import json
import pathlib
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Union

# Package root, computed once at module load
PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent
SCHEMA_DIR = PACKAGE_ROOT / "schemas"

HASH_ALGORITHMS = ("sha256", "sha3_256")
DEFAULT_HASH_ALGORITHM = "sha256"

_HEX_32_RE = re.compile(r"[a-f0-9]{64}")


def _hasher(algorithm: str):
    if algorithm == "sha256":
        return hashlib.sha256
    if algorithm == "sha3_256":
        return hashlib.sha3_256
    raise ValueError(f"unsupported hash algorithm: {algorithm!r} (expected one of {HASH_ALGORITHMS})")


def digest_bytes(data: bytes, algorithm: str = DEFAULT_HASH_ALGORITHM) -> bytes:
    """Hash bytes, returning the raw 32-byte digest."""
    return _hasher(algorithm)(data).digest()


def digest_hex(data: bytes, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """Hash bytes, returning a lowercase hex string."""
    return _hasher(algorithm)(data).hexdigest()


def sha256_bytes(data: bytes) -> str:
    """Compute SHA-256 hash of bytes, returning lowercase hex string."""
    return hashlib.sha256(data).hexdigest()


def empty_root(algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """Root committed by an empty leaf set: H("")."""
    return digest_hex(b"", algorithm)


def normalize_hex32(value: str) -> str:
    """Normalize a 32-byte hex digest (strip ``0x``, lowercase).

    Raises ValueError if the value is not 64 hex characters.
    """
    if not isinstance(value, str):
        raise ValueError(f"digest must be a hex string, got {type(value).__name__}")
    s = value.strip().lower()
    if s.startswith("0x"):
        s = s[2:]
    if not _HEX_32_RE.fullmatch(s):
        raise ValueError(f"digest must be 64 hex chars: {value!r}")
    return s


def is_hex32(value: Any) -> bool:
    """Check if value is a (possibly 0x-prefixed) 32-byte hex digest."""
    try:
        normalize_hex32(value)
        return True
    except ValueError:
        return False


def load_json(path: pathlib.Path) -> Any:
    """Load JSON file with UTF-8 encoding."""
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def canonical_json_bytes(obj: Any) -> bytes:
    """Serialize object to canonical JSON bytes.

    Properties:
    - Keys sorted lexicographically
    - No whitespace
    - UTF-8 encoded
    - Floats rejected (signing inputs and records use strings/ints)

    This ensures byte-for-byte reproducibility for signatures and stored
    records. Document commitments do not go through this function; they
    are built from salted leaves (see tradedoc.salting).
    """
    def _reject_floats(o: Any, path: str = "") -> None:
        if isinstance(o, float):
            raise ValueError(f"Float not allowed in canonical JSON at {path}")
        if isinstance(o, dict):
            for k, v in o.items():
                _reject_floats(v, f"{path}.{k}")
        if isinstance(o, list):
            for i, v in enumerate(o):
                _reject_floats(v, f"{path}[{i}]")

    _reject_floats(obj)
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def number_text(value: Union[float, Decimal]) -> str:
    """Plain positional text for a finite float or Decimal.

    Floats are taken at their shortest round-trip repr, so equal values
    render identically whatever their type: ``1e-07`` and
    ``Decimal("1E-7")`` both give ``0.0000001``. Trailing fractional zeros
    are dropped; no rounding is applied.
    """
    d = value if isinstance(value, Decimal) else Decimal(repr(value))
    text = format(d, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _json_default(o: Any) -> Any:
    if isinstance(o, Decimal):
        # JSON has no exact decimal; keep the digits as a string
        return number_text(o)
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")


def write_json(path: pathlib.Path, obj: Any) -> None:
    """Write a JSON document with sorted keys and a trailing newline.

    Unlike canonical_json_bytes this accepts floats, since raw documents
    may legitimately carry them. Decimals are written as their plain
    number text (a JSON string).
    """
    text = json.dumps(obj, sort_keys=True, ensure_ascii=False, indent=2, default=_json_default)
    pathlib.Path(path).write_text(text + "\n", encoding="utf-8")


# Timestamp utilities
def now_unix() -> int:
    """Current UTC time as whole seconds since the epoch."""
    return int(datetime.now(timezone.utc).timestamp())


def now_iso8601() -> str:
    """Return current UTC time in ISO8601 format."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")
