"""Core primitives for the document authority engine.

This module provides the foundational utilities used throughout the package:
- Canonicalization of structured values (order-irrelevant collections sorted)
- Canonical JSON serialization (JCS/RFC8785 subset)
- Cryptographic hashing (SHA-256, lowercase hex)
- base64url transport helpers
- YAML/JSON loading with consistent encoding

Design principles:
- Pure functions
- No global mutable state
- Programmer-contract violations raise immediately
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
import pathlib
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import yaml

PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent

HASH_ALGORITHM = "SHA-256"

SHA256_RE = re.compile(r"^[a-f0-9]{64}$")
B64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")


class CanonicalizationError(ValueError):
    """Raised when a value cannot be brought into canonical form."""


class DocType(str, Enum):
    """Document kinds that carry an authority block."""
    QUOTE = "QUOTE"
    AGREEMENT = "AGREEMENT"
    SICAR = "SICAR"


def sha256_bytes(data: bytes) -> str:
    """Compute SHA-256 hash of bytes, returning lowercase hex string."""
    return hashlib.sha256(data).hexdigest()


def is_valid_sha256(digest: str) -> bool:
    """Check if string is a valid SHA-256 hex digest."""
    return bool(SHA256_RE.fullmatch(digest or ""))


def load_yaml(path: pathlib.Path) -> Any:
    """Load YAML file with UTF-8 encoding."""
    return yaml.safe_load(pathlib.Path(path).read_text(encoding="utf-8"))


def load_json(path: pathlib.Path) -> Any:
    """Load JSON file with UTF-8 encoding."""
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def now_rfc3339() -> str:
    """Current UTC time as RFC3339 with seconds precision.

    For deterministic builds set `SOURCE_DATE_EPOCH` (seconds since Unix epoch).
    When unset, uses the current wall clock.
    """

    sde = os.environ.get("SOURCE_DATE_EPOCH")
    if sde is not None and str(sde).strip() != "":
        try:
            epoch = int(str(sde).strip(), 10)
        except ValueError as ex:
            raise ValueError("SOURCE_DATE_EPOCH must be an integer (seconds)") from ex
        dt = datetime.fromtimestamp(epoch, tz=timezone.utc)
    else:
        dt = datetime.now(timezone.utc)
    return _format_datetime(dt)


def _format_datetime(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def canonicalize(value: Any) -> Any:
    """Bring a structured value into its canonical form.

    Rules:
    - sequences made only of strings are sorted (their order is incidental,
      e.g. a set of selected add-on ids)
    - any other sequence keeps its order, elements canonicalized
    - mapping keys are sorted, values canonicalized
    - scalars pass through; Enum members become their value; datetimes become
      RFC3339 UTC strings
    - floats are rejected (use integers or strings for amounts)

    Cyclic structures raise CanonicalizationError instead of recursing forever.
    """
    return _canonicalize(value, "$", set())


def _canonicalize(value: Any, path: str, active: Set[int]) -> Any:
    if isinstance(value, Enum):
        value = value.value

    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        raise CanonicalizationError(f"Float not allowed in canonical value at {path}")
    if isinstance(value, datetime):
        return _format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()

    if isinstance(value, (list, tuple, set, frozenset, dict)):
        marker = id(value)
        if marker in active:
            raise CanonicalizationError(f"cyclic structure at {path}")
        active.add(marker)
        try:
            if isinstance(value, dict):
                out: Dict[str, Any] = {}
                for key in sorted(value, key=_mapping_key(path)):
                    out[key] = _canonicalize(value[key], f"{path}.{key}", active)
                return out

            if isinstance(value, (set, frozenset)):
                items = [_canonicalize(v, f"{path}[]", active) for v in value]
                if not all(isinstance(v, str) for v in items):
                    raise CanonicalizationError(f"unordered collection of non-strings at {path}")
                return sorted(items)

            items = [_canonicalize(v, f"{path}[{i}]", active) for i, v in enumerate(value)]
            if all(isinstance(v, str) for v in items):
                return sorted(items)
            return items
        finally:
            active.discard(marker)

    raise CanonicalizationError(f"unsupported type {type(value).__name__} at {path}")


def _mapping_key(path: str):
    def key(k: Any) -> str:
        if not isinstance(k, str):
            raise CanonicalizationError(f"mapping key {k!r} at {path} is not a string")
        return k

    return key


def canonical_json_bytes(obj: Any) -> bytes:
    """Serialize object to canonical JSON bytes (JCS/RFC8785 subset).

    Properties:
    - Keys sorted lexicographically
    - No whitespace
    - UTF-8 encoded
    - List order preserved (use `canonicalize` first when hashing)
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def canonical_sha256(value: Any) -> str:
    """SHA-256 over the canonical JSON of the canonicalized value."""
    return sha256_bytes(canonical_json_bytes(canonicalize(value)))


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Decode unpadded base64url.

    Raises ValueError on characters outside the base64url alphabet or an
    impossible length.
    """
    if not B64URL_RE.match(s):
        raise ValueError("not base64url (A-Z a-z 0-9 _ -)")
    if len(s) % 4 == 1:
        raise ValueError("invalid base64url length")
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse the date part of an ISO8601 date or timestamp.

    Returns None for empty or unparseable input.
    """
    s = str(value or "").strip()
    if not s:
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def compact_dict(d: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None values so optional fields are absent rather than null."""
    return {k: v for k, v in d.items() if v is not None}


def as_str_list(x: Any) -> List[str]:
    if x is None:
        return []
    if isinstance(x, (list, tuple)):
        return [str(v) for v in x]
    return [str(x)]
