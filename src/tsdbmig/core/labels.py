"""
Label set and fingerprint helpers.

Provides the canonical conversion from a legacy metric (unordered label mapping) into the
destination label representation, together with stable identifiers for both sides:

- Legacy fingerprints are opaque unsigned 64-bit integers rendered as 16 lower-case hex
  characters (the chunk file name is derived from that string form).
- Destination series ids are SHA-256 digests over the canonical JSON of the sorted label
  pairs, so re-ordering a metric's labels never changes the id.

Notes:
    - Canonical JSON: sort_keys=True, separators=(",", ":"), ensure_ascii=False.
    - Zero-IO; stdlib only.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Mapping
from typing import Any, Final

from .constants import FINGERPRINT_HEX_LEN

__all__ = [
    "Labels",
    "json_dumps_canonical",
    "labels_from_metric",
    "labels_to_json",
    "labels_from_json",
    "series_id",
    "is_valid_label_name",
    "format_fingerprint",
    "parse_fingerprint",
]

Labels = tuple[tuple[str, str], ...]

_LABEL_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_MAX_FINGERPRINT: Final[int] = (1 << 64) - 1


def json_dumps_canonical(obj: Any) -> str:
    """
    Serialize an object to a canonical JSON string.

    Args:
        obj (Any): JSON-serializable object.

    Returns:
        str: Canonical JSON string with sort_keys=True, compact separators,
        and ensure_ascii=False.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def labels_from_metric(metric: Mapping[str, str]) -> Labels:
    """
    Convert a metric mapping into a label tuple sorted by label name.

    Args:
        metric (Mapping[str, str]): Label name -> label value.

    Returns:
        Labels: Tuple of (name, value) pairs ordered by name.

    Examples:
        >>> labels_from_metric({"job": "api", "__name__": "up"})
        (('__name__', 'up'), ('job', 'api'))
    """
    return tuple(sorted((str(k), str(v)) for k, v in metric.items()))


def labels_to_json(labels: Labels) -> str:
    """Render a label tuple as canonical JSON (an object keyed by label name)."""
    return json_dumps_canonical(dict(labels))


def labels_from_json(s: str) -> Labels:
    """Inverse of labels_to_json."""
    return labels_from_metric(json.loads(s))


def series_id(labels: Labels) -> str:
    """
    Compute the destination series id for a label set.

    Args:
        labels (Labels): Sorted label pairs.

    Returns:
        str: SHA-256 hex digest over the canonical JSON of the label set.
    """
    h = hashlib.sha256()
    h.update(labels_to_json(labels).encode("utf-8"))
    return h.hexdigest()


def is_valid_label_name(name: str) -> bool:
    """Return True if name matches [a-zA-Z_][a-zA-Z0-9_]*."""
    return bool(_LABEL_NAME_RE.match(name))


def format_fingerprint(fp: int) -> str:
    """
    Render a fingerprint as 16 lower-case hex characters.

    Raises:
        ValueError: If fp is outside the unsigned 64-bit range.
    """
    if fp < 0 or fp > _MAX_FINGERPRINT:
        raise ValueError(f"fingerprint out of range: {fp}")
    return f"{fp:0{FINGERPRINT_HEX_LEN}x}"


def parse_fingerprint(s: str) -> int:
    """
    Parse the string form of a fingerprint.

    Raises:
        ValueError: If s is not 1..16 hex characters.
    """
    s = s.strip()
    if not s or len(s) > FINGERPRINT_HEX_LEN:
        raise ValueError(f"invalid fingerprint string: {s!r}")
    return int(s, 16)
