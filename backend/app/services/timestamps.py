"""
Timestamp normalization for sales duplicate detection.

Postgres returns timestamps as ISO-8601 (``2025-01-02T14:30:25.000+00:00``)
while POS exports carry ``2025-01-02 14:30:25``.  Both must compare equal
when building record keys.
"""

import re
from typing import Optional

_TZ_OFFSET_RE = re.compile(r"[+-]\d{2}:\d{2}$")
_MILLIS_RE = re.compile(r"\.\d{3}")


def normalize_timestamp(value: Optional[str]) -> str:
    """
    Canonicalize a timestamp string to ``YYYY-MM-DD HH:MM:SS``.

    Steps (each a no-op on already-canonical input):
      1. ``T`` and ``Z`` become spaces, then trim.
      2. A trailing ``+HH:MM`` / ``-HH:MM`` offset is removed.
      3. A ``.`` followed by three digits (milliseconds) is removed.
      4. Trim again.

    Examples:
        "2025-01-02T14:30:25.000+00:00" -> "2025-01-02 14:30:25"
        "2025-01-02T14:30:25Z"          -> "2025-01-02 14:30:25"
        "2025-01-02 14:30:25"           -> "2025-01-02 14:30:25"
        None                            -> ""
    """
    normalized = (value or "").replace("T", " ").replace("Z", " ").strip()
    normalized = _TZ_OFFSET_RE.sub("", normalized)
    normalized = _MILLIS_RE.sub("", normalized, count=1)
    return normalized.strip()


def record_key(sold_at: str, menu_id: str) -> str:
    """Key identifying one sales record within a branch: ``<timestamp>_<menu_id>``."""
    return f"{normalize_timestamp(sold_at)}_{menu_id}"


def date_part(sold_at: str) -> str:
    """Return the calendar-date portion of a timestamp (text before the first space)."""
    return normalize_timestamp(sold_at).split(" ")[0]
