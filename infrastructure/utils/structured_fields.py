"""
JSON columns of the automation tables.

Rule conditions, action lists, dependency ids, tags, test results and the
config documents are stored as JSON text. Readers are lenient: a corrupt
column decodes to an empty value and is logged, so a single bad row cannot
stop the scheduler from loading the others.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


def _decode(raw: Any, column: str) -> Any | None:
    if raw is None or isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Corrupt JSON in column %s: %s", column, raw[:200])
        return None


def parse_json_list(raw: Any, column: str = "?") -> list[Any]:
    """Decode a stored JSON array; anything else becomes ``[]``."""
    decoded = _decode(raw, column)
    return list(decoded) if isinstance(decoded, list) else []


def parse_json_dict(raw: Any, column: str = "?") -> dict[str, Any] | None:
    """Decode a stored JSON object; anything else becomes ``None``."""
    decoded = _decode(raw, column)
    return dict(decoded) if isinstance(decoded, dict) else None


def _encode_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def dump_json_field(value: Any) -> str | None:
    """Encode a structured value for storage; ``None`` stays SQL NULL.

    Datetimes are written as ISO-8601 and enums by value.

    Raises:
        TypeError: the value holds something that has no JSON form
    """
    if value is None:
        return None
    return json.dumps(value, default=_encode_default)
