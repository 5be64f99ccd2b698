"""
Context blob validation.

Requests may carry auxiliary context (bookmarks, nearby lots) as JSON-encoded
strings. These are untrusted: a missing or malformed blob degrades to an
empty default and a logged warning, never an exception.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Union

logger = logging.getLogger(__name__)


@dataclass
class JsonParseResult:
    """Decoded context value plus whether the raw input was usable."""
    value: Union[list, dict]
    ok: bool


def _parse(raw: Any, expected: type, field_name: str) -> JsonParseResult:
    if raw is None:
        return JsonParseResult(value=expected(), ok=True)

    # Already decoded by an upstream layer (e.g. the API model)
    if isinstance(raw, expected):
        return JsonParseResult(value=raw, ok=True)

    if not isinstance(raw, str):
        logger.warning(
            f"Context '{field_name}' has unsupported type {type(raw).__name__}; using empty default"
        )
        return JsonParseResult(value=expected(), ok=False)

    if not raw.strip():
        return JsonParseResult(value=expected(), ok=True)

    try:
        decoded = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Invalid JSON for context '{field_name}': {e}; using empty default")
        return JsonParseResult(value=expected(), ok=False)

    if not isinstance(decoded, expected):
        logger.warning(
            f"Context '{field_name}' decoded to {type(decoded).__name__}, "
            f"expected {expected.__name__}; using empty default"
        )
        return JsonParseResult(value=expected(), ok=False)

    return JsonParseResult(value=decoded, ok=True)


def parse_optional_json_array(raw: Any, field_name: str = "context") -> JsonParseResult:
    """Parse a JSON array context blob, degrading to ``[]``."""
    return _parse(raw, list, field_name)


def parse_optional_json_object(raw: Any, field_name: str = "context") -> JsonParseResult:
    """Parse a JSON object context blob, degrading to ``{}``."""
    return _parse(raw, dict, field_name)


def object_items(values: list, field_name: str = "context") -> list[dict]:
    """Keep only the object elements of a decoded array."""
    items = [v for v in values if isinstance(v, dict)]
    dropped = len(values) - len(items)
    if dropped:
        logger.warning(f"Dropped {dropped} non-object element(s) from context '{field_name}'")
    return items
