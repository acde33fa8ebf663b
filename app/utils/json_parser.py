"""
Helpers for the JSON detail payloads stored on audit log entries.
Details are written as JSON text so any SQL backend can hold them.
"""

import json
from typing import Optional


def dump_details(details: Optional[dict]) -> str:
    """Serialise an audit detail payload. Datetimes and other objects fall back to str()."""
    return json.dumps(details or {}, default=str, sort_keys=True)


def safe_parse_json(raw: Optional[str]) -> Optional[dict]:
    """Parse a stored JSON payload safely. Returns None on error."""
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None

