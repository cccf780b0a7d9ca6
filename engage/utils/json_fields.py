"""Tolerant readers for JSON payload columns.

Stored payloads may be dicts/lists already (JSON column) or raw strings
from older rows and imports. Anything unparseable reads as empty.
"""

import json
import logging

log = logging.getLogger("engage.json_fields")


def _decode(raw):
    if isinstance(raw, (str, bytes)):
        try:
            return json.loads(raw)
        except ValueError:
            log.debug(f"Unparseable JSON payload: {str(raw)[:80]}")
            return None
    return raw


def load_list(raw) -> list:
    value = _decode(raw)
    return list(value) if isinstance(value, list) else []


def load_str_list(raw) -> list[str]:
    """List of strings; non-string entries are dropped."""
    return [v for v in load_list(raw) if isinstance(v, str)]


def load_dict(raw) -> dict:
    value = _decode(raw)
    return dict(value) if isinstance(value, dict) else {}
