"""JSON-in-Text column helpers shared by the ORM models."""

import json


def load_json(value, default):
    """Parse a JSON text column, returning ``default`` for empty or corrupt values."""
    if isinstance(value, (dict, list)):
        return value
    if not value:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


def dump_json(value) -> str:
    return json.dumps(value, default=str)
