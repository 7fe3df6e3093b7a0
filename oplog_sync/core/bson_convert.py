"""
BSON value conversion and field naming helpers.

Converts MongoDB BSON values into Python values the SQL sink can bind, and
derives sink column names from source field paths.
"""

from bson import ObjectId, Decimal128, Timestamp
from bson.regex import Regex
from datetime import datetime, timezone
from decimal import Decimal
import base64
import json
import re
from typing import Any, Callable, Dict, Optional

from ..errors import DefinitionError

_MISSING = object()


def bson_safe(value: Any) -> Any:
    """
    Recursively convert BSON types to JSON-serializable Python types.

    Handles:
    - ObjectId -> str
    - datetime -> ISO string
    - Decimal128 -> str
    - bytes -> base64 string
    - Nested dicts and lists

    Example:
        >>> from bson import ObjectId
        >>> doc = {"_id": ObjectId(), "name": "test"}
        >>> safe = bson_safe(doc)
        >>> isinstance(safe["_id"], str)
        True
    """
    if value is None:
        return None

    if isinstance(value, ObjectId):
        return str(value)

    if isinstance(value, datetime):
        return value.isoformat()

    if isinstance(value, (Decimal128, Decimal)):
        return str(value)

    if isinstance(value, Timestamp):
        return timestamp_to_int(value)

    if isinstance(value, Regex):
        return value.pattern

    if isinstance(value, bytes):
        return base64.b64encode(value).decode('ascii')

    if isinstance(value, dict):
        return {k: bson_safe(v) for k, v in value.items()}

    if isinstance(value, (list, tuple, set)):
        return [bson_safe(v) for v in value]

    return value


def timestamp_to_int(ts: Timestamp) -> int:
    """Pack an oplog Timestamp into one ordered 64-bit integer (seconds << 32 | inc)."""
    return (ts.time << 32) + ts.inc


def int_to_timestamp(value: int) -> Timestamp:
    """Inverse of timestamp_to_int."""
    value = int(value or 0)
    return Timestamp(value >> 32, value & 0xFFFFFFFF)


def get_field_value(path: str, document: Optional[Dict[str, Any]], default: Any = None) -> Any:
    """Read a dotted path from a document.

    A literal key equal to the whole path wins (``$set`` fragments are written
    as ``{"a.b": 1}``); otherwise the path is walked segment by segment.
    """
    value = _lookup(path, document)
    return default if value is _MISSING else value


def has_field(path: str, document: Optional[Dict[str, Any]]) -> bool:
    """True when the dotted path is present in the document, even if null."""
    return _lookup(path, document) is not _MISSING


def _lookup(path: str, document: Any) -> Any:
    if isinstance(document, list):
        head, _, rest = path.partition('.')
        if not head.isdigit() or int(head) >= len(document):
            return _MISSING
        return _lookup(rest, document[int(head)]) if rest else document[int(head)]
    if not isinstance(document, dict):
        return _MISSING
    if path in document:
        return document[path]

    head, sep, rest = path.partition('.')
    if not sep or head not in document:
        return _MISSING
    return _lookup(rest, document[head])


# Field case rules

def _words(name: str):
    name = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', name)
    return [w for w in re.split(r'[_\-\s.]+', name) if w]


def to_snake(name: str) -> str:
    leading = '_' if name.startswith('_') else ''
    return leading + '_'.join(w.lower() for w in _words(name))


def to_camel(name: str) -> str:
    words = _words(name)
    if not words:
        return name
    leading = '_' if name.startswith('_') else ''
    return leading + words[0].lower() + ''.join(w[:1].upper() + w[1:].lower() for w in words[1:])


FIELD_CASE_RULES: Dict[str, Callable[[str], str]] = {
    'none': lambda name: name,
    'snake': to_snake,
    'camel': to_camel,
    'lower': str.lower,
    'upper': str.upper,
}


def column_name(source_field: str, field_case: Optional[str] = None) -> str:
    """Sink column name for a source field path.

    Path separators become underscores before the case rule is applied.
    """
    rule = FIELD_CASE_RULES.get((field_case or 'none').lower())
    if rule is None:
        raise DefinitionError(f"Unknown field case rule: {field_case}")
    return rule(source_field.replace('.', '_'))


# Per-type value converters

def _to_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(bson_safe(value), default=str)
    safe = bson_safe(value)
    return safe if isinstance(safe, str) else str(safe)


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'y', 't')
    return bool(value)


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, ObjectId):
        return value.generation_time
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
    return None


def _to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(bson_safe(value), default=str)


CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    'string': _to_string,
    'text': _to_string,
    'objectid': _to_string,
    'integer': _to_int,
    'int': _to_int,
    'long': _to_int,
    'number': _to_float,
    'float': _to_float,
    'double': _to_float,
    'decimal': _to_float,
    'boolean': _to_bool,
    'bool': _to_bool,
    'date': _to_datetime,
    'datetime': _to_datetime,
    'object': _to_json,
    'array': _to_json,
    'json': _to_json,
}


def converter_for(field_type: str) -> Callable[[Any], Any]:
    """Value converter for a configured field type.

    Raises:
        DefinitionError: If the type is not known
    """
    try:
        return CONVERTERS[field_type.lower()]
    except (KeyError, AttributeError):
        raise DefinitionError(
            f"Unknown field type '{field_type}'. Known types: {sorted(CONVERTERS)}"
        ) from None
