"""
Oplog entry decoding.

Raw ``local.oplog.rs`` documents are decoded exactly once, at the cursor
boundary, into ChangeEvents carrying a closed OperationKind.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from bson import Timestamp

from ...core.bson_convert import timestamp_to_int
from ...errors import UnknownOperationError
from ...utils.logging import get_logger

logger = get_logger(__name__)


class OperationKind(str, Enum):
    """Replicated oplog operation kinds."""
    INSERT = "i"
    UPDATE = "u"
    DELETE = "d"
    NOOP = "n"


@dataclass(frozen=True)
class ChangeEvent:
    """One decoded oplog entry."""
    namespace: str
    kind: OperationKind
    timestamp: int
    document: Dict[str, Any] = field(default_factory=dict)
    set_fields: Optional[Dict[str, Any]] = None
    unset_fields: Optional[Dict[str, Any]] = None
    prior_identifier: Optional[Dict[str, Any]] = None
    # Update entries that carry a whole replacement document instead of operators
    replacement: bool = False


def decode_entry(entry: Dict[str, Any]) -> ChangeEvent:
    """
    Decode a raw oplog entry.

    Handles both update encodings: ``$set``/``$unset`` operators and the
    ``$v: 2`` diff format written by MongoDB 5.0+.

    Raises:
        UnknownOperationError: For operation kinds that are not replicated
            (commands, index builds, ...)
    """
    op = entry.get('op')
    namespace = entry.get('ns', '')
    try:
        kind = OperationKind(op)
    except ValueError:
        raise UnknownOperationError(op, namespace) from None

    ts = entry.get('ts')
    timestamp = timestamp_to_int(ts) if isinstance(ts, Timestamp) else int(ts or 0)
    document = entry.get('o') or {}

    if kind is not OperationKind.UPDATE:
        return ChangeEvent(
            namespace=namespace,
            kind=kind,
            timestamp=timestamp,
            document=document
        )

    prior_identifier = entry.get('o2') or {}

    if 'diff' in document:
        set_fields: Dict[str, Any] = {}
        unset_fields: Dict[str, Any] = {}
        _flatten_diff(document['diff'], '', set_fields, unset_fields, namespace)
        return ChangeEvent(
            namespace=namespace,
            kind=kind,
            timestamp=timestamp,
            document=document,
            set_fields=set_fields,
            unset_fields=unset_fields,
            prior_identifier=prior_identifier
        )

    if not any(key.startswith('$') for key in document):
        return ChangeEvent(
            namespace=namespace,
            kind=kind,
            timestamp=timestamp,
            document=document,
            prior_identifier=prior_identifier,
            replacement=True
        )

    return ChangeEvent(
        namespace=namespace,
        kind=kind,
        timestamp=timestamp,
        document=document,
        set_fields=document.get('$set'),
        unset_fields=document.get('$unset'),
        prior_identifier=prior_identifier
    )


def _flatten_diff(
    diff: Dict[str, Any],
    prefix: str,
    set_fields: Dict[str, Any],
    unset_fields: Dict[str, Any],
    namespace: str
) -> None:
    """Flatten a ``$v: 2`` update diff into dotted set/unset fragments."""
    for key, value in diff.items():
        if key in ('u', 'i'):
            for name, new_value in value.items():
                set_fields[f"{prefix}{name}"] = new_value
        elif key == 'd':
            for name in value:
                unset_fields[f"{prefix}{name}"] = True
        elif key.startswith('s') and isinstance(value, dict):
            path = f"{prefix}{key[1:]}"
            if value.get('a') is True:
                # Array element diffs do not carry the full array
                logger.warning(
                    f"Skipping array diff on {namespace}.{path}",
                    extra={"namespace": namespace, "field": path}
                )
                continue
            _flatten_diff(value, f"{path}.", set_fields, unset_fields, namespace)
