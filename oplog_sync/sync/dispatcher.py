"""
Change dispatch: apply one decoded oplog change to the SQL sink.
"""

from typing import Any, Dict, Iterable, Optional

from ..connectors.cdc.events import ChangeEvent, OperationKind
from ..core.bson_convert import get_field_value, has_field
from ..etl.definitions import Definition
from ..monitoring.metrics import events_dispatched_total
from ..utils.logging import get_logger

logger = get_logger(__name__)


class OpDispatcher:
    """
    Routes ChangeEvents to the sink.

    Built from the Definitions of one tail generation. Events for namespaces
    outside that generation are dropped without touching the sink.
    """

    def __init__(self, sink, definitions: Iterable[Definition]):
        self.sink = sink
        self.definitions: Dict[str, Definition] = {d.source_namespace: d for d in definitions}

    def definition_for(self, namespace: str) -> Optional[Definition]:
        return self.definitions.get(namespace)

    def dispatch(self, event: ChangeEvent) -> None:
        """Apply one change. Sink write errors propagate."""
        definition = self.definition_for(event.namespace)
        if definition is None:
            return

        if event.kind is OperationKind.INSERT:
            logger.debug(f"Insert a new record into {definition.source_namespace}")
            self.insert(definition, event.document)
        elif event.kind is OperationKind.UPDATE:
            self.update(definition, event)
        elif event.kind is OperationKind.DELETE:
            id_value = get_field_value(definition.id_source_field, event.document)
            logger.debug(
                f"Delete a record in {definition.source_namespace} "
                f"({definition.id_source_field}={id_value})"
            )
            self.sink.delete_row(definition, definition.convert_id(id_value))
        else:
            return

        events_dispatched_total.labels(
            namespace=definition.source_namespace,
            operation=event.kind.name.lower()
        ).inc()

    def insert(self, definition: Definition, document: Dict[str, Any]) -> None:
        """Write every defined field of a full document."""
        self.sink.insert_row(definition, build_row(definition, document))

    def update(self, definition: Definition, event: ChangeEvent) -> None:
        id_value = get_field_value(definition.id_source_field, event.prior_identifier)
        logger.debug(
            f"Update a record in {definition.source_namespace} "
            f"({definition.id_source_field}={id_value})"
        )

        if event.replacement:
            values = build_row(definition, event.document)
        else:
            values = build_update(definition, event.set_fields, event.unset_fields)
        values.pop(definition.id_target_field, None)
        if not values:
            return

        self.sink.update_row(definition, definition.convert_id(id_value), values)


def build_row(definition: Definition, document: Dict[str, Any]) -> Dict[str, Any]:
    """Column -> converted value for every field of the Definition."""
    return {
        f.target_name: f.convert(get_field_value(f.source_name, document))
        for f in definition.fields
    }


def build_update(
    definition: Definition,
    set_fields: Optional[Dict[str, Any]],
    unset_fields: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """Columns touched by an update: set fields get their value, unset fields NULL."""
    values = {}
    for f in definition.fields:
        if set_fields and has_field(f.source_name, set_fields):
            values[f.target_name] = f.convert(get_field_value(f.source_name, set_fields))
        elif unset_fields and has_field(f.source_name, unset_fields):
            values[f.target_name] = f.convert(None)
    return values
