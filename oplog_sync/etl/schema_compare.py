"""
Schema reconciliation between the sink and the configured collections.

Every configured dataset lands in exactly one bucket:

- new: no sink table with that name
- drifted: the table exists but its column names differ (either direction)
- unchanged: the column name sets match

Only names are compared. Column order and type changes on a shared column
are not detected.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Tuple

from ..utils.logging import get_logger
from .definitions import Definition

logger = get_logger(__name__)


@dataclass(frozen=True)
class FieldDescriptor:
    field: str
    type: str


@dataclass(frozen=True)
class DatasetShape:
    """Field list of one dataset, from the sink or from configuration.

    ``added``/``removed`` are only filled on drifted results, for diagnostics.
    """
    name: str
    fields: Tuple[FieldDescriptor, ...]
    added: Tuple[FieldDescriptor, ...] = field(default=(), compare=False)
    removed: Tuple[FieldDescriptor, ...] = field(default=(), compare=False)

    @property
    def field_names(self) -> frozenset:
        return frozenset(f.field for f in self.fields)


@dataclass
class ReconcileResult:
    """Result of reconciliation."""
    new: List[DatasetShape]
    drifted: List[DatasetShape]
    unchanged: List[DatasetShape]

    @property
    def needs_import(self) -> List[DatasetShape]:
        return self.new + self.drifted

    def to_report(self) -> Dict[str, object]:
        """JSON friendly summary."""
        return {
            "new": shapes_to_objects(self.new),
            "drifted": [
                {
                    "name": s.name,
                    "added": [f.field for f in s.added],
                    "removed": [f.field for f in s.removed],
                }
                for s in self.drifted
            ],
            "unchanged": [s.name for s in self.unchanged],
        }


def objects_to_shapes(objects: Dict[str, Dict[str, str]]) -> List[DatasetShape]:
    """``{dataset: {field: type}}`` -> shapes, preserving order."""
    return [
        DatasetShape(
            name=name,
            fields=tuple(FieldDescriptor(field=f, type=str(t)) for f, t in fields.items())
        )
        for name, fields in objects.items()
    ]


def shapes_to_objects(shapes: Iterable[DatasetShape]) -> Dict[str, Dict[str, str]]:
    """Inverse of objects_to_shapes."""
    return {s.name: {f.field: f.type for f in s.fields} for s in shapes}


def definitions_to_shapes(definitions: Iterable[Definition]) -> List[DatasetShape]:
    """Desired shapes, expressed in sink column names so they compare with introspection."""
    return [
        DatasetShape(
            name=d.name,
            fields=tuple(FieldDescriptor(field=f.target_name, type=f.type) for f in d.fields)
        )
        for d in definitions
    ]


def _diff(table: DatasetShape, desired: DatasetShape) -> Tuple[Tuple[FieldDescriptor, ...], Tuple[FieldDescriptor, ...]]:
    table_names = table.field_names
    desired_names = desired.field_names
    added = tuple(f for f in desired.fields if f.field not in table_names)
    removed = tuple(f for f in table.fields if f.field not in desired_names)
    return added, removed


def find_new_datasets(sink: List[DatasetShape], desired: List[DatasetShape]) -> List[DatasetShape]:
    """Desired datasets with no sink table."""
    present = {s.name for s in sink}
    return [d for d in desired if d.name not in present]


def find_drifted_datasets(sink: List[DatasetShape], desired: List[DatasetShape]) -> List[DatasetShape]:
    """Desired datasets whose sink table has a different field-name set, annotated with the diff."""
    tables = {s.name: s for s in sink}
    drifted = []
    for d in desired:
        table = tables.get(d.name)
        if table is None:
            continue
        added, removed = _diff(table, d)
        if added or removed:
            drifted.append(replace(d, added=added, removed=removed))
    return drifted


def find_unchanged_datasets(sink: List[DatasetShape], desired: List[DatasetShape]) -> List[DatasetShape]:
    """Desired datasets whose sink table has exactly the same field names."""
    tables = {s.name: s for s in sink}
    return [
        d for d in desired
        if d.name in tables and tables[d.name].field_names == d.field_names
    ]


def reconcile(sink: List[DatasetShape], desired: List[DatasetShape]) -> ReconcileResult:
    """
    Partition desired datasets against the sink schema.

    Args:
        sink: Shapes introspected from the sink (prefix already stripped)
        desired: Shapes derived from configuration

    Returns:
        ReconcileResult whose three lists are disjoint and cover ``desired``
    """
    result = ReconcileResult(
        new=find_new_datasets(sink, desired),
        drifted=find_drifted_datasets(sink, desired),
        unchanged=find_unchanged_datasets(sink, desired)
    )

    logger.info(
        f"Reconciled {len(desired)} datasets: {len(result.new)} new, "
        f"{len(result.drifted)} drifted, {len(result.unchanged)} unchanged",
        extra={"reconciliation": result.to_report()}
    )
    for shape in result.drifted:
        logger.info(
            f"Dataset {shape.name} drifted",
            extra={
                "dataset": shape.name,
                "added_fields": [f.field for f in shape.added],
                "removed_fields": [f.field for f in shape.removed],
            }
        )
    return result
