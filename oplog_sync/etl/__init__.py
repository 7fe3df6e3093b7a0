from .definitions import Definition, FieldDefinition, create_definition, create_definitions
from .schema_compare import (
    FieldDescriptor,
    DatasetShape,
    ReconcileResult,
    objects_to_shapes,
    shapes_to_objects,
    definitions_to_shapes,
    find_new_datasets,
    find_drifted_datasets,
    find_unchanged_datasets,
    reconcile,
)

__all__ = [
    # Definition registry
    "Definition",
    "FieldDefinition",
    "create_definition",
    "create_definitions",

    # Schema reconciliation
    "FieldDescriptor",
    "DatasetShape",
    "ReconcileResult",
    "objects_to_shapes",
    "shapes_to_objects",
    "definitions_to_shapes",
    "find_new_datasets",
    "find_drifted_datasets",
    "find_unchanged_datasets",
    "reconcile",
]
