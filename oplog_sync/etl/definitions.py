"""
Definition registry.

Compiles the configured collection mapping into immutable Definitions: one
per collection, naming the sink table, its columns, the value converter of
each column and the identifier column.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.bson_convert import column_name, converter_for
from ..errors import DefinitionError

ID_FIELD = "_id"
DEFAULT_ID_TYPE = "string"


@dataclass(frozen=True)
class FieldDefinition:
    """One replicated field."""
    source_name: str
    target_name: str
    type: str
    convert: Callable[[Any], Any] = field(compare=False, repr=False)
    primary: bool = False


@dataclass(frozen=True)
class Definition:
    """Compiled mapping of one collection to one sink table."""
    name: str
    source_namespace: str
    target_name: str
    fields: Tuple[FieldDefinition, ...]
    id_source_field: str = ID_FIELD
    id_target_field: str = ID_FIELD
    id_type: str = DEFAULT_ID_TYPE

    @property
    def id_field(self) -> FieldDefinition:
        return next(f for f in self.fields if f.primary)

    @property
    def column_names(self) -> List[str]:
        return [f.target_name for f in self.fields]

    def convert_id(self, value: Any) -> Any:
        return self.id_field.convert(value)


def create_definition(
    name: str,
    fields: Dict[str, str],
    db_name: str,
    prefix: str = "",
    field_case: Optional[str] = None
) -> Definition:
    """
    Build the Definition of one collection.

    The identifier field ``_id`` is always replicated as the primary key; its
    type comes from the mapping when listed there, ``string`` otherwise.

    Args:
        name: Collection name
        fields: Mapping of source field path -> field type
        db_name: Source database name (namespace is ``db.collection``)
        prefix: Sink table name prefix
        field_case: Column naming rule

    Raises:
        DefinitionError: On an empty mapping or an unknown field type
    """
    if not fields:
        raise DefinitionError(f"Collection '{name}' has no fields")

    id_type = str(fields.get(ID_FIELD, DEFAULT_ID_TYPE))
    id_target = column_name(ID_FIELD, field_case)

    compiled = [FieldDefinition(
        source_name=ID_FIELD,
        target_name=id_target,
        type=id_type,
        convert=converter_for(id_type),
        primary=True
    )]
    for source_name, field_type in fields.items():
        if source_name == ID_FIELD:
            continue
        field_type = str(field_type)
        compiled.append(FieldDefinition(
            source_name=source_name,
            target_name=column_name(source_name, field_case),
            type=field_type,
            convert=converter_for(field_type)
        ))

    targets = [f.target_name for f in compiled]
    duplicates = {t for t in targets if targets.count(t) > 1}
    if duplicates:
        raise DefinitionError(
            f"Collection '{name}' maps several fields onto columns {sorted(duplicates)}"
        )

    return Definition(
        name=name,
        source_namespace=f"{db_name}.{name}",
        target_name=f"{prefix}{name}",
        fields=tuple(compiled),
        id_source_field=ID_FIELD,
        id_target_field=id_target,
        id_type=id_type
    )


def create_definitions(
    collections: Dict[str, Dict[str, str]],
    db_name: str,
    prefix: str = "",
    field_case: Optional[str] = None
) -> List[Definition]:
    """Build Definitions for every configured collection, in configuration order."""
    return [
        create_definition(name, fields, db_name, prefix, field_case)
        for name, fields in (collections or {}).items()
    ]
