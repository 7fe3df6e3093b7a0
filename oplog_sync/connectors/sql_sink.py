"""
SQL sink.

Schema introspection, table (re)creation and keyed single-row writes,
generated with SQLAlchemy Core so any supported dialect can be the mirror.
"""

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, Float, MetaData, String, Table, Text,
    create_engine, delete, insert, inspect, update,
)
from sqlalchemy import column as sa_column, table as sa_table
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.expression import TableClause
from sqlalchemy.types import TypeEngine

from ..errors import SinkWriteError
from ..etl.definitions import Definition
from ..etl.schema_compare import DatasetShape, FieldDescriptor
from ..utils.logging import get_logger

logger = get_logger(__name__)


def _sql_types(string_length: int) -> Dict[str, Callable[[], TypeEngine]]:
    return {
        'string': lambda: String(string_length),
        'objectid': lambda: String(24),
        'text': Text,
        'integer': BigInteger,
        'int': BigInteger,
        'long': BigInteger,
        'number': Float,
        'float': Float,
        'double': Float,
        'decimal': Float,
        'boolean': Boolean,
        'bool': Boolean,
        'date': DateTime,
        'datetime': DateTime,
        'object': Text,
        'array': Text,
        'json': Text,
    }


class SQLSink:
    """
    Relational mirror of the replicated collections.

    The engine is created with ``pool_pre_ping`` so a pooled connection is
    liveness-checked before reuse and transparently replaced when dead. The
    tail thread and every import thread share one SQLSink without locking:
    each write runs in its own short transaction.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_recycle: int = 3600,
        string_length: int = 255,
        engine: Optional[Engine] = None
    ):
        """Initialize SQL sink.

        Args:
            url: SQLAlchemy database URL (ignored when ``engine`` is given)
            pool_size: Connection pool size
            max_overflow: Max overflow connections
            pool_recycle: Recycle connections after this many seconds
            string_length: VARCHAR length used for string fields
            engine: Pre-built engine (tests, shared pools)
        """
        if engine is None:
            if not url:
                raise ValueError("url or engine is required")
            pool_options = {}
            if make_url(url).get_backend_name() != 'sqlite':
                pool_options = {"pool_size": pool_size, "max_overflow": max_overflow}
            engine = create_engine(
                url,
                pool_pre_ping=True,  # Verify connections before using
                pool_recycle=pool_recycle,
                echo=False,
                **pool_options
            )
        self.engine = engine
        self.string_length = string_length
        self._sql_types = _sql_types(string_length)
        self._tables: Dict[tuple, TableClause] = {}

    @property
    def database_name(self) -> str:
        """Deployment identity used to scope the checkpoint."""
        url = self.engine.url
        if url.get_backend_name() == 'sqlite':
            return Path(url.database).stem if url.database else 'memory'
        return url.database or 'default'

    def get_schema(self, prefix: str = "") -> List[DatasetShape]:
        """
        Introspect tables whose name starts with ``prefix``.

        Returns:
            One shape per table, named without the prefix, with its columns
        """
        inspector = inspect(self.engine)
        shapes = []
        for table_name in inspector.get_table_names():
            if not table_name.startswith(prefix):
                continue
            columns = inspector.get_columns(table_name)
            shapes.append(DatasetShape(
                name=table_name[len(prefix):],
                fields=tuple(FieldDescriptor(field=c['name'], type=str(c['type'])) for c in columns)
            ))
        return shapes

    def build_table(self, definition: Definition, metadata: Optional[MetaData] = None) -> Table:
        """Physical table for a Definition."""
        columns = []
        for field in definition.fields:
            type_factory = self._sql_types.get(field.type.lower(), lambda: String(self.string_length))
            sql_type = type_factory()
            if field.primary and isinstance(sql_type, Text):
                sql_type = String(self.string_length)
            columns.append(Column(field.target_name, sql_type, primary_key=field.primary, autoincrement=False))
        return Table(definition.target_name, metadata or MetaData(), *columns)

    def create_tables(self, definitions: Iterable[Definition]) -> None:
        """Drop and recreate the tables of the given Definitions."""
        metadata = MetaData()
        tables = [self.build_table(d, metadata) for d in definitions]
        if not tables:
            return
        try:
            with self.engine.begin() as conn:
                for table in tables:
                    table.drop(conn, checkfirst=True)
                    table.create(conn)
                    logger.info(f"Created table {table.name}", extra={"table": table.name})
        except SQLAlchemyError as e:
            logger.error(f"Table creation failed: {e}", extra={"tables": [t.name for t in tables]})
            raise SinkWriteError(str(e), table=", ".join(t.name for t in tables), operation="create") from e

    def _table(self, definition: Definition) -> TableClause:
        key = (definition.target_name, tuple(definition.column_names))
        table = self._tables.get(key)
        if table is None:
            table = sa_table(definition.target_name, *[sa_column(c) for c in definition.column_names])
            self._tables[key] = table
        return table

    def insert_row(self, definition: Definition, row: Dict[str, Any]) -> None:
        """Insert or overwrite the row keyed by the identifier column."""
        table = self._table(definition)
        id_column = table.c[definition.id_target_field]
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(table).where(id_column == row[definition.id_target_field]))
                conn.execute(insert(table).values(row))
        except SQLAlchemyError as e:
            logger.error(
                f"Insert into {definition.target_name} failed: {e}",
                extra={"table": definition.target_name, "row": row}
            )
            raise SinkWriteError(str(e), table=definition.target_name, operation="insert") from e

    def update_row(self, definition: Definition, id_value: Any, values: Dict[str, Any]) -> None:
        """Update the given columns of one row."""
        table = self._table(definition)
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    update(table)
                    .where(table.c[definition.id_target_field] == id_value)
                    .values(values)
                )
        except SQLAlchemyError as e:
            logger.error(
                f"Update of {definition.target_name} failed: {e}",
                extra={"table": definition.target_name, "id": id_value, "values": values}
            )
            raise SinkWriteError(str(e), table=definition.target_name, operation="update") from e

    def delete_row(self, definition: Definition, id_value: Any) -> None:
        """Delete one row."""
        table = self._table(definition)
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(table).where(table.c[definition.id_target_field] == id_value))
        except SQLAlchemyError as e:
            logger.error(
                f"Delete from {definition.target_name} failed: {e}",
                extra={"table": definition.target_name, "id": id_value}
            )
            raise SinkWriteError(str(e), table=definition.target_name, operation="delete") from e

    def close(self) -> None:
        """Close database connections."""
        self.engine.dispose()
        logger.info("SQLSink connections closed")
