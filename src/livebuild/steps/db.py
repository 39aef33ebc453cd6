"""Relational schema derived from the abstract schema, and its SQLite migrator."""

import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from livebuild._internal.logging import get_logger
from livebuild.kernel.errors import BuildError, DatabaseError

from .schema import ParsedSchema

logger = get_logger(__name__)

SCALAR_COLUMN_TYPES: Dict[str, str] = {
    "ID": "TEXT",
    "String": "TEXT",
    "Int": "INTEGER",
    "Float": "REAL",
    "Boolean": "INTEGER",
    "BigInt": "TEXT",
    "Bytes": "TEXT",
}


class Column(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    sql_type: str
    not_null: bool = False
    primary_key: bool = False

    def ddl(self) -> str:
        parts = [_quote(self.name), self.sql_type]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        if self.not_null:
            parts.append("NOT NULL")
        return " ".join(parts)


class Table(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    columns: List[Column]

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def ddl(self) -> str:
        columns = ", ".join(c.ddl() for c in self.columns)
        return f"CREATE TABLE IF NOT EXISTS {_quote(self.name)} ({columns})"


class DbSchema(BaseModel):
    """One table per entity."""
    model_config = ConfigDict(frozen=True)

    tables: List[Table] = Field(default_factory=list)

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    def get_table(self, name: str) -> Optional[Table]:
        for table in self.tables:
            if table.name == name:
                return table
        return None


class MigrationResult(BaseModel):
    """Descriptor of the changes applied by one migration."""
    model_config = ConfigDict(frozen=True)

    database: str
    tables_created: List[str] = Field(default_factory=list)
    columns_added: List[str] = Field(default_factory=list)  # "table.column"
    table_count: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.tables_created or self.columns_added)


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def build_db_schema(parsed: ParsedSchema) -> DbSchema:
    """Map each entity to a table.

    Scalars map through SCALAR_COLUMN_TYPES; enums, entity references (stored
    as the referenced id) and lists (stored as JSON) map to TEXT.

    Raises:
        BuildError: If an entity has no id field or uses an unknown scalar
    """
    tables = []
    for entity in parsed.entities:
        if entity.get_field("id") is None:
            raise BuildError(f"Entity '{entity.name}' has no id field")
        columns = []
        for f in entity.fields:
            if f.is_list or f.kind in ("enum", "entity"):
                sql_type = "TEXT"
            elif f.type_name in SCALAR_COLUMN_TYPES:
                sql_type = SCALAR_COLUMN_TYPES[f.type_name]
            else:
                raise BuildError(f"{entity.name}.{f.name}: no column type for scalar {f.type_name}")
            is_id = f.name == "id"
            columns.append(Column(
                name=f.name,
                sql_type=sql_type,
                not_null=f.non_null and not is_id,
                primary_key=is_id,
            ))
        tables.append(Table(name=entity.name, columns=columns))
    return DbSchema(tables=tables)


class SqliteMigrator:
    """Applies a DbSchema to a SQLite database.

    Migration is additive and idempotent: missing tables are created and
    missing columns are added; nothing is dropped or rewritten. Re-running
    with an unchanged schema applies no changes and does not error.
    """

    def __init__(self, database_path: Union[str, Path]):
        self.database_path = str(database_path)

    def _connect(self) -> sqlite3.Connection:
        if self.database_path != ":memory:":
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.database_path)

    def existing_columns(self, conn: sqlite3.Connection, table: str) -> Dict[str, str]:
        rows = conn.execute(f"PRAGMA table_info({_quote(table)})").fetchall()
        return {row[1]: row[2] for row in rows}

    def migrate(self, db_schema: DbSchema) -> MigrationResult:
        """Apply ``db_schema``.

        Raises:
            DatabaseError: If the database cannot be opened or DDL fails
        """
        tables_created: List[str] = []
        columns_added: List[str] = []
        try:
            with closing(self._connect()) as conn:
                with conn:
                    for table in db_schema.tables:
                        existing = self.existing_columns(conn, table.name)
                        if not existing:
                            conn.execute(table.ddl())
                            tables_created.append(table.name)
                            continue
                        for column in table.columns:
                            if column.name not in existing:
                                # SQLite cannot add a NOT NULL column without a default
                                conn.execute(
                                    f"ALTER TABLE {_quote(table.name)} "
                                    f"ADD COLUMN {_quote(column.name)} {column.sql_type}"
                                )
                                columns_added.append(f"{table.name}.{column.name}")
                            elif existing[column.name].upper() != column.sql_type:
                                logger.warning(
                                    "column_type_mismatch",
                                    table=table.name,
                                    column=column.name,
                                    existing=existing[column.name],
                                    declared=column.sql_type,
                                )
                    table_count = conn.execute(
                        "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table'"
                    ).fetchone()[0]
        except (sqlite3.Error, OSError) as e:
            raise DatabaseError(f"Migration of {self.database_path} failed: {e}") from e

        result = MigrationResult(
            database=self.database_path,
            tables_created=tables_created,
            columns_added=columns_added,
            table_count=table_count,
        )
        logger.info(
            "database_migrated",
            database=self.database_path,
            tables_created=tables_created,
            columns_added=columns_added,
            table_count=table_count,
        )
        return result
