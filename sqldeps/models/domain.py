"""
Core domain models for the SQL workspace dependency index.
"""
import logging
import time
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

INDEX_VERSION = 3


class SqlDialect(str, Enum):
    MYSQL = "MySQL"
    POSTGRESQL = "PostgreSQL"
    TRANSACTSQL = "TransactSQL"
    MARIADB = "MariaDB"
    SQLITE = "SQLite"
    SNOWFLAKE = "Snowflake"
    BIGQUERY = "BigQuery"
    HIVE = "Hive"
    REDSHIFT = "Redshift"
    ATHENA = "Athena"
    TRINO = "Trino"

    @property
    def sqlglot_name(self) -> str:
        """Dialect name understood by sqlglot."""
        return _SQLGLOT_DIALECTS[self]

    @property
    def hash_comments(self) -> bool:
        return self in (SqlDialect.MYSQL, SqlDialect.MARIADB)

    @property
    def backslash_escapes(self) -> bool:
        return self in (SqlDialect.MYSQL, SqlDialect.MARIADB, SqlDialect.BIGQUERY, SqlDialect.HIVE)

    @property
    def dollar_quotes(self) -> bool:
        return self in (SqlDialect.POSTGRESQL, SqlDialect.REDSHIFT, SqlDialect.SNOWFLAKE)

    @property
    def bracket_identifiers(self) -> bool:
        return self is SqlDialect.TRANSACTSQL


_SQLGLOT_DIALECTS = {
    SqlDialect.MYSQL: "mysql",
    SqlDialect.POSTGRESQL: "postgres",
    SqlDialect.TRANSACTSQL: "tsql",
    SqlDialect.MARIADB: "mysql",
    SqlDialect.SQLITE: "sqlite",
    SqlDialect.SNOWFLAKE: "snowflake",
    SqlDialect.BIGQUERY: "bigquery",
    SqlDialect.HIVE: "hive",
    SqlDialect.REDSHIFT: "redshift",
    SqlDialect.ATHENA: "athena",
    SqlDialect.TRINO: "trino",
}

DEFAULT_DIALECT = SqlDialect.MYSQL


def coerce_dialect(value) -> SqlDialect:
    """
    Resolve a dialect from an enum member, its display name or a sqlglot name.

    Unknown names fall back to the default dialect.
    """
    if isinstance(value, SqlDialect):
        return value
    if value:
        wanted = str(value).strip().lower()
        for dialect in SqlDialect:
            if wanted in (dialect.value.lower(), dialect.name.lower()):
                return dialect
        for dialect in SqlDialect:
            if wanted == dialect.sqlglot_name:
                return dialect
        logger.warning(f"Unknown SQL dialect '{value}', using {DEFAULT_DIALECT.value}")
    return DEFAULT_DIALECT


class DefinitionKind(str, Enum):
    TABLE = "table"
    VIEW = "view"


class ReferenceType(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    JOIN = "join"
    SUBQUERY = "subquery"
    CTE = "cte"
    MERGE = "merge"


class ColumnUsage(str, Enum):
    SELECT = "select"
    WHERE = "where"
    JOIN = "join"
    GROUP = "group"
    ORDER = "order"
    HAVING = "having"
    SET = "set"
    INSERT = "insert"


class ForeignKeyRef(BaseModel):
    """Target of a column-level foreign key."""
    table: str
    column: str

    class Config:
        frozen = True


class ColumnDefinition(BaseModel):
    name: str
    data_type: str  # declared type including length/precision, e.g. VARCHAR(100)
    nullable: bool = True
    is_primary_key: bool = False
    foreign_key: Optional[ForeignKeyRef] = None

    class Config:
        frozen = True


class SchemaDefinition(BaseModel):
    """A CREATE TABLE / CREATE VIEW found in a file. Immutable once produced."""
    kind: DefinitionKind
    name: str
    schema_name: Optional[str] = Field(default=None, alias="schema")
    file_path: str
    line_number: int  # 1-based
    statement_index: int = 0
    columns: List[ColumnDefinition] = []
    sql: str = ""
    materialized: bool = False

    class Config:
        frozen = True
        populate_by_name = True


class ColumnReference(BaseModel):
    """A column used by a statement, attributed to one of its table references."""
    column_name: str
    table_name: str
    table_alias: Optional[str] = None
    used_in: ColumnUsage
    line_number: int


class TableReference(BaseModel):
    """One place where a file reads from or writes to a table."""
    table_name: str
    alias: Optional[str] = None
    schema_name: Optional[str] = Field(default=None, alias="schema")
    reference_type: ReferenceType
    file_path: str
    line_number: int  # 1-based
    context: str  # e.g. "FROM", "LEFT JOIN", "INSERT INTO"
    statement_index: int = 0
    columns: Optional[List[ColumnReference]] = None

    class Config:
        populate_by_name = True


class FileAnalysis(BaseModel):
    """Everything extracted from a single SQL file."""
    file_path: str
    file_name: str
    last_modified: float  # epoch seconds
    content_hash: str
    definitions: List[SchemaDefinition] = []
    references: List[TableReference] = []
    parse_error: Optional[str] = None  # size limit or read failure; definitions/references are empty
    parse_warnings: List[str] = []


class WorkspaceIndex(BaseModel):
    """The workspace-wide aggregate of every indexed file."""
    version: int = INDEX_VERSION
    last_updated: float = Field(default_factory=time.time)
    file_count: int = 0
    files: Dict[str, FileAnalysis] = {}
    file_hashes: Dict[str, str] = {}
    definition_map: Dict[str, List[SchemaDefinition]] = {}  # qualified key -> definitions
    reference_map: Dict[str, List[TableReference]] = {}  # qualified key -> references


class SerializedWorkspaceIndex(BaseModel):
    """Flat, JSON-friendly snapshot of a WorkspaceIndex."""
    version: int
    last_updated: float
    file_count: int
    files_array: List[Tuple[str, FileAnalysis]] = []
    file_hashes_array: List[Tuple[str, str]] = []
    definition_array: List[Tuple[str, List[SchemaDefinition]]] = []
    reference_array: List[Tuple[str, List[TableReference]]] = []
