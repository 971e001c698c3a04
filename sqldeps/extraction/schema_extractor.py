"""
Schema extraction: every CREATE TABLE / CREATE VIEW in a file.
"""
import logging
from typing import List, Optional

from sqldeps.models.domain import (
    ColumnDefinition,
    DefinitionKind,
    ForeignKeyRef,
    SchemaDefinition,
)

from .ast_nodes import ColumnDefNode, CreateNode, ForeignKeyNode
from .identifiers import display_name, normalize, split_dotted_name
from .keywords import is_valid_table_name
from .options import ExtractionOptions
from .parser import ParsedFile, ParsedStatement, parse_sql_file
from .sql_text import SqlLayout
from .text_search import CREATE_OBJECT_RE, LineLocator

logger = logging.getLogger(__name__)


def _statement_end(layout: SqlLayout, offset: int) -> int:
    for pos in layout.semicolons:
        if pos >= offset:
            return pos + 1
    return len(layout.sql)


class SchemaExtractor:
    """
    Extracts table and view definitions from SQL source.

    The AST path recovers columns, types, keys and nullability. When the
    whole file fails to parse, a regex pass still recovers the definitions
    themselves (without columns) so one malformed statement does not hide
    every CREATE in the file.
    """

    def __init__(self, options: Optional[ExtractionOptions] = None):
        self.options = options or ExtractionOptions()

    def extract_definitions(
        self,
        sql: str,
        file_path: str,
        dialect=None,
        parsed: Optional[ParsedFile] = None,
    ) -> List[SchemaDefinition]:
        """
        Extract every table/view definition in a file.

        Args:
            sql: File content
            file_path: Path recorded on each definition
            dialect: Overrides the configured dialect
            parsed: Reuse an existing parse of the same content

        Returns:
            Definitions in source order
        """
        if parsed is None:
            parsed = parse_sql_file(sql, dialect or self.options.dialect)

        if parsed.failed:
            logger.debug(f"Using regex definitions for {file_path}: {parsed.error}")
            return self._extract_with_regex(parsed, file_path)

        locator = LineLocator(parsed.layout)
        definitions: List[SchemaDefinition] = []
        for statement in parsed.statements:
            node = statement.node
            if not isinstance(node, CreateNode) or node.kind not in ("table", "view") or node.target is None:
                continue
            try:
                definitions.append(self._build_definition(node, statement, parsed, locator, file_path))
            except Exception as e:
                logger.debug(f"Skipping CREATE in statement {statement.index} of {file_path}: {e}")
        return definitions

    def _build_definition(
        self,
        node: CreateNode,
        statement: ParsedStatement,
        parsed: ParsedFile,
        locator: LineLocator,
        file_path: str,
    ) -> SchemaDefinition:
        span = parsed.statement_span(statement)
        target = node.target
        offset = locator.find("create", target.name, target.schema, span, anchor="clause")
        if offset is None:
            offset = locator.first_code_offset(span)
        end = span[1] if statement.span is not None else _statement_end(parsed.layout, offset)

        header = CREATE_OBJECT_RE.match(parsed.layout.masked(), offset)
        materialized = node.materialized or bool(header and "materialized" in header.group(0).lower())

        if node.kind == "view":
            kind = DefinitionKind.VIEW
            columns = [ColumnDefinition(name=name, data_type="DERIVED") for name in node.view_columns]
        else:
            kind = DefinitionKind.TABLE
            columns = self._build_columns(node)

        return SchemaDefinition(
            kind=kind,
            name=target.name,
            schema_name=target.schema,
            file_path=file_path,
            line_number=parsed.layout.line_at(offset),
            statement_index=statement.index,
            columns=columns,
            sql=parsed.sql[offset:end].strip(),
            materialized=materialized,
        )

    def _build_columns(self, node: CreateNode) -> List[ColumnDefinition]:
        primary_key = {normalize(c) for c in node.primary_key}
        table_fks = {}
        for fk in node.foreign_keys:
            for column in fk.columns:
                table_fks[normalize(column)] = fk

        columns = []
        for column in node.columns:
            fk = column.references or table_fks.get(normalize(column.name))
            columns.append(ColumnDefinition(
                name=column.name,
                data_type=column.data_type,
                nullable=column.nullable,
                is_primary_key=column.primary_key or normalize(column.name) in primary_key,
                foreign_key=self._foreign_key_ref(fk, column),
            ))
        return columns

    def _foreign_key_ref(self, fk: Optional[ForeignKeyNode], column: ColumnDefNode) -> Optional[ForeignKeyRef]:
        if fk is None or fk.table is None:
            return None
        wanted = normalize(column.name)
        position = next((i for i, c in enumerate(fk.columns) if normalize(c) == wanted), 0)
        if position < len(fk.ref_columns):
            ref_column = fk.ref_columns[position]
        else:
            ref_column = fk.ref_columns[0] if fk.ref_columns else column.name
        return ForeignKeyRef(table=display_name(fk.table.name, fk.table.schema), column=ref_column)

    def _extract_with_regex(self, parsed: ParsedFile, file_path: str) -> List[SchemaDefinition]:
        """Recover definitions (no columns) with CREATE ... TABLE|VIEW patterns."""
        layout = parsed.layout
        definitions = []
        for match in CREATE_OBJECT_RE.finditer(layout.masked()):
            if not layout.is_code(match.start()):
                continue
            parts = split_dotted_name(match.group("name"))
            if not parts or not is_valid_table_name(parts[-1]):
                continue
            is_view = match.group("kind").upper() == "VIEW"
            definitions.append(SchemaDefinition(
                kind=DefinitionKind.VIEW if is_view else DefinitionKind.TABLE,
                name=parts[-1],
                schema_name=parts[-2] if len(parts) > 1 else None,
                file_path=file_path,
                line_number=layout.line_at(match.start()),
                statement_index=layout.statement_index_at(match.start()),
                columns=[],
                sql=parsed.sql[match.start():_statement_end(layout, match.start())].strip(),
                materialized="materialized" in match.group(0).lower(),
            ))
        return definitions
