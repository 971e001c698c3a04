"""
Parsing boundary: one sqlglot parse per file, shared by both extractors.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import sqlglot

from sqldeps.models.domain import DEFAULT_DIALECT, SqlDialect, coerce_dialect

from .ast_nodes import StatementNode
from .sql_text import Span, SqlLayout, scan_sql
from .translate import translate_statement

logger = logging.getLogger(__name__)


@dataclass
class ParsedStatement:
    index: int
    node: Optional[StatementNode]
    span: Optional[Span] = None  # source span, when statements line up with the text layout
    error: Optional[str] = None


@dataclass
class ParsedFile:
    sql: str
    dialect: SqlDialect
    layout: SqlLayout
    statements: List[ParsedStatement] = field(default_factory=list)
    error: Optional[str] = None  # whole-file parse failure

    @property
    def failed(self) -> bool:
        return self.error is not None

    def statement_span(self, statement: ParsedStatement) -> Span:
        """Source span of a statement, or the whole file when it is unknown."""
        return statement.span if statement.span is not None else (0, len(self.sql))


def _first_line(error: Exception) -> str:
    text = str(error).strip()
    return text.splitlines()[0] if text else error.__class__.__name__


def parse_sql_file(sql: str, dialect=DEFAULT_DIALECT) -> ParsedFile:
    """
    Parse a whole file and translate each statement into internal nodes.

    A parse failure does not raise: the returned ParsedFile carries the
    error and no statements, and callers switch to their text fallbacks.
    A statement that fails translation is kept with node=None so statement
    indexes stay stable.
    """
    dialect = coerce_dialect(dialect)
    layout = scan_sql(sql, dialect)
    parsed = ParsedFile(sql=sql, dialect=dialect, layout=layout)

    try:
        expressions = [e for e in sqlglot.parse(sql, read=dialect.sqlglot_name) if e is not None]
    except Exception as e:
        parsed.error = _first_line(e)
        logger.debug(f"sqlglot parsing failed ({dialect.value}): {parsed.error}")
        return parsed

    spans = layout.statement_spans()
    aligned = len(spans) == len(expressions)
    if not aligned and expressions:
        logger.debug(
            f"Statement count mismatch ({len(expressions)} parsed vs {len(spans)} in text); "
            f"line lookups will search the whole file"
        )

    for index, expression in enumerate(expressions):
        statement = ParsedStatement(index=index, node=None, span=spans[index] if aligned else None)
        try:
            statement.node = translate_statement(expression)
        except Exception as e:
            statement.error = _first_line(e)
            logger.debug(f"Skipping statement {index}: {statement.error}")
        parsed.statements.append(statement)

    return parsed
