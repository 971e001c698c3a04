"""
Reference extraction: every place a file reads from or writes to a table.

Two paths produce references:

1. The AST walk over translated statements, with an immutable scope value
   (visible CTE names + the current SELECT's aliases) threaded through every
   recursive call.
2. A regex pass over the comment-stripped text, used only when the whole
   file fails to parse.

Before either runs, a file-level registry of CTE names and derived-table
aliases is built three ways (AST walk, WITH-clause scan, UPDATE ... FROM
(subquery) scan) so that neither path can report those names as tables.
"""
import logging
import re
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple

from sqldeps.models.domain import ColumnReference, ColumnUsage, ReferenceType, TableReference

from .ast_nodes import (
    BinaryExpr,
    ColumnRefExpr,
    CreateNode,
    CteNode,
    DeleteNode,
    Expr,
    FromItem,
    FuncCallExpr,
    InsertNode,
    MergeNode,
    ParenExpr,
    QueryNode,
    SelectNode,
    SetOperationNode,
    StatementNode,
    SubqueryExpr,
    TableDesignator,
    UpdateNode,
    walk,
)
from .identifiers import normalize, qualified_key, split_dotted_name, strip_quotes
from .keywords import FROM_ARGUMENT_FUNCTIONS, is_reserved_word, is_valid_table_name
from .options import ExtractionOptions
from .parser import ParsedFile, parse_sql_file
from .sql_text import Span, find_matching_paren, scan_sql
from .text_search import IDENT, QUALIFIED_NAME, LineLocator

logger = logging.getLogger(__name__)

# Clause used to find a reference's line, by reference type
_LINE_CLAUSES = {
    ReferenceType.SELECT: 'from',
    ReferenceType.JOIN: 'join',
    ReferenceType.INSERT: 'insert',
    ReferenceType.UPDATE: 'update',
    ReferenceType.DELETE: 'delete',
    ReferenceType.MERGE: 'merge',
}


# ----------------------------------------------------------------------
# Scopes
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class AliasTarget:
    kind: str  # "table", "cte" or "subquery"
    table: Optional[TableDesignator] = None


@dataclass(frozen=True)
class ScopeContext:
    """What a query can see: CTE names from enclosing WITH clauses and its own aliases."""
    cte_names: FrozenSet[str] = frozenset()
    aliases: Tuple[Tuple[str, AliasTarget], ...] = ()
    depth: int = 0

    def is_cte(self, table: TableDesignator) -> bool:
        return not table.schema and normalize(table.name) in self.cte_names

    def alias_target(self, name: str) -> Optional[AliasTarget]:
        wanted = normalize(name)
        for alias, target in self.aliases:
            if alias == wanted:
                return target
        return None

    def with_ctes(self, names: Iterable[str]) -> "ScopeContext":
        return replace(self, cte_names=self.cte_names | {normalize(n) for n in names})

    def with_aliases(self, aliases: Dict[str, AliasTarget]) -> "ScopeContext":
        return replace(self, aliases=tuple(aliases.items()))

    def nested(self) -> "ScopeContext":
        """Scope for a subquery: same CTEs, fresh aliases, one level deeper."""
        return replace(self, aliases=(), depth=self.depth + 1)


@dataclass(frozen=True)
class FileScope:
    """Names that are never real tables anywhere in one file."""
    excluded: FrozenSet[str] = frozenset()

    def is_excluded(self, name: str, schema: Optional[str]) -> bool:
        if schema:
            return False
        key = normalize(name)
        return key in self.excluded


@dataclass
class StatementContext:
    file_path: str
    index: int
    span: Span
    locator: LineLocator


# ----------------------------------------------------------------------
# File-level CTE / alias registry
# ----------------------------------------------------------------------

_WITH_RE = re.compile(r'\bWITH\s+(?:RECURSIVE\s+)?', re.IGNORECASE)
_CTE_HEAD_RE = re.compile(
    rf'\s*(?P<name>{IDENT})\s*(?:\([^()]*\)\s*)?AS\s*(?:(?:NOT\s+)?MATERIALIZED\s*)?\(',
    re.IGNORECASE,
)
_COMMA_RE = re.compile(r'\s*,')
_UPDATE_WORD_RE = re.compile(r'\bUPDATE\b', re.IGNORECASE)
_DERIVED_SOURCE_RE = re.compile(r'(?:\bFROM|\bJOIN|,)\s*\(', re.IGNORECASE)
_ALIAS_AFTER_RE = re.compile(rf'\s*(?:AS\s+)?(?P<alias>{IDENT})', re.IGNORECASE)


def scan_cte_names(text: str) -> Set[str]:
    """CTE names declared in WITH clauses, including comma-separated ones."""
    names = set()
    for match in _WITH_RE.finditer(text):
        pos = match.end()
        while True:
            head = _CTE_HEAD_RE.match(text, pos)
            if not head:
                break
            names.add(normalize(head.group("name")))
            close = find_matching_paren(text, head.end() - 1)
            if close < 0:
                break
            comma = _COMMA_RE.match(text, close + 1)
            if not comma:
                break
            pos = comma.end()
    return names


def scan_update_from_aliases(text: str) -> Set[str]:
    """Aliases of derived tables in `UPDATE ... FROM (subquery) AS alias`."""
    names = set()
    semicolons = scan_sql(text).semicolons
    for match in _UPDATE_WORD_RE.finditer(text):
        end = next((pos for pos in semicolons if pos > match.end()), len(text))
        pos = match.end()
        while True:
            source = _DERIVED_SOURCE_RE.search(text, pos, end)
            if not source:
                break
            close = find_matching_paren(text, source.end() - 1)
            if close < 0:
                break
            alias = _ALIAS_AFTER_RE.match(text, close + 1)
            if alias and not is_reserved_word(strip_quotes(alias.group("alias"))):
                names.add(normalize(alias.group("alias")))
            pos = close + 1
    return names


def collect_file_scope(parsed: ParsedFile) -> FileScope:
    excluded = set()
    for statement in parsed.statements:
        if statement.node is None:
            continue
        for node in walk(statement.node):
            if isinstance(node, CteNode):
                excluded.add(normalize(node.name))

    stripped = parsed.layout.stripped()
    excluded |= scan_cte_names(stripped)
    excluded |= scan_update_from_aliases(stripped)
    return FileScope(excluded=frozenset(excluded))


# ----------------------------------------------------------------------
# Regex fallback patterns
# ----------------------------------------------------------------------

_FALLBACK_PATTERNS = [
    (re.compile(rf'\bFROM\s+(?P<name>{QUALIFIED_NAME})', re.IGNORECASE), ReferenceType.SELECT),
    (
        re.compile(
            rf'\b(?P<qualifier>(?:(?:NATURAL|INNER|CROSS|LEFT|RIGHT|FULL|OUTER)\s+){{0,3}})JOIN\s+(?P<name>{QUALIFIED_NAME})',
            re.IGNORECASE,
        ),
        ReferenceType.JOIN,
    ),
    (
        re.compile(
            rf'\bINSERT\s+(?:IGNORE\s+|OVERWRITE\s+)?(?:INTO\s+)?(?:TABLE\s+)?(?P<name>{QUALIFIED_NAME})',
            re.IGNORECASE,
        ),
        ReferenceType.INSERT,
    ),
    (re.compile(rf'\bUPDATE\s+(?:ONLY\s+)?(?P<name>{QUALIFIED_NAME})', re.IGNORECASE), ReferenceType.UPDATE),
    (re.compile(rf'\bDELETE\s+FROM\s+(?P<name>{QUALIFIED_NAME})', re.IGNORECASE), ReferenceType.DELETE),
    (re.compile(rf'\bMERGE\s+INTO\s+(?P<name>{QUALIFIED_NAME})', re.IGNORECASE), ReferenceType.MERGE),
]

_FIXED_CONTEXTS = {
    ReferenceType.SELECT: "FROM",
    ReferenceType.INSERT: "INSERT INTO",
    ReferenceType.UPDATE: "UPDATE",
    ReferenceType.DELETE: "DELETE FROM",
    ReferenceType.MERGE: "MERGE INTO",
}

# Words that turn a following FROM/UPDATE into something other than a table clause
_NOT_A_FROM_CLAUSE = {'delete', 'distinct'}
_NOT_AN_UPDATE_CLAUSE = {'key', 'for', 'on', 'before', 'after', 'of', 'or', 'instead'}

_PREVIOUS_WORD_RE = re.compile(r'(\w+)\s*$')
_FROM_FUNCTION_RE = re.compile(
    r'\b(?:' + '|'.join(FROM_ARGUMENT_FUNCTIONS) + r')\s*\(',
    re.IGNORECASE,
)
_OPEN_PAREN_RE = re.compile(r'\s*\(')


def _previous_word(text: str, pos: int) -> str:
    match = _PREVIOUS_WORD_RE.search(text[max(0, pos - 40):pos])
    return match.group(1).lower() if match else ""


def _inside_from_argument_function(text: str, pos: int) -> bool:
    """True for the FROM in EXTRACT(YEAR FROM d), TRIM(x FROM y) and friends."""
    line_start = text.rfind("\n", 0, pos) + 1
    prefix = text[line_start:pos]
    last = None
    for last in _FROM_FUNCTION_RE.finditer(prefix):
        pass
    if last is None:
        return False
    tail = prefix[last.end() - 1:]
    return tail.count("(") > tail.count(")")


def _column_refs(expr: Optional[Expr]) -> Iterator[ColumnRefExpr]:
    """Column references in an expression, not descending into subqueries."""
    stack = [expr]
    while stack:
        current = stack.pop()
        if current is None or isinstance(current, SubqueryExpr):
            continue
        if isinstance(current, ColumnRefExpr):
            yield current
        elif isinstance(current, BinaryExpr):
            stack.extend([current.right, current.left])
        elif isinstance(current, FuncCallExpr):
            stack.extend(reversed(current.args))
        elif isinstance(current, ParenExpr):
            stack.append(current.inner)


class ReferenceExtractor:
    """
    Extracts table references from SQL source.

    Stateless between files: everything a walk needs travels in the
    ScopeContext / StatementContext / FileScope values.
    """

    def __init__(self, options: Optional[ExtractionOptions] = None):
        self.options = options or ExtractionOptions()

    def extract_references(
        self,
        sql: str,
        file_path: str,
        dialect=None,
        parsed: Optional[ParsedFile] = None,
    ) -> List[TableReference]:
        """
        Extract every table reference in a file.

        Args:
            sql: File content
            file_path: Path recorded on each reference
            dialect: Overrides the configured dialect
            parsed: Reuse an existing parse of the same content

        Returns:
            Deduplicated references ordered by line
        """
        if parsed is None:
            parsed = parse_sql_file(sql, dialect or self.options.dialect)

        file_scope = collect_file_scope(parsed)
        locator = LineLocator(parsed.layout)

        if parsed.failed:
            logger.debug(f"Using regex references for {file_path}: {parsed.error}")
            references = self._extract_with_regex(parsed, file_path, locator)
        else:
            references = []
            for statement in parsed.statements:
                if statement.node is None:
                    continue
                context = StatementContext(
                    file_path=file_path,
                    index=statement.index,
                    span=parsed.statement_span(statement),
                    locator=locator,
                )
                found: List[TableReference] = []
                try:
                    self._walk_statement(statement.node, context, found)
                except Exception as e:
                    logger.debug(f"Skipping statement {statement.index} of {file_path}: {e}")
                    continue
                references.extend(found)

        return self._finalize(references, file_scope)

    # ------------------------------------------------------------------
    # AST walk
    # ------------------------------------------------------------------

    def _walk_statement(self, node: StatementNode, stmt: StatementContext, out: List[TableReference]) -> None:
        scope = ScopeContext()
        if isinstance(node, (SelectNode, SetOperationNode)):
            self._walk_query(node, stmt, scope, out)
        elif isinstance(node, InsertNode):
            self._walk_insert(node, stmt, scope, out)
        elif isinstance(node, UpdateNode):
            self._walk_update(node, stmt, scope, out)
        elif isinstance(node, DeleteNode):
            self._walk_delete(node, stmt, scope, out)
        elif isinstance(node, MergeNode):
            self._walk_merge(node, stmt, scope, out)
        elif isinstance(node, CreateNode) and node.query is not None:
            self._walk_query(node.query, stmt, scope.nested(), out)

    def _walk_query(self, node: Optional[QueryNode], stmt, scope: ScopeContext, out) -> None:
        if node is None:
            return
        if scope.depth > self.options.max_subquery_depth:
            logger.debug(f"Subquery depth limit reached in statement {stmt.index} of {stmt.file_path}")
            return
        if isinstance(node, SetOperationNode):
            scope = self._enter_ctes(node.ctes, stmt, scope, out)
            self._walk_query(node.left, stmt, scope, out)
            self._walk_query(node.right, stmt, scope, out)
        else:
            self._walk_select(node, stmt, scope, out)

    def _enter_ctes(self, ctes: List[CteNode], stmt, scope: ScopeContext, out) -> ScopeContext:
        if not ctes:
            return scope
        # All names are visible to every body, which also covers recursive CTEs
        scope = scope.with_ctes(cte.name for cte in ctes)
        for cte in ctes:
            self._walk_query(cte.query, stmt, scope.nested(), out)
        return scope

    def _walk_select(self, node: SelectNode, stmt, scope: ScopeContext, out) -> None:
        scope = self._enter_ctes(node.ctes, stmt, scope, out)
        scope = scope.with_aliases(self._collect_aliases(node.from_items, scope))

        local: List[TableReference] = []
        self._walk_from_items(node.from_items, stmt, scope, ReferenceType.SELECT, "FROM", local, out)
        for expr in node.columns + node.group_by + node.order_by:
            self._walk_expression(expr, stmt, scope, out)
        self._walk_expression(node.where, stmt, scope, out)
        self._walk_expression(node.having, stmt, scope, out)

        if self.options.extract_columns and local:
            usages = [(ColumnUsage.SELECT, e) for e in node.columns]
            usages += [(ColumnUsage.JOIN, item.on) for item in node.from_items if item.on is not None]
            usages.append((ColumnUsage.WHERE, node.where))
            usages += [(ColumnUsage.GROUP, e) for e in node.group_by]
            usages.append((ColumnUsage.HAVING, node.having))
            usages += [(ColumnUsage.ORDER, e) for e in node.order_by]
            self._attach_columns(usages, stmt, scope, local)

    def _walk_insert(self, node: InsertNode, stmt, scope: ScopeContext, out) -> None:
        scope = self._enter_ctes(node.ctes, stmt, scope, out)
        if node.target is not None:
            target = self._emit(node.target, ReferenceType.INSERT, "INSERT INTO", stmt, scope, out)
            if target is not None and self.options.extract_columns:
                for name in node.columns[:self.options.max_columns_per_query]:
                    self._add_column(target, name, None, ColumnUsage.INSERT, stmt)
        self._walk_query(node.source, stmt, scope.nested(), out)

    def _walk_update(self, node: UpdateNode, stmt, scope: ScopeContext, out) -> None:
        scope = self._enter_ctes(node.ctes, stmt, scope, out)
        items = list(node.from_items)
        if node.target is not None:
            items.insert(0, FromItem(table=node.target, alias=node.target.alias))
        scope = scope.with_aliases(self._collect_aliases(items, scope))

        local: List[TableReference] = []
        if node.target is not None:
            target = self._emit(node.target, ReferenceType.UPDATE, "UPDATE", stmt, scope, out)
            if target is not None:
                local.append(target)
        self._walk_from_items(node.from_items, stmt, scope, ReferenceType.SELECT, "FROM", local, out)
        for expr in node.assignments:
            self._walk_expression(expr, stmt, scope, out)
        self._walk_expression(node.where, stmt, scope, out)

        if self.options.extract_columns and local:
            usages = [(ColumnUsage.SET, e) for e in node.assignments]
            usages += [(ColumnUsage.JOIN, item.on) for item in node.from_items if item.on is not None]
            usages.append((ColumnUsage.WHERE, node.where))
            self._attach_columns(usages, stmt, scope, local)

    def _walk_delete(self, node: DeleteNode, stmt, scope: ScopeContext, out) -> None:
        scope = self._enter_ctes(node.ctes, stmt, scope, out)
        items = [FromItem(table=t, alias=t.alias) for t in node.targets] + list(node.using_items)
        scope = scope.with_aliases(self._collect_aliases(items, scope))

        local: List[TableReference] = []
        for target in node.targets:
            ref = self._emit(target, ReferenceType.DELETE, "DELETE FROM", stmt, scope, out)
            if ref is not None:
                local.append(ref)
        self._walk_from_items(node.using_items, stmt, scope, ReferenceType.SELECT, "USING", local, out)
        self._walk_expression(node.where, stmt, scope, out)

        if self.options.extract_columns and local:
            self._attach_columns([(ColumnUsage.WHERE, node.where)], stmt, scope, local)

    def _walk_merge(self, node: MergeNode, stmt, scope: ScopeContext, out) -> None:
        scope = self._enter_ctes(node.ctes, stmt, scope, out)
        sources = [node.source] if node.source is not None else []
        items = sources[:]
        if node.target is not None:
            items.insert(0, FromItem(table=node.target, alias=node.target.alias))
        scope = scope.with_aliases(self._collect_aliases(items, scope))

        local: List[TableReference] = []
        if node.target is not None:
            target = self._emit(node.target, ReferenceType.MERGE, "MERGE INTO", stmt, scope, out)
            if target is not None:
                local.append(target)
        self._walk_from_items(sources, stmt, scope, ReferenceType.SELECT, "USING", local, out)
        self._walk_expression(node.on, stmt, scope, out)
        for expr in node.actions:
            self._walk_expression(expr, stmt, scope, out)

        if self.options.extract_columns and local:
            self._attach_columns([(ColumnUsage.JOIN, node.on)], stmt, scope, local)

    def _walk_from_items(
        self,
        items: List[FromItem],
        stmt: StatementContext,
        scope: ScopeContext,
        default_type: ReferenceType,
        default_context: str,
        local: List[TableReference],
        out: List[TableReference],
    ) -> None:
        for item in items:
            if item.table is not None:
                if item.join is not None:
                    ref = self._emit(item.table, ReferenceType.JOIN, f"{item.join} JOIN".strip(), stmt, scope, out)
                else:
                    ref = self._emit(item.table, default_type, default_context, stmt, scope, out)
                if ref is not None:
                    local.append(ref)
            elif item.subquery is not None:
                self._walk_query(item.subquery, stmt, scope.nested(), out)
            for expr in item.expressions:
                self._walk_expression(expr, stmt, scope, out)
            self._walk_expression(item.on, stmt, scope, out)

    def _walk_expression(self, expr: Optional[Expr], stmt, scope: ScopeContext, out) -> None:
        if expr is None:
            return
        if isinstance(expr, SubqueryExpr):
            self._walk_query(expr.query, stmt, scope.nested(), out)
        elif isinstance(expr, BinaryExpr):
            self._walk_expression(expr.left, stmt, scope, out)
            self._walk_expression(expr.right, stmt, scope, out)
        elif isinstance(expr, FuncCallExpr):
            for arg in expr.args:
                self._walk_expression(arg, stmt, scope, out)
        elif isinstance(expr, ParenExpr):
            self._walk_expression(expr.inner, stmt, scope, out)

    def _collect_aliases(self, items: List[FromItem], scope: ScopeContext) -> Dict[str, AliasTarget]:
        aliases: Dict[str, AliasTarget] = {}
        for item in items:
            if item.table is not None:
                target = AliasTarget("cte" if scope.is_cte(item.table) else "table", item.table)
                if item.alias:
                    aliases[normalize(item.alias)] = target
                aliases.setdefault(normalize(item.table.name), target)
            elif item.alias:
                aliases[normalize(item.alias)] = AliasTarget("subquery")
        return aliases

    def _emit(
        self,
        table: TableDesignator,
        ref_type: ReferenceType,
        context: str,
        stmt: StatementContext,
        scope: ScopeContext,
        out: List[TableReference],
    ) -> Optional[TableReference]:
        if scope.is_cte(table) or not is_valid_table_name(table.name):
            return None
        line = stmt.locator.line_for(_LINE_CLAUSES[ref_type], table.name, table.schema, stmt.span)
        ref = TableReference(
            table_name=table.name,
            alias=table.alias,
            schema_name=table.schema,
            reference_type=ref_type,
            file_path=stmt.file_path,
            line_number=line,
            context=context,
            statement_index=stmt.index,
        )
        out.append(ref)
        return ref

    # ------------------------------------------------------------------
    # Column usages
    # ------------------------------------------------------------------

    def _attach_columns(self, usages, stmt: StatementContext, scope: ScopeContext, local: List[TableReference]) -> None:
        budget = self.options.max_columns_per_query
        attached = 0
        for usage, expr in usages:
            for column in _column_refs(expr):
                if attached >= budget:
                    return
                owner = self._column_owner(column, scope, local)
                if owner is not None and self._add_column(owner, column.name, column.qualifier, usage, stmt):
                    attached += 1

    def _column_owner(
        self,
        column: ColumnRefExpr,
        scope: ScopeContext,
        local: List[TableReference],
    ) -> Optional[TableReference]:
        if column.qualifier:
            target = scope.alias_target(column.qualifier)
            if target is None or target.kind != "table":
                # CTE, derived table or an outer query's alias
                return None
            for ref in local:
                if normalize(ref.table_name) == normalize(target.table.name) and ref.alias == target.table.alias:
                    return ref
            return None
        tables = {qualified_key(ref.table_name, ref.schema_name) for ref in local}
        return local[0] if len(tables) == 1 else None

    def _add_column(
        self,
        ref: TableReference,
        name: str,
        qualifier: Optional[str],
        usage: ColumnUsage,
        stmt: StatementContext,
    ) -> bool:
        if ref.columns is None:
            ref.columns = []
        wanted = normalize(name)
        for existing in ref.columns:
            if normalize(existing.column_name) == wanted and existing.used_in == usage:
                return False
        line = stmt.locator.column_line(name, qualifier, stmt.span) or ref.line_number
        ref.columns.append(ColumnReference(
            column_name=name,
            table_name=ref.table_name,
            table_alias=qualifier,
            used_in=usage,
            line_number=line,
        ))
        return True

    # ------------------------------------------------------------------
    # Regex fallback
    # ------------------------------------------------------------------

    def _extract_with_regex(self, parsed: ParsedFile, file_path: str, locator: LineLocator) -> List[TableReference]:
        """
        Pattern-match table clauses over the comment-stripped text.

        Lines are re-resolved against the original source, so a match can
        never be reported on a comment line.
        """
        stripped = parsed.layout.stripped()
        stripped_layout = scan_sql(stripped, parsed.dialect)
        # Comment-only segments are skipped in both copies, so statement spans line up
        spans = parsed.layout.statement_spans()
        whole_file = (0, len(parsed.sql))

        found = []
        for pattern, ref_type in _FALLBACK_PATTERNS:
            for match in pattern.finditer(stripped):
                if stripped_layout.in_literal(match.start()):
                    continue
                if not self._is_table_clause(stripped, match, ref_type):
                    continue
                parts = split_dotted_name(match.group("name"))
                if not parts:
                    continue
                name = parts[-1]
                schema = parts[-2] if len(parts) > 1 else None
                if not is_valid_table_name(name):
                    continue

                if ref_type is ReferenceType.JOIN:
                    context = " ".join(match.group("qualifier").upper().split() + ["JOIN"])
                else:
                    context = _FIXED_CONTEXTS[ref_type]
                index = stripped_layout.statement_index_at(match.start())
                span = spans[index] if index < len(spans) else whole_file
                found.append((match.start(), TableReference(
                    table_name=name,
                    schema_name=schema,
                    reference_type=ref_type,
                    file_path=file_path,
                    line_number=locator.line_for(_LINE_CLAUSES[ref_type], name, schema, span),
                    context=context,
                    statement_index=index,
                )))

        found.sort(key=lambda pair: pair[0])
        return [ref for _, ref in found]

    def _is_table_clause(self, text: str, match, ref_type: ReferenceType) -> bool:
        previous = _previous_word(text, match.start())
        if ref_type is ReferenceType.SELECT:
            if previous in _NOT_A_FROM_CLAUSE or _inside_from_argument_function(text, match.start()):
                return False
        if ref_type is ReferenceType.UPDATE and previous in _NOT_AN_UPDATE_CLAUSE:
            return False
        if ref_type in (ReferenceType.SELECT, ReferenceType.JOIN) and _OPEN_PAREN_RE.match(text, match.end()):
            # Table-valued function call
            return False
        return True

    # ------------------------------------------------------------------
    # Final filtering
    # ------------------------------------------------------------------

    def _finalize(self, references: List[TableReference], file_scope: FileScope) -> List[TableReference]:
        kept: Dict[Tuple[str, ReferenceType, int], TableReference] = {}
        for ref in references:
            if not is_valid_table_name(ref.table_name):
                continue
            if file_scope.is_excluded(ref.table_name, ref.schema_name):
                continue
            key = (qualified_key(ref.table_name, ref.schema_name), ref.reference_type, ref.line_number)
            if key in kept:
                survivor = kept[key]
                for column in ref.columns or []:
                    if survivor.columns is None:
                        survivor.columns = []
                    if all(c.column_name != column.column_name or c.used_in != column.used_in for c in survivor.columns):
                        survivor.columns.append(column)
                continue
            kept[key] = ref
        return sorted(kept.values(), key=lambda r: (r.line_number, r.statement_index))
