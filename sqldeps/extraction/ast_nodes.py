"""
Parser-independent statement and expression nodes.

sqlglot trees are translated into this closed set of variants once, at the
parsing boundary; the extractors only ever pattern-match on these classes.
"""
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Iterator, List, Optional, Union

from .identifiers import qualified_key


@dataclass(frozen=True)
class TableDesignator:
    """A table named in SQL: catalog.schema.name plus an optional alias."""
    name: str
    schema: Optional[str] = None
    catalog: Optional[str] = None
    alias: Optional[str] = None

    @property
    def key(self) -> str:
        return qualified_key(self.name, self.schema)


# ----------------------------------------------------------------------
# Expressions
# ----------------------------------------------------------------------

@dataclass
class ColumnRefExpr:
    name: str
    qualifier: Optional[str] = None


@dataclass
class BinaryExpr:
    op: str
    left: Optional["Expr"] = None
    right: Optional["Expr"] = None


@dataclass
class FuncCallExpr:
    """Function calls and every other compound expression (CASE, IN, EXISTS, ...)."""
    name: str
    args: List["Expr"] = field(default_factory=list)


@dataclass
class ParenExpr:
    inner: Optional["Expr"] = None


@dataclass
class SubqueryExpr:
    query: Optional["QueryNode"] = None


Expr = Union[ColumnRefExpr, BinaryExpr, FuncCallExpr, ParenExpr, SubqueryExpr]


# ----------------------------------------------------------------------
# Queries and statements
# ----------------------------------------------------------------------

@dataclass
class CteNode:
    name: str
    query: Optional["QueryNode"] = None
    recursive: bool = False


@dataclass
class FromItem:
    """One source in a FROM/USING list: a table, a derived table or something else."""
    table: Optional[TableDesignator] = None
    subquery: Optional["QueryNode"] = None
    alias: Optional[str] = None
    join: Optional[str] = None  # join qualifier, e.g. "LEFT", "INNER"; None for plain sources
    on: Optional[Expr] = None
    expressions: List[Expr] = field(default_factory=list)  # table functions, LATERAL, VALUES


@dataclass
class SelectNode:
    ctes: List[CteNode] = field(default_factory=list)
    from_items: List[FromItem] = field(default_factory=list)
    columns: List[Expr] = field(default_factory=list)
    where: Optional[Expr] = None
    group_by: List[Expr] = field(default_factory=list)
    having: Optional[Expr] = None
    order_by: List[Expr] = field(default_factory=list)


@dataclass
class SetOperationNode:
    """UNION / INTERSECT / EXCEPT chain link."""
    op: str
    left: Optional["QueryNode"] = None
    right: Optional["QueryNode"] = None
    ctes: List[CteNode] = field(default_factory=list)


QueryNode = Union[SelectNode, SetOperationNode]


@dataclass
class InsertNode:
    target: Optional[TableDesignator] = None
    columns: List[str] = field(default_factory=list)
    source: Optional[QueryNode] = None
    ctes: List[CteNode] = field(default_factory=list)


@dataclass
class UpdateNode:
    target: Optional[TableDesignator] = None
    assignments: List[Expr] = field(default_factory=list)
    from_items: List[FromItem] = field(default_factory=list)
    where: Optional[Expr] = None
    ctes: List[CteNode] = field(default_factory=list)


@dataclass
class DeleteNode:
    targets: List[TableDesignator] = field(default_factory=list)
    using_items: List[FromItem] = field(default_factory=list)
    where: Optional[Expr] = None
    ctes: List[CteNode] = field(default_factory=list)


@dataclass
class MergeNode:
    target: Optional[TableDesignator] = None
    source: Optional[FromItem] = None
    on: Optional[Expr] = None
    actions: List[Expr] = field(default_factory=list)
    ctes: List[CteNode] = field(default_factory=list)


@dataclass
class ForeignKeyNode:
    columns: List[str]
    table: Optional[TableDesignator]
    ref_columns: List[str]


@dataclass
class ColumnDefNode:
    name: str
    data_type: str
    nullable: bool = True
    primary_key: bool = False
    references: Optional[ForeignKeyNode] = None


@dataclass
class CreateNode:
    kind: str  # "table", "view", or the raw kind for other objects
    target: Optional[TableDesignator] = None
    columns: List[ColumnDefNode] = field(default_factory=list)
    view_columns: List[str] = field(default_factory=list)
    primary_key: List[str] = field(default_factory=list)
    foreign_keys: List[ForeignKeyNode] = field(default_factory=list)
    query: Optional[QueryNode] = None
    materialized: bool = False


@dataclass
class OtherStatement:
    """Any statement the extractors do not look into (DROP, GRANT, SET, ...)."""
    kind: str


StatementNode = Union[SelectNode, SetOperationNode, InsertNode, UpdateNode, DeleteNode, MergeNode, CreateNode, OtherStatement]


def iter_children(node) -> Iterator:
    """Yield every node held directly by a node's fields, lists included."""
    if not is_dataclass(node):
        return
    for f in fields(node):
        value = getattr(node, f.name)
        if isinstance(value, list):
            for item in value:
                if is_dataclass(item):
                    yield item
        elif is_dataclass(value):
            yield value


def walk(node) -> Iterator:
    """Depth-first walk over a node and all of its descendants."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(list(iter_children(current))))
