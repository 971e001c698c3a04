"""
Translation from sqlglot expression trees into the internal node variants.

This is the only module that knows how sqlglot shapes its trees. Argument
names that moved between sqlglot releases are probed here and nowhere else.
"""
import logging
from typing import List, Optional

from sqlglot import exp

from .ast_nodes import (
    BinaryExpr,
    ColumnDefNode,
    ColumnRefExpr,
    CreateNode,
    CteNode,
    DeleteNode,
    Expr,
    ForeignKeyNode,
    FromItem,
    FuncCallExpr,
    InsertNode,
    MergeNode,
    OtherStatement,
    ParenExpr,
    QueryNode,
    SelectNode,
    SetOperationNode,
    StatementNode,
    SubqueryExpr,
    TableDesignator,
    UpdateNode,
)
from .identifiers import split_dotted_name

logger = logging.getLogger(__name__)

SET_OPERATIONS = (exp.Union, exp.Intersect, exp.Except)
QUERY_TYPES = (exp.Select,) + SET_OPERATIONS

# Leaves that can never hide a table or a column
_LEAF_TYPES = (exp.Star, exp.Literal, exp.Null, exp.Boolean, exp.Identifier, exp.DataType)


def _arg(node: exp.Expression, name: str):
    value = node.args.get(name)
    if value is None:
        value = node.args.get(f"{name}_")
    return value


def _as_list(value) -> list:
    if isinstance(value, (list, tuple)):
        return [v for v in value if v is not None]
    if isinstance(value, (exp.Expression, str)):
        return [value]
    return []


def _names(items) -> List[str]:
    names = []
    for item in _as_list(items):
        if isinstance(item, exp.Ordered):
            item = item.this
        if isinstance(item, str):
            name = item
        else:
            name = item.name if item is not None else ""
        if name:
            names.append(name)
    return names


# ----------------------------------------------------------------------
# Table designators
# ----------------------------------------------------------------------

def designator_from(node) -> Optional[TableDesignator]:
    """
    Build a TableDesignator from whatever shape names a table.

    Accepts strings, lists (first element), Schema wrappers, Table, Dot,
    Column and bare identifiers. Returns None for table functions and
    anything else that is not a plain table name.
    """
    if node is None:
        return None
    if isinstance(node, (list, tuple)):
        return designator_from(node[0]) if node else None
    if isinstance(node, str):
        parts = split_dotted_name(node)
        if not parts:
            return None
        return TableDesignator(
            name=parts[-1],
            schema=parts[-2] if len(parts) > 1 else None,
            catalog=parts[-3] if len(parts) > 2 else None,
        )
    if isinstance(node, exp.Schema):
        return designator_from(node.this)
    if isinstance(node, exp.Table):
        if not isinstance(node.this, (exp.Identifier, exp.Var, exp.Dot)):
            return None
        name = node.name
        if not name:
            return None
        return TableDesignator(
            name=name,
            schema=node.text("db") or None,
            catalog=node.text("catalog") or None,
            alias=node.alias or None,
        )
    if isinstance(node, exp.Column):
        return TableDesignator(name=node.name, schema=node.text("table") or None)
    if isinstance(node, exp.Dot):
        qualifier = node.this.name if node.this is not None else ""
        return TableDesignator(name=node.name, schema=qualifier or None)
    if isinstance(node, (exp.Identifier, exp.Var)):
        return TableDesignator(name=node.name) if node.name else None
    return None


# ----------------------------------------------------------------------
# Expressions
# ----------------------------------------------------------------------

def translate_expr(node) -> Optional[Expr]:
    if node is None or isinstance(node, _LEAF_TYPES):
        return None
    if isinstance(node, (exp.Subquery,) + QUERY_TYPES):
        return SubqueryExpr(query=translate_query(node))
    if isinstance(node, exp.Column):
        if isinstance(node.this, exp.Star):
            return None
        return ColumnRefExpr(name=node.name, qualifier=node.text("table") or None)
    if isinstance(node, (exp.Alias, exp.Ordered)):
        return translate_expr(node.this)
    if isinstance(node, exp.Paren):
        return ParenExpr(inner=translate_expr(node.this))
    if isinstance(node, exp.Binary):
        return BinaryExpr(op=node.key, left=translate_expr(node.left), right=translate_expr(node.right))

    args = [a for a in (translate_expr(child) for child in node.iter_expressions()) if a is not None]
    name = node.name if isinstance(node, exp.Anonymous) else node.key
    return FuncCallExpr(name=(name or node.key).upper(), args=args)


def _translate_exprs(nodes) -> List[Expr]:
    return [e for e in (translate_expr(n) for n in _as_list(nodes)) if e is not None]


def _clause(node: exp.Expression, name: str) -> Optional[Expr]:
    clause = node.args.get(name)
    if clause is None:
        return None
    return translate_expr(clause.this)


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------

def translate_query(node) -> Optional[QueryNode]:
    while isinstance(node, (exp.Subquery, exp.Paren)):
        node = node.this
    if isinstance(node, exp.Select):
        return _translate_select(node)
    if isinstance(node, SET_OPERATIONS):
        return SetOperationNode(
            op=node.key,
            left=translate_query(node.this),
            right=translate_query(node.expression),
            ctes=_translate_ctes(node),
        )
    return None


def _translate_ctes(node: exp.Expression) -> List[CteNode]:
    with_ = _arg(node, "with")
    if with_ is None:
        return []
    recursive = bool(with_.args.get("recursive"))
    return [
        CteNode(name=cte.alias, query=translate_query(cte.this), recursive=recursive)
        for cte in with_.expressions
        if cte.alias
    ]


def _from_sources(from_) -> list:
    if from_ is None:
        return []
    if from_.this is not None:
        return [from_.this]
    return list(from_.expressions)


def _translate_select(node: exp.Select) -> SelectNode:
    from_items: List[FromItem] = []
    for source in _from_sources(_arg(node, "from")):
        from_items.extend(_translate_source(source))
    for join in node.args.get("joins") or []:
        from_items.extend(_translate_join(join))

    group = node.args.get("group")
    order = node.args.get("order")
    return SelectNode(
        ctes=_translate_ctes(node),
        from_items=from_items,
        columns=_translate_exprs(node.expressions),
        where=_clause(node, "where"),
        group_by=_translate_exprs(group.expressions) if group is not None else [],
        having=_clause(node, "having"),
        order_by=_translate_exprs(order.expressions) if order is not None else [],
    )


def _translate_source(node, join: Optional[str] = None, on: Optional[Expr] = None) -> List[FromItem]:
    if node is None:
        return []
    if isinstance(node, exp.Table):
        designator = designator_from(node)
        if designator is not None:
            items = [FromItem(table=designator, alias=designator.alias, join=join, on=on)]
        else:
            # Table-valued function
            items = [FromItem(alias=node.alias or None, join=join, on=on, expressions=_translate_exprs(node.this))]
        for inner in node.args.get("joins") or []:
            items.extend(_translate_join(inner))
        return items
    if isinstance(node, (exp.Subquery,) + QUERY_TYPES):
        return [FromItem(subquery=translate_query(node), alias=node.alias or None, join=join, on=on)]
    # LATERAL, UNNEST, VALUES and friends
    return [FromItem(alias=node.alias or None, join=join, on=on, expressions=_translate_exprs(node))]


def _translate_join(join: exp.Join) -> List[FromItem]:
    qualifier = " ".join(
        part for part in (join.text("method"), join.text("side"), join.text("kind")) if part
    ).upper()
    on_node = join.args.get("on")
    is_join = bool(qualifier) or on_node is not None or bool(join.args.get("using"))
    return _translate_source(
        join.this,
        join=qualifier if is_join else None,
        on=translate_expr(on_node),
    )


# ----------------------------------------------------------------------
# Statements
# ----------------------------------------------------------------------

def translate_statement(node: exp.Expression) -> StatementNode:
    """Translate one parsed statement. Unknown statement kinds become OtherStatement."""
    if isinstance(node, (exp.Subquery,) + QUERY_TYPES):
        query = translate_query(node)
        return query if query is not None else OtherStatement(kind=node.key)
    if isinstance(node, exp.Insert):
        return _translate_insert(node)
    if isinstance(node, exp.Update):
        return _translate_update(node)
    if isinstance(node, exp.Delete):
        return _translate_delete(node)
    if isinstance(node, exp.Merge):
        return _translate_merge(node)
    if isinstance(node, exp.Create):
        return _translate_create(node)
    return OtherStatement(kind=node.key)


def _translate_insert(node: exp.Insert) -> InsertNode:
    target_node = node.this
    columns = _names(target_node.expressions) if isinstance(target_node, exp.Schema) else []
    return InsertNode(
        target=designator_from(target_node),
        columns=columns,
        source=translate_query(node.expression) if node.expression is not None else None,
        ctes=_translate_ctes(node),
    )


def _translate_update(node: exp.Update) -> UpdateNode:
    from_items: List[FromItem] = []
    if isinstance(node.this, exp.Table):
        for join in node.this.args.get("joins") or []:
            from_items.extend(_translate_join(join))
    for source in _from_sources(_arg(node, "from")):
        from_items.extend(_translate_source(source))
    return UpdateNode(
        target=designator_from(node.this),
        assignments=_translate_exprs(node.expressions),
        from_items=from_items,
        where=_clause(node, "where"),
        ctes=_translate_ctes(node),
    )


def _translate_delete(node: exp.Delete) -> DeleteNode:
    targets = [d for d in (designator_from(t) for t in _as_list(node.args.get("tables"))) if d]
    if not targets:
        target = designator_from(node.this)
        targets = [target] if target else []

    using_items: List[FromItem] = []
    if isinstance(node.this, exp.Table):
        for join in node.this.args.get("joins") or []:
            using_items.extend(_translate_join(join))
    for source in _as_list(node.args.get("using")):
        using_items.extend(_translate_source(source))
    return DeleteNode(
        targets=targets,
        using_items=using_items,
        where=_clause(node, "where"),
        ctes=_translate_ctes(node),
    )


def _translate_merge(node: exp.Merge) -> MergeNode:
    sources = _translate_source(node.args.get("using"))
    actions = node.args.get("whens")
    if actions is None:
        actions = node.expressions
    return MergeNode(
        target=designator_from(node.this),
        source=sources[0] if sources else None,
        on=translate_expr(node.args.get("on")),
        actions=_translate_exprs(actions),
        ctes=_translate_ctes(node),
    )


def _translate_create(node: exp.Create) -> CreateNode:
    kind = (node.text("kind") or "").upper()
    this = node.this
    create = CreateNode(
        kind="view" if "VIEW" in kind else "table" if kind == "TABLE" else kind.lower(),
        target=designator_from(this.this if isinstance(this, exp.Schema) else this),
        query=translate_query(node.expression) if node.expression is not None else None,
    )

    properties = node.args.get("properties")
    property_list = properties.expressions if properties is not None else []
    create.materialized = "MATERIALIZED" in kind or any(
        p.key == "materializedproperty" for p in property_list
    )

    if isinstance(this, exp.Schema):
        for element in this.expressions:
            _apply_schema_element(create, element)
    return create


def _apply_schema_element(create: CreateNode, element) -> None:
    if isinstance(element, exp.ColumnDef):
        create.columns.append(_translate_column_def(element))
    elif isinstance(element, exp.PrimaryKey):
        create.primary_key.extend(_names(element.expressions))
    elif isinstance(element, exp.ForeignKey):
        reference = element.args.get("reference")
        if reference is not None:
            create.foreign_keys.append(_translate_reference(_names(element.expressions), reference))
    elif isinstance(element, exp.Constraint):
        for inner in element.expressions:
            _apply_schema_element(create, inner)
    elif isinstance(element, (exp.Identifier, exp.Column)):
        create.view_columns.append(element.name)


def _translate_column_def(node: exp.ColumnDef) -> ColumnDefNode:
    kind = node.args.get("kind")
    column = ColumnDefNode(name=node.name, data_type=kind.sql().upper() if kind is not None else "UNKNOWN")
    for constraint in node.args.get("constraints") or []:
        constraint_kind = constraint.args.get("kind") if isinstance(constraint, exp.ColumnConstraint) else constraint
        if isinstance(constraint_kind, exp.NotNullColumnConstraint):
            column.nullable = bool(constraint_kind.args.get("allow_null"))
        elif isinstance(constraint_kind, exp.PrimaryKeyColumnConstraint):
            column.primary_key = True
        elif isinstance(constraint_kind, exp.Reference):
            column.references = _translate_reference([column.name], constraint_kind)
    return column


def _translate_reference(columns: List[str], reference: exp.Reference) -> ForeignKeyNode:
    target = reference.this
    ref_columns = _names(target.expressions) if isinstance(target, exp.Schema) else []
    if not ref_columns:
        ref_columns = _names(reference.expressions)
    return ForeignKeyNode(columns=columns, table=designator_from(target), ref_columns=ref_columns)
