"""
Words that can never be table names.

The regex fallback matches `FROM <word>` and friends over raw text, so
keywords, built-in functions and literals have to be filtered out.
"""
import logging

logger = logging.getLogger(__name__)

SQL_KEYWORDS = {
    'select', 'from', 'where', 'and', 'or', 'not', 'in', 'is', 'as', 'on',
    'join', 'inner', 'outer', 'left', 'right', 'full', 'cross', 'natural',
    'group', 'by', 'order', 'having', 'limit', 'offset', 'fetch', 'top',
    'union', 'intersect', 'except', 'minus', 'all', 'any', 'some', 'distinct',
    'insert', 'into', 'values', 'update', 'set', 'delete', 'merge', 'using',
    'create', 'alter', 'drop', 'truncate', 'rename', 'replace', 'table', 'view',
    'index', 'schema', 'database', 'temporary', 'temp', 'materialized', 'if',
    'exists', 'case', 'when', 'then', 'else', 'end', 'begin', 'declare',
    'with', 'recursive', 'lateral', 'window', 'over', 'partition', 'rows',
    'range', 'between', 'like', 'ilike', 'escape', 'asc', 'desc', 'nulls',
    'first', 'last', 'primary', 'foreign', 'key', 'references', 'constraint',
    'unique', 'check', 'default', 'null', 'true', 'false', 'unknown',
    'grant', 'revoke', 'commit', 'rollback', 'transaction', 'returning',
    'call', 'exec', 'execute', 'return', 'returns', 'procedure', 'function',
    'trigger', 'cursor', 'loop', 'while', 'for', 'each', 'row', 'do',
    'dual', 'only', 'unnest', 'generate_series', 'tablesample', 'sample',
    'qualify', 'pivot', 'unpivot', 'option', 'options', 'go', 'use',
}

SQL_FUNCTIONS = {
    'count', 'sum', 'avg', 'min', 'max', 'array_agg', 'string_agg', 'group_concat',
    'coalesce', 'nullif', 'ifnull', 'isnull', 'nvl', 'cast', 'convert', 'try_cast',
    'extract', 'substring', 'substr', 'trim', 'ltrim', 'rtrim', 'position',
    'upper', 'lower', 'length', 'concat', 'round', 'floor', 'ceil', 'abs',
    'now', 'current_date', 'current_time', 'current_timestamp', 'date', 'time',
    'timestamp', 'interval', 'year', 'month', 'day', 'hour', 'minute', 'second',
    'row_number', 'rank', 'dense_rank', 'lag', 'lead', 'first_value', 'last_value',
    'json_extract', 'json_value', 'json_table', 'openjson', 'flatten', 'explode',
}

RESERVED_WORDS = SQL_KEYWORDS | SQL_FUNCTIONS

# Functions whose argument syntax contains a FROM keyword, e.g. EXTRACT(YEAR FROM d)
FROM_ARGUMENT_FUNCTIONS = ('extract', 'substring', 'trim', 'position')


def is_reserved_word(word: str) -> bool:
    return word.lower() in RESERVED_WORDS


def is_valid_table_name(name: str) -> bool:
    """
    Check if a name could be a real table reference.

    Args:
        name: Bare table name, quotes already removed

    Returns:
        True unless the name is a keyword, function, number, variable or too short
    """
    if not name:
        return False

    if len(name) < 2:
        return False

    if name[0] in ('@', ':', '$', '?'):
        logger.debug(f"Skipping variable: {name}")
        return False

    if name.replace('_', '').replace('.', '').isdigit():
        return False

    if is_reserved_word(name):
        logger.debug(f"Skipping reserved word: {name}")
        return False

    return True
