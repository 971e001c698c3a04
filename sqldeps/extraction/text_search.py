"""
Regex building blocks and source line lookup.

Line numbers are always taken from the original, comment-intact source.
A match only counts when both its keyword and its name sit in code, never
inside a comment or a string literal.
"""
import re
from typing import Dict, List, Optional, Tuple

from .identifiers import normalize, strip_quotes
from .sql_text import Span, SqlLayout

IDENT = r'(?:`[^`\n]+`|"[^"\n]+"|\[[^\]\n]+\]|[A-Za-z_][\w$]*)'
QUALIFIED_NAME = rf'{IDENT}(?:\s*\.\s*{IDENT}){{0,2}}'

CREATE_PREFIX = (
    r'\bCREATE\s+(?:OR\s+REPLACE\s+)?(?:(?:GLOBAL|LOCAL)\s+)?'
    r'(?:(?:TEMP|TEMPORARY|TRANSIENT|VOLATILE|EXTERNAL)\s+)?(?:MATERIALIZED\s+)?'
    r'(?P<kind>TABLE|VIEW)\s+(?:IF\s+NOT\s+EXISTS\s+)?'
)

CREATE_OBJECT_RE = re.compile(CREATE_PREFIX + rf'(?P<name>{QUALIFIED_NAME})', re.IGNORECASE)

# Clause keywords that introduce a table name, by reference kind
CLAUSE_PREFIXES = {
    'from': r'\b(?:FROM|USING)\s+(?:ONLY\s+)?',
    'join': r'\bJOIN\s+',
    'insert': r'\b(?:INTO|INSERT(?:\s+OVERWRITE)?)\s+(?:TABLE\s+)?',
    'update': r'\bUPDATE\s+(?:ONLY\s+)?',
    'delete': r'\b(?:DELETE\s+(?:FROM\s+)?|FROM\s+)',
    'merge': r'\bMERGE\s+(?:INTO\s+)?',
    'create': CREATE_PREFIX,
}


def name_regex(name: str, schema: Optional[str] = None) -> str:
    """Regex matching a (possibly quoted, possibly qualified) table name."""
    escaped = re.escape(name)
    quoted = rf'(?:`{escaped}`|"{escaped}"|\[{escaped}\]|{escaped})'
    if schema:
        s = re.escape(schema)
        prefix = rf'(?:{IDENT}\s*\.\s*)?(?:`{s}`|"{s}"|\[{s}\]|{s})\s*\.\s*'
    else:
        prefix = rf'(?:{IDENT}\s*\.\s*){{0,2}}'
    return rf'(?P<name>{prefix}{quoted})(?![\w$])'


class LineLocator:
    """
    Finds where a name appears in the source, one occurrence at a time.

    Repeated lookups of the same (clause, name, span) walk forward through
    successive occurrences, so a table mentioned twice in a statement gets
    two distinct lines.
    """

    def __init__(self, layout: SqlLayout):
        self.layout = layout
        self._cache: Dict[Tuple, List[int]] = {}
        self._cursor: Dict[Tuple, int] = {}

    def find(self, clause: str, name: str, schema: Optional[str], span: Span, anchor: str = "name") -> Optional[int]:
        key = (clause, normalize(name), normalize(schema or ""), span, anchor)
        occurrence = self._cursor.get(key, 0)
        self._cursor[key] = occurrence + 1

        matches = self._clause_matches(clause, name, schema, span, anchor)
        if not matches:
            matches = self._word_matches(name, schema, span)
        if not matches:
            return None
        return matches[min(occurrence, len(matches) - 1)]

    def line_for(self, clause: str, name: str, schema: Optional[str], span: Span, anchor: str = "name") -> int:
        offset = self.find(clause, name, schema, span, anchor)
        if offset is None:
            offset = self.first_code_offset(span)
        return self.layout.line_at(offset)

    def column_line(self, column: str, qualifier: Optional[str], span: Span) -> Optional[int]:
        """Line of the first code occurrence of a (possibly qualified) column."""
        key = ("column", normalize(column), normalize(qualifier or ""), span)
        if key not in self._cache:
            escaped = re.escape(strip_quotes(column))
            target = rf'[`"\[]?{escaped}[`"\]]?(?![\w$])'
            if qualifier:
                pattern = re.compile(rf'(?<![\w$.])[`"\[]?{re.escape(strip_quotes(qualifier))}[`"\]]?\s*\.\s*' + target, re.IGNORECASE)
            else:
                pattern = re.compile(r'(?<![\w$])' + target, re.IGNORECASE)
            self._cache[key] = [
                match.start()
                for match in pattern.finditer(self.layout.sql, span[0], span[1])
                if self.layout.is_code(match.start())
            ]
        offsets = self._cache[key]
        return self.layout.line_at(offsets[0]) if offsets else None

    def first_code_offset(self, span: Span) -> int:
        match = re.compile(r'\S').search(self.layout.masked(), span[0], span[1])
        return match.start() if match else span[0]

    def _clause_matches(self, clause, name, schema, span, anchor) -> List[int]:
        key = ("clause", clause, normalize(name), normalize(schema or ""), span, anchor)
        if key not in self._cache:
            pattern = re.compile(CLAUSE_PREFIXES[clause] + name_regex(name, schema), re.IGNORECASE)
            offsets = []
            for match in pattern.finditer(self.layout.sql, span[0], span[1]):
                if self.layout.is_code(match.start()) and self.layout.is_code(match.start("name")):
                    offsets.append(match.start() if anchor == "clause" else match.start("name"))
            self._cache[key] = offsets
        return self._cache[key]

    def _word_matches(self, name, schema, span) -> List[int]:
        key = ("word", normalize(name), normalize(schema or ""), span)
        if key not in self._cache:
            pattern = re.compile(r'(?<![\w$.])' + name_regex(name, schema) + r'(?!\s*\.)', re.IGNORECASE)
            self._cache[key] = [
                match.start("name")
                for match in pattern.finditer(self.layout.sql, span[0], span[1])
                if self.layout.is_code(match.start("name"))
            ]
        return self._cache[key]
