"""
Lexical layout of a SQL source file.

One linear pass marks comments, quoted text and top-level semicolons. The
parser never sees this; it exists so that text searches (line numbers,
regex fallbacks, statement counting) can tell code apart from comments
and string literals.
"""
import re
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqldeps.models.domain import DEFAULT_DIALECT, SqlDialect

Span = Tuple[int, int]

_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")


@dataclass
class SqlLayout:
    sql: str
    comment_spans: List[Span] = field(default_factory=list)
    quoted_spans: List[Span] = field(default_factory=list)  # string literals and quoted identifiers
    literal_spans: List[Span] = field(default_factory=list)  # string literals only
    semicolons: List[int] = field(default_factory=list)
    line_starts: List[int] = field(default_factory=lambda: [0])

    def __post_init__(self):
        self._comment_starts = [s for s, _ in self.comment_spans]
        self._quoted_starts = [s for s, _ in self.quoted_spans]
        self._literal_starts = [s for s, _ in self.literal_spans]
        self._statements: Optional[List[Span]] = None
        self._masked: Optional[str] = None

    # ------------------------------------------------------------------
    # Offsets and lines
    # ------------------------------------------------------------------

    def line_at(self, offset: int) -> int:
        """1-based line number of a character offset."""
        return bisect_right(self.line_starts, max(offset, 0))

    def line_text(self, line: int) -> str:
        start = self.line_starts[line - 1]
        end = self.line_starts[line] - 1 if line < len(self.line_starts) else len(self.sql)
        return self.sql[start:end]

    @property
    def line_count(self) -> int:
        return len(self.line_starts)

    def in_comment(self, offset: int) -> bool:
        return _in_spans(offset, self.comment_spans, self._comment_starts)

    def in_quoted(self, offset: int) -> bool:
        return _in_spans(offset, self.quoted_spans, self._quoted_starts)

    def in_literal(self, offset: int) -> bool:
        return _in_spans(offset, self.literal_spans, self._literal_starts)

    def is_code(self, offset: int) -> bool:
        """Outside comments and string literals; quoted identifiers count as code."""
        return not self.in_comment(offset) and not self.in_literal(offset)

    def is_comment_line(self, line: int) -> bool:
        """True when every non-blank character on the line sits inside a comment."""
        start = self.line_starts[line - 1]
        text = self.line_text(line)
        return bool(text.strip()) and not self.masked()[start:start + len(text)].strip()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def statement_spans(self) -> List[Span]:
        """Spans of the non-empty statements, split on top-level semicolons."""
        if self._statements is None:
            bounds = [0] + [pos + 1 for pos in self.semicolons]
            ends = list(self.semicolons) + [len(self.sql)]
            spans = []
            for start, end in zip(bounds, ends):
                if self._has_code(start, end):
                    spans.append((start, end))
            self._statements = spans
        return self._statements

    def statement_index_at(self, offset: int) -> int:
        """0-based index of the statement containing (or preceding) an offset."""
        spans = self.statement_spans()
        if not spans:
            return 0
        starts = [s for s, _ in spans]
        return max(bisect_right(starts, offset) - 1, 0)

    def statement_text(self, index: int) -> str:
        spans = self.statement_spans()
        if 0 <= index < len(spans):
            start, end = spans[index]
            return self.sql[start:end]
        return ""

    def _has_code(self, start: int, end: int) -> bool:
        return bool(self.masked()[start:end].strip())

    # ------------------------------------------------------------------
    # Derived text
    # ------------------------------------------------------------------

    def stripped(self) -> str:
        """Source with comments removed. Newlines inside block comments are kept."""
        pieces = []
        cursor = 0
        for start, end in self.comment_spans:
            pieces.append(self.sql[cursor:start])
            pieces.append(" " + "\n" * self.sql.count("\n", start, end))
            cursor = end
        pieces.append(self.sql[cursor:])
        return "".join(pieces)

    def masked(self) -> str:
        """Source with comment characters blanked; offsets and lines are unchanged."""
        if self._masked is None:
            pieces = []
            cursor = 0
            for start, end in self.comment_spans:
                pieces.append(self.sql[cursor:start])
                pieces.append(re.sub(r"[^\n]", " ", self.sql[start:end]))
                cursor = end
            pieces.append(self.sql[cursor:])
            self._masked = "".join(pieces)
        return self._masked


def _in_spans(offset: int, spans: List[Span], starts: List[int]) -> bool:
    i = bisect_right(starts, offset) - 1
    return i >= 0 and spans[i][0] <= offset < spans[i][1]


def scan_sql(sql: str, dialect: SqlDialect = DEFAULT_DIALECT) -> SqlLayout:
    """Build the layout of a SQL source in a single pass."""
    comments: List[Span] = []
    quoted: List[Span] = []
    literals: List[Span] = []
    semicolons: List[int] = []
    n = len(sql)
    i = 0
    while i < n:
        char = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""
        if (char == "-" and nxt == "-") or (char == "#" and dialect.hash_comments):
            end = sql.find("\n", i)
            end = n if end < 0 else end
            comments.append((i, end))
            i = end
        elif char == "/" and nxt == "*":
            end = sql.find("*/", i + 2)
            end = n if end < 0 else end + 2
            comments.append((i, end))
            i = end
        elif char == "'":
            end = _scan_quoted(sql, i, "'", dialect.backslash_escapes)
            quoted.append((i, end))
            literals.append((i, end))
            i = end
        elif char in ('"', "`"):
            end = _scan_quoted(sql, i, char, False)
            quoted.append((i, end))
            i = end
        elif char == "[" and dialect.bracket_identifiers:
            end = sql.find("]", i + 1)
            end = n if end < 0 else end + 1
            quoted.append((i, end))
            i = end
        elif char == "$" and dialect.dollar_quotes and _DOLLAR_TAG.match(sql, i):
            tag = _DOLLAR_TAG.match(sql, i).group(0)
            end = sql.find(tag, i + len(tag))
            end = n if end < 0 else end + len(tag)
            quoted.append((i, end))
            literals.append((i, end))
            i = end
        else:
            if char == ";":
                semicolons.append(i)
            i += 1

    line_starts = [0] + [m.end() for m in re.finditer("\n", sql)]
    return SqlLayout(
        sql=sql,
        comment_spans=comments,
        quoted_spans=quoted,
        literal_spans=literals,
        semicolons=semicolons,
        line_starts=line_starts,
    )


def _scan_quoted(sql: str, start: int, quote: str, backslash: bool) -> int:
    """Return the offset just past the closing quote ('' style doubling honored)."""
    n = len(sql)
    j = start + 1
    while j < n:
        char = sql[j]
        if backslash and char == "\\":
            j += 2
            continue
        if char == quote:
            if j + 1 < n and sql[j + 1] == quote:
                j += 2
                continue
            return j + 1
        j += 1
    return n


def strip_comments(sql: str, dialect: SqlDialect = DEFAULT_DIALECT) -> str:
    return scan_sql(sql, dialect).stripped()


def find_matching_paren(text: str, open_index: int) -> int:
    """
    Offset of the parenthesis closing the one at open_index, or -1.

    Single-quoted literals are skipped; comments must already be removed.
    """
    depth = 0
    i = open_index
    n = len(text)
    while i < n:
        char = text[i]
        if char == "'":
            i = _scan_quoted(text, i, "'", False)
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1
