"""
Identifier normalization and qualified-key resolution.

Every lookup into the workspace index goes through these helpers so that
`Orders`, `"orders"` and `[orders]` all land on the same key.
"""
from typing import Dict, List, Mapping, Optional, Tuple

_QUOTE_PAIRS = {'`': '`', '"': '"', '[': ']', "'": "'"}


def strip_quotes(identifier: str) -> str:
    """Remove one level of backtick, double-quote, single-quote or bracket quoting."""
    text = identifier.strip()
    if len(text) >= 2 and text[0] in _QUOTE_PAIRS and text[-1] == _QUOTE_PAIRS[text[0]]:
        return text[1:-1]
    return text


def normalize(name: str) -> str:
    return strip_quotes(name).lower()


def qualified_key(name: str, schema: Optional[str] = None) -> str:
    """Index key for a table: `schema.name` when a schema is present, else `name`."""
    if schema:
        return f"{normalize(schema)}.{normalize(name)}"
    return normalize(name)


def display_name(name: str, schema: Optional[str] = None) -> str:
    """Case-preserving qualified name for presentation."""
    if schema:
        return f"{strip_quotes(schema)}.{strip_quotes(name)}"
    return strip_quotes(name)


def parse_qualified_key(key: str) -> Tuple[Optional[str], str]:
    """Split a key produced by qualified_key back into (schema, name)."""
    schema, dot, name = key.rpartition(".")
    if not dot:
        return None, key
    return schema, name


def split_dotted_name(text: str) -> List[str]:
    """
    Split `a.b.c` into its parts, honoring quoted parts that contain dots.

    Quotes are stripped from each part.
    """
    parts: List[str] = []
    current: List[str] = []
    closing: Optional[str] = None
    for char in text:
        if closing:
            current.append(char)
            if char == closing:
                closing = None
        elif char in _QUOTE_PAIRS:
            closing = _QUOTE_PAIRS[char]
            current.append(char)
        elif char == ".":
            parts.append(strip_quotes("".join(current)))
            current = []
        elif not char.isspace():
            current.append(char)
    parts.append(strip_quotes("".join(current)))
    return [p for p in parts if p]


class KeyResolver:
    """
    Resolves (name, schema) pairs against a key -> entries mapping.

    Exact qualified key first. Failing that, unqualified entries with the same
    bare name. An unqualified lookup may also land on a schema-qualified key;
    ties are broken by schema name so the result is deterministic.
    """

    def __init__(self, mapping: Mapping[str, list]):
        self._mapping = mapping
        self._by_bare_name: Dict[str, List[str]] = {}
        for key, entries in mapping.items():
            if not entries:
                continue
            _, bare = parse_qualified_key(key)
            self._by_bare_name.setdefault(bare, []).append(key)
        for keys in self._by_bare_name.values():
            # Unqualified keys sort before qualified ones
            keys.sort(key=lambda k: ("." in k, k))

    def resolve(self, name: str, schema: Optional[str] = None) -> Optional[str]:
        key = qualified_key(name, schema)
        if self._mapping.get(key):
            return key
        bare = normalize(name)
        candidates = self._by_bare_name.get(bare, [])
        if not candidates:
            return None
        if schema:
            return bare if bare in candidates else None
        return candidates[0]

    def candidates(self, name: str, schema: Optional[str] = None) -> List[str]:
        """All keys a lookup could land on, best match first."""
        best = self.resolve(name, schema)
        if best is None:
            return []
        if schema:
            return [best]
        return [best] + [k for k in self._by_bare_name.get(normalize(name), []) if k != best]
