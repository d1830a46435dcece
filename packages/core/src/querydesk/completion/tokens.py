"""Text analysis shared by the suggestion providers.

Completion works on incomplete SQL, so nothing here parses. The text before
the cursor is split into the partial word being typed and the "scope": the
current statement (or innermost subquery) with comments removed, string
literals blanked to ``''`` and closed parentheses collapsed to ``()``.
Providers then match the end of the scope with regular expressions.
"""

import re
from dataclasses import dataclass
from functools import lru_cache

from querydesk.sqltext import scan
from querydesk_models import DocumentPosition, SchemaSnapshot, TableMeta

IDENT = r'(?:"(?:[^"]|"")+"|[A-Za-z_][\w$]*)'

# Words that are never a table alias or a bare column reference
KEYWORDS = frozenset(
    {
        "ALL", "AND", "AS", "ASC", "BETWEEN", "BY", "CASE", "CROSS", "DELETE",
        "DESC", "DISTINCT", "ELSE", "END", "EXCEPT", "EXISTS", "FROM", "FULL",
        "GROUP", "HAVING", "ILIKE", "IN", "INNER", "INSERT", "INTERSECT", "INTO",
        "IS", "JOIN", "LATERAL", "LEFT", "LIKE", "LIMIT", "NATURAL", "NOT", "NULL",
        "OFFSET", "ON", "OR", "ORDER", "OUTER", "RETURNING", "RIGHT", "SELECT",
        "SET", "THEN", "UNION", "UPDATE", "USING", "VALUES", "WHEN", "WHERE", "WITH",
    }
)

KEYWORD_ALT = "|".join(sorted(KEYWORDS))

# Identifiers that must be double-quoted to be used as names
RESERVED_WORDS = KEYWORDS | frozenset(
    {
        "CONNECT", "DUAL", "LEVEL", "NOCACHE", "NOCYCLE", "PRIOR", "ROWID",
        "ROWNUM", "SIBLINGS", "START", "SYSDATE", "SYSTIMESTAMP", "TABLE", "USER",
    }
)

_PLAIN_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SUBQUERY_START = re.compile(r"\s*(?:SELECT|WITH|VALUES)\b", re.IGNORECASE)
_QUALIFIER = re.compile(rf"({IDENT})\.$")
_WORD = re.compile(r"\w*$")
_LEADING_WORD = re.compile(r"^\w*")

_CLAUSE = re.compile(
    r"\b(SELECT|FROM|JOIN|ON|USING|WHERE|GROUP\s+BY|ORDER\s+BY|HAVING|LIMIT|OFFSET"
    r"|SET|INTO|UPDATE|VALUES|RETURNING)\b",
    re.IGNORECASE,
)

_REF_START = re.compile(r"\b(FROM|JOIN|UPDATE|INTO)\s+", re.IGNORECASE)
_REF = re.compile(
    rf"(?P<first>{IDENT})(?:\s*\.\s*(?P<second>{IDENT}))?(?:\s+(?:AS\s+)?(?P<alias>{IDENT}))?",
    re.IGNORECASE,
)
_REF_SEPARATOR = re.compile(r"\s*,\s*")

_SELECT_LIST = re.compile(r"\bSELECT\s+(?:DISTINCT\s+)?(?P<list>.+?)\s+FROM\b", re.IGNORECASE | re.DOTALL)
_AGGREGATE = re.compile(r"^\w+\s*\(\s*(?:DISTINCT\s+)?(?P<arg>[^)]+?)\s*\)$", re.IGNORECASE)
_ALIAS_SUFFIX = re.compile(rf"\s+(?:AS\s+)?{IDENT}$", re.IGNORECASE)


def unquote(token: str) -> str:
    """Strip double quotes from a quoted identifier."""
    if len(token) >= 2 and token.startswith('"') and token.endswith('"'):
        return token[1:-1].replace('""', '"')
    return token


def needs_quotes(name: str) -> bool:
    """Whether a name must be double-quoted to be used as an identifier."""
    if name == "*":
        return False
    return not _PLAIN_IDENTIFIER.match(name) or name.upper() in RESERVED_WORDS


def quote_identifier(name: str, force: bool = False) -> str:
    if force or needs_quotes(name):
        return '"' + name.replace('"', '""') + '"'
    return name


def normalize(sql: str) -> str:
    """Drop comments and blank string literals, keeping quoted identifiers."""
    parts = []
    for segment in scan(sql):
        if segment.kind == "comment":
            parts.append(" ")
        elif segment.kind == "string":
            parts.append("''")
        else:
            parts.append(segment.text)
    return "".join(parts)


def _flatten(statement: str) -> str:
    levels: list[list[str]] = [[]]
    for ch in statement:
        if ch == "(":
            levels.append([])
        elif ch == ")" and len(levels) > 1:
            levels.pop()
            levels[-1].append("()")
        else:
            levels[-1].append(ch)

    texts = ["".join(level) for level in levels]
    # The innermost open subquery is a statement of its own
    for i in range(len(texts) - 1, 0, -1):
        if _SUBQUERY_START.match(texts[i]):
            return "(".join(texts[i:])
    return "(".join(texts)


def _is_open_literal(kind: str, text: str) -> bool:
    if kind == "comment":
        return text.startswith("--") or not text.endswith("*/")
    if kind != "string":
        return False
    if text.startswith("'"):
        return text.count("'") % 2 == 1
    return text.count("$") < 4


@dataclass(frozen=True)
class CursorContext:
    """What the providers know about the cursor position."""

    text: str
    cursor: int
    word: str = ""
    word_start: int = 0
    quoted: bool = False
    qualifier: str | None = None
    scope: str = ""
    statement: str = ""
    in_literal: bool = False

    @property
    def at_whitespace(self) -> bool:
        return not self.scope or self.scope[-1].isspace()


@lru_cache(maxsize=128)
def analyze(doc: DocumentPosition) -> CursorContext:
    """Analyze the text around the cursor."""
    before = doc.before_cursor
    segments = list(scan(before))
    last = segments[-1] if segments else None

    if last is not None and _is_open_literal(last.kind, last.text):
        return CursorContext(text=doc.text, cursor=doc.cursor_offset, in_literal=True)

    quoted = False
    if last is not None and last.kind == "identifier" and last.text.count('"') % 2 == 1:
        quoted = True
        word_start = len(before) - len(last.text)
        word = last.text[1:].replace('""', '"')
    elif last is not None and last.kind == "identifier" and last.text.startswith("`") and not (
        len(last.text) > 1 and last.text.endswith("`")
    ):
        return CursorContext(text=doc.text, cursor=doc.cursor_offset, in_literal=True)
    else:
        match = _WORD.search(before)
        word_start = match.start()
        word = match.group()

    head = normalize(before[:word_start])
    head_statement = head.rsplit(";", 1)[-1]

    after = doc.text[doc.cursor_offset :]
    if quoted and '"' in after:
        after = after[after.index('"') + 1 :]
    else:
        after = _LEADING_WORD.sub("", after)
    tail_statement = normalize(after).split(";", 1)[0]

    qualifier_match = _QUALIFIER.search(head)
    return CursorContext(
        text=doc.text,
        cursor=doc.cursor_offset,
        word=word,
        word_start=word_start,
        quoted=quoted,
        qualifier=unquote(qualifier_match.group(1)) if qualifier_match else None,
        scope=_flatten(head_statement),
        statement=head_statement + tail_statement,
    )


def last_clause(scope: str) -> tuple[str | None, str]:
    """The last clause keyword in a scope (upper-cased) and the text after it."""
    matches = list(_CLAUSE.finditer(scope))
    if not matches:
        return None, scope
    last = matches[-1]
    return " ".join(last.group(1).upper().split()), scope[last.end() :]


@dataclass(frozen=True)
class TableRef:
    name: str
    schema: str | None = None
    alias: str | None = None


def referenced_tables(statement: str) -> list[TableRef]:
    """Tables named after FROM, JOIN, UPDATE and INTO, with their aliases."""
    refs = []
    for start in _REF_START.finditer(statement):
        pos = start.end()
        while True:
            match = _REF.match(statement, pos)
            if not match:
                break
            first = unquote(match.group("first"))
            second = match.group("second")
            schema, name = (first, unquote(second)) if second else (None, first)
            if not match.group("first").startswith('"') and first.upper() in KEYWORDS:
                break
            alias = match.group("alias")
            alias_is_keyword = alias is not None and alias.upper() in KEYWORDS
            if alias is not None and not alias_is_keyword:
                alias = unquote(alias)
            else:
                alias = None
            refs.append(TableRef(name=name, schema=schema, alias=alias))
            if alias_is_keyword or start.group(1).upper() != "FROM":
                break
            separator = _REF_SEPARATOR.match(statement, match.end())
            if not separator:
                break
            pos = separator.end()
    return refs


def resolve_tables(schema: SchemaSnapshot, refs: list[TableRef]) -> list[TableMeta]:
    """Schema tables for the references that exist, in reference order."""
    tables = []
    for ref in refs:
        table = schema.table(ref.name)
        if table is not None and table not in tables:
            tables.append(table)
    return tables


def resolve_qualifier(schema: SchemaSnapshot, refs: list[TableRef], qualifier: str) -> TableMeta | None:
    """Resolve ``qualifier.`` to a table through aliases, then table names."""
    lowered = qualifier.lower()
    for ref in refs:
        if ref.alias is not None and ref.alias.lower() == lowered:
            return schema.table(ref.name)
    return schema.table(qualifier)


def selected_columns(statement: str) -> list[str]:
    """Plain column names of the select list, aggregates unwrapped."""
    match = _SELECT_LIST.search(statement)
    if not match:
        return []
    columns = []
    for item in match.group("list").split(","):
        item = item.strip()
        if " " in item:
            item = _ALIAS_SUFFIX.sub("", item).strip()
        aggregate = _AGGREGATE.match(item)
        if aggregate:
            item = aggregate.group("arg").strip()
        item = unquote(item.rsplit(".", 1)[-1].strip())
        if item and item not in ("*", "''") and "(" not in item and ")" not in item and not item[0].isdigit():
            columns.append(item)
    return columns
