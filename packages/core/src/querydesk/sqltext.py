"""Lexical helpers for SQL text.

SQL is split into code and non-code segments (string literals, quoted
identifiers, comments) so that keyword and placeholder scanning only ever
looks at code.
"""

import re
from collections.abc import Iterator
from dataclasses import dataclass

_LEXEME = re.compile(
    r"""
      (?P<string>'(?:[^']|'')*'?)
    | (?P<dollar>\$(?P<tag>[A-Za-z_]*)\$.*?(?:\$(?P=tag)\$|\Z))
    | (?P<quoted>"(?:[^"]|"")*"?)
    | (?P<backtick>`[^`]*`?)
    | (?P<line_comment>--[^\n]*)
    | (?P<block_comment>/\*.*?(?:\*/|\Z))
    """,
    re.DOTALL | re.VERBOSE,
)

_KINDS = {
    "string": "string",
    "dollar": "string",
    "quoted": "identifier",
    "backtick": "identifier",
    "line_comment": "comment",
    "block_comment": "comment",
}


@dataclass(frozen=True)
class Segment:
    kind: str  # code, string, identifier or comment
    text: str


def scan(sql: str) -> Iterator[Segment]:
    """Split SQL into code, string, identifier and comment segments, in order."""
    pos = 0
    for match in _LEXEME.finditer(sql):
        if match.start() > pos:
            yield Segment("code", sql[pos : match.start()])
        kind = next(_KINDS[name] for name in _KINDS if match.group(name) is not None)
        yield Segment(kind, match.group())
        pos = match.end()
    if pos < len(sql):
        yield Segment("code", sql[pos:])


def strip_non_code(sql: str) -> str:
    """Replace literals with ``''``, quoted identifiers with ``_`` and drop comments."""
    parts = []
    for segment in scan(sql):
        if segment.kind == "code":
            parts.append(segment.text)
        elif segment.kind == "string":
            parts.append("''")
        elif segment.kind == "identifier":
            parts.append("_")
        else:
            parts.append(" ")
    return "".join(parts)


def split_statements(sql: str) -> list[str]:
    """Split SQL on semicolons outside literals and comments.

    Returned statements have literals and comments stripped and are
    whitespace-normalized; empty statements are dropped.
    """
    statements = []
    for raw in strip_non_code(sql).split(";"):
        statement = " ".join(raw.split())
        if statement:
            statements.append(statement)
    return statements
