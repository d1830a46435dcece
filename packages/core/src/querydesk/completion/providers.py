"""Suggestion providers.

Each provider is a pure function ``propose(doc, schema)`` responsible for one
grammatical context. It returns None when its context doesn't apply. Table
and column providers also return None when no schema is cached.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass

from querydesk.completion.tokens import (
    IDENT,
    KEYWORD_ALT,
    CursorContext,
    analyze,
    last_clause,
    quote_identifier,
    referenced_tables,
    resolve_qualifier,
    resolve_tables,
    selected_columns,
)
from querydesk_models import (
    ColumnMeta,
    DocumentPosition,
    SchemaSnapshot,
    Suggestion,
    SuggestionKind,
    TableMeta,
)

ProposeFn = Callable[[DocumentPosition, SchemaSnapshot | None], list[Suggestion] | None]

_I = re.IGNORECASE

_COLUMN_REF = rf"(?!(?:{KEYWORD_ALT})\b){IDENT}(?:\s*\.\s*{IDENT})?"
_OPERAND = rf"(?:{_COLUMN_REF}|[A-Za-z_]\w*\s*\(\))"
_VALUE = (
    rf"(?:''|-?\d+(?:\.\d+)?|NULL|TRUE|FALSE|\(\)|:\w+|\?|\{{\{{\s*\w+\s*\}}\}}"
    rf"|[A-Za-z_]\w*\s*\(\)|{_COLUMN_REF})"
)
_TABLE_REF = rf"(?!(?:{KEYWORD_ALT})\b){IDENT}(?:\s*\.\s*{IDENT})?(?:\s+(?:AS\s+)?(?!(?:{KEYWORD_ALT})\b){IDENT})?"

_STATEMENT_START = re.compile(
    r"(?:^\s*(?:EXPLAIN(?:\s+ANALYZE)?\s+)?|\b(?:UNION(?:\s+ALL)?|INTERSECT|EXCEPT)\s+)$", _I
)
_SUBQUERY_OPEN = re.compile(r"(?:\b(?:FROM|JOIN|IN|EXISTS|AS)\s*|^\s*)\(\s*$", _I)
_AFTER_SELECT = re.compile(r"\bSELECT\s+(?P<distinct>DISTINCT\s+)?$", _I)
_FROM_ANYWHERE = re.compile(r"\bFROM\b", _I)
_SELECT_LIST = re.compile(r"^\s*SELECT\s+(?:DISTINCT\s+)?(?!DISTINCT\b)(?P<list>\S.*?)(?P<space>\s*)$", _I | re.DOTALL)
_LIST_END = re.compile(r"(?:[\w\"*)]|'')$")
_DANGLING_WORDS = frozenset({"AS", "CASE", "WHEN", "THEN", "ELSE", "AND", "OR", "NOT", "DISTINCT", "SELECT"})
_AFTER_TABLE = re.compile(
    rf"\b(?P<clause>FROM|JOIN|UPDATE)\s+(?:{_TABLE_REF}\s*,\s*)*{_TABLE_REF}\s+$", _I
)
_CONDITION_OPERAND = re.compile(rf"\b(?:WHERE|AND|OR|ON|HAVING|NOT)\s+{_OPERAND}\s+$", _I)
_COMPLETE_CONDITION = re.compile(
    rf"\b(?:WHERE|AND|OR|ON|HAVING)\s+(?:NOT\s+)?{_OPERAND}\s*"
    rf"(?:(?:=|!=|<>|<=|>=|<|>)\s*{_VALUE}"
    rf"|(?:NOT\s+)?I?LIKE\s+{_VALUE}"
    rf"|IS\s+(?:NOT\s+)?NULL"
    rf"|(?:NOT\s+)?IN\s*\(\)"
    rf"|BETWEEN\s+{_VALUE}\s+AND\s+{_VALUE})\s+$",
    _I,
)
_TABLE_POSITION = re.compile(
    r"(?:\b(?:FROM|JOIN|INTO|UPDATE)|^\s*(?:DESCRIBE|DESC|TABLE)|\b(?:DROP|ALTER|TRUNCATE)\s+TABLE)\s+$",
    _I,
)
_QUALIFIER_SUFFIX = re.compile(rf"{IDENT}\.$")
_COLUMN_KEYWORD_POSITION = re.compile(
    r"\b(?:SELECT(?:\s+DISTINCT)?|WHERE|AND|OR|ON|HAVING|NOT|SET|BY)\s+$", _I
)
_COMPARISON = re.compile(
    rf"(?P<column>{_COLUMN_REF})\s*(?P<op>=|!=|<>|<=|>=|<|>|(?:NOT\s+)?I?LIKE)\s*$", _I
)
_LIMIT = re.compile(r"\bLIMIT\s+$", _I)

_BOOLEAN_TYPE = re.compile(r"BOOL|\bBIT\b", _I)
_TEMPORAL_TYPE = re.compile(r"DATE|TIME|INTERVAL|YEAR", _I)
_NUMERIC_TYPE = re.compile(
    r"\b(?:TINY|SMALL|MEDIUM|BIG)?INT(?:EGER)?\d*\b|NUMERIC|DECIMAL|NUMBER|FLOAT|REAL|DOUBLE|SERIAL|MONEY",
    _I,
)


@dataclass(frozen=True)
class Provider:
    """A provider registered with the engine under a context key."""

    name: str
    context: str
    propose: ProposeFn


def _keywords(
    ctx: CursorContext, options: list[tuple[str, str]], insert: dict[str, str] | None = None
) -> list[Suggestion] | None:
    """Keyword suggestions whose label starts with the partial word."""
    if ctx.quoted or ctx.qualifier is not None:
        return None
    prefix = ctx.word.upper()
    suggestions = [
        Suggestion(
            label=label,
            kind=SuggestionKind.KEYWORD,
            insert_text=(insert or {}).get(label, f"{label} "),
            detail=detail,
            range_start=ctx.word_start,
        )
        for label, detail in options
        if label.upper().startswith(prefix)
    ]
    return suggestions or None


def _matches_prefix(name: str, ctx: CursorContext) -> bool:
    return name.lower().startswith(ctx.word.lower())


def _table_suggestion(table: TableMeta, ctx: CursorContext) -> Suggestion:
    return Suggestion(
        label=table.name,
        kind=SuggestionKind.TABLE,
        insert_text=quote_identifier(table.name, force=ctx.quoted),
        detail="View" if table.type == "VIEW" else "Table",
        range_start=ctx.word_start,
    )


def _column_suggestion(table: TableMeta, column: ColumnMeta, ctx: CursorContext) -> Suggestion:
    return Suggestion(
        label=column.name,
        kind=SuggestionKind.COLUMN,
        insert_text=quote_identifier(column.name, force=ctx.quoted),
        detail=f"{table.name} ({column.data_type})" if column.data_type else table.name,
        range_start=ctx.word_start,
    )


# ---------------------------------------------------------------------------
# Keyword providers
# ---------------------------------------------------------------------------

_STATEMENT_KEYWORDS = [
    ("SELECT", "Query rows"),
    ("WITH", "Common table expression"),
    ("VALUES", "Literal rows"),
    ("TABLE", "All rows of a table"),
    ("INSERT", "Insert rows"),
    ("UPDATE", "Update rows"),
    ("DELETE", "Delete rows"),
    ("EXPLAIN", "Show the query plan"),
]


def statement_start(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """Statement keywords at the start of a statement or subquery."""
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    if _SUBQUERY_OPEN.search(ctx.scope):
        return _keywords(ctx, _STATEMENT_KEYWORDS[:3])
    if _STATEMENT_START.search(ctx.scope):
        if ctx.scope.strip():
            # After EXPLAIN or a set operator only queries make sense
            return _keywords(ctx, _STATEMENT_KEYWORDS[:4])
        return _keywords(ctx, _STATEMENT_KEYWORDS)
    return None


def select_modifiers(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """DISTINCT, ``*`` and aggregates right after SELECT."""
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    match = _AFTER_SELECT.search(ctx.scope)
    if not match:
        return None
    options = [] if match.group("distinct") else [("DISTINCT", "Remove duplicate rows")]
    options += [
        ("*", "All columns"),
        ("COUNT(*)", "Count rows"),
        ("COUNT", "Count values"),
        ("SUM", "Sum values"),
        ("AVG", "Average value"),
        ("MIN", "Minimum value"),
        ("MAX", "Maximum value"),
    ]
    insert = {
        "*": "* ",
        "COUNT(*)": "COUNT(*) ",
        "COUNT": "COUNT(",
        "SUM": "SUM(",
        "AVG": "AVG(",
        "MIN": "MIN(",
        "MAX": "MAX(",
    }
    return _keywords(ctx, options, insert)


def _is_select_list(text: str) -> bool:
    match = _SELECT_LIST.match(text)
    if not match:
        return False
    items = match.group("list")
    if not _LIST_END.search(items):
        return False
    last_word = re.split(r"[\s,(]+", items)[-1].upper()
    return last_word not in _DANGLING_WORDS


def from_keyword(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """FROM after a select list, while the text has no FROM anywhere."""
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    if ctx.quoted or (ctx.qualifier is not None and not ctx.word) or _FROM_ANYWHERE.search(ctx.text):
        return None

    # Partially typed FROM after the select list
    if ctx.word and "FROM".startswith(ctx.word.upper()) and ctx.at_whitespace:
        if _is_select_list(ctx.scope):
            return [
                Suggestion(
                    label="FROM",
                    kind=SuggestionKind.KEYWORD,
                    insert_text="FROM ",
                    detail="Specify table",
                    range_start=ctx.word_start,
                )
            ]

    # Select list complete up to the cursor
    if _is_select_list(ctx.scope + ctx.word):
        trailing_space = not ctx.word and ctx.at_whitespace
        return [
            Suggestion(
                label="FROM",
                kind=SuggestionKind.KEYWORD,
                insert_text="FROM " if trailing_space else " FROM ",
                detail="Specify table",
                range_start=ctx.cursor,
            )
        ]
    return None


def table_followups(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """Clauses that can follow ``FROM t``, ``JOIN t`` or ``UPDATE t``."""
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    match = _AFTER_TABLE.search(ctx.scope)
    if not match:
        return None

    clause = match.group("clause").upper()
    refs = referenced_tables(match.group())
    has_alias = bool(refs) and refs[-1].alias is not None

    options = [] if has_alias else [("AS", "Alias table")]
    if clause == "UPDATE":
        return _keywords(ctx, options + [("SET", "Assign column values")])
    if clause == "JOIN":
        options += [("ON", "Join condition"), ("USING", "Join on shared columns")]
    options += [
        ("WHERE", "Filter rows"),
        ("JOIN", "Join with another table"),
        ("INNER JOIN", "Inner join"),
        ("LEFT JOIN", "Left join"),
        ("RIGHT JOIN", "Right join"),
        ("CROSS JOIN", "Cross join"),
        ("GROUP BY", "Group rows"),
        ("ORDER BY", "Sort results"),
        ("LIMIT", "Limit number of rows"),
    ]
    return _keywords(ctx, options)


def where_operators(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """Comparison operators after a condition column."""
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    if not _CONDITION_OPERAND.search(ctx.scope):
        return None
    options = [
        ("=", "Equals"),
        ("!=", "Not equal"),
        ("<>", "Not equal"),
        ("<", "Less than"),
        ("<=", "Less than or equal"),
        (">", "Greater than"),
        (">=", "Greater than or equal"),
        ("LIKE", "Pattern match"),
        ("NOT LIKE", "Negated pattern match"),
        ("IN", "Value in list"),
        ("NOT IN", "Value not in list"),
        ("BETWEEN", "Value in range"),
        ("IS NULL", "Value is NULL"),
        ("IS NOT NULL", "Value is not NULL"),
    ]
    insert = {"IN": "IN (", "NOT IN": "NOT IN (", "IS NULL": "IS NULL ", "IS NOT NULL": "IS NOT NULL "}
    return _keywords(ctx, options, insert)


def condition_followups(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """AND/OR and the following clauses after a complete condition."""
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    if not _COMPLETE_CONDITION.search(ctx.scope):
        return None

    clause, _ = last_clause(ctx.scope)
    options = [("AND", "Both conditions"), ("OR", "Either condition")]
    if clause == "ON":
        options += [
            ("WHERE", "Filter rows"),
            ("JOIN", "Join with another table"),
            ("INNER JOIN", "Inner join"),
            ("LEFT JOIN", "Left join"),
            ("GROUP BY", "Group rows"),
        ]
    elif clause == "WHERE":
        options += [("GROUP BY", "Group rows")]
    options += [("ORDER BY", "Sort results"), ("LIMIT", "Limit number of rows")]
    return _keywords(ctx, options)


def _list_followup_tail(ctx: CursorContext, expected_clause: str) -> str | None:
    clause, tail = last_clause(ctx.scope)
    if clause != expected_clause or not ctx.at_whitespace:
        return None
    tail = tail.strip()
    if not tail or tail.endswith(","):
        return None
    return tail


def order_by_followups(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """ASC/DESC and LIMIT after an ORDER BY item."""
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    tail = _list_followup_tail(ctx, "ORDER BY")
    if tail is None:
        return None
    if tail.split()[-1].upper() in ("ASC", "DESC"):
        return _keywords(ctx, [(",", "Add another sort column"), ("LIMIT", "Limit number of rows")], {",": ", "})
    return _keywords(
        ctx,
        [("ASC", "Ascending"), ("DESC", "Descending"), ("LIMIT", "Limit number of rows")],
    )


def group_by_followups(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """HAVING, ORDER BY and LIMIT after a GROUP BY item."""
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    if _list_followup_tail(ctx, "GROUP BY") is None:
        return None
    return _keywords(
        ctx,
        [
            ("HAVING", "Filter groups"),
            ("ORDER BY", "Sort results"),
            ("LIMIT", "Limit number of rows"),
        ],
    )


# ---------------------------------------------------------------------------
# Identifier providers
# ---------------------------------------------------------------------------


def qualified_columns(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """Columns after ``alias.`` or ``table.``."""
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    if schema is None or ctx.qualifier is None:
        return None
    table = resolve_qualifier(schema, referenced_tables(ctx.statement), ctx.qualifier)
    if table is None:
        return None
    suggestions = [
        _column_suggestion(table, column, ctx)
        for column in table.columns
        if _matches_prefix(column.name, ctx)
    ]
    return suggestions or None


def table_names(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """Table names after FROM, JOIN, INTO and UPDATE.

    After FROM, tables are narrowed to those containing every column of the
    select list when any table does.
    """
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    if schema is None:
        return None

    scope = ctx.scope
    candidates = list(schema.tables)
    if ctx.qualifier is not None:
        # schema.<table>
        scope = _QUALIFIER_SUFFIX.sub("", scope)
        lowered = ctx.qualifier.lower()
        candidates = [t for t in candidates if (t.schema_name or "").lower() == lowered]
        if not candidates:
            return None

    clause, _ = last_clause(scope)
    in_from_list = clause == "FROM" and scope.rstrip().endswith(",")
    if not (_TABLE_POSITION.search(scope) or in_from_list):
        return None

    if clause == "FROM":
        columns = selected_columns(ctx.statement)
        if columns:
            narrowed = [t for t in candidates if all(t.column(c) is not None for c in columns)]
            candidates = narrowed or candidates

    suggestions = [_table_suggestion(t, ctx) for t in candidates if _matches_prefix(t.name, ctx)]
    return suggestions or None


def column_names(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """Columns in select lists, conditions, SET, ORDER BY and GROUP BY.

    Columns of the tables referenced by the statement come first; without
    resolvable references every column of the schema is offered.
    """
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    if schema is None or ctx.qualifier is not None:
        return None

    clause, _ = last_clause(ctx.scope)
    stripped = ctx.scope.rstrip()
    in_list = stripped.endswith((",", "(")) and clause in (
        "SELECT", "WHERE", "HAVING", "ON", "GROUP BY", "ORDER BY", "SET", "INTO",
    )
    if not (_COLUMN_KEYWORD_POSITION.search(ctx.scope) or in_list):
        return None

    tables = resolve_tables(schema, referenced_tables(ctx.statement)) or list(schema.tables)
    suggestions = [
        _column_suggestion(table, column, ctx)
        for table in tables
        for column in table.columns
        if _matches_prefix(column.name, ctx)
    ]
    return suggestions or None


# ---------------------------------------------------------------------------
# Value providers
# ---------------------------------------------------------------------------


def _find_column(
    schema: SchemaSnapshot, ctx: CursorContext, reference: str
) -> tuple[TableMeta, ColumnMeta] | None:
    refs = referenced_tables(ctx.statement)
    parts = re.findall(IDENT, reference)
    name = parts[-1].strip('"')
    if len(parts) > 1:
        table = resolve_qualifier(schema, refs, parts[0].strip('"'))
        column = table.column(name) if table is not None else None
        return (table, column) if column is not None else None
    for table in resolve_tables(schema, refs) or schema.tables:
        column = table.column(name)
        if column is not None:
            return table, column
    return None


def _sql_literal(value: str | int | float | bool) -> str:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + value.replace("'", "''") + "'"


def comparison_values(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """Sampled values of the compared column, then literals typed by its data type."""
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    if schema is None or ctx.quoted or ctx.qualifier is not None:
        return None
    match = _COMPARISON.search(ctx.scope)
    clause, _ = last_clause(ctx.scope)
    if not match or clause not in ("WHERE", "ON", "HAVING", "SET"):
        return None
    found = _find_column(schema, ctx, match.group("column"))
    if found is None:
        return None
    table, column = found

    data_type = column.data_type
    is_like = "LIKE" in match.group("op").upper()
    values: list[tuple[str, str]] = []
    if not is_like:
        # Values seen in sample rows come first
        values = [(_sql_literal(v), "Sample value") for v in schema.values_for(table.name, column.name)]
    if _BOOLEAN_TYPE.search(data_type):
        values += [("TRUE", "Boolean"), ("FALSE", "Boolean")]
    elif _TEMPORAL_TYPE.search(data_type):
        values += [("CURRENT_DATE", "Today"), ("CURRENT_TIMESTAMP", "Now")]
    elif _NUMERIC_TYPE.search(data_type) and not is_like:
        values += [("0", "Number"), ("1", "Number")]
    else:
        values += [("'%%'", "Pattern")] if is_like else [("''", "Text")]
    if clause == "SET" and column.is_nullable:
        values.append(("NULL", "No value"))
    if re.fullmatch(r"\w+", column.name):
        values.append((f":{column.name}", "Template parameter"))

    prefix = ctx.word.upper()
    suggestions = [
        Suggestion(
            label=label,
            kind=SuggestionKind.VALUE,
            insert_text=label,
            detail=f"{detail} for {column.name} ({data_type})" if data_type else detail,
            range_start=ctx.word_start,
        )
        for label, detail in values
        if label.upper().startswith(prefix) or label.strip("'").upper().startswith(prefix)
    ]
    return suggestions or None


def limit_values(doc: DocumentPosition, schema: SchemaSnapshot | None) -> list[Suggestion] | None:
    """Common row limits after LIMIT."""
    ctx = analyze(doc)
    if ctx.in_literal:
        return None
    if ctx.quoted or not _LIMIT.search(ctx.scope):
        return None
    suggestions = [
        Suggestion(
            label=value,
            kind=SuggestionKind.VALUE,
            insert_text=value,
            detail="Row limit",
            range_start=ctx.word_start,
        )
        for value in ("10", "25", "50", "100", "1000")
        if value.startswith(ctx.word)
    ]
    return suggestions or None


# Priority order: keywords, then identifiers, then values
DEFAULT_PROVIDERS: tuple[Provider, ...] = (
    Provider("statement_start", "statement", statement_start),
    Provider("select_modifiers", "select_list", select_modifiers),
    Provider("from_keyword", "from", from_keyword),
    Provider("table_followups", "clause", table_followups),
    Provider("where_operators", "clause", where_operators),
    Provider("condition_followups", "clause", condition_followups),
    Provider("order_by_followups", "clause", order_by_followups),
    Provider("group_by_followups", "clause", group_by_followups),
    Provider("qualified_columns", "column", qualified_columns),
    Provider("table_names", "table", table_names),
    Provider("column_names", "column", column_names),
    Provider("comparison_values", "value", comparison_values),
    Provider("limit_values", "limit", limit_values),
)
