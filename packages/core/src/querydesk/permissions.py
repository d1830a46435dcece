"""Permission mode store and statement classification."""

import logging
import re
import threading
from dataclasses import dataclass

from opentelemetry import trace

from querydesk.errors import PermissionDeniedError, ValidationError
from querydesk.sqltext import split_statements
from querydesk_models import PermissionMode

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("querydesk.permissions")

READ_VERBS = frozenset(
    {"SELECT", "WITH", "EXPLAIN", "SHOW", "DESCRIBE", "DESC", "VALUES", "TABLE", "PRAGMA"}
)

DDL_VERBS = frozenset({"CREATE", "ALTER", "DROP", "TRUNCATE", "RENAME", "COMMENT"})

# Verbs that make an otherwise reading statement modify data
_DATA_MODIFYING = re.compile(r"\b(INSERT|UPDATE|DELETE|MERGE|UPSERT|REPLACE|TRUNCATE)\b")

_FIRST_WORD = re.compile(r"[A-Z_]+")

# PRAGMA name = value and PRAGMA name(value) both set the pragma
_PRAGMA_ARGUMENT = re.compile(r"^\s*\(*\s*PRAGMA\s+(?:\w+\.)?(\w+)\s*(=|\()")

# Pragmas whose parenthesised argument names an object to report on
_PRAGMA_QUERIES = frozenset(
    {
        "TABLE_INFO",
        "TABLE_XINFO",
        "TABLE_LIST",
        "INDEX_INFO",
        "INDEX_XINFO",
        "INDEX_LIST",
        "FOREIGN_KEY_LIST",
        "FOREIGN_KEY_CHECK",
        "INTEGRITY_CHECK",
        "QUICK_CHECK",
    }
)


def parse_permission_mode(value: str | PermissionMode) -> PermissionMode:
    """Parse a permission mode name, case-insensitively.

    Raises:
        ValidationError: If the value is not READ_ONLY or READ_WRITE
    """
    if isinstance(value, PermissionMode):
        return value
    if isinstance(value, str):
        try:
            return PermissionMode(value.strip().upper())
        except ValueError:
            pass
    allowed = ", ".join(m.value for m in PermissionMode)
    raise ValidationError(f"Unknown permission mode '{value}'. Expected one of: {allowed}")


class PermissionModeStore:
    """Process-wide, mutable permission mode."""

    def __init__(self, initial: PermissionMode | str = PermissionMode.READ_ONLY) -> None:
        self._mode = parse_permission_mode(initial)
        self._lock = threading.Lock()

    def get(self) -> PermissionMode:
        with self._lock:
            return self._mode

    def set(self, mode: PermissionMode | str) -> PermissionMode:
        """Replace the mode. Returns the previous one."""
        new_mode = parse_permission_mode(mode)
        with self._lock:
            previous, self._mode = self._mode, new_mode
        if previous is not new_mode:
            logger.info("Permission mode changed: %s -> %s", previous.value, new_mode.value)
        return previous


@dataclass(frozen=True)
class StatementInfo:
    """Classification of one statement."""

    verb: str
    is_write: bool
    is_ddl: bool = False


def _is_pragma_assignment(upper: str) -> bool:
    match = _PRAGMA_ARGUMENT.match(upper)
    if match is None:
        return False
    return match.group(2) == "=" or match.group(1) not in _PRAGMA_QUERIES


def classify_statement(statement: str) -> StatementInfo:
    """Classify one statement that has no literals or comments left.

    Statements that start with a read verb are reads, except PRAGMA with
    an assignment, SELECT ... INTO, and WITH/EXPLAIN wrapping a
    data-modifying statement. Everything else, including unknown verbs,
    is a write.
    """
    upper = statement.upper()
    match = _FIRST_WORD.search(upper)
    verb = match.group() if match else ""

    if verb not in READ_VERBS:
        return StatementInfo(verb=verb, is_write=True, is_ddl=verb in DDL_VERBS)

    if verb == "PRAGMA" and _is_pragma_assignment(upper):
        return StatementInfo(verb=verb, is_write=True)
    if verb == "SELECT" and re.search(r"\bINTO\b", upper):
        return StatementInfo(verb=verb, is_write=True)
    if verb in ("WITH", "EXPLAIN") and _DATA_MODIFYING.search(upper):
        return StatementInfo(verb=verb, is_write=True)
    return StatementInfo(verb=verb, is_write=False)


def analyze_sql(sql: str) -> list[StatementInfo]:
    """Classify every statement in a SQL text."""
    with tracer.start_as_current_span("classify_sql") as span:
        infos = [classify_statement(s) for s in split_statements(sql)]
        span.set_attribute("sql.statement_count", len(infos))
        span.set_attribute("sql.write", any(i.is_write for i in infos))
        return infos


def check_permission(sql: str, mode: PermissionMode) -> list[StatementInfo]:
    """Check that every statement is allowed under ``mode``.

    Returns:
        The statement classifications

    Raises:
        PermissionDeniedError: If a write statement is found in READ_ONLY mode
    """
    infos = analyze_sql(sql)
    if mode is PermissionMode.READ_ONLY:
        rejected = [i.verb or "UNKNOWN" for i in infos if i.is_write]
        if rejected:
            logger.info("Rejected write statement(s) in READ_ONLY mode: %s", rejected)
            raise PermissionDeniedError(
                f"Operation not allowed in READ_ONLY mode: {', '.join(dict.fromkeys(rejected))}. "
                "Only SELECT and read operations are allowed."
            )
    return infos
