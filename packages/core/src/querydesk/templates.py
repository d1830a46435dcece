"""Turn raw SQL and template queries into bound statements.

Values are never spliced into SQL. Every placeholder becomes a SQLAlchemy
``:name`` bind marker and the value travels in the parameter mapping, which
``text()`` renders in the driver's own paramstyle.

Supported placeholders, outside string literals, quoted identifiers and
comments:

- ``{{name}}`` and ``:name`` for named parameters
- ``?`` for positional parameters (not mixable with named ones)
"""

import re
from dataclasses import dataclass, field
from typing import Any

from querydesk.errors import ValidationError
from querydesk.sqltext import scan
from querydesk_models import ParameterValue

# Same pattern SQLAlchemy's text() uses to find bind parameters
_SQLALCHEMY_BIND = re.compile(r"(?<![:\w\\]):(\w+)(?!:)")

_PLACEHOLDER = re.compile(
    r"\{\{\s*(?P<brace>\w+)\s*\}\}"
    r"|(?<![:\w\\]):(?P<named>[A-Za-z_]\w*)"
    r"|(?P<positional>\?)"
)

# Any {{...}} without nested braces, valid or not
_BRACE_BLOCK = re.compile(r"\{\{(?P<body>[^{}]*)\}\}")
_BRACE_NAME = re.compile(r"\s*\w+\s*")


@dataclass(frozen=True)
class PreparedStatement:
    """SQL for ``text()`` plus the values for its bind markers."""

    sql: str
    parameters: dict[str, Any] = field(default_factory=dict)


def escape_bind_markers(sql: str) -> str:
    """Escape colons that text() would otherwise read as bind markers."""
    return _SQLALCHEMY_BIND.sub(r"\\:\1", sql)


def prepare_raw(sql: str) -> PreparedStatement:
    """Prepare SQL text that is executed verbatim.

    Raises:
        ValidationError: If the SQL is empty
    """
    if not sql or not sql.strip():
        raise ValidationError("SQL query is empty")
    return PreparedStatement(sql=escape_bind_markers(sql))


def extract_placeholders(template: str) -> list[str]:
    """Named placeholders of a template in order of first appearance."""
    names: list[str] = []
    for segment in scan(template):
        if segment.kind != "code":
            continue
        for match in _PLACEHOLDER.finditer(segment.text):
            name = match.group("brace") or match.group("named")
            if name and name not in names:
                names.append(name)
    return names


def check_template_syntax(template: str) -> None:
    """Reject malformed ``{{...}}`` placeholders outside literals and comments.

    Raises:
        ValidationError: Empty placeholders, names with characters other than
            letters, digits and underscores, or unbalanced braces
    """
    code = "".join(s.text if s.kind == "code" else " " for s in scan(template))
    errors = []
    for match in _BRACE_BLOCK.finditer(code):
        body = match.group("body")
        if not body.strip():
            errors.append("Empty placeholder {{}}: a parameter name is required")
        elif not _BRACE_NAME.fullmatch(body):
            errors.append(
                f"Invalid placeholder name {{{{{body}}}}}: only letters, digits and underscores are allowed"
            )
    leftover = _BRACE_BLOCK.sub(" ", code)
    if "{{" in leftover or "}}" in leftover:
        errors.append("Unbalanced template braces: every {{ needs a matching }}")
    if errors:
        raise ValidationError("; ".join(errors))


def coerce_value(parameter: ParameterValue) -> Any:
    """Convert a parameter value to its declared type.

    Falls back to the default value when no value is given.

    Raises:
        ValidationError: If the value can't be converted, or a required
            parameter has neither a value nor a default
    """
    value = parameter.effective_value
    if value is None and parameter.required:
        label = f"'{parameter.name}'" if parameter.name else "(positional)"
        raise ValidationError(f"Required parameter {label} has no value")
    if value is None or parameter.type is None:
        return value

    if parameter.type == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        text_value = str(value).strip()
        try:
            return int(text_value)
        except ValueError:
            pass
        try:
            return float(text_value)
        except ValueError:
            raise ValidationError(f"Cannot convert '{value}' to number") from None

    if parameter.type == "boolean":
        if isinstance(value, bool):
            return value
        lowered = str(value).strip().lower()
        if lowered in ("true", "1"):
            return True
        if lowered in ("false", "0"):
            return False
        raise ValidationError(f"Cannot convert '{value}' to boolean")

    # string and date are passed as text; the database parses dates
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def prepare_template(template: str, parameters: list[ParameterValue]) -> PreparedStatement:
    """Rewrite a template to bind markers and bind its parameters.

    Unnamed parameters of a named template fill the placeholders that were
    not given by name, in order of first appearance.

    Raises:
        ValidationError: Empty or malformed template, mixed placeholder styles, or
            missing, unknown, duplicate or surplus parameters
    """
    if not template or not template.strip():
        raise ValidationError("Template query is empty")
    check_template_syntax(template)

    parts: list[str] = []
    names: list[str] = []
    positional = 0

    for segment in scan(template):
        if segment.kind != "code":
            parts.append(escape_bind_markers(segment.text))
            continue
        text = segment.text
        pos = 0
        for match in _PLACEHOLDER.finditer(text):
            parts.append(escape_bind_markers(text[pos : match.start()]))
            if match.group("positional"):
                positional += 1
                name = f"p{positional}"
            else:
                name = match.group("brace") or match.group("named")
                if name not in names:
                    names.append(name)
            marker = f":{name}"
            # text() ignores a marker directly followed by a '::' cast
            if text.startswith(":", match.end()):
                marker = f"({marker})"
            parts.append(marker)
            pos = match.end()
        parts.append(escape_bind_markers(text[pos:]))

    if positional and names:
        raise ValidationError("Cannot mix positional '?' and named placeholders in one template")

    sql = "".join(parts)
    if positional:
        return PreparedStatement(sql=sql, parameters=_bind_positional(positional, parameters))
    return PreparedStatement(sql=sql, parameters=_bind_named(names, parameters))


def _bind_positional(count: int, parameters: list[ParameterValue]) -> dict[str, Any]:
    if any(p.name for p in parameters):
        raise ValidationError("Template uses positional '?' placeholders; parameters must be unnamed")
    if len(parameters) != count:
        raise ValidationError(
            f"Template has {count} positional placeholder(s) but {len(parameters)} parameter(s) were given"
        )
    return {f"p{i}": coerce_value(p) for i, p in enumerate(parameters, start=1)}


def _bind_named(names: list[str], parameters: list[ParameterValue]) -> dict[str, Any]:
    bound: dict[str, Any] = {}
    unnamed: list[ParameterValue] = []

    for parameter in parameters:
        if parameter.name is None:
            unnamed.append(parameter)
            continue
        if parameter.name in bound:
            raise ValidationError(f"Parameter '{parameter.name}' given more than once")
        bound[parameter.name] = coerce_value(parameter)

    unknown = [name for name in bound if name not in names]
    if unknown:
        raise ValidationError(f"Unknown parameter(s): {', '.join(unknown)}")

    remaining = [name for name in names if name not in bound]
    if len(unnamed) > len(remaining):
        raise ValidationError(
            f"{len(unnamed)} unnamed parameter(s) given for {len(remaining)} unfilled placeholder(s)"
        )
    for name, parameter in zip(remaining, unnamed):
        bound[name] = coerce_value(parameter)

    missing = [name for name in names if name not in bound]
    if missing:
        raise ValidationError(f"Missing value for parameter(s): {', '.join(missing)}")

    return bound
