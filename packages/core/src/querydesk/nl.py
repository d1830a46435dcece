"""Natural language to SQL.

The core only builds the prompt and validates what comes back; the text
generation itself is delegated to a SqlGenerator. The default generator is
a pydantic-ai agent whose model comes from configuration.
"""

import logging
import re
from typing import Protocol

from pydantic_ai import Agent

from querydesk.errors import BackendError, ValidationError
from querydesk_models import GeneratedSql, TableMeta

logger = logging.getLogger(__name__)

_SQL_START = re.compile(r"^(SELECT|INSERT|UPDATE|DELETE|WITH)\b", re.IGNORECASE)
_CODE_FENCE = re.compile(r"^```[\w-]*\s*\n?(?P<body>.*?)\n?```$", re.DOTALL)

_SQL_SYSTEM_PROMPT = """\
You are an expert SQL developer. Given a database schema and a natural \
language request, generate one precise SQL query that fulfills the request. \
Return only the SQL query, no explanations or markdown formatting.

Important guidelines:
- Use table and column names exactly as provided in the schema
- Use appropriate JOINs for related tables
- Apply proper WHERE clauses for filtering
- Use correct aggregation functions when needed
- Use HAVING to filter grouped results with aggregate conditions
- Use CASE expressions for conditional logic
- Use WITH clauses (CTEs) for complex queries or repeated subqueries
- Do not include comments unless specifically requested
"""

_sql_agent = Agent(
    system_prompt=_SQL_SYSTEM_PROMPT,
    output_type=GeneratedSql,
)


class SqlGenerator(Protocol):
    """Turns a prompt into SQL text."""

    def generate(self, prompt: str) -> str: ...


class AgentSqlGenerator:
    """SqlGenerator backed by a pydantic-ai agent."""

    def __init__(self, model: object) -> None:
        self.model = model

    def generate(self, prompt: str) -> str:
        result = _sql_agent.run_sync(prompt, model=self.model)
        return result.output.sql


def build_schema_prompt(tables: list[TableMeta]) -> str:
    """Describe tables, columns and relationships for the model."""
    blocks = []
    for table in tables:
        lines = [f"Table: {table.name}", "Columns:"]
        for column in table.columns:
            flags = ""
            if not column.is_nullable:
                flags += " NOT NULL"
            if column.is_primary_key:
                flags += " PRIMARY KEY"
            lines.append(f"  {column.name} ({column.data_type}{flags})")
        if table.foreign_keys:
            lines.append("  Relationships:")
            for fk in table.foreign_keys:
                lines.append(f"    {fk.column_name} -> {fk.referenced_table}.{fk.referenced_column}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def build_prompt(natural_language: str, tables: list[TableMeta], dialect: str) -> str:
    return (
        f"Database Schema:\n{build_schema_prompt(tables)}\n\n"
        f'Natural Language Request: "{natural_language}"\n\n'
        f"Ensure the query is valid for {dialect} syntax.\n\n"
        "SQL Query:"
    )


def clean_generated_sql(text: str) -> str:
    """Strip markdown fences and check the text looks like SQL.

    Raises:
        ValidationError: If the result doesn't start with a SQL verb
    """
    sql = text.strip()
    fenced = _CODE_FENCE.match(sql)
    if fenced:
        sql = fenced.group("body").strip()
    if not _SQL_START.match(sql):
        raise ValidationError("Generated response does not appear to be valid SQL")
    return sql


def generate_sql(
    natural_language: str,
    tables: list[TableMeta],
    dialect: str,
    generator: SqlGenerator,
) -> GeneratedSql:
    """Generate SQL for a natural-language request. The SQL is not executed.

    Raises:
        ValidationError: Empty request, or output that isn't SQL
        BackendError: The generator failed
    """
    if not natural_language or not natural_language.strip():
        raise ValidationError("Natural language request is empty")

    prompt = build_prompt(natural_language.strip(), tables, dialect)
    try:
        text = generator.generate(prompt)
    except Exception as e:
        logger.warning("SQL generation failed: %s", e)
        raise BackendError(f"SQL generation failed: {e}") from e

    sql = clean_generated_sql(text)
    logger.info("Generated %d characters of SQL for %d tables", len(sql), len(tables))
    return GeneratedSql(sql=sql)
