"""Query request and result models."""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class PermissionMode(str, Enum):
    """Process-wide policy on which statement classes may run."""

    READ_ONLY = "READ_ONLY"
    READ_WRITE = "READ_WRITE"


class ParameterValue(BaseModel):
    """A typed value bound into a template query, by name or by position.

    A missing ``value`` falls back to ``default_value``. A required
    parameter must end up with one of the two; an optional one binds NULL.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str | None = Field(default=None, description="Placeholder name; None binds positionally")
    value: str | int | float | bool | None = Field(default=None, description="Bound value")
    type: Literal["string", "number", "boolean", "date"] | None = Field(
        default=None, description="Declared type used to coerce the value"
    )
    default_value: str | int | float | bool | None = Field(
        default=None, description="Used when no value is given"
    )
    required: bool = Field(default=False, description="Reject the template when no value or default is given")

    @property
    def effective_value(self) -> str | int | float | bool | None:
        return self.default_value if self.value is None else self.value


class RawQuery(BaseModel):
    """SQL text executed verbatim."""

    kind: Literal["raw"] = "raw"
    sql: str


class TemplateQuery(BaseModel):
    """SQL text with placeholders and the values to bind into them."""

    kind: Literal["template"] = "template"
    template: str
    parameters: list[ParameterValue] = Field(default_factory=list)


QueryRequest = Annotated[RawQuery | TemplateQuery, Field(discriminator="kind")]


class QueryResult(BaseModel):
    """Result of a query execution, with telemetry.

    A failed execution carries an error message, a positive error count and
    no rows at all.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    rows: list[dict[str, Any]] = Field(default_factory=list, description="Result rows")
    row_count: int = Field(default=0, description="Rows returned, or rows affected for DML")
    fields: list[str] = Field(default_factory=list, description="Column names in order")
    payload_size: int = Field(default=0, description="UTF-8 JSON size of the rows in bytes")
    total_time: float = Field(default=0.0, description="Wall-clock time in milliseconds")
    errors_count: int = Field(default=0, description="Number of errors")
    error: str | None = Field(default=None, description="Error message if the query failed")

    @model_validator(mode="after")
    def _error_consistency(self) -> "QueryResult":
        if (self.error is not None) != (self.errors_count > 0):
            raise ValueError("error and errors_count must agree")
        if self.error is not None and self.rows:
            raise ValueError("a failed query must not return rows")
        return self

    @classmethod
    def failure(cls, message: str, total_time: float = 0.0) -> "QueryResult":
        return cls(error=message, errors_count=1, total_time=total_time)

    def to_dict(self) -> dict:
        """Convert to the camelCase dictionary sent over the wire."""
        return self.model_dump(mode="json", by_alias=True)


class GeneratedSql(BaseModel):
    """SQL produced from a natural-language request."""

    sql: str = Field(..., description="A single SQL statement, no markdown")
