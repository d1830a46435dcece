"""Editor completion models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class SuggestionKind(str, Enum):
    """Category shown next to a suggestion in the editor."""

    KEYWORD = "keyword"
    TABLE = "table"
    COLUMN = "column"
    VALUE = "value"


class DocumentPosition(BaseModel):
    """Editor text and cursor offset at the moment completion was requested."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    cursor_offset: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _cursor_within_text(self) -> "DocumentPosition":
        if self.cursor_offset > len(self.text):
            raise ValueError(
                f"cursor_offset {self.cursor_offset} is past the end of the text ({len(self.text)})"
            )
        return self

    @property
    def before_cursor(self) -> str:
        return self.text[: self.cursor_offset]


class Suggestion(BaseModel):
    """A proposed insertion replacing text from range_start up to the cursor."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    label: str = Field(..., min_length=1)
    kind: SuggestionKind
    insert_text: str = Field(..., min_length=1)
    detail: str = ""
    range_start: int = Field(..., ge=0)
