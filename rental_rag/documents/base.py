"""
Building blocks shared by the document loaders: the source-kind registry entry,
the field-selection descriptor used to fetch a record with its joins, and
formatting helpers.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Mapping, Optional, Tuple, Type, Union

from langchain_core.documents import Document
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from rental_rag.errors import ValidationError

DateLike = Union[datetime, date, str]


class SourceRecord(BaseModel):
    """Base for the per-kind record variants. Unknown columns are ignored."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str


@dataclass(frozen=True)
class Join:
    """A related row pulled in alongside the base record, nested under `name`."""

    name: str
    table: str
    foreign_key: str
    columns: Tuple[str, ...]


@dataclass(frozen=True)
class RecordSelection:
    """Which table to read and which related entities to join for one source kind."""

    table: str
    joins: Tuple[Join, ...] = ()


@dataclass(frozen=True)
class SourceKind:
    """Registry entry: everything needed to index one kind of source record."""

    name: str
    normalizer: Callable[[Any], Document]
    selection: RecordSelection

    def to_document(self, record: Any) -> Document:
        return self.normalizer(record)


def parse_record(model: Type[SourceRecord], record: Any, kind: str) -> SourceRecord:
    """Validate a raw row into its record variant, raising our ValidationError."""
    if isinstance(record, model):
        return record
    if not isinstance(record, Mapping):
        raise ValidationError(f"Invalid {kind} record: expected a mapping, got {type(record).__name__}")
    try:
        return model.model_validate(dict(record))
    except PydanticValidationError as e:
        missing = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(
            f"Invalid {kind} record {record.get('id', '<no id>')}: {missing}"
        ) from e


def format_date(value: Optional[DateLike]) -> str:
    """Render a date as DD Mon YYYY; unparseable strings are returned unchanged."""
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.strftime("%d %b %Y")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%d %b %Y")
    except ValueError:
        return value


def format_money(value: Any) -> str:
    """£ amount without trailing zeros: 250 -> £250, 12.5 -> £12.5."""
    amount = float(value)
    if amount.is_integer():
        return f"£{int(amount)}"
    return "£" + f"{amount:.2f}".rstrip("0").rstrip(".")


def join_sentences(parts) -> str:
    return ". ".join(p for p in parts if p)
