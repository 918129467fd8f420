"""
Domain models for the whisky collection service.

Defines the record schema aligned with the `whisky` table created at bootstrap,
the update payload, and the mapping from a raw store row to a record.
"""
from __future__ import annotations

from typing import Annotated, Any, Mapping, Optional, Sequence, Union

from pydantic import AfterValidator, BaseModel, Field, ValidationError

from whisky_api.domain.errors import StoreInvariantViolation

NAME_MAX_LENGTH = 100
ORIGIN_MAX_LENGTH = 100

Row = Union[Sequence[Any], Mapping[str, Any]]


def _reject_nul(value: str) -> str:
    # PostgreSQL text columns cannot store NUL bytes.
    if "\x00" in value:
        raise ValueError("must not contain NUL characters")
    return value


Text = Annotated[str, AfterValidator(_reject_nul)]


class Whisky(BaseModel):
    """
    Representation of a single row in the `whisky` table.

    `id` is None until the store assigns one on insert.
    """

    id: Optional[int] = Field(None, description="Store-generated primary key.")
    name: Text = Field(..., max_length=NAME_MAX_LENGTH, description="Bottling name.")
    origin: Text = Field(..., max_length=ORIGIN_MAX_LENGTH, description="Region of origin.")

    model_config = {
        "frozen": True,
        "extra": "ignore",
    }


class WhiskyUpdate(BaseModel):
    """Full replacement payload for an existing record; both fields are required."""

    name: Text = Field(..., max_length=NAME_MAX_LENGTH)
    origin: Text = Field(..., max_length=ORIGIN_MAX_LENGTH)

    model_config = {
        "frozen": True,
        "extra": "ignore",
    }


def record_from_row(row: Row) -> Whisky:
    """
    Map a `(id, name, origin)` row, or a mapping with those keys, to a Whisky.

    Raises StoreInvariantViolation when the row does not match the table schema.
    """
    if isinstance(row, Mapping):
        values = {key: row.get(key) for key in ("id", "name", "origin")}
    else:
        if len(row) != 3:
            raise StoreInvariantViolation(f"Expected 3 columns, got {len(row)}")
        values = dict(zip(("id", "name", "origin"), row))

    if values["id"] is None:
        raise StoreInvariantViolation("Stored whisky has no id")
    try:
        return Whisky.model_validate(values)
    except ValidationError as exc:
        raise StoreInvariantViolation("Stored whisky does not match the schema", exc) from exc


__all__ = [
    "NAME_MAX_LENGTH",
    "ORIGIN_MAX_LENGTH",
    "Whisky",
    "WhiskyUpdate",
    "record_from_row",
]
