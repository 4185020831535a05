"""Batch I/O request types.

Addresses are A1 ranges (``"C5"``, ``"A2:AT2"``) and are validated by the
batch engine at admission, not here, so that malformed requests can be
reported individually instead of raising at construction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class CellFormat:
    """Presentation metadata attached to a range by an update."""

    background_color: str | None = None
    font_color: str | None = None
    font_weight: str | None = None
    number_format: str | None = None
    horizontal_alignment: str | None = None
    vertical_alignment: str | None = None

    def as_dict(self) -> dict[str, str]:
        """Only the attributes that are set."""
        return {
            key: value
            for key, value in (
                ("background_color", self.background_color),
                ("font_color", self.font_color),
                ("font_weight", self.font_weight),
                ("number_format", self.number_format),
                ("horizontal_alignment", self.horizontal_alignment),
                ("vertical_alignment", self.vertical_alignment),
            )
            if value is not None
        }


@dataclass(frozen=True, slots=True)
class ReadRequest:
    table: str
    address: str


@dataclass(frozen=True, slots=True)
class WriteRequest:
    """Overwrite a range with a rectangular block of values."""

    table: str
    address: str
    values: list[list[Any]]


@dataclass(frozen=True, slots=True)
class UpdateRequest:
    """Update values and/or presentation of a range.

    At least one of ``values`` or ``format`` must be given.
    """

    table: str
    address: str
    values: list[list[Any]] | None = None
    format: CellFormat | None = None


@dataclass(frozen=True, slots=True)
class DeleteRequest:
    """Clear the values of a range."""

    table: str
    address: str


BatchRequest = ReadRequest | WriteRequest | UpdateRequest | DeleteRequest
