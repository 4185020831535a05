"""Column letters and A1 range addressing.

Column letters use bijective base-26 (``A`` = 1, ``Z`` = 26, ``AA`` = 27).
Indexes exposed here are zero-based; rows are one-based as in the workbook.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

MAX_COLUMN_LETTERS = 3
# Zero-based index of "ZZZ"
MAX_COLUMN_INDEX = 26 + 26**2 + 26**3 - 1

_CELL_PATTERN = re.compile(r"^([A-Z]{1,3})([1-9][0-9]*)$")


def column_to_index(letters: str) -> int:
    """Zero-based index of a column letter identifier.

    Raises:
        ValueError: If ``letters`` is not 1-3 uppercase ASCII letters
    """
    if not letters or len(letters) > MAX_COLUMN_LETTERS or not letters.isascii() or not letters.isalpha():
        raise ValueError(f"Invalid column letters: {letters!r}")
    if not letters.isupper():
        raise ValueError(f"Column letters must be uppercase: {letters!r}")
    number = 0
    for char in letters:
        number = number * 26 + (ord(char) - ord("A") + 1)
    return number - 1


def index_to_column(index: int) -> str:
    """Column letters for a zero-based index.

    Raises:
        ValueError: If ``index`` is outside ``0..MAX_COLUMN_INDEX``
    """
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index <= MAX_COLUMN_INDEX:
        raise ValueError(f"Column index out of range: {index!r}")
    letters = []
    number = index + 1
    while number:
        number, remainder = divmod(number - 1, 26)
        letters.append(chr(ord("A") + remainder))
    return "".join(reversed(letters))


@dataclass(frozen=True, slots=True, order=True)
class CellRange:
    """Rectangular block of cells.

    Ordering is row-major on the top-left corner, which is the order in which
    the batch engine issues physical calls.
    """

    row1: int
    col1: int
    row2: int
    col2: int

    def __post_init__(self) -> None:
        if self.row1 < 1 or self.row2 < self.row1:
            raise ValueError(f"Invalid row span {self.row1}..{self.row2}")
        if self.col1 < 0 or self.col2 < self.col1 or self.col2 > MAX_COLUMN_INDEX:
            raise ValueError(f"Invalid column span {self.col1}..{self.col2}")

    @classmethod
    def cell(cls, row: int, col: int) -> CellRange:
        return cls(row, col, row, col)

    @classmethod
    def row_span(cls, row: int, col1: int, col2: int) -> CellRange:
        return cls(row, col1, row, col2)

    @property
    def height(self) -> int:
        return self.row2 - self.row1 + 1

    @property
    def width(self) -> int:
        return self.col2 - self.col1 + 1

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    @property
    def a1(self) -> str:
        start = f"{index_to_column(self.col1)}{self.row1}"
        if self.row1 == self.row2 and self.col1 == self.col2:
            return start
        return f"{start}:{index_to_column(self.col2)}{self.row2}"

    def overlaps(self, other: CellRange) -> bool:
        return not (
            other.row2 < self.row1 or other.row1 > self.row2 or other.col2 < self.col1 or other.col1 > self.col2
        )

    def cells(self) -> Iterator[tuple[int, int]]:
        """(row, col) pairs in row-major order."""
        for row in range(self.row1, self.row2 + 1):
            for col in range(self.col1, self.col2 + 1):
                yield row, col

    def __str__(self) -> str:
        return self.a1


def _parse_cell(text: str) -> tuple[int, int]:
    match = _CELL_PATTERN.match(text)
    if match is None:
        raise ValueError(f"Invalid cell reference: {text!r}")
    return int(match.group(2)), column_to_index(match.group(1))


def parse_range(address: str) -> CellRange:
    """Parse an A1 address (``"C5"`` or ``"A2:AT2"``).

    Raises:
        ValueError: If the address is malformed or the corners are reversed
    """
    if not isinstance(address, str) or not address:
        raise ValueError(f"Invalid address: {address!r}")
    start, sep, end = address.strip().partition(":")
    row1, col1 = _parse_cell(start)
    if not sep:
        return CellRange.cell(row1, col1)
    row2, col2 = _parse_cell(end)
    return CellRange(row1, col1, row2, col2)
