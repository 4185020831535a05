"""Table layouts, column addressing and field validation."""

from casebook.core.schema.columns import (
    MAX_COLUMN_INDEX,
    CellRange,
    column_to_index,
    index_to_column,
    parse_range,
)
from casebook.core.schema.layouts import build_descriptor, default_descriptors, table_id_for
from casebook.core.schema.mapper import SchemaMapper, coerce_date, coerce_flag, coerce_time, is_blank, to_text

__all__ = [
    "MAX_COLUMN_INDEX",
    "CellRange",
    "SchemaMapper",
    "build_descriptor",
    "coerce_date",
    "coerce_flag",
    "coerce_time",
    "column_to_index",
    "default_descriptors",
    "index_to_column",
    "is_blank",
    "parse_range",
    "table_id_for",
    "to_text",
]
