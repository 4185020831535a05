# src/casebook/core/backend/schema.py
"""SQLAlchemy table definitions for the SQL workbook and lock store.

Uses SQLAlchemy Core (not ORM). Cells are stored sparsely: an empty cell has
no row in ``cells``.
"""

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
)

# Shared metadata for all tables
metadata = MetaData()

# === Workbook ===

sheets_table = Table(
    "sheets",
    metadata,
    Column("sheet_id", String(128), primary_key=True),
    Column("position", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

cells_table = Table(
    "cells",
    metadata,
    Column("sheet_id", String(128), ForeignKey("sheets.sheet_id"), nullable=False),
    Column("row_index", Integer, nullable=False),  # one-based, as in A1 notation
    Column("col_index", Integer, nullable=False),  # zero-based
    Column("value_json", Text, nullable=False),
    PrimaryKeyConstraint("sheet_id", "row_index", "col_index"),
)

cell_formats_table = Table(
    "cell_formats",
    metadata,
    Column("sheet_id", String(128), ForeignKey("sheets.sheet_id"), nullable=False),
    Column("row_index", Integer, nullable=False),
    Column("col_index", Integer, nullable=False),
    Column("format_json", Text, nullable=False),
    PrimaryKeyConstraint("sheet_id", "row_index", "col_index"),
)

Index("ix_cells_sheet_row", cells_table.c.sheet_id, cells_table.c.row_index)

# === Locks ===

locks_table = Table(
    "locks",
    metadata,
    Column("lock_key", String(256), primary_key=True),
    Column("ticket_id", String(64), nullable=False),
    Column("owner_id", String(128), nullable=False),
    Column("acquired_at", Float, nullable=False),  # epoch seconds
    Column("expires_at", Float, nullable=False),
    Column("timeout", Float, nullable=False),
)
