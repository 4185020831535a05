"""Workbook backends: the physical tabular store behind the batch engine."""

from casebook.core.backend.database import WorkbookDB
from casebook.core.backend.memory import InMemoryWorkbook, PhysicalCall
from casebook.core.backend.protocol import Workbook
from casebook.core.backend.sql import SqlWorkbook

__all__ = ["InMemoryWorkbook", "PhysicalCall", "SqlWorkbook", "Workbook", "WorkbookDB"]
