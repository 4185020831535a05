"""Engine: Record Model, Integrity Checker and the CasebookEngine facade."""

from casebook.engine.engine import CasebookEngine
from casebook.engine.integrity import IntegrityChecker, IntegrityOptions, ReportSummary
from casebook.engine.records import RecordModel

__all__ = ["CasebookEngine", "IntegrityChecker", "IntegrityOptions", "RecordModel", "ReportSummary"]
