"""Cross-table integrity checking."""

from casebook.engine.integrity.checker import IntegrityChecker, IntegrityOptions, ReportSummary
from casebook.engine.integrity.duplicates import detect_duplicates
from casebook.engine.integrity.rules import RULES, RuleContext
from casebook.engine.integrity.similarity import levenshtein, record_similarity, text_similarity

__all__ = [
    "RULES",
    "IntegrityChecker",
    "IntegrityOptions",
    "ReportSummary",
    "RuleContext",
    "detect_duplicates",
    "levenshtein",
    "record_similarity",
    "text_similarity",
]
