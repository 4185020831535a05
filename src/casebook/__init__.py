"""
Casebook: a support-case data engine over a rate-limited tabular workbook.

Typed record access, batched and cached I/O, pessimistic locking and
cross-table integrity checking for cases stored one row per case across
several channel-specific tables.
"""

__version__ = "0.1.0"
