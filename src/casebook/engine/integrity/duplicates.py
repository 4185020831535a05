"""Bounded fuzzy duplicate detection.

Exact duplicates are found first by grouping records on their normalised
configured fields, which is linear and never limited by the budget. The
comparison budget is then spent on fuzzy scoring only: all pairs while
``n(n-1)/2`` fits, otherwise pairs inside each block of the block field,
block by block in key order, until the budget runs out. Potential
duplicates are capped.
"""

from __future__ import annotations

from collections.abc import Iterator
from itertools import combinations
from typing import TYPE_CHECKING

import structlog

from casebook.contracts.enums import IntegrityRule, Severity
from casebook.contracts.results import DuplicateStats, IntegrityFinding, RecordRef
from casebook.core.schema.mapper import to_text
from casebook.engine.integrity.similarity import record_similarity

if TYPE_CHECKING:
    from casebook.contracts.records import Record
    from casebook.core.config import DuplicateSettings

logger = structlog.get_logger(__name__)

Key = tuple[str, ...]


def _ref(record: Record) -> RecordRef:
    return RecordRef(table_id=record.table_id, row=record.row or 0, case_id=record.case_id)


def _location(record: Record) -> str:
    return f"{record.table_id} row {record.row}"


def _key(record: Record, settings: DuplicateSettings) -> Key:
    # Two records score exactly 1.0 iff these tuples match and are not all blank.
    return tuple(to_text(record.get(entry.field)).lower() for entry in settings.fields)


def _exact_groups(records: list[Record], keys: list[Key]) -> list[list[Record]]:
    grouped: dict[Key, list[Record]] = {}
    for record, key in zip(records, keys, strict=True):
        if any(key):
            grouped.setdefault(key, []).append(record)
    return [group for group in grouped.values() if len(group) > 1]


def _blocks(indexed: list[int], records: list[Record], settings: DuplicateSettings) -> list[list[int]]:
    grouped: dict[str, list[int]] = {}
    for i in indexed:
        grouped.setdefault(to_text(records[i].get(settings.block_field)).lower(), []).append(i)
    return [grouped[key] for key in sorted(grouped)]


def _pairs(records: list[Record], settings: DuplicateSettings, stats: DuplicateStats) -> Iterator[tuple[int, int]]:
    indexed = list(range(len(records)))
    n = len(indexed)
    if n * (n - 1) // 2 <= settings.max_comparisons:
        yield from combinations(indexed, 2)
        return
    stats.blocked = True
    for block in _blocks(indexed, records, settings):
        yield from combinations(block, 2)


def detect_duplicates(records: list[Record], settings: DuplicateSettings) -> tuple[list[IntegrityFinding], DuplicateStats]:
    """Report exact duplicates, then score pairs for potential ones."""
    stats = DuplicateStats(records=len(records))
    keys = [_key(record, settings) for record in records]

    exact = [
        IntegrityFinding(
            rule=IntegrityRule.DUPLICATES,
            severity=Severity.CRITICAL,
            message=f"Exact duplicate between {_location(first)} and {_location(second)}",
            record_refs=(_ref(first), _ref(second)),
            details={"type": "exact_duplicate", "score": 1.0},
        )
        for group in _exact_groups(records, keys)
        for first, second in combinations(group, 2)
    ]

    potential: list[IntegrityFinding] = []
    for i, j in _pairs(records, settings, stats):
        if keys[i] == keys[j]:
            continue
        if stats.comparisons >= settings.max_comparisons:
            stats.truncated = True
            break
        stats.comparisons += 1
        first, second = records[i], records[j]
        score = record_similarity(first, second, settings.fields)
        if score < settings.threshold:
            continue
        stats.potential_total += 1
        if len(potential) < settings.max_potential_duplicates:
            potential.append(
                IntegrityFinding(
                    rule=IntegrityRule.DUPLICATES,
                    severity=Severity.WARNING,
                    message=(
                        f"Potential duplicate ({round(score * 100)}% similar) between "
                        f"{_location(first)} and {_location(second)}"
                    ),
                    record_refs=(_ref(first), _ref(second)),
                    details={"type": "potential_duplicate", "score": round(score, 4)},
                )
            )

    if stats.truncated:
        logger.warning(
            "Duplicate detection stopped at comparison budget",
            records=stats.records,
            comparisons=stats.comparisons,
            blocked=stats.blocked,
            exact=len(exact),
        )
    return exact + potential, stats
