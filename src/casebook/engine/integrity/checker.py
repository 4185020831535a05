"""Integrity Checker: audits a snapshot of every table.

A run pulls one snapshot through the Record Model, applies the record
rules and the bounded duplicate pass, optionally corrects channel
mismatches, derives recommendations and caches the report keyed by its
options.
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from casebook.contracts.enums import IntegrityRule, Severity
from casebook.contracts.errors import CasebookError
from casebook.contracts.fields import FieldName
from casebook.contracts.results import (
    Correction,
    DuplicateStats,
    IntegrityFinding,
    IntegrityReport,
    Recommendation,
    RecordRef,
)
from casebook.core.cache import TTLCache
from casebook.engine.integrity.duplicates import detect_duplicates
from casebook.engine.integrity.rules import RULES, RuleContext

if TYPE_CHECKING:
    from casebook.contracts.records import Snapshot
    from casebook.core.config import IntegritySettings
    from casebook.core.schema.mapper import SchemaMapper
    from casebook.engine.records import RecordModel

logger = structlog.get_logger(__name__)

# More critical findings than this earn an urgent recommendation
_URGENT_CRITICAL_COUNT = 10


@dataclass(frozen=True)
class IntegrityOptions:
    """What an integrity run covers.

    Attributes:
        tables: Tables to audit; None means every table
        check_duplicates: Run the fuzzy duplicate pass
        auto_correct: Fix channel mismatches through the Record Model
        use_cache: Return a cached report for identical options when available
    """

    tables: tuple[str, ...] | None = None
    check_duplicates: bool = True
    auto_correct: bool = False
    use_cache: bool = True


@dataclass(frozen=True, slots=True)
class ReportSummary:
    """One entry of the run history."""

    operation_id: str
    generated_at: datetime
    total_records: int
    critical: int
    warnings: int
    corrections: int
    duration_ms: float


class IntegrityChecker:
    """Runs integrity passes and keeps recent reports.

    Args:
        records: Record Model used for snapshots and corrections
        mapper: Table layouts
        settings: Rule configuration and report cache lifetime
        today: Date used for future-date checks (injectable for tests)
    """

    def __init__(
        self,
        records: RecordModel,
        mapper: SchemaMapper,
        settings: IntegritySettings,
        *,
        today: Callable[[], datetime] | None = None,
    ) -> None:
        self._records = records
        self._mapper = mapper
        self._settings = settings
        self._now = today or (lambda: datetime.now(UTC))
        self._reports: TTLCache[IntegrityOptions, IntegrityReport] = TTLCache(
            settings.result_ttl_seconds, name="integrity_reports"
        )
        self._history: deque[tuple[float, IntegrityReport]] = deque(maxlen=settings.history_size)

    def run(self, options: IntegrityOptions | None = None) -> IntegrityReport:
        """Audit the selected tables and return the report."""
        opts = options or IntegrityOptions()
        if opts.use_cache and not opts.auto_correct:
            found, cached = self._reports.get(opts)
            if found and cached is not None:
                logger.debug("Integrity report served from cache", operation_id=cached.operation_id)
                return cached

        started = time.perf_counter()
        operation_id = uuid.uuid4().hex
        snapshot = self._records.snapshot(list(opts.tables) if opts.tables is not None else None, bypass_cache=True)
        findings_by_pass, duplicate_stats = self._evaluate(snapshot, opts)

        report = IntegrityReport(
            operation_id=operation_id,
            generated_at=self._now(),
            total_records=snapshot.total_records,
            findings_by_pass=findings_by_pass,
            duplicate_stats=duplicate_stats,
        )
        if opts.auto_correct:
            report.corrections_applied = self._correct(report.findings_by_pass.get(IntegrityRule.CHANNEL_COHERENCE, []))
        report.recommendations = self._recommend(report)
        report.duration_ms = round((time.perf_counter() - started) * 1000, 2)

        self._reports.put(opts, report)
        self._history.append((time.monotonic(), report))
        counts = report.summary_counts
        logger.info(
            "Integrity check completed",
            operation_id=operation_id,
            total_records=report.total_records,
            critical=counts[Severity.CRITICAL],
            warnings=counts[Severity.WARNING],
            corrections=len(report.corrections_applied),
            duration_ms=report.duration_ms,
        )
        return report

    def _evaluate(
        self, snapshot: Snapshot, opts: IntegrityOptions
    ) -> tuple[dict[IntegrityRule, list[IntegrityFinding]], DuplicateStats]:
        results: dict[IntegrityRule, list[IntegrityFinding]] = {
            IntegrityRule.SNAPSHOT: [
                IntegrityFinding(
                    rule=IntegrityRule.SNAPSHOT,
                    severity=Severity.WARNING,
                    message=f"Table {table_id!r} could not be read: {reason}",
                    details={"table_id": table_id, "reason": reason},
                )
                for table_id, reason in snapshot.failures.items()
            ]
        }
        records = snapshot.all_records()
        ctx = RuleContext(mapper=self._mapper, settings=self._settings, today=self._now().date())
        for rule, check in RULES:
            results[rule] = check(records, ctx)

        stats = DuplicateStats(records=len(records))
        duplicates: list[IntegrityFinding] = []
        if opts.check_duplicates and self._settings.duplicates.enabled:
            duplicates, stats = detect_duplicates(records, self._settings.duplicates)
        results[IntegrityRule.DUPLICATES] = duplicates
        return results, stats

    def _correct(self, findings: list[IntegrityFinding]) -> list[Correction]:
        """Rewrite mismatched channels; every attempt is reported."""
        corrections = []
        for finding in findings:
            expected = finding.details["expected"]
            actual = finding.details["actual"]
            for ref in finding.record_refs:
                corrections.append(self._correct_channel(ref, actual, expected))
        return corrections

    def _correct_channel(self, ref: RecordRef, actual: str, expected: str) -> Correction:
        correction = Correction(
            rule=IntegrityRule.CHANNEL_COHERENCE,
            table_id=ref.table_id,
            case_id=ref.case_id,
            field=FieldName.CHANNEL,
            old_value=actual,
            new_value=expected,
            applied=False,
        )
        if not ref.case_id:
            return replace(correction, error="Row has no case id")
        try:
            self._records.update_record(ref.table_id, ref.case_id, {FieldName.CHANNEL: expected})
        except CasebookError as e:
            logger.warning("Channel correction failed", table_id=ref.table_id, case_id=ref.case_id, error=str(e))
            return replace(correction, error=str(e))
        logger.info("Channel corrected", table_id=ref.table_id, case_id=ref.case_id, old=actual, new=expected)
        return replace(correction, applied=True)

    @staticmethod
    def _recommend(report: IntegrityReport) -> list[Recommendation]:
        recommendations = []
        critical = report.critical
        if len(critical) > _URGENT_CRITICAL_COUNT:
            recommendations.append(
                Recommendation(
                    priority="high",
                    category="data_quality",
                    title="Urgent Data Quality Issues",
                    description=f"{len(critical)} critical data integrity issues found",
                    action="Review and fix critical issues immediately to prevent data corruption",
                )
            )
        uniqueness = report.findings_by_pass.get(IntegrityRule.CASE_ID_UNIQUENESS, [])
        exact = [f for f in report.findings_by_pass.get(IntegrityRule.DUPLICATES, []) if f.severity == Severity.CRITICAL]
        if uniqueness or exact:
            recommendations.append(
                Recommendation(
                    priority="high",
                    category="duplicates",
                    title="Remove Duplicate Records",
                    description=f"{len(uniqueness)} duplicated case ids and {len(exact)} exact duplicate pairs found",
                    action="Review and remove or merge duplicate records",
                )
            )
        incomplete = report.findings_by_pass.get(IntegrityRule.COMPLETENESS, [])
        if incomplete:
            recommendations.append(
                Recommendation(
                    priority="medium",
                    category="completeness",
                    title="Complete Missing Data",
                    description=f"{len(incomplete)} records have missing required fields",
                    action="Fill in missing required fields",
                )
            )
        unfixed = [
            f
            for f in report.findings_by_pass.get(IntegrityRule.CHANNEL_COHERENCE, [])
            if not any(c.applied and c.case_id in f.case_ids for c in report.corrections_applied)
        ]
        if unfixed:
            recommendations.append(
                Recommendation(
                    priority="medium",
                    category="consistency",
                    title="Fix Channel Mismatches",
                    description=f"{len(unfixed)} records store a channel that does not match their table",
                    action="Re-run the check with auto-correction enabled",
                )
            )
        return recommendations

    def history(self, limit: int = 10) -> list[ReportSummary]:
        """Summaries of runs younger than the report lifetime, newest first."""
        cutoff = time.monotonic() - self._settings.result_ttl_seconds
        reports = [report for stamp, report in reversed(self._history) if stamp > cutoff][:limit]
        return [
            ReportSummary(
                operation_id=report.operation_id,
                generated_at=report.generated_at,
                total_records=report.total_records,
                critical=len(report.critical),
                warnings=len(report.warnings),
                corrections=len(report.corrections_applied),
                duration_ms=report.duration_ms,
            )
            for report in reports
        ]

    def clear(self) -> None:
        self._reports.clear()
        self._history.clear()
