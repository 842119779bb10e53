"""
Module: royalty_engines.validation
Responsibility:
    Independently re-derive a calculated run's totals from its persisted
    lines and produce the report that gates locking.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The orchestrator loads the
    run's statements and lines through selectors and passes them in as
    frozen DTOs together with the policy stored on the run.

Invariants enforced:
    - ``is_valid == (len(errors) == 0)``.
    - Totals are recomputed from lines; stored totals are only compared,
      never trusted.
    - ERROR checks: statement arithmetic, run totals, ownership integrity
      per revenue unit, rounding reconciliation, excluded licenses.
    - WARNING checks: earnings outliers, zero-earning creators with active
      licenses, prorated-line ratio, scope violations, adjustments pending
      approval.

Audit relevance:
    ``validation_checks`` lists every check with pass/fail and counts, so an
    admin sees what was verified as well as what failed.  The summary is
    stored on the run when it is locked.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from royalty_engines.tracer import traced_engine
from royalty_kernel.domain.dtos import (
    AdjustmentStatus,
    LineInfo,
    LineType,
    RunInfo,
    StatementInfo,
)
from royalty_kernel.domain.money import BPS_DENOMINATOR, format_cents, reconcile_rounding
from royalty_kernel.domain.policy import RoyaltyPolicy

_COUNTED_ADJUSTMENTS = (AdjustmentStatus.APPLIED, AdjustmentStatus.REVERSED)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    severity: Severity
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "message": self.message,
            "context": self.context,
        }


@dataclass(frozen=True)
class ValidationCheck:
    name: str
    severity: Severity
    passed: bool
    checked: int
    failed: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "severity": self.severity.value,
            "passed": self.passed,
            "checked": self.checked,
            "failed": self.failed,
        }


@dataclass(frozen=True)
class ValidationReport:
    """
    Result of validating one run.

    Guarantees:
        - ``is_valid`` is True exactly when ``errors`` is empty.
        - Warnings never affect ``is_valid``.
    """

    run_id: UUID
    is_valid: bool
    errors: tuple[ValidationIssue, ...]
    warnings: tuple[ValidationIssue, ...]
    summary: dict[str, Any]
    breakdown: dict[str, Any]
    validation_checks: tuple[ValidationCheck, ...]

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": str(self.run_id),
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "summary": self.summary,
            "breakdown": self.breakdown,
            "validation_checks": [c.to_dict() for c in self.validation_checks],
        }

    def render_text(self) -> str:
        """Plain-text report for reviewers."""
        lines = [
            f"Royalty run {self.run_id}: {'VALID' if self.is_valid else 'INVALID'}",
            f"  statements: {self.summary.get('statement_count', 0)}",
            f"  revenue: {format_cents(self.summary.get('total_revenue_cents', 0))}",
            f"  royalties: {format_cents(self.summary.get('total_royalties_cents', 0))}",
            f"  net payable: {format_cents(self.summary.get('total_net_payable_cents', 0))}",
            "",
            "Checks:",
        ]
        for check in self.validation_checks:
            mark = "ok" if check.passed else "FAIL"
            lines.append(
                f"  [{mark}] {check.name} ({check.severity.value}): "
                f"{check.failed}/{check.checked} failed"
            )
        for title, issues in (("Errors", self.errors), ("Warnings", self.warnings)):
            if issues:
                lines.append("")
                lines.append(f"{title}:")
                lines.extend(f"  {i.code}: {i.message}" for i in issues)
        return "\n".join(lines)


class _Collector:
    """Accumulates issues and per-check counts."""

    def __init__(self) -> None:
        self.issues: list[ValidationIssue] = []
        self.checks: list[ValidationCheck] = []

    def record(
        self,
        name: str,
        severity: Severity,
        checked: int,
        failures: list[tuple[str, str, dict[str, Any]]],
    ) -> None:
        for code, message, context in failures:
            self.issues.append(ValidationIssue(code, severity, message, context))
        self.checks.append(
            ValidationCheck(
                name=name,
                severity=severity,
                passed=not failures,
                checked=checked,
                failed=len(failures),
            )
        )


def _sum(lines: Sequence[LineInfo]) -> int:
    return sum(line.calculated_royalty_cents for line in lines)


def _counted_adjustments(lines: Sequence[LineInfo]) -> list[LineInfo]:
    return [
        line
        for line in lines
        if line.line_type == LineType.ADJUSTMENT
        and line.adjustment_status in _COUNTED_ADJUSTMENTS
    ]


class ValidationEngine:
    """Read-only consistency and plausibility checks over a calculated run."""

    def __init__(self, policy: RoyaltyPolicy):
        self._policy = policy

    @traced_engine("validation", "1.0", fingerprint_fields=("run",))
    def validate(
        self,
        *,
        run: RunInfo,
        statements: Sequence[StatementInfo],
        exclusions: Sequence[dict[str, Any]] = (),
    ) -> ValidationReport:
        collector = _Collector()
        units = self._revenue_units(statements)

        self._check_statement_arithmetic(statements, collector)
        self._check_run_totals(run, statements, units, collector)
        self._check_ownership(units, collector)
        self._check_rounding(units, collector)
        self._check_exclusions(exclusions, collector)
        self._check_outliers(statements, collector)
        self._check_zero_earnings(statements, collector)
        self._check_prorated_ratio(statements, collector)
        self._check_scope(statements, collector)
        self._check_pending_adjustments(statements, collector)

        errors = tuple(i for i in collector.issues if i.severity == Severity.ERROR)
        warnings = tuple(i for i in collector.issues if i.severity == Severity.WARNING)
        return ValidationReport(
            run_id=run.id,
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            summary=self._summary(run, statements, units, errors, warnings),
            breakdown=self._breakdown(statements),
            validation_checks=tuple(collector.checks),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _revenue_units(
        statements: Sequence[StatementInfo],
    ) -> dict[tuple[str, str], list[LineInfo]]:
        units: dict[tuple[str, str], list[LineInfo]] = defaultdict(list)
        for statement in statements:
            for line in statement.lines:
                if line.line_type == LineType.STANDARD:
                    units[(line.asset_id or "", line.license_id or "")].append(line)
        return dict(sorted(units.items()))

    @staticmethod
    def _standard_lines(statement: StatementInfo) -> list[LineInfo]:
        return [ln for ln in statement.lines if ln.line_type == LineType.STANDARD]

    # ------------------------------------------------------------------
    # ERROR checks
    # ------------------------------------------------------------------

    def _check_statement_arithmetic(
        self, statements: Sequence[StatementInfo], collector: _Collector
    ) -> None:
        failures = []
        for s in statements:
            earnings = _sum(self._standard_lines(s))
            carryover = _sum([ln for ln in s.lines if ln.line_type == LineType.CARRYOVER])
            adjustments = _sum(_counted_adjustments(s.lines))
            ctx = {"statement_id": str(s.id), "creator_id": s.creator_id}

            if earnings != s.total_earnings_cents:
                failures.append((
                    "STATEMENT_EARNINGS_MISMATCH",
                    f"Creator {s.creator_id}: lines sum to {earnings}, "
                    f"statement records {s.total_earnings_cents}",
                    {**ctx, "derived": earnings, "stored": s.total_earnings_cents},
                ))
            if carryover != s.carryover_in_cents:
                failures.append((
                    "STATEMENT_CARRYOVER_MISMATCH",
                    f"Creator {s.creator_id}: carryover lines sum to {carryover}, "
                    f"statement records {s.carryover_in_cents}",
                    {**ctx, "derived": carryover, "stored": s.carryover_in_cents},
                ))
            if adjustments != s.adjustments_cents:
                failures.append((
                    "STATEMENT_ADJUSTMENT_MISMATCH",
                    f"Creator {s.creator_id}: adjustment lines sum to "
                    f"{adjustments}, statement records {s.adjustments_cents}",
                    {**ctx, "derived": adjustments, "stored": s.adjustments_cents},
                ))

            eligible = earnings + carryover
            if s.is_payable:
                base = eligible - s.platform_fee_cents
                expected_out = 0
            else:
                base = 0
                expected_out = eligible
            expected_net = base + adjustments
            if expected_net != s.net_payable_cents:
                failures.append((
                    "STATEMENT_NET_MISMATCH",
                    f"Creator {s.creator_id}: net payable should be "
                    f"{expected_net}, statement records {s.net_payable_cents}",
                    {**ctx, "derived": expected_net, "stored": s.net_payable_cents},
                ))
            if expected_out != s.carryover_out_cents:
                failures.append((
                    "STATEMENT_CARRYOVER_OUT_MISMATCH",
                    f"Creator {s.creator_id}: carryover out should be "
                    f"{expected_out}, statement records {s.carryover_out_cents}",
                    {**ctx, "derived": expected_out, "stored": s.carryover_out_cents},
                ))
        collector.record("statement_arithmetic", Severity.ERROR, len(statements), failures)

    def _check_run_totals(
        self,
        run: RunInfo,
        statements: Sequence[StatementInfo],
        units: dict[tuple[str, str], list[LineInfo]],
        collector: _Collector,
    ) -> None:
        failures = []
        royalties = sum(
            _sum(self._standard_lines(s)) + _sum(_counted_adjustments(s.lines))
            for s in statements
        )
        if royalties != run.total_royalties_cents:
            failures.append((
                "RUN_ROYALTIES_MISMATCH",
                f"Statements sum to {royalties}, run records "
                f"{run.total_royalties_cents}",
                {"derived": royalties, "stored": run.total_royalties_cents},
            ))

        revenue = sum(lines[0].revenue_cents for lines in units.values())
        if revenue != run.total_revenue_cents:
            failures.append((
                "RUN_REVENUE_MISMATCH",
                f"Revenue units sum to {revenue}, run records "
                f"{run.total_revenue_cents}",
                {"derived": revenue, "stored": run.total_revenue_cents},
            ))
        collector.record("run_totals", Severity.ERROR, 2, failures)

    def _check_ownership(
        self,
        units: dict[tuple[str, str], list[LineInfo]],
        collector: _Collector,
    ) -> None:
        failures = []
        for (asset_id, license_id), lines in units.items():
            revenue = lines[0].revenue_cents
            if revenue == 0:
                continue
            ctx = {"asset_id": asset_id, "license_id": license_id}
            total_bps = sum(line.share_bps or 0 for line in lines)
            if total_bps != BPS_DENOMINATOR:
                failures.append((
                    "OWNERSHIP_SPLIT_INVALID",
                    f"Asset {asset_id} (license {license_id}): shares sum to "
                    f"{total_bps} bps",
                    {**ctx, "total_bps": total_bps},
                ))
            if any(line.revenue_cents != revenue for line in lines):
                failures.append((
                    "UNIT_REVENUE_INCONSISTENT",
                    f"Asset {asset_id} (license {license_id}): lines disagree on "
                    "unit revenue",
                    ctx,
                ))
            allocated = _sum(lines)
            if allocated != revenue:
                failures.append((
                    "ALLOCATION_NOT_CONSERVED",
                    f"Asset {asset_id} (license {license_id}): allocated "
                    f"{allocated} of {revenue}",
                    {**ctx, "allocated": allocated, "revenue": revenue},
                ))
        collector.record("ownership_integrity", Severity.ERROR, len(units), failures)

    def _check_rounding(
        self,
        units: dict[tuple[str, str], list[LineInfo]],
        collector: _Collector,
    ) -> None:
        failures = []
        for (asset_id, license_id), lines in units.items():
            weights = [line.share_bps or 0 for line in lines]
            if sum(weights) == 0:
                continue
            rec = reconcile_rounding(
                lines[0].revenue_cents,
                weights,
                [line.calculated_royalty_cents for line in lines],
            )
            if not rec.within_tolerance:
                failures.append((
                    "ROUNDING_OUT_OF_TOLERANCE",
                    f"Asset {asset_id} (license {license_id}): rounding drift "
                    f"{rec.total_difference_cents} cents, max item deviation "
                    f"{rec.max_item_deviation}",
                    {"asset_id": asset_id, "license_id": license_id, **rec.to_dict()},
                ))
        collector.record("rounding_reconciliation", Severity.ERROR, len(units), failures)

    def _check_exclusions(
        self, exclusions: Sequence[dict[str, Any]], collector: _Collector
    ) -> None:
        failures = [
            (
                exc.get("reason_code", "LICENSE_EXCLUDED"),
                exc.get("message")
                or f"License {exc.get('license_id')} was excluded from the run",
                dict(exc),
            )
            for exc in exclusions
        ]
        collector.record("excluded_licenses", Severity.ERROR, len(exclusions), failures)

    # ------------------------------------------------------------------
    # WARNING checks
    # ------------------------------------------------------------------

    def _check_outliers(
        self, statements: Sequence[StatementInfo], collector: _Collector
    ) -> None:
        failures = []
        count = len(statements)
        total = sum(s.total_earnings_cents for s in statements)
        multiplier = self._policy.outlier_multiplier
        if count > 1 and total > 0:
            for s in statements:
                # earnings > multiplier * (total / count), in integers
                if s.total_earnings_cents * count > multiplier * total:
                    failures.append((
                        "EARNINGS_OUTLIER",
                        f"Creator {s.creator_id} earned "
                        f"{format_cents(s.total_earnings_cents)}, more than "
                        f"{multiplier}x the run mean",
                        {
                            "statement_id": str(s.id),
                            "creator_id": s.creator_id,
                            "earnings_cents": s.total_earnings_cents,
                            "mean_cents": total // count,
                        },
                    ))
        collector.record("earnings_outliers", Severity.WARNING, count, failures)

    def _check_zero_earnings(
        self, statements: Sequence[StatementInfo], collector: _Collector
    ) -> None:
        failures = []
        with_licenses = [s for s in statements if self._standard_lines(s)]
        for s in with_licenses:
            if s.total_earnings_cents == 0:
                failures.append((
                    "ZERO_EARNINGS_ACTIVE_LICENSES",
                    f"Creator {s.creator_id} has active licenses but no earnings",
                    {
                        "statement_id": str(s.id),
                        "creator_id": s.creator_id,
                        "license_count": len(self._standard_lines(s)),
                    },
                ))
        collector.record("zero_earnings", Severity.WARNING, len(with_licenses), failures)

    def _check_prorated_ratio(
        self, statements: Sequence[StatementInfo], collector: _Collector
    ) -> None:
        standard = [ln for s in statements for ln in self._standard_lines(s)]
        prorated = [ln for ln in standard if ln.details.get("prorated")]
        failures = []
        limit = self._policy.prorated_warning_ratio_bps
        if standard and len(prorated) * BPS_DENOMINATOR > limit * len(standard):
            failures.append((
                "HIGH_PRORATED_RATIO",
                f"{len(prorated)} of {len(standard)} lines are prorated",
                {
                    "prorated_lines": len(prorated),
                    "standard_lines": len(standard),
                    "limit_bps": limit,
                },
            ))
        collector.record("prorated_ratio", Severity.WARNING, len(standard), failures)

    def _check_scope(
        self, statements: Sequence[StatementInfo], collector: _Collector
    ) -> None:
        seen: dict[tuple[str, str], int] = {}
        for s in statements:
            for ln in self._standard_lines(s):
                count = ln.details.get("scope_violation_count", 0)
                if count:
                    seen[(ln.asset_id or "", ln.license_id or "")] = count
        failures = [
            (
                "SCOPE_VIOLATION",
                f"License {license_id}: {count} usage event dimension(s) outside "
                "the licensed scope",
                {"asset_id": asset_id, "license_id": license_id, "violations": count},
            )
            for (asset_id, license_id), count in sorted(seen.items())
        ]
        collector.record("license_scope", Severity.WARNING, len(seen), failures)

    def _check_pending_adjustments(
        self, statements: Sequence[StatementInfo], collector: _Collector
    ) -> None:
        failures = [
            (
                "ADJUSTMENT_PENDING_APPROVAL",
                f"Creator {s.creator_id}: adjustment of "
                f"{format_cents(ln.calculated_royalty_cents)} awaits approval",
                {"statement_id": str(s.id), "adjustment_id": str(ln.id)},
            )
            for s in statements
            for ln in s.lines
            if ln.line_type == LineType.ADJUSTMENT
            and ln.adjustment_status == AdjustmentStatus.PENDING_APPROVAL
        ]
        collector.record(
            "pending_adjustments", Severity.WARNING, len(statements), failures
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def _summary(
        self,
        run: RunInfo,
        statements: Sequence[StatementInfo],
        units: dict[tuple[str, str], list[LineInfo]],
        errors: tuple[ValidationIssue, ...],
        warnings: tuple[ValidationIssue, ...],
    ) -> dict[str, Any]:
        return {
            "run_id": str(run.id),
            "period_start": run.period_start.isoformat(),
            "period_end": run.period_end.isoformat(),
            "statement_count": len(statements),
            "line_count": sum(len(s.lines) for s in statements),
            "revenue_unit_count": len(units),
            "total_revenue_cents": run.total_revenue_cents,
            "total_royalties_cents": run.total_royalties_cents,
            "total_net_payable_cents": sum(s.net_payable_cents for s in statements),
            "payable_count": sum(1 for s in statements if s.is_payable),
            "held_count": sum(1 for s in statements if not s.is_payable),
            "carryover_out_cents": sum(s.carryover_out_cents for s in statements),
            "error_count": len(errors),
            "warning_count": len(warnings),
        }

    @staticmethod
    def _breakdown(statements: Sequence[StatementInfo]) -> dict[str, Any]:
        by_type: dict[str, dict[str, int]] = {
            t.value: {"count": 0, "cents": 0} for t in LineType
        }
        by_status: dict[str, int] = defaultdict(int)
        for s in statements:
            by_status[s.status.value] += 1
            for ln in s.lines:
                bucket = by_type[ln.line_type.value]
                bucket["count"] += 1
                bucket["cents"] += ln.calculated_royalty_cents
        return {
            "lines_by_type": by_type,
            "statements_by_status": dict(sorted(by_status.items())),
        }
