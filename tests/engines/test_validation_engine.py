"""
Tests for ValidationEngine.

The engine receives frozen DTOs, so these tests build statements by hand
and then break exactly one invariant at a time.
"""

from dataclasses import replace
from datetime import date
from uuid import uuid4

from royalty_engines.validation import Severity, ValidationEngine
from royalty_kernel.domain.dtos import (
    AdjustmentStatus,
    AdjustmentType,
    LineInfo,
    LineType,
    RunInfo,
    RunStatus,
    StatementInfo,
    StatementStatus,
)
from royalty_kernel.domain.policy import RoyaltyPolicy


def _line(
    statement_id,
    seq,
    cents,
    line_type=LineType.STANDARD,
    asset_id="asset-1",
    license_id="lic-1",
    revenue=None,
    share_bps=10000,
    details=None,
    adjustment_status=None,
):
    standard = line_type == LineType.STANDARD
    return LineInfo(
        id=uuid4(),
        statement_id=statement_id,
        line_seq=seq,
        line_type=line_type,
        asset_id=asset_id if standard else None,
        license_id=license_id if standard else None,
        revenue_cents=(cents if revenue is None else revenue) if standard else 0,
        share_bps=share_bps if standard else None,
        calculated_royalty_cents=cents,
        details=details or {},
        adjustment_status=adjustment_status,
        adjustment_type=AdjustmentType.CORRECTION if adjustment_status else None,
    )


def _statement(creator_id, lines_spec, carryover_in=0, adjustments=0, payable=True):
    """Build a statement whose stored totals agree with its lines."""
    sid = uuid4()
    lines = tuple(spec(sid, i) for i, spec in enumerate(lines_spec, start=1))
    earnings = sum(
        ln.calculated_royalty_cents for ln in lines if ln.line_type == LineType.STANDARD
    )
    eligible = earnings + carryover_in
    return StatementInfo(
        id=sid,
        run_id=uuid4(),
        creator_id=creator_id,
        status=StatementStatus.PENDING,
        total_earnings_cents=earnings,
        platform_fee_cents=0,
        adjustments_cents=adjustments,
        net_payable_cents=(eligible if payable else 0) + adjustments,
        carryover_in_cents=carryover_in,
        carryover_out_cents=0 if payable else eligible,
        is_payable=payable,
        lines=lines,
    )


def _run(statements, revenue, royalties=None):
    if royalties is None:
        royalties = sum(
            ln.calculated_royalty_cents
            for s in statements
            for ln in s.lines
            if ln.line_type == LineType.STANDARD
            or (
                ln.line_type == LineType.ADJUSTMENT
                and ln.adjustment_status
                in (AdjustmentStatus.APPLIED, AdjustmentStatus.REVERSED)
            )
        )
    return RunInfo(
        id=uuid4(),
        period_start=date(2024, 1, 1),
        period_end=date(2024, 1, 31),
        status=RunStatus.CALCULATED,
        total_revenue_cents=revenue,
        total_royalties_cents=royalties,
        notes=None,
        created_by="admin-1",
        version=3,
        statement_count=len(statements),
    )


def _co_owned_pair():
    """asset-1 earns 100, split 67/33 between a and b."""
    a = _statement(
        "creator-a",
        [lambda sid, i: _line(sid, i, 67, revenue=100, share_bps=6667)],
    )
    b = _statement(
        "creator-b",
        [lambda sid, i: _line(sid, i, 33, revenue=100, share_bps=3333)],
    )
    return [a, b]


def _codes(issues):
    return {issue.code for issue in issues}


class TestCleanRun:
    def test_consistent_run_is_valid(self):
        statements = _co_owned_pair()
        report = ValidationEngine(RoyaltyPolicy()).validate(
            run=_run(statements, revenue=100), statements=statements
        )

        assert report.is_valid
        assert report.errors == ()
        assert report.warnings == ()
        assert report.summary["statement_count"] == 2
        assert report.summary["revenue_unit_count"] == 1
        assert report.summary["total_net_payable_cents"] == 100
        assert all(check.passed for check in report.validation_checks)

    def test_report_renders_and_serialises(self):
        statements = _co_owned_pair()
        report = ValidationEngine(RoyaltyPolicy()).validate(
            run=_run(statements, revenue=100), statements=statements
        )
        text = report.render_text()
        assert "VALID" in text
        assert "[ok] ownership_integrity" in text
        assert report.to_dict()["is_valid"] is True


class TestErrorChecks:
    def setup_method(self):
        self.engine = ValidationEngine(RoyaltyPolicy())

    def test_statement_earnings_mismatch(self):
        a, b = _co_owned_pair()
        a = replace(a, total_earnings_cents=70, net_payable_cents=70)
        report = self.engine.validate(run=_run([a, b], 100), statements=[a, b])

        assert not report.is_valid
        assert "STATEMENT_EARNINGS_MISMATCH" in _codes(report.errors)

    def test_run_royalties_mismatch(self):
        statements = _co_owned_pair()
        report = self.engine.validate(
            run=_run(statements, revenue=100, royalties=99), statements=statements
        )
        assert _codes(report.errors) == {"RUN_ROYALTIES_MISMATCH"}

    def test_run_revenue_mismatch(self):
        statements = _co_owned_pair()
        report = self.engine.validate(run=_run(statements, revenue=150), statements=statements)
        assert _codes(report.errors) == {"RUN_REVENUE_MISMATCH"}

    def test_missing_owner_breaks_ownership_and_conservation(self):
        a, _ = _co_owned_pair()
        report = self.engine.validate(run=_run([a], 100), statements=[a])
        assert {"OWNERSHIP_SPLIT_INVALID", "ALLOCATION_NOT_CONSERVED"} <= _codes(report.errors)

    def test_rounding_out_of_tolerance(self):
        a = _statement(
            "creator-a", [lambda sid, i: _line(sid, i, 70, revenue=100, share_bps=5000)]
        )
        b = _statement(
            "creator-b", [lambda sid, i: _line(sid, i, 30, revenue=100, share_bps=5000)]
        )
        report = self.engine.validate(run=_run([a, b], 100), statements=[a, b])
        assert "ROUNDING_OUT_OF_TOLERANCE" in _codes(report.errors)

    def test_held_statement_must_carry_everything_forward(self):
        a = _statement(
            "creator-a", [lambda sid, i: _line(sid, i, 1500)], payable=False
        )
        broken = replace(a, carryover_out_cents=1000)
        report = self.engine.validate(run=_run([broken], 1500), statements=[broken])
        assert _codes(report.errors) == {"STATEMENT_CARRYOVER_OUT_MISMATCH"}

    def test_counted_adjustments_must_match_statement(self):
        a = _statement(
            "creator-a",
            [
                lambda sid, i: _line(sid, i, 5000),
                lambda sid, i: _line(
                    sid, i, 250, LineType.ADJUSTMENT,
                    adjustment_status=AdjustmentStatus.APPLIED,
                ),
            ],
            adjustments=250,
        )
        ok = self.engine.validate(run=_run([a], 5000), statements=[a])
        assert ok.is_valid

        broken = replace(a, adjustments_cents=0, net_payable_cents=5000)
        report = self.engine.validate(run=_run([broken], 5000), statements=[broken])
        assert "STATEMENT_ADJUSTMENT_MISMATCH" in _codes(report.errors)

    def test_excluded_licenses_are_errors(self):
        statements = _co_owned_pair()
        exclusion = {
            "license_id": "lic-9",
            "asset_id": "asset-9",
            "revenue_cents": 4000,
            "reason_code": "UNRESOLVABLE_ASSET",
            "message": "Asset asset-9 has no ownership records",
        }
        report = self.engine.validate(
            run=_run(statements, 100), statements=statements, exclusions=[exclusion]
        )
        assert _codes(report.errors) == {"UNRESOLVABLE_ASSET"}
        assert report.errors[0].context["license_id"] == "lic-9"


class TestWarningChecks:
    def setup_method(self):
        self.engine = ValidationEngine(RoyaltyPolicy())

    def test_outlier_earnings(self):
        statements = [
            _statement(
                f"creator-{n}",
                [lambda sid, i, n=n: _line(sid, i, 100, asset_id=f"asset-{n}")],
            )
            for n in range(4)
        ]
        statements.append(
            _statement("creator-big", [lambda sid, i: _line(sid, i, 10000, asset_id="asset-big")])
        )
        report = self.engine.validate(
            run=_run(statements, revenue=10400), statements=statements
        )

        assert report.is_valid
        outliers = [w for w in report.warnings if w.code == "EARNINGS_OUTLIER"]
        assert [w.context["creator_id"] for w in outliers] == ["creator-big"]

    def test_zero_earnings_with_active_license(self):
        a = _statement("creator-a", [lambda sid, i: _line(sid, i, 0, revenue=0)])
        report = self.engine.validate(run=_run([a], 0), statements=[a])
        assert _codes(report.warnings) == {"ZERO_EARNINGS_ACTIVE_LICENSES"}

    def test_high_prorated_ratio(self):
        a = _statement(
            "creator-a",
            [lambda sid, i: _line(sid, i, 1000, details={"prorated": True})],
        )
        report = self.engine.validate(run=_run([a], 1000), statements=[a])
        assert _codes(report.warnings) == {"HIGH_PRORATED_RATIO"}

    def test_scope_violation(self):
        a = _statement(
            "creator-a",
            [lambda sid, i: _line(sid, i, 1000, details={"scope_violation_count": 3})],
        )
        report = self.engine.validate(run=_run([a], 1000), statements=[a])
        (warning,) = report.warnings
        assert warning.code == "SCOPE_VIOLATION"
        assert warning.severity == Severity.WARNING
        assert warning.context["violations"] == 3

    def test_pending_adjustment(self):
        a = _statement(
            "creator-a",
            [
                lambda sid, i: _line(sid, i, 5000),
                lambda sid, i: _line(
                    sid, i, 25000, LineType.ADJUSTMENT,
                    adjustment_status=AdjustmentStatus.PENDING_APPROVAL,
                ),
            ],
        )
        report = self.engine.validate(run=_run([a], 5000), statements=[a])
        assert report.is_valid
        assert _codes(report.warnings) == {"ADJUSTMENT_PENDING_APPROVAL"}
