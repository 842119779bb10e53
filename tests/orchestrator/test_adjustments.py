"""
Manual adjustments: request, approval, rejection, reversal and batches.
"""

from uuid import uuid4

import pytest

from royalty_kernel.domain.dtos import AdjustmentStatus, AdjustmentType, LineType
from royalty_kernel.exceptions import (
    AdjustmentNotFoundError,
    AdjustmentStateError,
    InvalidAdjustmentError,
    JustificationRequiredError,
    RunLockedError,
)
from royalty_kernel.services.adjustment_service import AdjustmentRequest
from tests.conftest import TEST_ACTOR

REASON = "Late usage report from partner"


class TestRequestAdjustment:
    def test_small_amount_applies_immediately(
        self, orchestrator, calculated_run, statements_by_creator
    ):
        statement = statements_by_creator["creator-a"]

        line = orchestrator.request_adjustment(
            statement.id, TEST_ACTOR, 1500, AdjustmentType.BONUS, REASON
        )

        assert line.line_type == LineType.ADJUSTMENT
        assert line.adjustment_status == AdjustmentStatus.APPLIED
        assert line.calculated_royalty_cents == 1500
        refreshed = orchestrator.get_statement(statement.id)
        assert refreshed.adjustments_cents == 1500
        assert refreshed.net_payable_cents == 3500
        assert orchestrator.get_run(calculated_run.id).total_royalties_cents == 8500

    def test_large_amount_waits_for_approval(
        self, orchestrator, calculated_run, statements_by_creator
    ):
        statement = statements_by_creator["creator-a"]

        line = orchestrator.request_adjustment(
            statement.id, TEST_ACTOR, -25000, AdjustmentType.PENALTY, REASON
        )

        assert line.adjustment_status == AdjustmentStatus.PENDING_APPROVAL
        assert orchestrator.get_statement(statement.id).net_payable_cents == 2000
        assert [p.id for p in orchestrator.list_pending_adjustments(calculated_run.id)] == [
            line.id
        ]
        report = orchestrator.get_validation_report(calculated_run.id)
        assert "ADJUSTMENT_PENDING_APPROVAL" in {w.code for w in report.warnings}

    def test_threshold_amount_is_not_pending(self, orchestrator, statements_by_creator):
        line = orchestrator.request_adjustment(
            statements_by_creator["creator-b"].id,
            TEST_ACTOR,
            10000,
            "correction",
            REASON,
        )
        assert line.adjustment_status == AdjustmentStatus.APPLIED

    @pytest.mark.parametrize(
        "amount, adjustment_type",
        [
            (0, AdjustmentType.CORRECTION),
            (1.5, AdjustmentType.CORRECTION),
            (True, AdjustmentType.CORRECTION),
            (100, "gift"),
            (100, AdjustmentType.REVERSAL),
            (100, AdjustmentType.DISPUTE_RESOLUTION),
        ],
    )
    def test_invalid_requests(self, orchestrator, statements_by_creator, amount, adjustment_type):
        with pytest.raises(InvalidAdjustmentError):
            orchestrator.request_adjustment(
                statements_by_creator["creator-a"].id,
                TEST_ACTOR,
                amount,
                adjustment_type,
                REASON,
            )

    def test_reason_required(self, orchestrator, statements_by_creator):
        with pytest.raises(JustificationRequiredError):
            orchestrator.request_adjustment(
                statements_by_creator["creator-a"].id,
                TEST_ACTOR,
                100,
                AdjustmentType.BONUS,
                "late",
            )

    def test_locked_run_rejects_adjustments(
        self, orchestrator, calculated_run, statements_by_creator
    ):
        orchestrator.review_run(calculated_run.id, TEST_ACTOR, approve=True)
        with pytest.raises(RunLockedError) as exc_info:
            orchestrator.request_adjustment(
                statements_by_creator["creator-a"].id,
                TEST_ACTOR,
                100,
                AdjustmentType.BONUS,
                REASON,
            )
        assert exc_info.value.code == "RUN_LOCKED"


class TestApproval:
    def _pending(self, orchestrator, statement_id):
        return orchestrator.request_adjustment(
            statement_id, TEST_ACTOR, 20000, AdjustmentType.CORRECTION, REASON
        )

    def test_approve_applies_amount(self, orchestrator, calculated_run, statements_by_creator):
        statement = statements_by_creator["creator-b"]
        pending = self._pending(orchestrator, statement.id)

        approved = orchestrator.approve_adjustment(pending.id, "finance-lead")

        assert approved.adjustment_status == AdjustmentStatus.APPLIED
        assert orchestrator.get_statement(statement.id).net_payable_cents == 25000
        assert orchestrator.list_pending_adjustments() == []
        assert orchestrator.get_validation_report(calculated_run.id).is_valid

    def test_reject_leaves_totals(self, orchestrator, statements_by_creator):
        statement = statements_by_creator["creator-b"]
        pending = self._pending(orchestrator, statement.id)

        rejected = orchestrator.reject_adjustment(
            pending.id, "finance-lead", "Not supported by the contract"
        )

        assert rejected.adjustment_status == AdjustmentStatus.REJECTED
        assert orchestrator.get_statement(statement.id).net_payable_cents == 5000

    def test_cannot_approve_twice(self, orchestrator, statements_by_creator):
        pending = self._pending(orchestrator, statements_by_creator["creator-b"].id)
        orchestrator.approve_adjustment(pending.id, "finance-lead")
        with pytest.raises(AdjustmentStateError):
            orchestrator.approve_adjustment(pending.id, "finance-lead")

    def test_unknown_adjustment(self, orchestrator, calculated_run):
        with pytest.raises(AdjustmentNotFoundError):
            orchestrator.approve_adjustment(uuid4(), TEST_ACTOR)

    def test_standard_line_is_not_an_adjustment(self, orchestrator, statements_by_creator):
        statement = orchestrator.get_statement(statements_by_creator["creator-a"].id)
        standard = next(ln for ln in statement.lines if ln.line_type == LineType.STANDARD)
        with pytest.raises(AdjustmentNotFoundError):
            orchestrator.approve_adjustment(standard.id, TEST_ACTOR)


class TestReversal:
    def test_reversal_nets_to_zero(self, orchestrator, calculated_run, statements_by_creator):
        statement = statements_by_creator["creator-a"]
        original = orchestrator.request_adjustment(
            statement.id, TEST_ACTOR, 700, AdjustmentType.BONUS, REASON
        )

        reversal = orchestrator.reverse_adjustment(
            original.id, TEST_ACTOR, "Bonus was applied to the wrong creator"
        )

        assert reversal.adjustment_type == AdjustmentType.REVERSAL
        assert reversal.calculated_royalty_cents == -700
        assert reversal.reversal_of_id == original.id
        adjustments = orchestrator.list_statement_adjustments(statement.id)
        assert [a.adjustment_status for a in adjustments] == [
            AdjustmentStatus.REVERSED,
            AdjustmentStatus.APPLIED,
        ]
        refreshed = orchestrator.get_statement(statement.id)
        assert refreshed.adjustments_cents == 0
        assert refreshed.net_payable_cents == 2000
        assert orchestrator.get_run(calculated_run.id).total_royalties_cents == 7000
        assert orchestrator.get_validation_report(calculated_run.id).is_valid

    def test_reversal_cannot_be_reversed(self, orchestrator, statements_by_creator):
        original = orchestrator.request_adjustment(
            statements_by_creator["creator-a"].id,
            TEST_ACTOR,
            700,
            AdjustmentType.BONUS,
            REASON,
        )
        reversal = orchestrator.reverse_adjustment(original.id, TEST_ACTOR, REASON)
        with pytest.raises(InvalidAdjustmentError):
            orchestrator.reverse_adjustment(reversal.id, TEST_ACTOR, REASON)

    def test_pending_adjustment_cannot_be_reversed(self, orchestrator, statements_by_creator):
        pending = orchestrator.request_adjustment(
            statements_by_creator["creator-a"].id,
            TEST_ACTOR,
            50000,
            AdjustmentType.BONUS,
            REASON,
        )
        with pytest.raises(AdjustmentStateError):
            orchestrator.reverse_adjustment(pending.id, TEST_ACTOR, REASON)


class TestBatch:
    def test_failing_item_does_not_block_others(
        self, orchestrator, calculated_run, statements_by_creator
    ):
        a = statements_by_creator["creator-a"].id
        b = statements_by_creator["creator-b"].id
        missing = uuid4()

        results = orchestrator.batch_apply_adjustments(
            [
                AdjustmentRequest(a, 100, AdjustmentType.BONUS, REASON),
                AdjustmentRequest(missing, 100, AdjustmentType.BONUS, REASON),
                AdjustmentRequest(b, 0, AdjustmentType.BONUS, REASON),
                AdjustmentRequest(b, 30000, AdjustmentType.CORRECTION, REASON),
            ],
            TEST_ACTOR,
        )

        assert [r.success for r in results] == [True, False, False, True]
        assert results[1].error_code == "STATEMENT_NOT_FOUND"
        assert results[2].error_code == "INVALID_ADJUSTMENT"
        assert results[3].status == AdjustmentStatus.PENDING_APPROVAL.value
        assert orchestrator.get_statement(a).adjustments_cents == 100
        assert orchestrator.get_run(calculated_run.id).total_royalties_cents == 7100
