"""
Module: royalty_engines.threshold
Responsibility:
    Apply the minimum payout threshold to one creator's earnings for a run,
    consuming or extending their carryover balance, and assemble the
    creator's StatementDraft.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The policy is passed in
    explicitly; nothing is read from globals.

Invariants enforced:
    - ``eligible = earnings + prior_balance``.
    - Payable when ``eligible >= threshold`` or the oldest unpaid balance is
      at least ``grace_period_months`` old.  Payable statements consume the
      whole balance: ``carryover_out == 0`` and ``net == eligible - fee``.
    - Held statements pay nothing: ``net == 0`` and ``carryover_out ==
      eligible``.  A threshold_note line records the decision.
    - A non-zero prior balance always appears as a carryover line, so the
      statement is fully explained by its lines.
    - No cent is discarded: ``payable eligible + carryover_out == eligible``.

Audit relevance:
    The threshold note and carryover line details name the threshold, the
    grace period, the balance age and the reason a statement was paid or
    held.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from royalty_engines.tracer import traced_engine
from royalty_kernel.domain.dtos import LineDraft, LineType, StatementDraft
from royalty_kernel.domain.money import bps_share, sum_cents
from royalty_kernel.domain.periods import months_between
from royalty_kernel.domain.policy import RoyaltyPolicy

REASON_THRESHOLD_MET = "threshold_met"
REASON_GRACE_PERIOD = "grace_period_elapsed"
REASON_BELOW_THRESHOLD = "below_threshold"


@dataclass(frozen=True)
class ThresholdDecision:
    eligible_cents: int
    threshold_cents: int
    is_payable: bool
    reason: str
    unpaid_since: date
    age_months: int


class ThresholdManager:
    """
    Per-creator payout threshold and carryover policy.

    Contract:
        ``build_statement`` takes the creator's standard lines for the run
        and their prior balance, and returns a complete StatementDraft.
    """

    def __init__(self, policy: RoyaltyPolicy):
        self._policy = policy

    def decide(
        self,
        creator_id: str,
        earnings_cents: int,
        prior_balance_cents: int,
        prior_unpaid_since: date | None,
        period_start: date,
        period_end: date,
    ) -> ThresholdDecision:
        eligible = earnings_cents + prior_balance_cents
        threshold = self._policy.threshold_for(creator_id)

        if prior_balance_cents and prior_unpaid_since is not None:
            oldest = min(prior_unpaid_since, period_start)
        else:
            oldest = period_start
        age = months_between(oldest, period_end)

        if eligible >= threshold:
            reason, payable = REASON_THRESHOLD_MET, True
        elif age >= self._policy.grace_period_months:
            reason, payable = REASON_GRACE_PERIOD, True
        else:
            reason, payable = REASON_BELOW_THRESHOLD, False

        return ThresholdDecision(
            eligible_cents=eligible,
            threshold_cents=threshold,
            is_payable=payable,
            reason=reason,
            unpaid_since=oldest,
            age_months=age,
        )

    @traced_engine(
        "threshold",
        "1.0",
        fingerprint_fields=(
            "creator_id",
            "prior_balance_cents",
            "prior_unpaid_since",
            "period_start",
            "period_end",
        ),
    )
    def build_statement(
        self,
        *,
        creator_id: str,
        standard_lines: Sequence[LineDraft],
        prior_balance_cents: int,
        prior_unpaid_since: date | None,
        period_start: date,
        period_end: date,
    ) -> StatementDraft:
        earnings = sum_cents(line.calculated_royalty_cents for line in standard_lines)
        decision = self.decide(
            creator_id,
            earnings,
            prior_balance_cents,
            prior_unpaid_since,
            period_start,
            period_end,
        )

        lines = list(standard_lines)
        if prior_balance_cents:
            lines.append(
                LineDraft(
                    line_type=LineType.CARRYOVER,
                    creator_id=creator_id,
                    calculated_royalty_cents=prior_balance_cents,
                    period_start=prior_unpaid_since,
                    period_end=period_end,
                    details={
                        "consumed": decision.is_payable,
                        "reason": decision.reason,
                        "unpaid_since": prior_unpaid_since,
                        "age_months": decision.age_months,
                    },
                )
            )

        if decision.is_payable:
            fee = bps_share(decision.eligible_cents, self._policy.platform_fee_bps)
            return StatementDraft(
                creator_id=creator_id,
                total_earnings_cents=earnings,
                platform_fee_cents=fee,
                net_payable_cents=decision.eligible_cents - fee,
                carryover_in_cents=prior_balance_cents,
                carryover_out_cents=0,
                is_payable=True,
                unpaid_since=None,
                lines=tuple(lines),
            )

        lines.append(
            LineDraft(
                line_type=LineType.THRESHOLD_NOTE,
                creator_id=creator_id,
                calculated_royalty_cents=0,
                period_start=period_start,
                period_end=period_end,
                details={
                    "reason": decision.reason,
                    "eligible_cents": decision.eligible_cents,
                    "threshold_cents": decision.threshold_cents,
                    "carryover_out_cents": decision.eligible_cents,
                    "unpaid_since": decision.unpaid_since,
                    "age_months": decision.age_months,
                    "grace_period_months": self._policy.grace_period_months,
                },
            )
        )
        return StatementDraft(
            creator_id=creator_id,
            total_earnings_cents=earnings,
            platform_fee_cents=0,
            net_payable_cents=0,
            carryover_in_cents=prior_balance_cents,
            carryover_out_cents=decision.eligible_cents,
            is_payable=False,
            unpaid_since=decision.unpaid_since,
            lines=tuple(lines),
        )
