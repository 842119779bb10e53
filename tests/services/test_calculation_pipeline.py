"""
Tests for RoyaltyCalculator, the engine pipeline for one period.

No database: the calculator only reads from the collaborators and the
prior balances it is handed.
"""

from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from royalty_kernel.domain.dtos import LineType
from royalty_kernel.domain.policy import UNRESOLVABLE_FAIL, RoyaltyPolicy
from royalty_kernel.exceptions import OwnershipSplitError, UnresolvableAssetError
from royalty_kernel.selectors.statement_selector import PriorBalance
from royalty_services.calculation import RoyaltyCalculator
from tests.conftest import JAN_END, JAN_START


def _prior(creator_id, cents, since=date(2023, 12, 1)):
    return PriorBalance(
        creator_id=creator_id,
        carryover_cents=cents,
        unpaid_since=since,
        statement_id=uuid4(),
        run_id=uuid4(),
        period_end=date(2023, 12, 31),
    )


class TestPipeline:
    def test_two_creator_catalog(self, two_creator_catalog, usage_source, policy):
        calculator = RoyaltyCalculator(two_creator_catalog, usage_source, policy)
        result = calculator.calculate(JAN_START, JAN_END, {})

        by_creator = {d.creator_id: d for d in result.drafts}
        assert [d.creator_id for d in result.drafts] == ["creator-a", "creator-b"]
        assert by_creator["creator-a"].total_earnings_cents == 2000
        assert by_creator["creator-b"].total_earnings_cents == 5000
        assert result.total_revenue_cents == 7000
        assert result.total_royalties_cents == 7000
        assert result.revenue_unit_count == 2
        assert result.payable_count == 2
        assert result.exclusions == ()

    def test_usage_events_add_to_flat_fee(self, provider, usage_source, policy):
        provider.add_license("lic-001", "asset-001", fee_cents=1000, owners={"creator-a": 10000})
        usage_source.add_event("lic-001", 700, date(2024, 1, 10))
        usage_source.add_event("lic-001", 300, date(2024, 1, 11))
        # outside the period; ignored
        usage_source.add_event("lic-001", 9999, date(2024, 2, 2))

        result = RoyaltyCalculator(provider, usage_source, policy).calculate(
            JAN_START, JAN_END, {}
        )

        (draft,) = result.drafts
        assert draft.total_earnings_cents == 2000
        (line,) = [ln for ln in draft.lines if ln.line_type == LineType.STANDARD]
        assert line.details["usage_event_count"] == 2

    def test_deterministic_regardless_of_provider_order(self, usage_source, policy):
        from tests.conftest import FakeProvider

        forward, backward = FakeProvider(), FakeProvider()
        specs = [
            ("lic-001", "asset-001", 1234, {"creator-a": 5000, "creator-b": 5000}),
            ("lic-002", "asset-002", 999, {"creator-b": 3333, "creator-c": 6667}),
        ]
        for license_id, asset_id, fee, owners in specs:
            forward.add_license(license_id, asset_id, fee_cents=fee, owners=owners)
        for license_id, asset_id, fee, owners in reversed(specs):
            reordered = dict(reversed(list(owners.items())))
            backward.add_license(license_id, asset_id, fee_cents=fee, owners=reordered)

        first = RoyaltyCalculator(forward, usage_source, policy)
        second = RoyaltyCalculator(backward, usage_source, policy)
        assert first.calculate(JAN_START, JAN_END, {}) == second.calculate(
            JAN_START, JAN_END, {}
        )

    def test_prior_balance_only_creator_gets_a_statement(
        self, single_creator_catalog, usage_source, policy
    ):
        result = RoyaltyCalculator(single_creator_catalog, usage_source, policy).calculate(
            JAN_START, JAN_END, {"creator-z": _prior("creator-z", 400)}
        )

        by_creator = {d.creator_id: d for d in result.drafts}
        assert set(by_creator) == {"creator-a", "creator-z"}
        assert by_creator["creator-z"].total_earnings_cents == 0
        assert by_creator["creator-z"].carryover_out_cents == 400
        # carried balances are not royalties of this run
        assert result.total_royalties_cents == 5000

    def test_license_outside_period_is_skipped(self, provider, usage_source, policy):
        provider.add_license(
            "lic-001", "asset-001", fee_cents=5000,
            start_date=date(2024, 2, 1), owners={"creator-a": 10000},
        )
        result = RoyaltyCalculator(provider, usage_source, policy).calculate(
            JAN_START, JAN_END, {}
        )
        assert result.drafts == ()
        assert result.license_count == 0


class TestFailureModes:
    def test_unresolvable_asset_excluded_by_default(
        self, single_creator_catalog, usage_source, policy, captured_logs
    ):
        single_creator_catalog.add_license("lic-009", "asset-orphan", fee_cents=4000)

        result = RoyaltyCalculator(single_creator_catalog, usage_source, policy).calculate(
            JAN_START, JAN_END, {}
        )

        (excluded,) = result.exclusions
        assert excluded.license_id == "lic-009"
        assert excluded.reason_code == "UNRESOLVABLE_ASSET"
        assert excluded.revenue_cents == 4000
        assert result.total_revenue_cents == 5000
        assert "1 license(s) excluded" in result.summary_text()
        assert any(r["message"] == "license_excluded" for r in captured_logs())

    def test_unresolvable_asset_fails_in_fail_mode(self, single_creator_catalog, usage_source):
        single_creator_catalog.add_license("lic-009", "asset-orphan", fee_cents=4000)
        calculator = RoyaltyCalculator(
            single_creator_catalog,
            usage_source,
            RoyaltyPolicy(unresolvable_asset_mode=UNRESOLVABLE_FAIL),
        )
        with pytest.raises(UnresolvableAssetError):
            calculator.calculate(JAN_START, JAN_END, {})

    def test_bad_ownership_split_propagates(self, provider, usage_source, policy):
        provider.add_license(
            "lic-001", "asset-001", fee_cents=3000,
            owners={"creator-a": 6000, "creator-b": 3000},
        )
        with pytest.raises(OwnershipSplitError) as exc_info:
            RoyaltyCalculator(provider, usage_source, policy).calculate(
                JAN_START, JAN_END, {}
            )
        assert exc_info.value.code == "OWNERSHIP_SPLIT_INVALID"

    def test_event_timestamps_are_read_in_utc(self, provider, usage_source, policy):
        provider.add_license("lic-001", "asset-001", fee_cents=0, owners={"creator-a": 10000})
        # 2024-02-01 01:00 UTC is still January 31st in New York
        usage_source.add_event(
            "lic-001", 5000, datetime(2024, 2, 1, 1, 0, tzinfo=timezone.utc)
        )
        result = RoyaltyCalculator(provider, usage_source, policy).calculate(
            JAN_START, JAN_END, {}
        )
        assert result.total_revenue_cents == 0
