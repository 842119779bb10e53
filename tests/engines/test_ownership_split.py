"""
Tests for OwnershipSplitCalculator.
"""

from datetime import date

import pytest

from royalty_engines.revenue import LicenseRevenue
from royalty_engines.split import OwnershipSplitCalculator, merge_shares
from royalty_kernel.domain.dtos import LineType, OwnershipShare
from royalty_kernel.exceptions import (
    InvalidBasisPointsError,
    OwnershipSplitError,
    UnresolvableAssetError,
)


def _revenue(cents: int, asset_id: str = "asset-1") -> LicenseRevenue:
    return LicenseRevenue(
        license_id="lic-1",
        asset_id=asset_id,
        window_start=date(2024, 1, 1),
        window_end=date(2024, 1, 31),
        days_active=31,
        contract_days=None,
        flat_fee_cents=cents,
        usage_gross_cents=0,
        usage_cents=0,
        usage_event_count=0,
        revenue_cents=cents,
    )


class TestSplit:
    def setup_method(self):
        self.calculator = OwnershipSplitCalculator()

    def test_two_owner_example(self):
        result = self.calculator.split(
            revenue=_revenue(100),
            shares=[OwnershipShare("creator-a", 6667), OwnershipShare("creator-b", 3333)],
        )
        assert [(ln.creator_id, ln.calculated_royalty_cents) for ln in result.lines] == [
            ("creator-a", 67),
            ("creator-b", 33),
        ]
        assert result.allocated_cents == 100
        assert result.reconciliation.within_tolerance

    def test_three_owner_example(self):
        result = self.calculator.split(
            revenue=_revenue(100),
            shares=[
                OwnershipShare("creator-a", 3333),
                OwnershipShare("creator-b", 3333),
                OwnershipShare("creator-c", 3334),
            ],
        )
        assert [ln.calculated_royalty_cents for ln in result.lines] == [33, 33, 34]

    def test_provider_order_does_not_matter(self):
        forward = self.calculator.split(
            revenue=_revenue(101),
            shares=[OwnershipShare("a", 5000), OwnershipShare("b", 5000)],
        )
        backward = self.calculator.split(
            revenue=_revenue(101),
            shares=[OwnershipShare("b", 5000), OwnershipShare("a", 5000)],
        )
        assert forward.lines == backward.lines
        # tie on remainder goes to the lexically first creator
        assert forward.lines[0].creator_id == "a"
        assert forward.lines[0].calculated_royalty_cents == 51

    def test_lines_carry_unit_revenue_and_share(self):
        result = self.calculator.split(
            revenue=_revenue(5000),
            shares=[OwnershipShare("creator-a", 10000)],
        )
        (line,) = result.lines
        assert line.line_type == LineType.STANDARD
        assert line.revenue_cents == 5000
        assert line.share_bps == 10000
        assert line.asset_id == "asset-1"
        assert line.license_id == "lic-1"
        assert line.details["ownership_total_bps"] == 10000
        assert line.details["days_active"] == 31

    def test_no_owners_is_unresolvable(self):
        with pytest.raises(UnresolvableAssetError) as exc_info:
            self.calculator.split(revenue=_revenue(100, "orphan"), shares=[])
        assert exc_info.value.code == "UNRESOLVABLE_ASSET"

    def test_shares_not_totalling_10000_rejected(self):
        with pytest.raises(OwnershipSplitError):
            self.calculator.split(
                revenue=_revenue(100),
                shares=[OwnershipShare("a", 6000), OwnershipShare("b", 3000)],
            )

    def test_bad_shares_tolerated_on_zero_revenue(self):
        result = self.calculator.split(
            revenue=_revenue(0),
            shares=[OwnershipShare("a", 6000), OwnershipShare("b", 3000)],
        )
        assert [ln.calculated_royalty_cents for ln in result.lines] == [0, 0]

    def test_out_of_range_share_rejected(self):
        with pytest.raises(InvalidBasisPointsError):
            self.calculator.split(
                revenue=_revenue(100),
                shares=[OwnershipShare("a", 12000), OwnershipShare("b", -2000)],
            )


class TestMergeShares:
    def test_duplicate_creators_are_combined(self):
        merged = merge_shares(
            [
                OwnershipShare("b", 2500),
                OwnershipShare("a", 5000),
                OwnershipShare("b", 2500),
            ]
        )
        assert merged == [OwnershipShare("a", 5000), OwnershipShare("b", 5000)]
