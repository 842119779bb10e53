"""
Tests for RevenueAggregator.

Covers:
- Flat fee pro-ration against the contracted interval
- Open-ended licenses
- Usage events in NET and GROSS mode
- Events outside the overlap window
- Scope violations recorded in the audit details
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from royalty_engines.revenue import RevenueAggregator, event_date
from royalty_kernel.domain.dtos import License, LicenseScope, UsageEvent, UsageRevenueBasis

JAN_START = date(2024, 1, 1)
JAN_END = date(2024, 1, 31)


def _event(day: date, cents: int, **dims) -> UsageEvent:
    return UsageEvent(
        amount_cents=cents,
        occurred_at=datetime(day.year, day.month, day.day, 15, tzinfo=timezone.utc),
        **dims,
    )


def _aggregate(aggregator, lic, events=(), start=JAN_START, end=JAN_END):
    return aggregator.aggregate(
        license=lic, events=list(events), period_start=start, period_end=end
    )


class TestFlatFee:
    def setup_method(self):
        self.aggregator = RevenueAggregator()

    def test_ten_of_thirty_contract_days(self):
        """A $30.00 fee with 10 of its 30 contracted days in the period earns $10.00."""
        lic = License(
            "lic-1", "asset-1", fee_cents=3000, rev_share_bps=10000,
            start_date=date(2024, 1, 22), end_date=date(2024, 2, 20),
        )
        revenue = _aggregate(self.aggregator, lic)

        assert revenue.days_active == 10
        assert revenue.contract_days == 30
        assert revenue.flat_fee_cents == 1000
        assert revenue.revenue_cents == 1000
        assert revenue.prorated

    def test_pro_ration_floors(self):
        lic = License(
            "lic-1", "asset-1", fee_cents=1000, rev_share_bps=0,
            start_date=date(2024, 1, 30), end_date=date(2024, 2, 1),
        )
        # 2 of 3 days: 666.67 -> 666
        assert _aggregate(self.aggregator, lic).flat_fee_cents == 666

    def test_license_entirely_inside_period_earns_full_fee(self):
        lic = License(
            "lic-1", "asset-1", fee_cents=2500, rev_share_bps=0,
            start_date=date(2024, 1, 10), end_date=date(2024, 1, 20),
        )
        revenue = _aggregate(self.aggregator, lic)
        assert revenue.flat_fee_cents == 2500
        assert not revenue.prorated

    def test_open_ended_license_earns_full_fee(self):
        lic = License(
            "lic-1", "asset-1", fee_cents=2500, rev_share_bps=0,
            start_date=date(2024, 1, 20),
        )
        revenue = _aggregate(self.aggregator, lic)
        assert revenue.days_active == 12
        assert revenue.contract_days is None
        assert revenue.flat_fee_cents == 2500
        assert not revenue.prorated

    def test_no_overlap_returns_none(self):
        lic = License(
            "lic-1", "asset-1", fee_cents=2500, rev_share_bps=0,
            start_date=date(2024, 2, 1),
        )
        assert _aggregate(self.aggregator, lic) is None

    def test_single_day_overlap_on_period_end(self):
        lic = License(
            "lic-1", "asset-1", fee_cents=3100, rev_share_bps=0,
            start_date=date(2024, 1, 31), end_date=date(2024, 3, 1),
        )
        revenue = _aggregate(self.aggregator, lic)
        assert revenue.days_active == 1
        assert revenue.flat_fee_cents == 3100 * 1 // 31

    def test_reversed_period_rejected(self):
        lic = License("lic-1", "asset-1", 100, 0, start_date=JAN_START)
        with pytest.raises(ValueError):
            _aggregate(self.aggregator, lic, start=JAN_END, end=JAN_START)


class TestUsageRevenue:
    def test_net_mode_sums_reported_amounts(self):
        lic = License("lic-1", "asset-1", 0, rev_share_bps=3000, start_date=JAN_START)
        events = [_event(date(2024, 1, 5), 1234), _event(date(2024, 1, 6), 766)]

        revenue = _aggregate(RevenueAggregator(UsageRevenueBasis.NET), lic, events)

        assert revenue.usage_gross_cents == 2000
        assert revenue.usage_cents == 2000
        assert revenue.usage_event_count == 2

    def test_gross_mode_applies_share_once(self):
        lic = License("lic-1", "asset-1", 500, rev_share_bps=3333, start_date=JAN_START)
        events = [_event(date(2024, 1, 5), 50), _event(date(2024, 1, 6), 50)]

        revenue = _aggregate(RevenueAggregator("gross"), lic, events)

        # 100 * 3333 / 10000 = 33.33 -> 33, applied to the sum not each event
        assert revenue.usage_cents == 33
        assert revenue.revenue_cents == 533

    def test_events_outside_window_ignored(self):
        lic = License(
            "lic-1", "asset-1", 0, rev_share_bps=10000,
            start_date=date(2024, 1, 10), end_date=date(2024, 1, 20),
        )
        events = [
            _event(date(2024, 1, 9), 100),
            _event(date(2024, 1, 10), 200),
            _event(date(2024, 1, 20), 300),
            _event(date(2024, 1, 21), 400),
        ]
        revenue = _aggregate(RevenueAggregator(), lic, events)
        assert revenue.usage_cents == 500
        assert revenue.usage_event_count == 2

    def test_event_date_uses_utc(self):
        late_evening = datetime(
            2024, 1, 31, 20, 0, tzinfo=timezone(timedelta(hours=-8))
        )
        assert event_date(late_evening) == date(2024, 2, 1)
        assert event_date(datetime(2024, 1, 31, 23, 0)) == date(2024, 1, 31)

    def test_zero_revenue_license_still_yields_result(self):
        lic = License("lic-1", "asset-1", 0, 0, start_date=JAN_START)
        revenue = _aggregate(RevenueAggregator(), lic)
        assert revenue is not None
        assert revenue.revenue_cents == 0


class TestScopeDetails:
    def test_out_of_scope_events_are_counted_not_dropped(self):
        lic = License(
            "lic-1", "asset-1", 0, 10000, start_date=JAN_START,
            scope=LicenseScope(geographies=("US", "CA"), channels=("web",)),
        )
        events = [
            _event(date(2024, 1, 2), 100, geography="us", channel="web"),
            _event(date(2024, 1, 3), 100, geography="FR", channel="tv", event_id="e-2"),
        ]

        revenue = _aggregate(RevenueAggregator(), lic, events)
        details = revenue.audit_details()

        assert revenue.usage_cents == 200
        assert details["scope_violation_count"] == 2
        assert {v["dimension"] for v in details["scope_violations"]} == {
            "geography",
            "channel",
        }
        assert details["scope_violations"][0]["event_id"] == "e-2"
