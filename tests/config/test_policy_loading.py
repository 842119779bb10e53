"""
Tests for RoyaltyPolicy and the YAML policy loader.

Verifies:
- Policy defaults and validation
- Snapshot round trip (runs store the snapshot they were calculated with)
- YAML parsing: nested and flat layouts, unknown keys, type checks
- get_active_policy() resolution order and its trace log
"""

import pytest

from royalty_config import DEFAULT_POLICY_PATH, get_active_policy
from royalty_config.loader import compute_checksum, load_policy, parse_policy
from royalty_kernel.domain.dtos import UsageRevenueBasis
from royalty_kernel.domain.policy import UNRESOLVABLE_FAIL, RoyaltyPolicy
from royalty_kernel.exceptions import InvalidBasisPointsError


class TestRoyaltyPolicy:
    def test_defaults(self):
        policy = RoyaltyPolicy()
        assert policy.minimum_payout_threshold_cents == 2000
        assert policy.grace_period_months == 12
        assert policy.usage_revenue_basis == UsageRevenueBasis.NET
        assert policy.adjustment_approval_threshold_cents == 10000

    def test_creator_override_takes_precedence(self):
        policy = RoyaltyPolicy(creator_threshold_overrides={"creator-vip": 500})
        assert policy.threshold_for("creator-vip") == 500
        assert policy.threshold_for("creator-other") == 2000

    def test_snapshot_round_trip(self):
        policy = RoyaltyPolicy(
            minimum_payout_threshold_cents=1000,
            creator_threshold_overrides={"b": 1, "a": 2},
            usage_revenue_basis=UsageRevenueBasis.GROSS,
            unresolvable_asset_mode=UNRESOLVABLE_FAIL,
        )
        snapshot = policy.to_snapshot()
        assert snapshot["usage_revenue_basis"] == "gross"
        assert list(snapshot["creator_threshold_overrides"]) == ["a", "b"]
        assert RoyaltyPolicy.from_snapshot(snapshot) == policy

    def test_empty_snapshot_yields_defaults(self):
        assert RoyaltyPolicy.from_snapshot(None) == RoyaltyPolicy()

    def test_snapshot_ignores_retired_keys(self):
        snapshot = RoyaltyPolicy().to_snapshot()
        snapshot["retired_setting"] = 1
        assert RoyaltyPolicy.from_snapshot(snapshot) == RoyaltyPolicy()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"minimum_payout_threshold_cents": -1},
            {"grace_period_months": -1},
            {"creator_threshold_overrides": {"x": -5}},
            {"unresolvable_asset_mode": "ignore"},
            {"outlier_multiplier": 0},
            {"dispute_reason_min_length": 50, "dispute_reason_max_length": 10},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            RoyaltyPolicy(**kwargs)

    def test_fee_outside_bps_range_rejected(self):
        with pytest.raises(InvalidBasisPointsError):
            RoyaltyPolicy(platform_fee_bps=10001)


class TestPolicyLoader:
    def test_packaged_default_matches_dataclass_defaults(self):
        assert load_policy(DEFAULT_POLICY_PATH) == RoyaltyPolicy()

    def test_flat_layout_is_accepted(self):
        policy = parse_policy({"minimum_payout_threshold_cents": 500, "name": "flat"})
        assert policy.minimum_payout_threshold_cents == 500
        assert policy.name == "flat"

    def test_nested_layout_with_overrides(self):
        policy = parse_policy(
            {
                "policy": {
                    "usage_revenue_basis": "gross",
                    "creator_threshold_overrides": {"creator-a": 100},
                }
            }
        )
        assert policy.usage_revenue_basis == UsageRevenueBasis.GROSS
        assert policy.threshold_for("creator-a") == 100

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="minimum_payout_treshold_cents"):
            parse_policy({"minimum_payout_treshold_cents": 500})

    @pytest.mark.parametrize("value", [20.0, "2000", True])
    def test_money_must_be_integer(self, value):
        with pytest.raises(ValueError):
            parse_policy({"minimum_payout_threshold_cents": value})

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_policy(tmp_path / "absent.yaml")

    def test_checksum_is_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestGetActivePolicy:
    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        custom = tmp_path / "custom.yaml"
        custom.write_text("policy:\n  name: custom\n  platform_fee_bps: 1500\n")
        monkeypatch.setenv("ROYALTY_POLICY_PATH", str(tmp_path / "ignored.yaml"))

        policy = get_active_policy(custom)

        assert policy.name == "custom"
        assert policy.platform_fee_bps == 1500

    def test_environment_variable_used_when_no_path(self, tmp_path, monkeypatch):
        env_file = tmp_path / "env.yaml"
        env_file.write_text("name: from-env\nversion: 7\n")
        monkeypatch.setenv("ROYALTY_POLICY_PATH", str(env_file))

        policy = get_active_policy()

        assert (policy.name, policy.version) == ("from-env", 7)

    def test_default_when_nothing_configured(self, monkeypatch):
        monkeypatch.delenv("ROYALTY_POLICY_PATH", raising=False)
        assert get_active_policy() == RoyaltyPolicy()

    def test_emits_policy_trace(self, monkeypatch, captured_logs):
        monkeypatch.delenv("ROYALTY_POLICY_PATH", raising=False)
        policy = get_active_policy()

        traces = [r for r in captured_logs() if r["message"] == "ROYALTY_POLICY_TRACE"]
        assert len(traces) == 1
        assert traces[0]["policy_name"] == "default"
        assert traces[0]["checksum"] == compute_checksum(policy.to_snapshot())
        assert traces[0]["source"] == str(DEFAULT_POLICY_PATH)
