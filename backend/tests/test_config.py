"""
Tests for billing policy configuration read from the environment.
"""

import os
from decimal import Decimal
from unittest.mock import patch

import pytest

from app.config import BillingPolicy, get_billing_policy

POLICY_VARS = (
    "BILLING_TIMEZONE",
    "FEE_GRACE_PERIOD_DAYS",
    "FEE_DAILY_RATE",
    "FEE_ABANDONMENT_DAYS",
    "WAIVE_REASON_MIN_LENGTH",
)


@pytest.fixture
def clean_env():
    env = {k: v for k, v in os.environ.items() if k not in POLICY_VARS}
    with patch.dict(os.environ, env, clear=True):
        yield


class TestGetBillingPolicy:
    def test_defaults(self, clean_env):
        policy = get_billing_policy()
        assert policy == BillingPolicy()
        assert policy.timezone == "America/New_York"
        assert policy.grace_period_days == 1
        assert policy.daily_rate == Decimal("2.00")
        assert policy.abandonment_days == 30
        assert policy.waive_reason_min_length == 5

    def test_overrides(self, clean_env):
        with patch.dict(os.environ, {
            "BILLING_TIMEZONE": "America/Chicago",
            "FEE_GRACE_PERIOD_DAYS": "3",
            "FEE_DAILY_RATE": "1.75",
            "FEE_ABANDONMENT_DAYS": "45",
            "WAIVE_REASON_MIN_LENGTH": "10",
        }):
            policy = get_billing_policy()

        assert policy.timezone == "America/Chicago"
        assert policy.grace_period_days == 3
        assert policy.daily_rate == Decimal("1.75")
        assert policy.abandonment_days == 45
        assert policy.waive_reason_min_length == 10

    def test_blank_values_fall_back_to_defaults(self, clean_env):
        with patch.dict(os.environ, {"BILLING_TIMEZONE": "  ", "FEE_DAILY_RATE": ""}):
            policy = get_billing_policy()
        assert policy.timezone == "America/New_York"
        assert policy.daily_rate == Decimal("2.00")

    @pytest.mark.parametrize("name,value", [
        ("FEE_GRACE_PERIOD_DAYS", "one"),
        ("FEE_GRACE_PERIOD_DAYS", "-1"),
        ("FEE_DAILY_RATE", "two dollars"),
        ("FEE_DAILY_RATE", "-2.00"),
    ])
    def test_malformed_values_rejected(self, clean_env, name, value):
        with patch.dict(os.environ, {name: value}):
            with pytest.raises(ValueError, match=name):
                get_billing_policy()

    def test_policy_is_immutable(self):
        policy = BillingPolicy()
        with pytest.raises(Exception):
            policy.daily_rate = Decimal("5.00")
