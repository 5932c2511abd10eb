"""
test_fees.py - Unit tests for FeeCalculator

Tests:
- Fee computation, truncation and zero rates
- Unsupported assets
- Owner-gated administration
"""

import pytest
from decimal import Decimal

from optionbook import (
    FeeCalculator, FeePolicy, Ledger, token,
    UnauthorizedCaller, UnsupportedAsset,
)


@pytest.fixture
def calculator():
    ledger = Ledger("fees", verbose=False)
    ledger.register_unit(token("TKB", "Token B", decimal_places=6))
    fees = FeeCalculator(owner="admin", fee_recipient="treasury", view=ledger)
    fees.set_fee_rate("admin", "TKB", Decimal("0.01"))
    return fees


class TestGetFee:

    def test_one_percent(self, calculator):
        assert calculator.get_fee("TKB", Decimal("10")) == Decimal("0.1")

    def test_fee_truncated_to_unit_precision(self, calculator):
        # 0.01 * 0.0000999 = 0.000000999 -> 0.000000 at 6 places
        assert calculator.get_fee("TKB", Decimal("0.0000999")) == Decimal("0")
        assert calculator.get_fee("TKB", Decimal("1.2345678")) == Decimal("0.012345")

    def test_zero_rate(self, calculator):
        calculator.set_fee_rate("admin", "TKB", Decimal("0"))
        assert calculator.get_fee("TKB", Decimal("10")) == Decimal("0")

    def test_unsupported_asset_raises(self, calculator):
        with pytest.raises(UnsupportedAsset, match="TKA"):
            calculator.get_fee("TKA", Decimal("10"))

    def test_disabled_asset_raises(self, calculator):
        calculator.set_supported("admin", "TKB", False)
        with pytest.raises(UnsupportedAsset):
            calculator.get_fee("TKB", Decimal("10"))
        assert calculator.get_fee_rate("TKB") == Decimal("0.01")

    def test_without_view_fee_is_exact(self):
        fees = FeeCalculator(owner="admin", fee_recipient="treasury")
        fees.set_fee_rate("admin", "TKB", Decimal("0.003"))
        assert fees.get_fee("TKB", Decimal("1.1")) == Decimal("0.0033")

    def test_satisfies_fee_policy_protocol(self, calculator):
        assert isinstance(calculator, FeePolicy)


class TestAdministration:

    def test_only_owner_sets_rate(self, calculator):
        with pytest.raises(UnauthorizedCaller):
            calculator.set_fee_rate("mallory", "TKB", Decimal("0.5"))
        assert calculator.get_fee_rate("TKB") == Decimal("0.01")

    @pytest.mark.parametrize("rate", [Decimal("-0.01"), Decimal("1"), Decimal("1.5")])
    def test_rate_out_of_range(self, calculator, rate):
        with pytest.raises(ValueError, match="fee rate"):
            calculator.set_fee_rate("admin", "TKB", rate)

    def test_only_owner_toggles_support(self, calculator):
        with pytest.raises(UnauthorizedCaller):
            calculator.set_supported("mallory", "TKB", False)
        assert calculator.is_supported("TKB")

    def test_set_fee_recipient(self, calculator):
        calculator.set_fee_recipient("admin", "vault")
        assert calculator.fee_recipient == "vault"

    def test_only_owner_sets_recipient(self, calculator):
        with pytest.raises(UnauthorizedCaller):
            calculator.set_fee_recipient("mallory", "mallory")
        assert calculator.fee_recipient == "treasury"

    def test_empty_recipient_rejected(self, calculator):
        with pytest.raises(ValueError):
            calculator.set_fee_recipient("admin", "")
