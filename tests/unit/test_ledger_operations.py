"""
test_ledger_operations.py - Unit tests for Ledger class operations

Tests:
- Ledger creation, wallet and unit registration
- Minting through the system wallet
- Allowances (approve / transferFrom)
- Transaction execution, rejection and idempotency
- Time management, test mode and cloning
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from optionbook import (
    Ledger, Move, ExecuteResult, TransactionOrigin, OriginType, build_transaction, token,
    LedgerError, WalletNotRegistered, UnitNotRegistered, SYSTEM_WALLET,
)


T0 = datetime(2025, 1, 1)
TRANSFER = TransactionOrigin(OriginType.USER_ACTION, "test")


@pytest.fixture
def token_ledger():
    ledger = Ledger("test", T0, verbose=False)
    ledger.register_unit(token("TKA", "Token A"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    ledger.register_wallet("escrow")
    ledger.mint("alice", "TKA", Decimal("100"))
    return ledger


class TestLedgerCreation:
    """Tests for Ledger initialization."""

    def test_create_ledger(self):
        ledger = Ledger("test", T0, verbose=False)
        assert ledger.name == "test"
        assert ledger.current_time == T0

    def test_system_wallet_auto_registered(self):
        ledger = Ledger("test", verbose=False)
        assert ledger.is_registered(SYSTEM_WALLET)

    def test_register_duplicate_wallet_raises(self):
        ledger = Ledger("test", verbose=False)
        ledger.register_wallet("alice")
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_wallet("alice")

    def test_register_duplicate_unit_raises(self):
        ledger = Ledger("test", verbose=False)
        ledger.register_unit(token("TKA", "Token A"))
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_unit(token("TKA", "Token A"))

    def test_unknown_wallet_balance_raises(self, token_ledger):
        with pytest.raises(WalletNotRegistered):
            token_ledger.get_balance("nobody", "TKA")

    def test_unknown_unit_raises(self, token_ledger):
        with pytest.raises(UnitNotRegistered):
            token_ledger.get_unit("XYZ")


class TestMint:
    """Issuance debits the system wallet."""

    def test_mint_credits_wallet(self, token_ledger):
        assert token_ledger.get_balance("alice", "TKA") == Decimal("100")

    def test_mint_keeps_total_zero(self, token_ledger):
        assert token_ledger.total_supply("TKA") == Decimal("0")
        check = token_ledger.verify_double_entry()
        assert check['valid']
        assert check['supplies']['TKA'] == Decimal("100")

    def test_repeated_mints_are_distinct(self, token_ledger):
        assert token_ledger.mint("alice", "TKA", Decimal("100")) == ExecuteResult.APPLIED
        assert token_ledger.get_balance("alice", "TKA") == Decimal("200")


class TestAllowances:
    """Pulled moves consume the owner's allowance for the spender."""

    def _pull(self, ledger, qty):
        return build_transaction(ledger, [
            Move(Decimal(qty), "TKA", "alice", "escrow", "pull", spender="escrow"),
        ], TRANSFER)

    def test_pull_without_allowance_rejected(self, token_ledger):
        result = token_ledger.execute(self._pull(token_ledger, "10"))
        assert result == ExecuteResult.REJECTED
        assert "insufficient allowance" in token_ledger.last_rejection
        assert token_ledger.get_balance("alice", "TKA") == Decimal("100")

    def test_pull_consumes_allowance(self, token_ledger):
        token_ledger.approve("alice", "escrow", "TKA", Decimal("15"))
        assert token_ledger.execute(self._pull(token_ledger, "10")) == ExecuteResult.APPLIED
        assert token_ledger.get_allowance("alice", "escrow", "TKA") == Decimal("5")
        assert token_ledger.get_balance("escrow", "TKA") == Decimal("10")

    def test_rejected_pull_leaves_allowance(self, token_ledger):
        token_ledger.approve("alice", "escrow", "TKA", Decimal("500"))
        result = token_ledger.execute(self._pull(token_ledger, "200"))
        assert result == ExecuteResult.REJECTED
        assert "insufficient funds" in token_ledger.last_rejection
        assert token_ledger.get_allowance("alice", "escrow", "TKA") == Decimal("500")

    def test_allowances_aggregate_within_transaction(self, token_ledger):
        token_ledger.approve("alice", "escrow", "TKA", Decimal("15"))
        pending = build_transaction(token_ledger, [
            Move(Decimal("10"), "TKA", "alice", "escrow", "p1", spender="escrow"),
            Move(Decimal("10"), "TKA", "alice", "escrow", "p2", spender="escrow"),
        ], TRANSFER)
        assert token_ledger.execute(pending) == ExecuteResult.REJECTED
        assert token_ledger.get_balance("escrow", "TKA") == Decimal("0")

    def test_negative_allowance_rejected(self, token_ledger):
        with pytest.raises(ValueError):
            token_ledger.approve("alice", "escrow", "TKA", Decimal("-1"))

    def test_approve_overwrites(self, token_ledger):
        token_ledger.approve("alice", "escrow", "TKA", Decimal("15"))
        token_ledger.approve("alice", "escrow", "TKA", Decimal("3"))
        assert token_ledger.get_allowance("alice", "escrow", "TKA") == Decimal("3")


class TestExecute:
    """Transaction execution."""

    def test_transfer_applies_and_logs(self, token_ledger):
        pending = build_transaction(token_ledger, [
            Move(Decimal("40"), "TKA", "alice", "bob", "pay"),
        ], TRANSFER)
        assert token_ledger.execute(pending) == ExecuteResult.APPLIED
        assert token_ledger.get_balance("bob", "TKA") == Decimal("40")
        assert token_ledger.transaction_log[-1].intent_id == pending.intent_id

    def test_overdraft_rejected(self, token_ledger):
        pending = build_transaction(token_ledger, [
            Move(Decimal("101"), "TKA", "alice", "bob", "pay"),
        ], TRANSFER)
        assert token_ledger.execute(pending) == ExecuteResult.REJECTED
        assert token_ledger.get_balance("alice", "TKA") == Decimal("100")

    def test_same_intent_applied_once(self, token_ledger):
        pending = build_transaction(token_ledger, [
            Move(Decimal("1"), "TKA", "alice", "bob", "pay"),
        ], TRANSFER)
        assert token_ledger.execute(pending) == ExecuteResult.APPLIED
        assert token_ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert token_ledger.get_balance("bob", "TKA") == Decimal("1")

    def test_unregistered_wallet_rejected(self, token_ledger):
        pending = build_transaction(token_ledger, [
            Move(Decimal("1"), "TKA", "alice", "mallory", "pay"),
        ], TRANSFER)
        assert token_ledger.execute(pending) == ExecuteResult.REJECTED
        assert "not registered" in token_ledger.last_rejection

    def test_quantity_finer_than_unit_rejected(self, token_ledger):
        pending = build_transaction(token_ledger, [
            Move(Decimal("1e-19"), "TKA", "alice", "bob", "dust"),
        ], TRANSFER)
        assert token_ledger.execute(pending) == ExecuteResult.REJECTED
        assert "precision" in token_ledger.last_rejection
        assert token_ledger.get_balance("alice", "TKA") == Decimal("100")
        assert token_ledger.get_balance("bob", "TKA") == Decimal("0")

    def test_positions_track_holders(self, token_ledger):
        assert token_ledger.get_positions("TKA") == {
            "alice": Decimal("100"), SYSTEM_WALLET: Decimal("-100"),
        }


class TestTimeAndModes:
    """Clock, test mode and cloning."""

    def test_advance_time(self, token_ledger):
        token_ledger.advance_time(T0 + timedelta(hours=1))
        assert token_ledger.current_time == T0 + timedelta(hours=1)

    def test_time_cannot_go_backwards(self, token_ledger):
        with pytest.raises(ValueError, match="backwards"):
            token_ledger.advance_time(T0 - timedelta(seconds=1))

    def test_set_balance_requires_test_mode(self, token_ledger):
        with pytest.raises(LedgerError, match="test_mode"):
            token_ledger.set_balance("alice", "TKA", Decimal("5"))

    def test_set_balance_in_test_mode(self):
        ledger = Ledger("test", T0, verbose=False, test_mode=True)
        ledger.register_unit(token("TKA", "Token A"))
        ledger.register_wallet("alice")
        ledger.set_balance("alice", "TKA", Decimal("5"))
        assert ledger.get_balance("alice", "TKA") == Decimal("5")

    def test_double_entry_detects_one_unit_leak(self):
        ledger = Ledger("test", T0, verbose=False, test_mode=True)
        ledger.register_unit(token("TKA", "Token A"))
        ledger.register_wallet("alice")
        ledger.mint("alice", "TKA", Decimal("1"))
        ledger.set_balance("alice", "TKA", Decimal("1.000000000000000001"))
        check = ledger.verify_double_entry()
        assert not check['valid']
        assert check['discrepancies'] == [
            {'unit': "TKA", 'actual': Decimal("1E-18")},
        ]

    def test_clone_is_independent(self, token_ledger):
        token_ledger.approve("alice", "escrow", "TKA", Decimal("7"))
        cloned = token_ledger.clone()
        cloned.mint("bob", "TKA", Decimal("1"))
        cloned.approve("alice", "escrow", "TKA", Decimal("0"))
        assert token_ledger.get_balance("bob", "TKA") == Decimal("0")
        assert token_ledger.get_allowance("alice", "escrow", "TKA") == Decimal("7")
        assert cloned.get_balance("bob", "TKA") == Decimal("1")
