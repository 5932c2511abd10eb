"""
test_option_scenarios.py - Multi-party option book scenarios

End-to-end runs where several orders of both types live side by side and
end in every terminal state. Final balances are checked against hand
computed totals.
"""

from datetime import timedelta
from decimal import Decimal

from optionbook import OptionState

from tests.book_helpers import T0, ONE_HOUR, make_ledger, make_exchange


def test_book_with_every_outcome():
    ledger = make_ledger()
    exchange = make_exchange(ledger)

    # 1: ask exercised, 2: bid expired, 3: ask closed, 4: bid canceled
    exercised = exchange.create_ask("seller", 1, 200, 10, 3600)
    expired = exchange.create_bid("buyer", 2, 150, 20, 7200)
    closed = exchange.create_ask("carol", 1, 100, 4, 3600)
    canceled = exchange.create_bid("buyer", 1, 100, 5, 3600)

    exchange.fill_ask("buyer", exercised)
    exchange.fill_bid("seller", expired)
    exchange.fill_ask("buyer", closed)
    exchange.cancel_order("buyer", canceled)

    ledger.advance_time(T0 + ONE_HOUR / 2)
    exchange.exercise_option("buyer", exercised)
    exchange.close_option("carol", closed)

    ledger.advance_time(T0 + 2 * ONE_HOUR)
    exchange.claim_underlying_on_expiration("seller", expired)

    states = {r.option_id: r.state for r in exchange.list_options()}
    assert states == {
        exercised: OptionState.EXERCISED,
        expired: OptionState.EXPIRED,
        closed: OptionState.CLOSED,
        canceled: OptionState.CANCELED,
    }

    # Fees: 1% of 10 + 20 + 4 premiums
    assert ledger.get_balance("treasury", "TKB") == Decimal("0.34")
    # seller: +9.9 premium, +200 strike, +19.8 premium
    assert ledger.get_balance("seller", "TKB") == Decimal("1229.7")
    # seller delivered 1 TKA on exercise, recovered 2 TKA on expiry
    assert ledger.get_balance("seller", "TKA") == Decimal("99")
    # buyer: -10 premium, -20 premium, -4 premium, -200 strike, +3 closing fee
    assert ledger.get_balance("buyer", "TKB") == Decimal("99769")
    assert ledger.get_balance("buyer", "TKA") == Decimal("1")
    # carol: +3.96 premium, -3 closing fee
    assert ledger.get_balance("carol", "TKB") == Decimal("10000.96")
    assert ledger.get_balance("carol", "TKA") == Decimal("10")

    assert exchange.escrow_balance("TKA") == Decimal("0")
    assert exchange.escrow_balance("TKB") == Decimal("0")
    assert exchange.verify_custody()['valid']
    assert ledger.verify_double_entry()['valid']


def test_fill_starts_clock_at_fill_time():
    ledger = make_ledger()
    exchange = make_exchange(ledger)
    option_id = exchange.create_ask("seller", 1, 200, 10, 3600)

    ledger.advance_time(T0 + timedelta(days=3))
    exchange.fill_ask("buyer", option_id)

    record = exchange.get_option(option_id)
    assert record.create_timestamp == T0 + timedelta(days=3)
    assert record.expiration_timestamp == T0 + timedelta(days=3) + ONE_HOUR
    assert exchange.get_closing_fee_fraction(option_id) == Decimal("1")


def test_many_orders_share_one_escrow():
    ledger = make_ledger()
    exchange = make_exchange(ledger)
    ids = [exchange.create_ask("seller", Decimal("0.5"), 100, 1, 3600) for _ in range(10)]

    for option_id in ids[::2]:
        exchange.fill_ask("buyer", option_id)
    for option_id in ids[1::2]:
        exchange.cancel_order("seller", option_id)

    assert exchange.escrow_balance("TKA") == Decimal("2.5")
    assert len(exchange.list_options(state=OptionState.ACTIVE)) == 5
    assert exchange.verify_custody()['valid']
