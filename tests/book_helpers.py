"""
book_helpers.py - Builders shared by the option book tests

Plain functions (no fixtures) so hypothesis tests can build a fresh ledger
and exchange per example.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Tuple

from optionbook import (
    Ledger, OptionExchange, FeeCalculator, token,
)


T0 = datetime(2025, 1, 1)
ONE_HOUR = timedelta(hours=1)

TRADERS = ("seller", "buyer", "carol")
UNLIMITED = Decimal("1000000000")

# Round-trip order terms: 1 TKA underlying, 200 TKB strike, 10 TKB premium, 1 hour
ROUND_TRIP = (Decimal("1"), Decimal("200"), Decimal("10"), 3600)


def make_ledger(strike_decimal_places: int = 18, strike_rule=None) -> Ledger:
    """Two-token ledger with funded traders, a treasury and a fee admin."""
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(token("TKA", "Token A"))
    ledger.register_unit(token("TKB", "Token B", decimal_places=strike_decimal_places,
                               transfer_rule=strike_rule))
    for wallet in TRADERS + ("treasury", "admin"):
        ledger.register_wallet(wallet)

    ledger.mint("seller", "TKA", Decimal("100"))
    ledger.mint("seller", "TKB", Decimal("1000"))
    ledger.mint("buyer", "TKB", Decimal("100000"))
    ledger.mint("carol", "TKA", Decimal("10"))
    ledger.mint("carol", "TKB", Decimal("10000"))
    return ledger


def make_fees(ledger: Ledger, rate: Decimal = Decimal("0.01")) -> FeeCalculator:
    """Fee policy on TKB paid to treasury, administered by admin."""
    fees = FeeCalculator(owner="admin", fee_recipient="treasury", view=ledger)
    fees.set_fee_rate("admin", "TKB", rate)
    return fees


def approve_escrow(ledger: Ledger, exchange: OptionExchange, amount: Decimal = UNLIMITED) -> None:
    """Let the escrow wallet pull both tokens from every trader."""
    for wallet in TRADERS:
        for unit in (exchange.underlying, exchange.strike):
            ledger.approve(wallet, exchange.escrow_wallet, unit, amount)


def make_exchange(ledger: Ledger, rate: Decimal = Decimal("0.01")) -> OptionExchange:
    exchange = OptionExchange(ledger, "TKA", "TKB", make_fees(ledger, rate), verbose=False)
    approve_escrow(ledger, exchange)
    return exchange


def snapshot_balances(ledger: Ledger) -> Dict[Tuple[str, str], Decimal]:
    """(wallet, unit) -> balance for every registered wallet and unit."""
    return {
        (wallet, unit): ledger.get_balance(wallet, unit)
        for wallet in sorted(ledger.list_wallets())
        for unit in ledger.list_units()
    }
