"""
option_book_example.py - Step-by-Step Option Book Example

Demonstrates the complete lifecycle of options on the escrow order book:
1. Setup: Create ledger, register tokens, fund wallets, configure fees
2. Ask: Seller posts an ask, the underlying moves into escrow
3. Fill: Buyer pays the premium; fee to treasury, the rest to the seller
4. Exercise: Buyer pays the strike and receives the underlying
5. Early close: A second option is closed at half time for 75% of its premium
6. Bid: A buyer-originated order is filled, then claimed after expiry

Run this file directly:
    python option_book_example.py
"""

from datetime import datetime, timedelta
from decimal import Decimal

from optionbook import (
    Ledger, OptionExchange, FeeCalculator, token,
    OptionState, TemporalViolation,
)


def show_balances(ledger: Ledger, exchange: OptionExchange, wallets) -> None:
    for wallet in wallets:
        print(f"  {wallet:<10} {ledger.get_balance(wallet, 'TKA'):>10} TKA  "
              f"{ledger.get_balance(wallet, 'TKB'):>12} TKB")
    print(f"  {'escrow':<10} {exchange.escrow_balance('TKA'):>10} TKA  "
          f"{exchange.escrow_balance('TKB'):>12} TKB")


def main():
    print("=" * 70)
    print("ESCROW OPTION BOOK - COMPLETE LIFECYCLE EXAMPLE")
    print("=" * 70)

    # =========================================================================
    # STEP 1: SETUP
    # =========================================================================
    print("\n" + "=" * 70)
    print("STEP 1: SETUP")
    print("=" * 70)
    print("""
    We create a ledger and register:
    - TKA (the underlying, delivered on exercise)
    - TKB (the strike asset, also used for premiums and fees)
    - Wallets: seller, buyer, treasury (fee recipient), admin (fee owner)
    """)

    t0 = datetime(2025, 6, 1, 9, 30)
    ledger = Ledger(name="optionbook_demo", initial_time=t0, verbose=False)
    ledger.register_unit(token("TKA", "Token A"))
    ledger.register_unit(token("TKB", "Token B"))
    seller = ledger.register_wallet("seller")
    buyer = ledger.register_wallet("buyer")
    ledger.register_wallet("treasury")
    ledger.register_wallet("admin")

    ledger.mint(seller, "TKA", Decimal("10"))
    ledger.mint(seller, "TKB", Decimal("100"))
    ledger.mint(buyer, "TKB", Decimal("1000"))

    fees = FeeCalculator(owner="admin", fee_recipient="treasury", view=ledger)
    fees.set_fee_rate("admin", "TKB", Decimal("0.01"))
    print(f"Fee policy: {fees}")

    exchange = OptionExchange(ledger, "TKA", "TKB", fees, verbose=True)
    print(f"Exchange:   {exchange}")

    # The escrow wallet pulls what each side commits
    for wallet in (seller, buyer):
        for unit in ("TKA", "TKB"):
            ledger.approve(wallet, exchange.escrow_wallet, unit, Decimal("1000"))

    print("\n--- Initial Positions ---")
    show_balances(ledger, exchange, (seller, buyer, "treasury"))

    # =========================================================================
    # STEP 2: POST AN ASK
    # =========================================================================
    print("\n" + "=" * 70)
    print("STEP 2: POST AN ASK")
    print("=" * 70)
    print("""
    The seller offers a call on 1 TKA at a strike of 200 TKB for a premium
    of 10 TKB, running one hour from the moment it is filled.
    """)

    ask_id = exchange.create_ask(seller, 1, 200, 10, 3600)
    print(f"Posted: {exchange.get_option(ask_id)!r}")
    show_balances(ledger, exchange, (seller, buyer, "treasury"))

    # =========================================================================
    # STEP 3: FILL
    # =========================================================================
    print("\n" + "=" * 70)
    print("STEP 3: FILL")
    print("=" * 70)

    quote = exchange.quote_fill(ask_id)
    print(f"Quote: fee {quote['fee']} to {quote['fee_recipient']}, "
          f"seller receives {quote['seller_proceeds']}")

    filled = exchange.fill_ask(buyer, ask_id)
    print(f"Filled: {filled!r}")
    print(f"Expires: {filled.expiration_timestamp}")
    show_balances(ledger, exchange, (seller, buyer, "treasury"))

    # =========================================================================
    # STEP 4: EXERCISE
    # =========================================================================
    print("\n" + "=" * 70)
    print("STEP 4: EXERCISE")
    print("=" * 70)

    ledger.advance_time(t0 + timedelta(minutes=20))
    exchange.exercise_option(buyer, ask_id)
    print(f"State: {exchange.get_option(ask_id).state.value}")
    show_balances(ledger, exchange, (seller, buyer, "treasury"))

    # =========================================================================
    # STEP 5: EARLY CLOSE
    # =========================================================================
    print("\n" + "=" * 70)
    print("STEP 5: EARLY CLOSE")
    print("=" * 70)
    print("""
    The closing fee decays as Y = 1 - (1 - X)^2 where X is the fraction of
    the period still remaining. At half time the seller pays 75% of the
    premium to the buyer to get the underlying back.
    """)

    second = exchange.create_ask(seller, 1, 200, 10, 3600)
    exchange.fill_ask(buyer, second)
    ledger.advance_time(ledger.current_time + timedelta(minutes=30))
    print(f"Closing fee fraction: {exchange.get_closing_fee_fraction(second)}")
    print(f"Closing fee:          {exchange.get_closing_fee(second)} TKB")
    exchange.close_option(seller, second)
    show_balances(ledger, exchange, (seller, buyer, "treasury"))

    # =========================================================================
    # STEP 6: BID, EXPIRY AND CLAIM
    # =========================================================================
    print("\n" + "=" * 70)
    print("STEP 6: BID, EXPIRY AND CLAIM")
    print("=" * 70)

    bid_id = exchange.create_bid(buyer, 2, 300, 15, 7200)
    exchange.fill_bid(seller, bid_id)
    expiration = exchange.get_option(bid_id).expiration_timestamp

    ledger.advance_time(expiration)
    try:
        exchange.exercise_option(buyer, bid_id)
    except TemporalViolation as exc:
        print(f"Exercise refused: {exc}")

    exchange.claim_underlying_on_expiration(seller, bid_id)
    show_balances(ledger, exchange, (seller, buyer, "treasury"))

    # =========================================================================
    # SUMMARY
    # =========================================================================
    print("\n" + "=" * 70)
    print("SUMMARY")
    print("=" * 70)
    for record in exchange.list_options():
        print(f"  {record!r}")
    for state in (OptionState.EXERCISED, OptionState.CLOSED, OptionState.EXPIRED):
        print(f"  {state.value:<10} {len(exchange.list_options(state=state))}")

    custody = exchange.verify_custody()
    print(f"\nCustody check:      {'OK' if custody['valid'] else custody['discrepancies']}")
    print(f"Double-entry check: {'OK' if ledger.verify_double_entry()['valid'] else 'FAILED'}")
    print(f"Events emitted:     {len(exchange.events)}")


if __name__ == "__main__":
    main()
