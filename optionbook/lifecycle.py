"""
lifecycle.py - Pure Functions for Active Options

Exercise, expiration claim and early close. Like order_book, each function
checks guards and returns an OptionStep; OptionExchange commits it.

Time gates (expiration = fill time + period):
    exercise_option                   now <  expiration
    claim_underlying_on_expiration    now >= expiration
    close_option                      now <  expiration, closing fee > 0

Expiration is not an event: an option past its expiration stays ACTIVE
until its seller claims the underlying.
"""

from __future__ import annotations
from datetime import datetime

from .core import (
    LedgerView, Move,
    UnauthorizedCaller, TemporalViolation, EconomicInfeasibility,
    build_transaction, ZERO,
)
from .events import OPTION_EXERCISED, OPTION_EXPIRED, OPTION_CLOSED, make_event
from .option import (
    OptionRecord, OptionStep, OptionState, operation_origin, PairTerms,
    require_state, advance_state, calculate_closing_fee,
)


def _require_caller(record: OptionRecord, caller: str, role: str, operation: str) -> None:
    expected = getattr(record, role)
    if caller != expected:
        raise UnauthorizedCaller(
            f"{operation}: {caller} is not the {role} of option {record.option_id}"
        )


def _require_before_expiration(record: OptionRecord, now: datetime, operation: str) -> None:
    if now >= record.expiration_timestamp:
        raise TemporalViolation(
            f"{operation}: option {record.option_id} expired at "
            f"{record.expiration_timestamp.isoformat()} (now {now.isoformat()})"
        )


def compute_exercise(
    view: LedgerView,
    terms: PairTerms,
    record: OptionRecord,
    caller: str,
    now: datetime,
) -> OptionStep:
    """
    Buyer pays the strike to the seller and receives the escrowed underlying.

    Raises:
        StateGuardViolation: If the option is not ACTIVE
        UnauthorizedCaller: If caller is not the buyer
        TemporalViolation: If the option has expired
    """
    require_state(record, OptionState.ACTIVE, "exercise_option")
    _require_caller(record, caller, "buyer", "exercise_option")
    _require_before_expiration(record, now, "exercise_option")

    exercised = advance_state(record, OptionState.EXERCISED)

    pending = build_transaction(view, [
        Move(record.strike_amount, terms.strike, record.buyer, record.seller,
             f"{terms.name}_{record.option_id}_strike", spender=terms.escrow_wallet),
        Move(record.underlying_amount, terms.underlying, terms.escrow_wallet, record.buyer,
             f"{terms.name}_{record.option_id}_delivery"),
    ], operation_origin(terms, record.option_id, "EXERCISE"))

    event = make_event(
        OPTION_EXERCISED, record.option_id, now,
        buyer=record.buyer,
        seller=record.seller,
        strike_amount=record.strike_amount,
        underlying_amount=record.underlying_amount,
    )
    return OptionStep(exercised, pending, event)


def compute_claim_expiration(
    view: LedgerView,
    terms: PairTerms,
    record: OptionRecord,
    caller: str,
    now: datetime,
) -> OptionStep:
    """
    Seller takes the escrowed underlying back once the option has expired.

    Raises:
        StateGuardViolation: If the option is not ACTIVE
        UnauthorizedCaller: If caller is not the seller
        TemporalViolation: If the option has not expired yet
    """
    require_state(record, OptionState.ACTIVE, "claim_underlying_on_expiration")
    _require_caller(record, caller, "seller", "claim_underlying_on_expiration")
    if now < record.expiration_timestamp:
        raise TemporalViolation(
            f"claim_underlying_on_expiration: option {record.option_id} expires at "
            f"{record.expiration_timestamp.isoformat()} (now {now.isoformat()})"
        )

    expired = advance_state(record, OptionState.EXPIRED)

    pending = build_transaction(view, [
        Move(record.underlying_amount, terms.underlying, terms.escrow_wallet, record.seller,
             f"{terms.name}_{record.option_id}_release"),
    ], operation_origin(terms, record.option_id, "EXPIRE"))

    event = make_event(
        OPTION_EXPIRED, record.option_id, now,
        seller=record.seller,
        underlying_amount=record.underlying_amount,
    )
    return OptionStep(expired, pending, event)


def compute_close(
    view: LedgerView,
    terms: PairTerms,
    record: OptionRecord,
    caller: str,
    now: datetime,
) -> OptionStep:
    """
    Seller exits early: pays the time-decayed closing fee to the buyer and
    takes the escrowed underlying back.

    Raises:
        StateGuardViolation: If the option is not ACTIVE
        UnauthorizedCaller: If caller is not the seller
        TemporalViolation: If the option has expired
        EconomicInfeasibility: If the closing fee rounds to zero
    """
    require_state(record, OptionState.ACTIVE, "close_option")
    _require_caller(record, caller, "seller", "close_option")
    _require_before_expiration(record, now, "close_option")

    closing_fee = calculate_closing_fee(
        record.premium_amount,
        record.total_period_seconds,
        record.expiration_timestamp,
        now,
        strike_unit=view.get_unit(terms.strike),
    )
    if closing_fee <= ZERO:
        raise EconomicInfeasibility(
            f"close_option: closing fee for option {record.option_id} is zero"
        )

    closed = advance_state(record, OptionState.CLOSED)

    pending = build_transaction(view, [
        Move(closing_fee, terms.strike, record.seller, record.buyer,
             f"{terms.name}_{record.option_id}_closing_fee", spender=terms.escrow_wallet),
        Move(record.underlying_amount, terms.underlying, terms.escrow_wallet, record.seller,
             f"{terms.name}_{record.option_id}_release"),
    ], operation_origin(terms, record.option_id, "CLOSE"))

    event = make_event(
        OPTION_CLOSED, record.option_id, now,
        seller=record.seller,
        buyer=record.buyer,
        closing_fee=closing_fee,
        underlying_amount=record.underlying_amount,
    )
    return OptionStep(closed, pending, event)
