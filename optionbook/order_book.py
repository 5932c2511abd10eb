"""
order_book.py - Pure Functions for Posting, Filling and Canceling Orders

Every function here checks its guards, builds the record the operation
leaves behind and the moves that must commit with it, and returns them as an
OptionStep. Nothing is executed: OptionExchange writes the record first and
then submits the moves to the ledger.

Custody per order type:
    ASK: underlying_amount is locked in escrow at posting time
    BID: premium_amount (strike asset) is locked in escrow at posting time

Fill settlement (both types):
    fee             escrow -> fee recipient   (skipped when zero)
    premium - fee   escrow -> seller
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import List

from .core import (
    LedgerView, FeePolicy, Move,
    UnauthorizedCaller, StateGuardViolation,
    build_transaction, ZERO,
)
from .events import ORDER_CREATED, ORDER_FILLED, ORDER_CANCELED, make_event
from .option import (
    OptionRecord, OptionStep, OptionState, operation_origin, OrderType, PairTerms,
    validate_order_terms, require_state, activate, advance_state,
    calculate_premium_split,
)


def _require_order_type(record: OptionRecord, expected: OrderType, operation: str) -> None:
    if record.order_type is not expected:
        raise StateGuardViolation(
            f"{operation}: option {record.option_id} is a {record.order_type.value} order"
        )


def compute_create_order(
    view: LedgerView,
    terms: PairTerms,
    option_id: int,
    caller: str,
    order_type: OrderType,
    underlying_amount: Decimal,
    strike_amount: Decimal,
    premium_amount: Decimal,
    period_seconds: int,
    now: datetime,
) -> OptionStep:
    """
    Post an ask (caller sells) or a bid (caller buys).

    Args:
        view: Read-only ledger view
        terms: The exchange's asset pair and escrow wallet
        option_id: Id the new record will receive
        caller: Wallet posting the order; becomes creator and seller (ASK) or buyer (BID)
        order_type: OrderType.ASK or OrderType.BID
        underlying_amount, strike_amount, premium_amount: Positive amounts
        period_seconds: Option duration once filled (>= 1 hour)
        now: Clock value the event is stamped with

    Returns:
        OptionStep with an OPEN record and the move locking the order's asset.

    Raises:
        OrderValidationError: If an amount or the period is invalid
    """
    underlying_amount, strike_amount, premium_amount, period_seconds = validate_order_terms(
        underlying_amount, strike_amount, premium_amount, period_seconds,
        underlying_unit=view.get_unit(terms.underlying),
        strike_unit=view.get_unit(terms.strike),
    )

    is_ask = order_type is OrderType.ASK
    record = OptionRecord(
        option_id=option_id,
        creator=caller,
        seller=caller if is_ask else None,
        buyer=None if is_ask else caller,
        underlying_amount=underlying_amount,
        strike_amount=strike_amount,
        premium_amount=premium_amount,
        total_period_seconds=period_seconds,
        order_type=order_type,
    )

    locked_asset = terms.underlying if is_ask else terms.strike
    locked_amount = underlying_amount if is_ask else premium_amount
    event_type = "CREATE_ASK" if is_ask else "CREATE_BID"
    pending = build_transaction(view, [
        Move(locked_amount, locked_asset, caller, terms.escrow_wallet,
             f"{terms.name}_{option_id}_lock", spender=terms.escrow_wallet),
    ], operation_origin(terms, option_id, event_type))

    event = make_event(
        ORDER_CREATED, option_id, now,
        creator=caller,
        order_type=order_type.value,
        underlying_amount=underlying_amount,
        strike_amount=strike_amount,
        premium_amount=premium_amount,
        period_seconds=period_seconds,
    )
    return OptionStep(record, pending, event)


def _settle_premium(
    terms: PairTerms,
    record: OptionRecord,
    fee: Decimal,
    proceeds: Decimal,
    fee_recipient: str,
) -> List[Move]:
    moves = []
    if fee > ZERO:
        moves.append(Move(fee, terms.strike, terms.escrow_wallet, fee_recipient,
                          f"{terms.name}_{record.option_id}_fee"))
    moves.append(Move(proceeds, terms.strike, terms.escrow_wallet, record.seller,
                      f"{terms.name}_{record.option_id}_premium"))
    return moves


def compute_fill(
    view: LedgerView,
    terms: PairTerms,
    record: OptionRecord,
    caller: str,
    fee_policy: FeePolicy,
    now: datetime,
) -> OptionStep:
    """
    Take the other side of an OPEN order; the option becomes ACTIVE.

    ASK: caller becomes buyer and pays the premium into escrow.
    BID: caller becomes seller and locks the underlying into escrow.
    In both cases the escrowed premium is split between the fee recipient
    and the seller. The policy's fee is truncated to the strike unit's
    precision first. The option's clock starts at now.

    Raises:
        StateGuardViolation: If the record is not OPEN
        UnauthorizedCaller: If caller already holds the order's own side
        UnsupportedAsset: If the fee policy does not support the strike asset
        EconomicInfeasibility: If the premium does not exceed the fee
    """
    operation = f"fill_{record.order_type.value}"
    require_state(record, OptionState.OPEN, operation)
    own_side = record.seller if record.order_type is OrderType.ASK else record.buyer
    if caller == own_side:
        raise UnauthorizedCaller(
            f"{operation}: {caller} cannot fill own order {record.option_id}"
        )

    strike_unit = view.get_unit(terms.strike)
    fee = strike_unit.round_down(fee_policy.get_fee(terms.strike, record.premium_amount))
    fee, proceeds = calculate_premium_split(record.premium_amount, fee)
    fee_recipient = fee_policy.fee_recipient

    filled = activate(record, caller, now)

    if record.order_type is OrderType.ASK:
        inbound = Move(record.premium_amount, terms.strike, caller, terms.escrow_wallet,
                       f"{terms.name}_{record.option_id}_premium_in", spender=terms.escrow_wallet)
        event_type = "FILL_ASK"
    else:
        inbound = Move(record.underlying_amount, terms.underlying, caller, terms.escrow_wallet,
                       f"{terms.name}_{record.option_id}_lock", spender=terms.escrow_wallet)
        event_type = "FILL_BID"

    moves = [inbound] + _settle_premium(terms, filled, fee, proceeds, fee_recipient)
    pending = build_transaction(view, moves, operation_origin(terms, record.option_id, event_type))

    event = make_event(
        ORDER_FILLED, record.option_id, now,
        order_type=record.order_type.value,
        seller=filled.seller,
        buyer=filled.buyer,
        premium_amount=record.premium_amount,
        fee=fee,
        fee_recipient=fee_recipient,
        seller_proceeds=proceeds,
        expiration_timestamp=filled.expiration_timestamp,
    )
    return OptionStep(filled, pending, event)


def compute_fill_ask(view, terms, record, caller, fee_policy, now) -> OptionStep:
    """Fill an ASK: caller buys the option."""
    _require_order_type(record, OrderType.ASK, "fill_ask")
    return compute_fill(view, terms, record, caller, fee_policy, now)


def compute_fill_bid(view, terms, record, caller, fee_policy, now) -> OptionStep:
    """Fill a BID: caller writes the option."""
    _require_order_type(record, OrderType.BID, "fill_bid")
    return compute_fill(view, terms, record, caller, fee_policy, now)


def compute_cancel(
    view: LedgerView,
    terms: PairTerms,
    record: OptionRecord,
    caller: str,
    now: datetime,
) -> OptionStep:
    """
    Withdraw an OPEN order and refund what it locked to the creator.

    Raises:
        StateGuardViolation: If the record is not OPEN
        UnauthorizedCaller: If caller is not the creator
    """
    require_state(record, OptionState.OPEN, "cancel_order")
    if caller != record.creator:
        raise UnauthorizedCaller(
            f"cancel_order: {caller} is not the creator of option {record.option_id}"
        )

    canceled = advance_state(record, OptionState.CANCELED)

    if record.order_type is OrderType.ASK:
        asset, amount = terms.underlying, record.underlying_amount
    else:
        asset, amount = terms.strike, record.premium_amount

    pending = build_transaction(view, [
        Move(amount, asset, terms.escrow_wallet, record.creator,
             f"{terms.name}_{record.option_id}_refund"),
    ], operation_origin(terms, record.option_id, "CANCEL"))

    event = make_event(
        ORDER_CANCELED, record.option_id, now,
        creator=record.creator,
        order_type=record.order_type.value,
        refund_asset=asset,
        refund_amount=amount,
    )
    return OptionStep(canceled, pending, event)
