"""
option.py - Option/Order Records and Pure Option Calculations

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - PairTerms: the fixed asset pair and escrow wallet of one exchange
   - OptionRecord: immutable snapshot of one order/option; every lifecycle
     step produces a NEW record (value semantics)

2. STATE MACHINE:
   - OPEN -> ACTIVE | CANCELED
   - ACTIVE -> EXERCISED | EXPIRED | CLOSED
   - advance_state() is the only way a record changes state

3. PURE CALCULATION FUNCTIONS (calculate_*):
   - No LedgerView, all inputs explicit
   - Closing fee decay: Y = 1 - (1 - X)^2 with X = remaining / total period

Key Formulas:
    remaining = max(0, expiration - now)
    X = remaining / total_period
    closing_fee = (1 - (1 - X)^2) * premium
    seller_proceeds = premium - fee(premium)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from .core import (
    PendingTransaction, TransactionOrigin, OriginType, Unit,
    MIN_OPTION_PERIOD_SECONDS, ZERO, ONE,
    OrderValidationError, StateGuardViolation, EconomicInfeasibility,
    to_decimal,
)
from .events import OptionEvent


class OrderType(Enum):
    ASK = "ask"   # seller-originated
    BID = "bid"   # buyer-originated


class OptionState(Enum):
    OPEN = "open"
    ACTIVE = "active"
    EXERCISED = "exercised"
    EXPIRED = "expired"
    CLOSED = "closed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Dict[OptionState, FrozenSet[OptionState]] = {
    OptionState.OPEN: frozenset({OptionState.ACTIVE, OptionState.CANCELED}),
    OptionState.ACTIVE: frozenset({OptionState.EXERCISED, OptionState.EXPIRED, OptionState.CLOSED}),
    OptionState.EXERCISED: frozenset(),
    OptionState.EXPIRED: frozenset(),
    OptionState.CLOSED: frozenset(),
    OptionState.CANCELED: frozenset(),
}


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PairTerms:
    """
    The fixed pair one exchange trades.

    The strike asset also carries premiums, fees and closing fees. The
    escrow wallet holds custody and is the spender for every pulled move.
    """
    name: str
    underlying: str
    strike: str
    escrow_wallet: str


@dataclass(frozen=True, slots=True)
class OptionRecord:
    """
    Immutable snapshot of one order/option.

    Amounts and period are fixed at creation. buyer/seller: exactly one is
    set while OPEN, both once filled. create_timestamp and
    expiration_timestamp are set at fill time, not at posting time.
    """
    option_id: int
    creator: str
    seller: Optional[str]
    buyer: Optional[str]
    underlying_amount: Decimal
    strike_amount: Decimal
    premium_amount: Decimal
    total_period_seconds: int
    order_type: OrderType
    state: OptionState = OptionState.OPEN
    create_timestamp: Optional[datetime] = None
    expiration_timestamp: Optional[datetime] = None

    @property
    def is_filled(self) -> bool:
        return self.seller is not None and self.buyer is not None

    @property
    def counterparty_slot(self) -> str:
        """Role the filler takes: 'buyer' for asks, 'seller' for bids."""
        return "buyer" if self.order_type is OrderType.ASK else "seller"

    def __repr__(self) -> str:
        return (
            f"Option#{self.option_id}({self.order_type.value}, {self.state.value}, "
            f"seller={self.seller}, buyer={self.buyer}, "
            f"{self.underlying_amount}u/{self.strike_amount}k/{self.premium_amount}p, "
            f"{self.total_period_seconds}s)"
        )


def operation_origin(terms: PairTerms, option_id: int, event_type: str) -> TransactionOrigin:
    """Audit origin of the ledger transaction one operation submits."""
    return TransactionOrigin(OriginType.USER_ACTION, terms.name, option_id, event_type)


# ============================================================================
# VALIDATION AND STATE MACHINE
# ============================================================================

def _order_amount(label: str, value) -> Decimal:
    try:
        return to_decimal(value)
    except (ArithmeticError, TypeError, ValueError) as e:
        raise OrderValidationError(f"{label} must be a number, got {value!r}") from e


def validate_order_terms(
    underlying_amount: Decimal,
    strike_amount: Decimal,
    premium_amount: Decimal,
    period_seconds: int,
    underlying_unit: Optional[Unit] = None,
    strike_unit: Optional[Unit] = None,
) -> Tuple[Decimal, Decimal, Decimal, int]:
    """
    Check order terms and return them normalized to Decimal/int.

    Amounts must be positive and, when units are given, representable at the
    unit's precision. The period must be at least MIN_OPTION_PERIOD_SECONDS.

    Raises:
        OrderValidationError: On the first violated rule
    """
    amounts = {
        'underlying_amount': (_order_amount('underlying_amount', underlying_amount), underlying_unit),
        'strike_amount': (_order_amount('strike_amount', strike_amount), strike_unit),
        'premium_amount': (_order_amount('premium_amount', premium_amount), strike_unit),
    }
    for label, (value, unit) in amounts.items():
        if not value.is_finite() or value <= ZERO:
            raise OrderValidationError(f"{label} must be positive, got {value}")
        if unit is not None and unit.round_down(value) != value:
            raise OrderValidationError(
                f"{label} {value} is finer than {unit.symbol} precision "
                f"({unit.decimal_places} decimal places)"
            )

    try:
        whole_seconds = int(period_seconds)
    except (ArithmeticError, TypeError, ValueError) as e:
        raise OrderValidationError(
            f"period_seconds must be a whole number, got {period_seconds!r}"
        ) from e
    if isinstance(period_seconds, bool) or whole_seconds != period_seconds:
        raise OrderValidationError(f"period_seconds must be a whole number, got {period_seconds!r}")
    period_seconds = whole_seconds
    if period_seconds < MIN_OPTION_PERIOD_SECONDS:
        raise OrderValidationError(
            f"period_seconds must be at least {MIN_OPTION_PERIOD_SECONDS}, got {period_seconds}"
        )

    return (
        amounts['underlying_amount'][0],
        amounts['strike_amount'][0],
        amounts['premium_amount'][0],
        period_seconds,
    )


def require_state(record: OptionRecord, expected: OptionState, operation: str) -> None:
    """Raise StateGuardViolation unless record is in the expected state."""
    if record.state is not expected:
        raise StateGuardViolation(
            f"{operation}: option {record.option_id} is {record.state.value}, "
            f"expected {expected.value}"
        )


def advance_state(record: OptionRecord, new_state: OptionState, **changes) -> OptionRecord:
    """
    Return a copy of record moved to new_state with extra field changes.

    Raises:
        StateGuardViolation: If the transition is not allowed
    """
    if new_state not in ALLOWED_TRANSITIONS[record.state]:
        raise StateGuardViolation(
            f"option {record.option_id}: cannot move from {record.state.value} to {new_state.value}"
        )
    return replace(record, state=new_state, **changes)


def activate(record: OptionRecord, counterparty: str, now: datetime) -> OptionRecord:
    """Fill record: set the empty side, start the clock, move to ACTIVE."""
    return advance_state(
        record,
        OptionState.ACTIVE,
        **{record.counterparty_slot: counterparty},
        create_timestamp=now,
        expiration_timestamp=now + timedelta(seconds=record.total_period_seconds),
    )


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def _seconds(delta: timedelta) -> Decimal:
    """Exact length of a timedelta in seconds."""
    whole = delta.days * 86400 + delta.seconds
    return Decimal(whole) + Decimal(delta.microseconds) / Decimal(1_000_000)


def calculate_remaining_seconds(expiration: datetime, now: datetime) -> Decimal:
    """max(0, expiration - now) in seconds."""
    return max(ZERO, _seconds(expiration - now))


def calculate_closing_fee_fraction(remaining_seconds: Decimal, total_period_seconds: Decimal) -> Decimal:
    """
    Fraction of the premium a seller pays to close early.

    Y = 1 - (1 - X)^2 with X = remaining / total, clamped to [0, 1].
    Y is 0 when either input is 0, 0.75 at half time, and 1 right after fill.
    """
    remaining = to_decimal(remaining_seconds)
    total = to_decimal(total_period_seconds)
    if total <= ZERO or remaining <= ZERO:
        return ZERO
    x = min(remaining / total, ONE)
    elapsed = ONE - x
    return ONE - elapsed * elapsed


def calculate_closing_fee(
    premium_amount: Decimal,
    total_period_seconds: int,
    expiration: datetime,
    now: datetime,
    strike_unit: Optional[Unit] = None,
) -> Decimal:
    """
    Closing fee owed by the seller at time now, truncated to strike precision.

    The fee decays from the full premium right after fill to zero at expiry.
    """
    remaining = calculate_remaining_seconds(expiration, now)
    fraction = calculate_closing_fee_fraction(remaining, Decimal(total_period_seconds))
    fee = fraction * to_decimal(premium_amount)
    if strike_unit is not None:
        fee = strike_unit.round_down(fee)
    return fee


@dataclass(frozen=True, slots=True)
class OptionStep:
    """
    Outcome of a pure compute_* function: the record after the operation,
    the asset movements that must commit with it, and the event to emit.
    """
    record: OptionRecord
    pending: PendingTransaction
    event: OptionEvent


def calculate_premium_split(premium_amount: Decimal, fee: Decimal) -> Tuple[Decimal, Decimal]:
    """
    Split a premium into (fee, seller_proceeds).

    Raises:
        EconomicInfeasibility: If the premium does not exceed the fee
    """
    premium_amount = to_decimal(premium_amount)
    fee = to_decimal(fee)
    if fee < ZERO:
        raise EconomicInfeasibility(f"fee must be non-negative, got {fee}")
    if premium_amount <= fee:
        raise EconomicInfeasibility(
            f"premium {premium_amount} does not exceed fee {fee}"
        )
    return fee, premium_amount - fee
