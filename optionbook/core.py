"""
Core types and pure functions for the option book.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access, Clock, FeePolicy
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the option book error taxonomy
4. Type aliases: Positions, BalanceMap
5. Unit factories: token() for fungible assets

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Fixed-point arithmetic is done with Decimal under one global context.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
#   - prec=50: 1.0 is exact, and amount * fraction products for 18-decimal
#     tokens keep every significant digit
#   - rounding=ROUND_HALF_EVEN for intermediate results; amounts that leave
#     the formula are quantized down by the unit (see Unit.round_down)
#
_BOOK_DECIMAL_CONTEXT = getcontext()
_BOOK_DECIMAL_CONTEXT.prec = 50
_BOOK_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

UNIT_TYPE_TOKEN = "TOKEN"

# Minimum option duration.
MIN_OPTION_PERIOD_SECONDS = 3600

# Default precision of a fungible token (matches 18-decimal ERC20 assets).
DEFAULT_TOKEN_DECIMAL_PLACES = 18

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-30")

ZERO = Decimal("0")
ONE = Decimal("1")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]


def to_decimal(value: Any) -> Decimal:
    """Convert int/float/str input to Decimal, passing Decimals through."""
    return value if isinstance(value, Decimal) else Decimal(str(value))


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Pure functions accepting a LedgerView declare their read-only intent.
    The Ledger class implements this protocol but also provides mutation
    methods.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (0 if none)."""
        ...

    def get_allowance(self, owner: str, spender: str, unit_symbol: str) -> Decimal:
        """Return how much of owner's unit the spender may still pull."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


@runtime_checkable
class Clock(Protocol):
    """Monotonic non-decreasing time source. The Ledger is one."""

    @property
    def current_time(self) -> datetime:
        ...


@runtime_checkable
class FeePolicy(Protocol):
    """
    Boundary of the premium fee policy.

    get_fee() raises UnsupportedAsset for assets that are not supported.
    """

    @property
    def fee_recipient(self) -> str:
        ...

    def get_fee(self, asset: str, amount: Decimal) -> Decimal:
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction intent was previously processed (idempotent).
    REJECTED: Transaction failed validation (balance, allowance, transfer rule).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"
    CONTRACT = "contract"
    SYSTEM = "system"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a move would cause a wallet balance to fall below the unit's minimum."""
    pass


class InsufficientAllowance(LedgerError):
    """Raised when a spender pulls more than the owner approved."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered."""
    pass


class OptionBookError(LedgerError):
    """Base exception for rejected option book operations."""
    pass


class OrderValidationError(OptionBookError, ValueError):
    """Zero or undersized amount or period, rejected before any state change."""
    pass


class OptionNotFound(OptionBookError, KeyError):
    """No record is registered under the requested id."""

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0]) if self.args else ""


class StateGuardViolation(OptionBookError):
    """The record is in the wrong lifecycle state for the operation."""
    pass


class UnauthorizedCaller(OptionBookError):
    """The caller is not the principal the operation requires."""
    pass


class TemporalViolation(OptionBookError):
    """The operation is not allowed at the current time."""
    pass


class EconomicInfeasibility(OptionBookError):
    """Premium does not exceed the fee, or the closing fee is zero."""
    pass


class CustodyFailure(OptionBookError):
    """The ledger rejected the asset movements; the operation was rolled back."""

    def __init__(self, message: str, reason: str = ""):
        super().__init__(message)
        self.reason = reason


class UnsupportedAsset(LedgerError):
    """Fee was requested for an asset the fee policy does not support."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (exchange name, user ID)
        option_id: Option record the transaction belongs to (if any)
        event_type: Operation within the source (e.g., "FILL_ASK", "EXERCISE")
    """
    origin_type: OriginType
    source_id: str
    option_id: Optional[int] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.option_id is not None:
            parts.append(f"option={self.option_id}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and positive).
        unit_symbol: The symbol of the unit being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        spender: Wallet pulling the funds. When set and different from source,
            the move is a transferFrom and consumes source's allowance.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    spender: Optional[str] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    @property
    def needs_allowance(self) -> bool:
        return self.spender is not None and self.spender != self.source

    def __repr__(self) -> str:
        via = f" via {self.spender}" if self.needs_allowance else ""
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest}{via})"


def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("1.0") and Decimal("1.00") both become "1".
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _compute_intent_id(
    moves: Tuple[Move, ...],
    origin: TransactionOrigin,
    timestamp: datetime,
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    The timestamp is part of the intent: two identical fills at different
    times are different business events.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.option_id is not None:
        content_parts.append(f"option:{origin.option_id}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")
    content_parts.append(f"time:{timestamp.isoformat()}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}|{m.spender}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Created by the option book's compute functions and submitted to the
    ledger, which validates and executes all moves together or none.

    Attributes:
        moves: Tuple of value transfers between wallets
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(
                self, 'intent_id',
                _compute_intent_id(self.moves, self.origin, self.timestamp),
            )

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves."""
        return not self.moves

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    origin: TransactionOrigin,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: List of moves to include in the transaction
        origin: Who/what created the transaction

    Returns:
        A PendingTransaction ready for execution
    """
    return PendingTransaction(
        moves=tuple(moves),
        origin=origin,
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        bar = "─" * w
        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"├{bar}┤",
            f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│",
        ]
        for i, move in enumerate(self.moves):
            lines.append(f"│{pad(f'   [{i}] {move!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit (asset type) in the ledger.

    Attributes:
        symbol: Short identifier for the unit (e.g., "TKA").
        name: Human-readable name for the unit.
        unit_type: Category of the unit.
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places (None = no rounding).
        transfer_rule: Optional function to validate moves of this unit.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None

    def round(self, value: Decimal) -> Decimal:
        """Round to this unit's precision (half-even). Unchanged if decimal_places is None."""
        return self._quantize(value, ROUND_HALF_EVEN)

    def round_down(self, value: Decimal) -> Decimal:
        """Truncate to this unit's precision, as fixed-point integer division does."""
        return self._quantize(value, ROUND_DOWN)

    def _quantize(self, value: Decimal, rounding: str) -> Decimal:
        value = to_decimal(value)
        if self.decimal_places is None:
            return value
        quantizer = Decimal(10) ** -self.decimal_places
        return value.quantize(quantizer, rounding=rounding)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(
    symbol: str,
    name: str,
    decimal_places: int = DEFAULT_TOKEN_DECIMAL_PLACES,
    transfer_rule: Optional[TransferRule] = None,
) -> Unit:
    """
    Create a fungible token unit.

    Tokens cannot be overdrawn: every non-system wallet must hold a
    non-negative balance.

    Args:
        symbol: Token symbol (e.g., "TKA").
        name: Full token name (e.g., "Token A").
        decimal_places: Smallest representable fraction (default: 18).
        transfer_rule: Optional move validator.

    Returns:
        A Unit with min_balance 0.
    """
    if decimal_places < 0:
        raise ValueError(f"decimal_places must be non-negative, got {decimal_places}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        min_balance=ZERO,
        decimal_places=decimal_places,
        transfer_rule=transfer_rule,
    )
