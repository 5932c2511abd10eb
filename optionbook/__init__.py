"""
optionbook - Escrow-Based Bilateral Option Order Book

Sellers post asks and buyers post bids for covered call options on one
(underlying, strike) token pair. An escrow wallet on a double-entry ledger
holds the locked assets until the option is exercised, expires, is closed
early or, while still an order, is canceled.

Usage:
    from optionbook import Ledger, OptionExchange, FeeCalculator, token

    ledger = Ledger("main")
    ledger.register_unit(token("TKA", "Token A"))
    ledger.register_unit(token("TKB", "Token B"))
    for wallet in ("seller", "buyer", "treasury"):
        ledger.register_wallet(wallet)
    ledger.mint("seller", "TKA", Decimal("1"))
    ledger.mint("buyer", "TKB", Decimal("210"))

    fees = FeeCalculator(owner="admin", fee_recipient="treasury", view=ledger)
    fees.set_fee_rate("admin", "TKB", Decimal("0.01"))
    exchange = OptionExchange(ledger, "TKA", "TKB", fees)

    # Allow the escrow wallet to pull what each side commits
    ledger.approve("seller", exchange.escrow_wallet, "TKA", Decimal("1"))
    ledger.approve("buyer", exchange.escrow_wallet, "TKB", Decimal("210"))

    option_id = exchange.create_ask("seller", 1, 200, 10, 3600)
    exchange.fill_ask("buyer", option_id)
    exchange.exercise_option("buyer", option_id)
"""

# Core types
from .core import (
    LedgerView,
    Clock,
    FeePolicy,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    ExecuteResult,
    LedgerError,
    InsufficientFunds,
    InsufficientAllowance,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    OptionBookError,
    OrderValidationError,
    OptionNotFound,
    StateGuardViolation,
    UnauthorizedCaller,
    TemporalViolation,
    EconomicInfeasibility,
    CustodyFailure,
    UnsupportedAsset,
    token,
    to_decimal,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    MIN_OPTION_PERIOD_SECONDS,
    DEFAULT_TOKEN_DECIMAL_PLACES,
)

# Ledger
from .ledger import Ledger

# Fee policy
from .fees import FeeCalculator

# Records and calculations
from .option import (
    OrderType,
    OptionState,
    ALLOWED_TRANSITIONS,
    PairTerms,
    OptionRecord,
    OptionStep,
    validate_order_terms,
    advance_state,
    calculate_remaining_seconds,
    calculate_closing_fee_fraction,
    calculate_closing_fee,
    calculate_premium_split,
)

# Events
from .events import (
    OptionEvent,
    EventListener,
    ORDER_CREATED,
    ORDER_FILLED,
    ORDER_CANCELED,
    OPTION_EXERCISED,
    OPTION_EXPIRED,
    OPTION_CLOSED,
    EVENT_TYPES,
)

# Pure operations
from .order_book import (
    compute_create_order,
    compute_fill_ask,
    compute_fill_bid,
    compute_cancel,
)
from .lifecycle import (
    compute_exercise,
    compute_claim_expiration,
    compute_close,
)

# Registry and exchange
from .registry import OptionRegistry
from .exchange import OptionExchange

__all__ = [
    # Core
    'LedgerView', 'Clock', 'FeePolicy', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction', 'Unit', 'ExecuteResult',
    'token', 'to_decimal',
    'SYSTEM_WALLET', 'UNIT_TYPE_TOKEN', 'MIN_OPTION_PERIOD_SECONDS',
    'DEFAULT_TOKEN_DECIMAL_PLACES',
    # Errors
    'LedgerError', 'InsufficientFunds', 'InsufficientAllowance', 'TransferRuleViolation',
    'UnitNotRegistered', 'WalletNotRegistered',
    'OptionBookError', 'OrderValidationError', 'OptionNotFound', 'StateGuardViolation',
    'UnauthorizedCaller', 'TemporalViolation', 'EconomicInfeasibility', 'CustodyFailure',
    'UnsupportedAsset',
    # Ledger
    'Ledger',
    # Fees
    'FeeCalculator',
    # Records
    'OrderType', 'OptionState', 'ALLOWED_TRANSITIONS', 'PairTerms', 'OptionRecord',
    'OptionStep', 'validate_order_terms', 'advance_state',
    'calculate_remaining_seconds', 'calculate_closing_fee_fraction',
    'calculate_closing_fee', 'calculate_premium_split',
    # Events
    'OptionEvent', 'EventListener',
    'ORDER_CREATED', 'ORDER_FILLED', 'ORDER_CANCELED',
    'OPTION_EXERCISED', 'OPTION_EXPIRED', 'OPTION_CLOSED', 'EVENT_TYPES',
    # Operations
    'compute_create_order', 'compute_fill_ask', 'compute_fill_bid', 'compute_cancel',
    'compute_exercise', 'compute_claim_expiration', 'compute_close',
    # Exchange
    'OptionRegistry', 'OptionExchange',
]

__version__ = '1.0.0'
