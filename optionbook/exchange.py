"""
exchange.py - Option Exchange

The stateful side of the option book. OptionExchange owns the registry and
the escrow wallet of one (underlying, strike) pair and commits the
OptionSteps computed by order_book and lifecycle.

Execution order of every operation:
1. Take the in-flight lock on the record
2. Compute the step (all guards run here, nothing is written yet)
3. Write the new record to the registry
4. Submit the step's moves to the ledger as one transaction
5. On rejection or error restore the previous record; on success emit the event

Writing the record before the ledger call means a transfer rule that calls
back into the exchange sees the post-transition state.
"""

from __future__ import annotations
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .core import (
    Clock, FeePolicy, ExecuteResult, CustodyFailure,
    ZERO,
)
from .events import OptionEvent, EventListener
from .ledger import Ledger
from .lifecycle import compute_exercise, compute_claim_expiration, compute_close
from .option import (
    OptionRecord, OptionState, OptionStep, OrderType, PairTerms,
    require_state, calculate_closing_fee, calculate_closing_fee_fraction,
    calculate_remaining_seconds, calculate_premium_split,
)
from .order_book import (
    compute_create_order, compute_fill_ask, compute_fill_bid, compute_cancel,
)
from .registry import OptionRegistry


class OptionExchange:
    """
    Escrow-based bilateral option book for one asset pair.

    Sellers lock underlying, buyers pay premiums, and the escrow wallet holds
    custody until the option is exercised, claimed after expiry, closed early
    or, while still an order, canceled.

    Every pulled move uses the escrow wallet as spender, so callers approve
    the escrow wallet on the ledger before creating or filling orders.

    Example:
        exchange = OptionExchange(ledger, "TKA", "TKB", fees)
        ledger.approve("seller", exchange.escrow_wallet, "TKA", Decimal("1"))
        option_id = exchange.create_ask("seller", 1, 200, 10, 3600)
    """

    def __init__(
        self,
        ledger: Ledger,
        underlying: str,
        strike: str,
        fee_policy: FeePolicy,
        name: str = "optionbook",
        escrow_wallet: Optional[str] = None,
        clock: Optional[Clock] = None,
        verbose: Optional[bool] = None,
    ):
        """
        Args:
            ledger: Ledger holding every asset the exchange moves
            underlying: Symbol of the asset delivered on exercise
            strike: Symbol of the asset paying strike, premium and fees
            fee_policy: Premium fee policy consulted on every fill
            name: Exchange identifier used in transaction origins
            escrow_wallet: Custody wallet (default: "{name}:escrow"), registered here
            clock: Time source (default: the ledger)
            verbose: Print committed operations (default: ledger.verbose)

        Raises:
            ValueError: If underlying and strike are the same asset
            UnitNotRegistered: If either asset is not registered on the ledger
        """
        if underlying == strike:
            raise ValueError(f"underlying and strike must differ, got {underlying}")
        ledger.get_unit(underlying)
        ledger.get_unit(strike)

        self.ledger = ledger
        self.fee_policy = fee_policy
        self.clock: Clock = clock or ledger
        self.verbose = ledger.verbose if verbose is None else verbose

        escrow_wallet = escrow_wallet or f"{name}:escrow"
        if not ledger.is_registered(escrow_wallet):
            ledger.register_wallet(escrow_wallet)
        self.terms = PairTerms(name, underlying, strike, escrow_wallet)

        self.registry = OptionRegistry()
        self.events: List[OptionEvent] = []
        self._listeners: List[EventListener] = []
        self.listener_errors: List[Tuple[OptionEvent, Exception]] = []

    @property
    def name(self) -> str:
        return self.terms.name

    @property
    def underlying(self) -> str:
        return self.terms.underlying

    @property
    def strike(self) -> str:
        return self.terms.strike

    @property
    def escrow_wallet(self) -> str:
        return self.terms.escrow_wallet

    def subscribe(self, listener: EventListener) -> None:
        """
        Call listener with every event emitted after this point.

        Listeners run after the operation committed. An exception a listener
        raises is recorded in listener_errors and does not reach the caller.
        """
        self._listeners.append(listener)

    # ========================================================================
    # ORDER BOOK
    # ========================================================================

    def create_ask(
        self,
        caller: str,
        underlying_amount: Decimal,
        strike_amount: Decimal,
        premium_amount: Decimal,
        period_seconds: int,
    ) -> int:
        """Post an offer to write an option; locks underlying_amount in escrow."""
        return self._create(caller, OrderType.ASK, underlying_amount,
                            strike_amount, premium_amount, period_seconds)

    def create_bid(
        self,
        caller: str,
        underlying_amount: Decimal,
        strike_amount: Decimal,
        premium_amount: Decimal,
        period_seconds: int,
    ) -> int:
        """Post an offer to buy an option; locks premium_amount in escrow."""
        return self._create(caller, OrderType.BID, underlying_amount,
                            strike_amount, premium_amount, period_seconds)

    def fill_ask(self, caller: str, option_id: int) -> OptionRecord:
        """Buy the option offered by an ASK; caller pays the premium."""
        return self._apply(option_id, lambda record, now: compute_fill_ask(
            self.ledger, self.terms, record, caller, self.fee_policy, now))

    def fill_bid(self, caller: str, option_id: int) -> OptionRecord:
        """Write the option requested by a BID; caller locks the underlying."""
        return self._apply(option_id, lambda record, now: compute_fill_bid(
            self.ledger, self.terms, record, caller, self.fee_policy, now))

    def cancel_order(self, caller: str, option_id: int) -> OptionRecord:
        """Withdraw an OPEN order; its creator gets the locked asset back."""
        return self._apply(option_id, lambda record, now: compute_cancel(
            self.ledger, self.terms, record, caller, now))

    # ========================================================================
    # ACTIVE OPTIONS
    # ========================================================================

    def exercise_option(self, caller: str, option_id: int) -> OptionRecord:
        """Buyer pays the strike and takes delivery of the underlying."""
        return self._apply(option_id, lambda record, now: compute_exercise(
            self.ledger, self.terms, record, caller, now))

    def claim_underlying_on_expiration(self, caller: str, option_id: int) -> OptionRecord:
        """Seller recovers the underlying of an expired, unexercised option."""
        return self._apply(option_id, lambda record, now: compute_claim_expiration(
            self.ledger, self.terms, record, caller, now))

    def close_option(self, caller: str, option_id: int) -> OptionRecord:
        """Seller buys back the option early for the current closing fee."""
        return self._apply(option_id, lambda record, now: compute_close(
            self.ledger, self.terms, record, caller, now))

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    @property
    def next_option_id(self) -> int:
        return self.registry.next_id

    def get_option(self, option_id: int) -> OptionRecord:
        """
        Raises:
            OptionNotFound: If no record has this id
        """
        return self.registry.get(option_id)

    def list_options(
        self,
        state: Optional[OptionState] = None,
        order_type: Optional[OrderType] = None,
    ) -> List[OptionRecord]:
        return self.registry.records(state=state, order_type=order_type)

    def open_orders(self, order_type: Optional[OrderType] = None) -> List[OptionRecord]:
        return self.registry.records(state=OptionState.OPEN, order_type=order_type)

    def options_of(self, wallet: str) -> List[OptionRecord]:
        """Records where wallet is creator, seller or buyer."""
        return [
            r for r in self.registry.records()
            if wallet in (r.creator, r.seller, r.buyer)
        ]

    def get_closing_fee_fraction(self, option_id: int) -> Decimal:
        record = self._require_active(option_id, "get_closing_fee_fraction")
        remaining = calculate_remaining_seconds(record.expiration_timestamp, self.clock.current_time)
        return calculate_closing_fee_fraction(remaining, Decimal(record.total_period_seconds))

    def get_closing_fee(self, option_id: int) -> Decimal:
        """Closing fee the seller would pay now, in strike units."""
        record = self._require_active(option_id, "get_closing_fee")
        return calculate_closing_fee(
            record.premium_amount,
            record.total_period_seconds,
            record.expiration_timestamp,
            self.clock.current_time,
            strike_unit=self.ledger.get_unit(self.strike),
        )

    def quote_fill(self, option_id: int) -> Dict[str, Any]:
        """
        Premium split a fill would settle now, without executing anything.

        Returns:
            Dict with 'premium', 'fee', 'seller_proceeds' and 'fee_recipient'
        """
        record = self.registry.get(option_id)
        require_state(record, OptionState.OPEN, "quote_fill")
        fee = self.ledger.get_unit(self.strike).round_down(
            self.fee_policy.get_fee(self.strike, record.premium_amount)
        )
        fee, proceeds = calculate_premium_split(record.premium_amount, fee)
        return {
            'premium': record.premium_amount,
            'fee': fee,
            'seller_proceeds': proceeds,
            'fee_recipient': self.fee_policy.fee_recipient,
        }

    def escrow_balance(self, asset: str) -> Decimal:
        return self.ledger.get_balance(self.escrow_wallet, asset)

    def verify_custody(self) -> Dict[str, Any]:
        """
        Check escrow balances against the records that lock them.

        underlying escrow == sum of underlying_amount over OPEN asks and ACTIVE options
        strike escrow     == sum of premium_amount over OPEN bids

        Returns:
            Dict with keys:
            - 'valid': bool - True if both balances match
            - 'expected': Dict[str, Decimal] - amount locked per asset
            - 'actual': Dict[str, Decimal] - escrow balance per asset
            - 'discrepancies': List[Dict] - assets whose balance differs
        """
        expected = {self.underlying: ZERO, self.strike: ZERO}
        for record in self.registry.records():
            if record.state is OptionState.ACTIVE or (
                record.state is OptionState.OPEN and record.order_type is OrderType.ASK
            ):
                expected[self.underlying] += record.underlying_amount
            elif record.state is OptionState.OPEN:
                expected[self.strike] += record.premium_amount

        actual = {asset: self.escrow_balance(asset) for asset in expected}
        discrepancies = [
            {'asset': asset, 'expected': expected[asset], 'actual': actual[asset]}
            for asset in expected
            if expected[asset] != actual[asset]
        ]
        return {
            'valid': not discrepancies,
            'expected': expected,
            'actual': actual,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # COMMIT (internal)
    # ========================================================================

    def _require_active(self, option_id: int, operation: str) -> OptionRecord:
        record = self.registry.get(option_id)
        require_state(record, OptionState.ACTIVE, operation)
        return record

    def _create(
        self,
        caller: str,
        order_type: OrderType,
        underlying_amount: Decimal,
        strike_amount: Decimal,
        premium_amount: Decimal,
        period_seconds: int,
    ) -> int:
        option_id = self.registry.next_id
        with self.registry.lock(option_id):
            step = compute_create_order(
                self.ledger, self.terms, option_id, caller, order_type,
                underlying_amount, strike_amount, premium_amount, period_seconds,
                self.clock.current_time,
            )
            self.registry.add(step.record)
            with self._rollback(lambda: self.registry.discard(option_id)):
                self._execute(step)
        self._emit(step)
        return option_id

    def _apply(
        self,
        option_id: int,
        compute: Callable[..., OptionStep],
    ) -> OptionRecord:
        with self.registry.lock(option_id):
            previous = self.registry.get(option_id)
            step = compute(previous, self.clock.current_time)
            self.registry.put(step.record)
            with self._rollback(lambda: self.registry.put(previous)):
                self._execute(step)
        self._emit(step)
        return step.record

    @contextmanager
    def _rollback(self, undo: Callable[[], None]) -> Iterator[None]:
        """Run undo if the block raises, then re-raise."""
        try:
            yield
        except Exception:
            undo()
            raise

    def _execute(self, step: OptionStep) -> None:
        """
        Raises:
            CustodyFailure: If the ledger did not apply the step's moves
        """
        result = self.ledger.execute(step.pending)
        if result is not ExecuteResult.APPLIED:
            reason = self.ledger.last_rejection or result.value
            raise CustodyFailure(
                f"{step.pending.origin.event_type} on option {step.record.option_id} "
                f"rejected by ledger: {reason}",
                reason=reason,
            )

    def _emit(self, step: OptionStep) -> None:
        event = step.event
        self.events.append(event)
        if self.verbose:
            print(f"[{self.name}] {event.event_type} option={event.option_id} "
                  f"state={step.record.state.value}")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self.listener_errors.append((event, e))
                if self.verbose:
                    print(f"[{self.name}] listener {listener!r} failed on "
                          f"{event.event_type} option={event.option_id}: {e!r}")

    def __repr__(self) -> str:
        return (
            f"OptionExchange({self.name}: {self.underlying}/{self.strike}, "
            f"{len(self.registry)} records, escrow={self.escrow_wallet})"
        )
