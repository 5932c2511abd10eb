"""
conftest.py - Shared pytest fixtures for option book tests

Provides common fixtures used across unit, functional and conformance tests:
- A funded two-token ledger (TKA underlying, TKB strike)
- A 1% fee policy on the strike token
- An exchange whose escrow wallet every trader has approved
- Open and active orders in the round-trip configuration (1 / 200 / 10 / 1h)
"""

import pytest

from optionbook import OptionExchange

from tests.book_helpers import (
    ROUND_TRIP, make_ledger, make_fees, approve_escrow,
)


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Funded TKA/TKB ledger at 2025-01-01."""
    return make_ledger()


@pytest.fixture
def fees(ledger):
    """1% fee on TKB, paid to treasury, administered by admin."""
    return make_fees(ledger)


@pytest.fixture
def exchange(ledger, fees):
    """TKA/TKB exchange with escrow approvals in place."""
    exchange = OptionExchange(ledger, "TKA", "TKB", fees, verbose=False)
    approve_escrow(ledger, exchange)
    return exchange


# =============================================================================
# ORDER FIXTURES
# =============================================================================

@pytest.fixture
def open_ask(exchange):
    """Id of an OPEN ask posted by seller."""
    return exchange.create_ask("seller", *ROUND_TRIP)


@pytest.fixture
def open_bid(exchange):
    """Id of an OPEN bid posted by buyer."""
    return exchange.create_bid("buyer", *ROUND_TRIP)


@pytest.fixture
def active_option(exchange, open_ask):
    """Id of an ACTIVE option: seller's ask filled by buyer at T0."""
    exchange.fill_ask("buyer", open_ask)
    return open_ask
