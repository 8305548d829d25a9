"""
conftest.py - Shared pytest fixtures for lending tests

Provides common fixtures used across unit, functional and conformance tests:
- Protocol configuration
- Fresh oracle quotes
- Ledgers with USDC/SOL markets (empty, funded, with an open borrow)
"""

import pytest

from lending import ProtocolConfig, RateModelParams, WAD

from tests.builders import new_ledger, quotes


@pytest.fixture
def config():
    return ProtocolConfig()


@pytest.fixture
def par_prices():
    """USDC and SOL both priced at 1.0."""
    return quotes(USDC=WAD, SOL=WAD)


@pytest.fixture
def ledger():
    """Ledger with zero-rate USDC and SOL markets and no positions."""
    return new_ledger()


@pytest.fixture
def funded_ledger(ledger):
    """alice supplies 1000 USDC, bob supplies 150 SOL."""
    ledger.supply("USDC", "alice", 1_000)
    ledger.supply("SOL", "bob", 150)
    return ledger


@pytest.fixture
def borrowed_ledger(funded_ledger, par_prices):
    """funded_ledger plus bob borrowing 100 USDC against his SOL (health factor 1.275)."""
    funded_ledger.borrow("USDC", "bob", 100, prices=par_prices)
    return funded_ledger


@pytest.fixture
def interest_ledger():
    """Ledger with the default (non-zero) rate curve."""
    return new_ledger(rate_model=RateModelParams())
