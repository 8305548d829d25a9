"""
fake_view.py - Test Helper for LendingView

Provides a minimal LendingView implementation for testing the pure compute
functions without requiring a full LendingLedger instance.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Set, Tuple

from lending import Market, BorrowPosition, MarketNotFound


class FakeView:
    """
    Minimal LendingView implementation for testing pure functions.

    Example:
        view = FakeView(
            markets={'USDC': usdc_market},
            balances={'alice': {'USDC': 1000}},
            positions={('bob', 'USDC'): BorrowPosition(...)},
            time=1_700_000_000,
        )
    """

    def __init__(
        self,
        markets: Dict[str, Market],
        balances: Optional[Dict[str, Dict[str, int]]] = None,
        positions: Optional[Dict[Tuple[str, str], BorrowPosition]] = None,
        time: int = 0,
    ):
        self._markets = markets
        self._balances = balances or {}
        self._positions = positions or {}
        self._time = time

    @property
    def current_time(self) -> int:
        return self._time

    def get_market(self, market_id: str) -> Market:
        if market_id not in self._markets:
            raise MarketNotFound(market_id)
        return self._markets[market_id]

    def get_borrow_position(self, user: str, market_id: str) -> Optional[BorrowPosition]:
        return self._positions.get((user, market_id))

    def get_claim_balance(self, user: str, market_id: str) -> int:
        return self._balances.get(user, {}).get(market_id, 0)

    def list_markets(self) -> List[str]:
        return sorted(self._markets)

    def list_user_markets(self, user: str) -> Set[str]:
        markets = {m for m, q in self._balances.get(user, {}).items() if q}
        markets.update(m for (u, m) in self._positions if u == user)
        return markets


