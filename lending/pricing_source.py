"""
pricing_source.py - Oracle price feeds for health and liquidation checks

Produces OraclePrice quotes (price + publish time) for oracle keys at a
given instant. The risk engine decides whether a quote is fresh enough; a
feed only reports what it last saw.

Classes:
- PriceFeed: Protocol defining the feed interface
- StaticPriceFeed: Prices that never change, published at a fixed time
- TimeSeriesPriceFeed: Time-varying prices with historical data

All prices are WAD-scaled quote-currency values of one native unit.
"""

from typing import Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable
from bisect import bisect_right

from .risk import OraclePrice


@runtime_checkable
class PriceFeed(Protocol):
    """
    Protocol for price feeds.

    Implementations must provide get_quote() and get_quotes() methods.
    """

    def get_quote(self, key: str, timestamp: int) -> Optional[OraclePrice]:
        """Get the latest quote for one oracle key at or before a timestamp."""
        ...

    def get_quotes(self, keys: Iterable[str], timestamp: int) -> Dict[str, OraclePrice]:
        """Get quotes for multiple oracle keys; keys without data are omitted."""
        ...


class StaticPriceFeed:
    """
    Price feed with static prices.

    Every quote is reported as published at `published_at`, or at the
    requested timestamp when published_at is None (always fresh).
    """

    def __init__(self, prices: Dict[str, int], published_at: Optional[int] = None, confidence: int = 0):
        """
        Args:
            prices: Oracle key -> WAD-scaled price
            published_at: Publish time of every quote (None: the query time)
            confidence: Confidence half-width reported with every quote
        """
        self.prices = dict(prices)
        self.published_at = published_at
        self.confidence = confidence

    def get_quote(self, key: str, timestamp: int) -> Optional[OraclePrice]:
        price = self.prices.get(key)
        if price is None:
            return None
        published = timestamp if self.published_at is None else self.published_at
        return OraclePrice(price, published, self.confidence)

    def get_quotes(self, keys: Iterable[str], timestamp: int) -> Dict[str, OraclePrice]:
        quotes = {}
        for key in keys:
            quote = self.get_quote(key, timestamp)
            if quote is not None:
                quotes[key] = quote
        return quotes

    def update_price(self, key: str, price: int, published_at: Optional[int] = None):
        """Update one price; optionally move the publish time of all quotes."""
        self.prices[key] = price
        if published_at is not None:
            self.published_at = published_at

    def __repr__(self):
        return f"StaticPriceFeed({len(self.prices)} prices, published_at={self.published_at})"


class TimeSeriesPriceFeed:
    """
    Price feed with time-varying prices.

    Stores historical observations and returns the most recent one at or
    before the requested timestamp, stamped with its own publish time, so a
    feed that stops updating produces quotes that eventually go stale.
    """

    def __init__(self, price_paths: Optional[Dict[str, List[Tuple[int, int]]]] = None):
        """
        Args:
            price_paths: Optional dict mapping oracle keys to lists of
                         (published_at, price) tuples.

        Examples:
            feed = TimeSeriesPriceFeed()
            feed.add_price('SOL', 1_700_000_000, 150 * WAD)

            feed = TimeSeriesPriceFeed({
                'SOL': [(t0, 150 * WAD), (t1, 140 * WAD)],
                'USDC': [(t0, WAD)],
            })
        """
        self.price_history: Dict[str, List[Tuple[int, int]]] = {}
        if price_paths:
            for key, path in price_paths.items():
                if not path:
                    continue
                self.price_history[key] = sorted(path, key=lambda x: x[0])

    def add_price(self, key: str, published_at: int, price: int):
        """Add a price observation, keeping history in publish order."""
        history = self.price_history.setdefault(key, [])
        history.append((published_at, price))
        history.sort(key=lambda x: x[0])

    def add_prices(self, prices: Dict[str, int], published_at: int):
        for key, price in prices.items():
            self.add_price(key, published_at, price)

    def get_quote(self, key: str, timestamp: int) -> Optional[OraclePrice]:
        """
        Get the quote at or before the specified timestamp.

        Returns None if no observation was published by then.
        """
        history = self.price_history.get(key)
        if not history:
            return None
        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None
        published_at, price = history[idx - 1]
        return OraclePrice(price, published_at)

    def get_quotes(self, keys: Iterable[str], timestamp: int) -> Dict[str, OraclePrice]:
        quotes = {}
        for key in keys:
            quote = self.get_quote(key, timestamp)
            if quote is not None:
                quotes[key] = quote
        return quotes

    def get_all_timestamps(self, key: Optional[str] = None) -> List[int]:
        """Sorted publish times for one key, or the union over all keys."""
        if key:
            return [ts for ts, _ in self.price_history.get(key, [])]
        all_times = set()
        for path in self.price_history.values():
            all_times.update(ts for ts, _ in path)
        return sorted(all_times)

    def __repr__(self):
        total = sum(len(history) for history in self.price_history.values())
        return f"TimeSeriesPriceFeed({len(self.price_history)} keys, {total} observations)"
