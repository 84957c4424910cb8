"""
oracle.py - Price feeds for collateral and debt valuation

Provides the price side of the lending ledger:
- PriceQuote: a price with its confidence interval and publish time
- PriceOracle: protocol the core consumes (feed id + timestamp -> quote)
- StaticPriceOracle: quotes set directly, for tests and what-if analysis
- TimeSeriesPriceOracle: historical quotes, most recent at or before a time
- FeedRegistry: asset symbol -> feed id bindings, registered by an authority
- read_price(): the single gate through which the core obtains a price

The core never substitutes a default price. Unknown feeds, oracle failures,
non-positive prices, stale quotes and quotes with too wide a confidence
interval all raise InvalidPriceFeed.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable

from .core import (
    DEFAULT_MAX_PRICE_AGE, DEFAULT_MAX_CONFIDENCE_RATIO,
    InvalidPriceFeed, Unauthorized,
)


class OracleError(Exception):
    """Raised by an oracle implementation when it cannot produce a quote."""
    pass


# ============================================================================
# QUOTES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceQuote:
    """
    A single oracle observation.

    Attributes:
        price: Price of one whole unit of the asset in the common unit
        confidence: Half-width of the confidence interval (same unit as price)
        publish_time: When the observation was published
    """
    price: Decimal
    confidence: Decimal
    publish_time: datetime

    def __post_init__(self):
        if not isinstance(self.price, Decimal):
            object.__setattr__(self, 'price', Decimal(str(self.price)))
        if not isinstance(self.confidence, Decimal):
            object.__setattr__(self, 'confidence', Decimal(str(self.confidence)))

    @classmethod
    def from_fixed(cls, price: int, conf: int, expo: int, publish_time: datetime) -> PriceQuote:
        """
        Build a quote from a fixed-point reading (value = mantissa * 10**expo).

        Example:
            PriceQuote.from_fixed(14_250_000_000, 5_000_000, -8, now)  # 142.50 +/- 0.05
        """
        return cls(
            price=Decimal(price).scaleb(expo),
            confidence=Decimal(conf).scaleb(expo),
            publish_time=publish_time,
        )

    def age(self, now: datetime) -> timedelta:
        return now - self.publish_time


# ============================================================================
# ORACLE PROTOCOL AND IMPLEMENTATIONS
# ============================================================================

@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for price oracles.

    get_price() returns the latest quote for a feed as of timestamp, or raises
    OracleError if no usable reading exists.
    """

    def get_price(self, feed_id: str, timestamp: datetime) -> PriceQuote:
        ...


class StaticPriceOracle:
    """
    Oracle with directly-set quotes.

    Prices set with set_price() are published "now" unless a publish time is
    given, so they are always fresh for the timestamp they were set at.
    """

    def __init__(self, quotes: Optional[Dict[str, PriceQuote]] = None):
        self.quotes: Dict[str, PriceQuote] = dict(quotes or {})
        self.failing: Set[str] = set()

    def set_price(
        self,
        feed_id: str,
        price: Decimal,
        publish_time: datetime,
        confidence: Decimal = Decimal("0"),
    ) -> None:
        """Set the quote for a feed."""
        self.quotes[feed_id] = PriceQuote(price, confidence, publish_time)

    def fail(self, feed_id: str) -> None:
        """Make subsequent reads of feed_id raise OracleError."""
        self.failing.add(feed_id)

    def recover(self, feed_id: str) -> None:
        self.failing.discard(feed_id)

    def get_price(self, feed_id: str, timestamp: datetime) -> PriceQuote:
        if feed_id in self.failing:
            raise OracleError(f"feed {feed_id} unavailable")
        quote = self.quotes.get(feed_id)
        if quote is None:
            raise OracleError(f"no quote for feed {feed_id}")
        return quote

    def __repr__(self):
        return f"StaticPriceOracle({len(self.quotes)} feeds)"


class TimeSeriesPriceOracle:
    """
    Oracle backed by historical observations.

    Returns the most recent quote published at or before the requested time.

    Examples:
        oracle = TimeSeriesPriceOracle()
        oracle.add_quote('SOL_FEED', PriceQuote(Decimal("150"), Decimal("0.1"), t0))

        oracle = TimeSeriesPriceOracle({
            'SOL_FEED': [(t0, Decimal("150")), (t1, Decimal("140"))],
        })
    """

    def __init__(self, price_paths: Optional[Dict[str, List[Tuple[datetime, Decimal]]]] = None):
        self.history: Dict[str, List[PriceQuote]] = {}

        if price_paths:
            for feed_id, path in price_paths.items():
                for ts, price in path:
                    self.add_quote(feed_id, PriceQuote(price, Decimal("0"), ts))

    def add_quote(self, feed_id: str, quote: PriceQuote) -> None:
        """Add an observation, keeping history in publish-time order."""
        history = self.history.setdefault(feed_id, [])
        history.append(quote)
        history.sort(key=lambda q: q.publish_time)

    def get_price(self, feed_id: str, timestamp: datetime) -> PriceQuote:
        history = self.history.get(feed_id)
        if not history:
            raise OracleError(f"no history for feed {feed_id}")

        timestamps = [q.publish_time for q in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            raise OracleError(f"no quote for feed {feed_id} at or before {timestamp}")
        return history[idx - 1]

    def __repr__(self):
        total = sum(len(h) for h in self.history.values())
        return f"TimeSeriesPriceOracle({len(self.history)} feeds, {total} observations)"


# ============================================================================
# FEED REGISTRY
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceFeedBinding:
    """Binding of an asset symbol to an oracle feed identifier."""
    symbol: str
    feed_id: str


class FeedRegistry:
    """
    Asset symbol -> feed id lookup.

    Only the registry authority may register bindings. The core reads it
    through resolve_feed().
    """

    def __init__(self, authority: str):
        if not authority or not authority.strip():
            raise ValueError("authority cannot be empty")
        self.authority = authority
        self._bindings: Dict[str, PriceFeedBinding] = {}

    def register(self, caller: str, symbol: str, feed_id: str) -> PriceFeedBinding:
        """
        Bind symbol to feed_id (re-registration overwrites).

        Raises:
            Unauthorized: If caller is not the registry authority
            ValueError: If symbol or feed_id is empty
        """
        if caller != self.authority:
            raise Unauthorized(f"{caller} may not register price feeds")
        if not symbol or not symbol.strip():
            raise ValueError("symbol cannot be empty")
        if not feed_id or not feed_id.strip():
            raise ValueError("feed_id cannot be empty")
        binding = PriceFeedBinding(symbol, feed_id)
        self._bindings[symbol] = binding
        return binding

    def resolve_feed(self, symbol: str) -> str:
        """
        Return the feed id bound to symbol.

        Raises:
            InvalidPriceFeed: If no feed is registered for symbol
        """
        binding = self._bindings.get(symbol)
        if binding is None:
            raise InvalidPriceFeed(f"no price feed registered for {symbol}")
        return binding.feed_id

    def bindings(self) -> List[PriceFeedBinding]:
        return sorted(self._bindings.values(), key=lambda b: b.symbol)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._bindings


# ============================================================================
# VALIDATED READS
# ============================================================================

def validate_quote(
    quote: PriceQuote,
    now: datetime,
    max_age: timedelta = DEFAULT_MAX_PRICE_AGE,
    max_confidence_ratio: Decimal = DEFAULT_MAX_CONFIDENCE_RATIO,
) -> Decimal:
    """
    Check a quote is usable at now and return its price.

    Raises:
        InvalidPriceFeed: If price <= 0, the quote is older than max_age or
                          published in the future, or confidence / price
                          exceeds max_confidence_ratio.
    """
    if quote.price <= Decimal("0"):
        raise InvalidPriceFeed(f"non-positive price {quote.price}")
    age = quote.age(now)
    if age < timedelta(0):
        raise InvalidPriceFeed(f"quote published in the future ({quote.publish_time} > {now})")
    if age > max_age:
        raise InvalidPriceFeed(f"stale quote: age {age} exceeds {max_age}")
    if quote.confidence / quote.price > max_confidence_ratio:
        raise InvalidPriceFeed(
            f"confidence {quote.confidence} too wide for price {quote.price}"
        )
    return quote.price


def read_price(
    oracle: PriceOracle,
    registry: FeedRegistry,
    symbol: str,
    now: datetime,
    max_age: timedelta = DEFAULT_MAX_PRICE_AGE,
    max_confidence_ratio: Decimal = DEFAULT_MAX_CONFIDENCE_RATIO,
) -> Decimal:
    """
    Resolve symbol's feed, query the oracle and validate the quote.

    Raises:
        InvalidPriceFeed: On any lookup, oracle or validation failure
    """
    feed_id = registry.resolve_feed(symbol)
    try:
        quote = oracle.get_price(feed_id, now)
    except OracleError as e:
        raise InvalidPriceFeed(f"{symbol}: {e}") from e
    return validate_quote(quote, now, max_age, max_confidence_ratio)
