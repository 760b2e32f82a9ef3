"""Data models for cached market data and resolve outcomes."""

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from .errors import DataAccessError, DecodeError
from .resources import ResourceClass

T = TypeVar("T")

Decoder = Callable[[bytes], Any]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A decoded value and the time it was stored.

    Entries are never mutated; a refresh replaces the entry as a whole.
    """

    value: T
    stored_at: float

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)

    def is_fresh(self, now: float, ttl: float) -> bool:
        """Check freshness against a TTL. Stale entries stay usable as fallbacks."""
        return now - self.stored_at < ttl


class Outcome(Generic[T]):
    """Terminal result of a resolve call: ``Fresh``, ``Stale`` or ``Failed``."""

    is_fresh = False
    is_stale = False
    is_failed = False

    @property
    def has_value(self) -> bool:
        return not self.is_failed


@dataclass(frozen=True)
class Fresh(Outcome[T]):
    """Value fetched or cached within its TTL."""

    value: T
    stored_at: float
    is_fresh = True


@dataclass(frozen=True)
class Stale(Outcome[T]):
    """Previously cached value served because a refresh did not succeed."""

    value: T
    reason: DataAccessError
    stored_at: float
    is_stale = True


@dataclass(frozen=True)
class Failed(Outcome[T]):
    """No value could be produced and nothing was cached."""

    error: DataAccessError
    attempts: int = 0
    is_failed = True


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise DecodeError(f"Invalid numeric value {value!r}") from e
    if not number.is_finite():
        raise DecodeError(f"Non-finite numeric value {value!r}")
    return number


def _float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Invalid numeric value {value!r}") from e
    if not math.isfinite(number):
        raise DecodeError(f"Non-finite numeric value {value!r}")
    return number


@dataclass
class MarketCoin:
    """One row of the ``coins/markets`` endpoint."""

    id: str
    symbol: str
    name: str
    current_price: Decimal
    total_volume: Decimal
    market_cap: Decimal
    image: str
    price_change_percentage_24h: Optional[float] = None

    @property
    def price_change_or_zero(self) -> float:
        return self.price_change_percentage_24h or 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'id': self.id,
            'symbol': self.symbol,
            'name': self.name,
            'current_price': float(self.current_price),
            'price_change_percentage_24h': self.price_change_percentage_24h,
            'total_volume': float(self.total_volume),
            'market_cap': float(self.market_cap),
            'image': self.image,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MarketCoin':
        try:
            return cls(
                id=str(data['id']),
                symbol=str(data['symbol']),
                name=str(data['name']),
                current_price=_decimal(data['current_price']) or Decimal("0"),
                total_volume=_decimal(data.get('total_volume')) or Decimal("0"),
                market_cap=_decimal(data.get('market_cap')) or Decimal("0"),
                image=str(data.get('image') or ""),
                price_change_percentage_24h=_float(data.get('price_change_percentage_24h')),
            )
        except (KeyError, TypeError) as e:
            raise DecodeError(f"Malformed market entry: {e}") from e


@dataclass
class GlobalMetrics:
    """Market-wide dominance and capitalisation from the ``global`` endpoint."""

    market_cap_percentage: Dict[str, float]
    total_market_cap: Dict[str, float]

    def total_for(self, currency: str) -> Optional[float]:
        return self.total_market_cap.get(currency.lower())

    def top_symbols(self, count: int = 10) -> List[str]:
        """Symbols with the largest dominance, largest first."""
        ranked = sorted(self.market_cap_percentage.items(), key=lambda item: item[1], reverse=True)
        return [symbol for symbol, _ in ranked[:count]]


@dataclass
class DominanceShare:
    """One coin's share of total market capitalisation."""

    symbol: str
    percentage: float
    market_cap: float
    image: str = ""


@dataclass
class Sector:
    """A coin category from the ``coins/categories`` endpoint."""

    id: str
    name: str
    market_cap: Optional[float] = None
    market_cap_change_24h: Optional[float] = None
    content: Optional[str] = None
    top_3_coins: List[str] = field(default_factory=list)


@dataclass
class PricePoint:
    """A single price sample of a chart series."""

    timestamp: datetime
    price: Decimal

    def __post_init__(self):
        if isinstance(self.price, (int, float)):
            self.price = Decimal(str(self.price))
        if self.timestamp.tzinfo is None:
            self.timestamp = self.timestamp.replace(tzinfo=timezone.utc)


def _load_json(payload: bytes) -> Any:
    try:
        return json.loads(payload)
    except (TypeError, ValueError, UnicodeDecodeError) as e:
        raise DecodeError(f"Invalid JSON payload: {e}") from e


def _expect(data: Any, kind: type, what: str) -> Any:
    if not isinstance(data, kind):
        raise DecodeError(f"Expected {what}, got {type(data).__name__}")
    return data


def decode_market_list(payload: bytes) -> List[MarketCoin]:
    """Decode ``coins/markets`` ordered by 24h volume, largest first."""
    rows = _expect(_load_json(payload), list, "a list of markets")
    coins = [MarketCoin.from_dict(_expect(row, dict, "a market object")) for row in rows]
    return sorted(coins, key=lambda coin: coin.total_volume, reverse=True)


def decode_watchlist(payload: bytes) -> List[MarketCoin]:
    """Decode ``coins/markets`` for watchlist ids, keeping upstream order."""
    rows = _expect(_load_json(payload), list, "a list of markets")
    return [MarketCoin.from_dict(_expect(row, dict, "a market object")) for row in rows]


def decode_global_metrics(payload: bytes) -> GlobalMetrics:
    document = _expect(_load_json(payload), dict, "a global document")
    data = _expect(document.get('data'), dict, "a 'data' object")
    try:
        percentages = {
            str(symbol).lower(): float(value)
            for symbol, value in _expect(data['market_cap_percentage'], dict, "a percentage map").items()
        }
        totals = {
            str(currency).lower(): float(value)
            for currency, value in _expect(data['total_market_cap'], dict, "a market cap map").items()
        }
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Malformed global metrics: {e}") from e
    return GlobalMetrics(market_cap_percentage=percentages, total_market_cap=totals)


def decode_sector_list(payload: bytes) -> List[Sector]:
    """Decode categories ordered by market cap; categories without one go last, by name."""
    rows = _expect(_load_json(payload), list, "a list of categories")
    sectors = []
    for row in rows:
        row = _expect(row, dict, "a category object")
        try:
            sectors.append(Sector(
                id=str(row['id']),
                name=str(row['name']),
                market_cap=_float(row.get('market_cap')),
                market_cap_change_24h=_float(row.get('market_cap_change_24h')),
                content=row.get('content'),
                top_3_coins=[str(url) for url in (row.get('top_3_coins') or [])],
            ))
        except (KeyError, TypeError) as e:
            raise DecodeError(f"Malformed category: {e}") from e

    with_cap = sorted((s for s in sectors if s.market_cap is not None),
                      key=lambda s: s.market_cap, reverse=True)
    without_cap = sorted((s for s in sectors if s.market_cap is None), key=lambda s: s.name)
    return with_cap + without_cap


def decode_price_history(payload: bytes) -> List[PricePoint]:
    document = _expect(_load_json(payload), dict, "a market chart document")
    points = []
    for sample in _expect(document.get('prices'), list, "a list of prices"):
        if not isinstance(sample, (list, tuple)) or len(sample) < 2:
            raise DecodeError(f"Malformed price sample: {sample!r}")
        timestamp_ms, price = sample[0], sample[1]
        if price is None:
            continue
        try:
            timestamp = datetime.fromtimestamp(float(timestamp_ms) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError) as e:
            raise DecodeError(f"Invalid timestamp {timestamp_ms!r}") from e
        points.append(PricePoint(timestamp=timestamp, price=_decimal(price)))
    return points


def decode_coin_images(payload: bytes) -> Dict[str, str]:
    """Decode ``coins/markets`` into a lowercase symbol -> image URL map."""
    rows = _expect(_load_json(payload), list, "a list of markets")
    images = {}
    for row in rows:
        row = _expect(row, dict, "a market object")
        symbol = row.get('symbol')
        if symbol and row.get('image'):
            images.setdefault(str(symbol).lower(), str(row['image']))
    return images


DECODERS: Dict[ResourceClass, Decoder] = {
    ResourceClass.MARKET_LIST: decode_market_list,
    ResourceClass.GLOBAL_METRICS: decode_global_metrics,
    ResourceClass.SECTOR_LIST: decode_sector_list,
    ResourceClass.WATCHLIST: decode_watchlist,
    ResourceClass.PRICE_HISTORY: decode_price_history,
    ResourceClass.COIN_IMAGE_SET: decode_coin_images,
}
