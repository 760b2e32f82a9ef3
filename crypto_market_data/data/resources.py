"""Resource model: classes, caching policy and keys for upstream market data."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple
from urllib.parse import urlencode


DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"
PRICE_HISTORY_DAYS = (1, 7, 30)


class ResourceClass(Enum):
    """Kinds of independently cacheable upstream data."""
    MARKET_LIST = "market_list"
    GLOBAL_METRICS = "global_metrics"
    SECTOR_LIST = "sector_list"
    WATCHLIST = "watchlist"
    PRICE_HISTORY = "price_history"
    COIN_IMAGE_SET = "coin_image_set"


@dataclass(frozen=True)
class ResourcePolicy:
    """Static caching, throttling and retry policy for a resource class."""

    ttl: float                      # Freshness window in seconds
    min_dispatch_interval: float    # Rate-limit floor between dispatches
    max_attempts: int = 3
    backoff_base: float = 1.0       # Seconds; delay = base * 2 ** attempt
    persist: bool = True            # Mirror entries into the blob store

    def __post_init__(self):
        if self.ttl <= 0:
            raise ValueError("ttl must be positive")
        if self.min_dispatch_interval < 0:
            raise ValueError("min_dispatch_interval must not be negative")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_base < 0:
            raise ValueError("backoff_base must not be negative")

    def with_overrides(self, **overrides: Any) -> "ResourcePolicy":
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


DEFAULT_POLICIES: Dict[ResourceClass, ResourcePolicy] = {
    ResourceClass.MARKET_LIST: ResourcePolicy(ttl=300, min_dispatch_interval=10),
    ResourceClass.GLOBAL_METRICS: ResourcePolicy(ttl=300, min_dispatch_interval=10),
    ResourceClass.SECTOR_LIST: ResourcePolicy(ttl=600, min_dispatch_interval=10),
    ResourceClass.WATCHLIST: ResourcePolicy(ttl=300, min_dispatch_interval=10),
    # Chart data is cheap to refetch and large; keep it in memory only
    ResourceClass.PRICE_HISTORY: ResourcePolicy(ttl=600, min_dispatch_interval=10, persist=False),
    ResourceClass.COIN_IMAGE_SET: ResourcePolicy(ttl=86400, min_dispatch_interval=10),
}


@dataclass(frozen=True)
class ResourceKey:
    """Immutable identifier of one cacheable resource.

    Two keys address the same resource iff both the class and every
    parameter match exactly. Parameters are stored as a sorted tuple of
    pairs so keys are hashable and order-independent.
    """

    resource_class: ResourceClass
    parameters: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, resource_class: ResourceClass, **parameters: Any) -> "ResourceKey":
        return cls(resource_class, tuple(sorted(parameters.items())))

    @property
    def params(self) -> Dict[str, Any]:
        return dict(self.parameters)

    @property
    def storage_key(self) -> str:
        """Stable string form used as the blob store key."""
        if not self.parameters:
            return self.resource_class.value
        query = "&".join(f"{name}={value}" for name, value in self.parameters)
        return f"{self.resource_class.value}?{query}"

    def __str__(self) -> str:
        return self.storage_key


@dataclass(frozen=True)
class RequestDescriptor:
    """Everything the transport needs to perform one fetch."""

    url: str
    headers: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    timeout: float = 15.0


def market_list_key(currency: str = "usd", page: int = 1, per_page: int = 100) -> ResourceKey:
    return ResourceKey.of(
        ResourceClass.MARKET_LIST, currency=currency.lower(), page=int(page), per_page=int(per_page)
    )


def global_metrics_key() -> ResourceKey:
    return ResourceKey.of(ResourceClass.GLOBAL_METRICS)


def sector_list_key() -> ResourceKey:
    return ResourceKey.of(ResourceClass.SECTOR_LIST)


def watchlist_key(ids: Iterable[str], currency: str = "usd") -> ResourceKey:
    joined = ",".join(sorted(set(ids)))
    return ResourceKey.of(ResourceClass.WATCHLIST, currency=currency.lower(), ids=joined)


def price_history_key(coin_id: str, days: int = 7, currency: str = "usd") -> ResourceKey:
    if days not in PRICE_HISTORY_DAYS:
        raise ValueError(f"days must be one of {PRICE_HISTORY_DAYS}, got {days}")
    return ResourceKey.of(
        ResourceClass.PRICE_HISTORY, coin_id=coin_id, days=int(days), currency=currency.lower()
    )


def coin_image_set_key(symbols: Iterable[str], currency: str = "usd") -> ResourceKey:
    joined = ",".join(sorted({symbol.lower() for symbol in symbols}))
    return ResourceKey.of(ResourceClass.COIN_IMAGE_SET, currency=currency.lower(), symbols=joined)


class RequestBuilder:
    """Builds CoinGecko v3 request descriptors for resource keys."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 15.0,
                 api_key: Optional[str] = None, user_agent: str = "CryptoMarketData/1.0"):
        """Initialize request builder.

        Args:
            base_url: API root, without trailing slash
            timeout: Per-request transport timeout in seconds
            api_key: Optional CoinGecko demo API key
            user_agent: User-Agent header value
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Accept": "application/json", "User-Agent": user_agent}
        if api_key:
            self.headers["x-cg-demo-api-key"] = api_key

    def build(self, key: ResourceKey) -> RequestDescriptor:
        endpoint, query = self._endpoint(key)
        url = f"{self.base_url}/{endpoint}"
        if query:
            url = f"{url}?{urlencode(query, safe=',')}"
        return RequestDescriptor(url=url, headers=dict(self.headers), timeout=self.timeout)

    def _endpoint(self, key: ResourceKey) -> Tuple[str, Dict[str, Any]]:
        params = key.params
        resource_class = key.resource_class

        if resource_class == ResourceClass.MARKET_LIST:
            return "coins/markets", {
                "vs_currency": params["currency"],
                "order": "volume_desc",
                "per_page": params["per_page"],
                "page": params["page"],
                "sparkline": "false",
            }

        if resource_class == ResourceClass.GLOBAL_METRICS:
            return "global", {}

        if resource_class == ResourceClass.SECTOR_LIST:
            return "coins/categories", {}

        if resource_class == ResourceClass.WATCHLIST:
            return "coins/markets", {
                "vs_currency": params["currency"],
                "ids": params["ids"],
                "order": "market_cap_desc",
                "sparkline": "false",
            }

        if resource_class == ResourceClass.PRICE_HISTORY:
            return f"coins/{params['coin_id']}/market_chart", {
                "vs_currency": params["currency"],
                "days": params["days"],
            }

        if resource_class == ResourceClass.COIN_IMAGE_SET:
            symbols = params["symbols"]
            return "coins/markets", {
                "vs_currency": params["currency"],
                "symbols": symbols,
                "order": "market_cap_desc",
                "per_page": max(len(symbols.split(",")), 1),
                "sparkline": "false",
            }

        raise ValueError(f"No endpoint for resource class {resource_class}")
