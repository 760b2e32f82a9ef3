"""Data service: cache-first, rate-limited, retrying access to market data."""

import asyncio
import logging
from typing import Any, Dict, Optional

from ..core.config import ConfigManager, build_policies
from .api_client import AiohttpTransport, Transport
from .blob_store import BlobStore, MemoryBlobStore, SQLiteBlobStore
from .cache import CacheEntryStore
from .clock import Clock, SystemClock
from .coalescer import RequestCoalescer
from .errors import DataAccessError, DecodeError, RateLimitedError, ThrottledError, TransportError
from .models import (
    DECODERS,
    Decoder,
    DominanceShare,
    Failed,
    Fresh,
    GlobalMetrics,
    Outcome,
    Stale,
    decode_coin_images,
    decode_global_metrics,
    decode_market_list,
    decode_price_history,
    decode_sector_list,
    decode_watchlist,
)
from .resources import (
    DEFAULT_BASE_URL,
    DEFAULT_POLICIES,
    RequestBuilder,
    ResourceClass,
    ResourceKey,
    ResourcePolicy,
    coin_image_set_key,
    global_metrics_key,
    market_list_key,
    price_history_key,
    sector_list_key,
    watchlist_key,
)
from .rate_limiter import RateLimiter
from .refresher import BackgroundRefresher
from .retry import GIVE_UP, build_retry_policies
from .subscriptions import Subscription, SubscriptionHub
from .watchlist import WatchlistManager

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_PATH = "~/.crypto_market/cache.db"


class DataService:
    """Single entry point for every view that needs market data.

    For each resource key the service decides whether to serve from
    memory, promote from the blob store, dispatch a fetch, retry with
    backoff, or fall back to a stale value:

    - a fresh cached entry is returned without touching the network
    - otherwise one fetch per key runs at a time; concurrent callers join it
    - the first dispatch of a fetch is subject to the class rate limit
      unless the caller forces a refresh
    - retryable failures back off exponentially up to ``max_attempts``
    - when no attempt succeeds, any cached value is returned as ``Stale``,
      and ``Failed`` only when nothing was ever cached

    ``resolve`` never raises for transport, throttling or decoding problems.
    """

    def __init__(self, transport: Transport, blob_store: Optional[BlobStore] = None,
                 clock: Optional[Clock] = None,
                 policies: Optional[Dict[ResourceClass, ResourcePolicy]] = None,
                 request_builder: Optional[RequestBuilder] = None):
        """Initialize data service.

        Args:
            transport: Network collaborator
            blob_store: Durable tier for cache entries and the watchlist
            clock: Time source, also used for backoff sleeps
            policies: Per-class policy table
            request_builder: Maps resource keys to request descriptors
        """
        self.transport = transport
        self.blob_store = blob_store if blob_store is not None else MemoryBlobStore()
        self.clock = clock if clock is not None else SystemClock()
        self.policies = dict(policies if policies is not None else DEFAULT_POLICIES)
        self.request_builder = request_builder if request_builder is not None else RequestBuilder()

        self.cache = CacheEntryStore(self.clock, self.blob_store, self.policies)
        self.rate_limiter = RateLimiter(self.clock, self.policies)
        self.retry_policies = build_retry_policies(self.policies)
        self.coalescer = RequestCoalescer()
        self.subscriptions = SubscriptionHub()
        self.watchlist = WatchlistManager(self.blob_store)

        self._refresher: Optional[BackgroundRefresher] = None
        self._running = False
        self._stats = {
            'resolves': 0,
            'fresh_hits': 0,
            'dispatches': 0,
            'throttled': 0,
            'retries': 0,
            'stale_fallbacks': 0,
            'failures': 0,
        }

    @classmethod
    def from_config(cls, config: ConfigManager, transport: Optional[Transport] = None,
                    blob_store: Optional[BlobStore] = None,
                    clock: Optional[Clock] = None) -> "DataService":
        """Build a service from loaded configuration."""
        builder = RequestBuilder(
            base_url=config.get("api.base_url", DEFAULT_BASE_URL),
            timeout=float(config.get("api.timeout", 15)),
            api_key=config.get("api.api_key"),
            user_agent=config.get("api.user_agent", "CryptoMarketData/1.0"),
        )

        if blob_store is None:
            if config.get("storage.backend", "sqlite") == "memory":
                blob_store = MemoryBlobStore()
            else:
                blob_store = SQLiteBlobStore(config.get("storage.path", DEFAULT_STORAGE_PATH))

        return cls(
            transport if transport is not None else AiohttpTransport(),
            blob_store=blob_store,
            clock=clock,
            policies=build_policies(config),
            request_builder=builder,
        )

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self):
        """Open the blob store and transport."""
        if self._running:
            return
        await self.blob_store.start()
        await self.transport.start()
        self._running = True
        logger.info("Data service started")

    async def stop(self):
        """Let in-flight fetches finish, flush durable writes and close resources."""
        if not self._running:
            return
        if self._refresher is not None:
            await self._refresher.stop()
        await self.coalescer.drain()
        await self.cache.flush()
        self.subscriptions.close_all()
        await self.transport.stop()
        await self.blob_store.close()
        self._running = False
        logger.info("Data service stopped")

    async def resolve(self, key: ResourceKey, decode: Optional[Decoder] = None,
                      force_refresh: bool = False) -> Outcome:
        """Resolve a resource to a ``Fresh``, ``Stale`` or ``Failed`` outcome.

        Args:
            key: Resource to resolve
            decode: Turns response bytes into a value; defaults to the
                decoder registered for the key's resource class
            force_refresh: Skip the freshness check and the rate limiter

        Returns:
            The terminal outcome for this call
        """
        decode = decode or DECODERS[key.resource_class]
        policy = self.policies[key.resource_class]
        self._stats['resolves'] += 1

        if not force_refresh:
            entry = await self.cache.get(key, decode)
            if entry is not None and entry.is_fresh(self.clock.now(), policy.ttl):
                self._stats['fresh_hits'] += 1
                logger.debug(f"CACHE HIT (fresh): {key} [age={entry.age(self.clock.now()):.1f}s]")
                return Fresh(entry.value, entry.stored_at)

        return await self.coalescer.run_exclusive(
            key, lambda: self._attempt_fetch(key, decode, force_refresh)
        )

    def subscribe(self, key: ResourceKey, max_queue: int = 16) -> Subscription:
        """Stream of outcomes produced by every completed fetch for ``key``."""
        return self.subscriptions.subscribe(key, max_queue)

    def background_refresher(self, interval: float = 30.0) -> BackgroundRefresher:
        """Refresher bound to this service; stopped together with the service.

        The interval only applies when the refresher is first created.
        """
        if self._refresher is None:
            self._refresher = BackgroundRefresher(self, interval)
        return self._refresher

    async def _attempt_fetch(self, key: ResourceKey, decode: Decoder, forced: bool) -> Outcome:
        try:
            outcome = await self._run_attempts(key, decode, forced)
        except Exception as e:
            logger.exception(f"Unexpected error while fetching {key}")
            outcome = await self._fallback(key, decode, DataAccessError(f"Unexpected error: {e!r}"), 0)

        self.subscriptions.publish(key, outcome)
        return outcome

    async def _run_attempts(self, key: ResourceKey, decode: Decoder, forced: bool) -> Outcome:
        resource_class = key.resource_class
        retry_policy = self.retry_policies[resource_class]
        request = self.request_builder.build(key)

        attempt = 0
        last_error: Optional[DataAccessError] = None

        while True:
            # Only the first dispatch of a cycle is gated; retries belong to it
            if attempt == 0 and not forced:
                if not await self.rate_limiter.try_dispatch(resource_class):
                    self._stats['throttled'] += 1
                    last_error = ThrottledError(resource_class.value,
                                                self.rate_limiter.retry_after(resource_class))
                    break
            else:
                await self.rate_limiter.force_dispatch(resource_class)

            attempt += 1
            self._stats['dispatches'] += 1
            logger.debug(f"Dispatching {key} (attempt {attempt}/{retry_policy.max_attempts})")

            try:
                payload = await asyncio.wait_for(self.transport.fetch(request), timeout=request.timeout)
            except asyncio.TimeoutError:
                last_error = TransportError.timeout(f"Request for {key} timed out after {request.timeout}s")
            except DataAccessError as e:
                last_error = e
            else:
                try:
                    value = decode(payload)
                except DataAccessError as e:
                    last_error = e
                except (TypeError, ValueError, KeyError) as e:
                    last_error = DecodeError(f"Could not decode {key}: {e}")
                else:
                    entry = self.cache.put(key, value, payload)
                    return Fresh(value, entry.stored_at)

            logger.warning(f"Attempt {attempt} for {key} failed: {last_error}")

            if isinstance(last_error, RateLimitedError):
                await self.rate_limiter.extend(resource_class)

            delay = retry_policy.next_delay(attempt, last_error)
            if delay is GIVE_UP:
                logger.warning(f"Giving up on {key} after {attempt} attempt(s)")
                break

            self._stats['retries'] += 1
            logger.info(f"Retrying {key} in {delay:.1f}s")
            await self.clock.sleep(delay)

        return await self._fallback(key, decode, last_error, attempt)

    async def _fallback(self, key: ResourceKey, decode: Decoder,
                        error: DataAccessError, attempts: int) -> Outcome:
        entry = await self.cache.get(key, decode)
        if entry is not None:
            self._stats['stale_fallbacks'] += 1
            logger.warning(f"Serving stale {key} (stored {entry.age(self.clock.now()):.0f}s ago): {error}")
            return Stale(entry.value, error, entry.stored_at)

        self._stats['failures'] += 1
        return Failed(error, attempts)

    async def get_market_list(self, currency: str = "usd", page: int = 1,
                              force_refresh: bool = False) -> Outcome:
        """Top coins by 24h volume, 100 per page."""
        return await self.resolve(market_list_key(currency, page), decode_market_list, force_refresh)

    async def get_global_metrics(self, force_refresh: bool = False) -> Outcome:
        return await self.resolve(global_metrics_key(), decode_global_metrics, force_refresh)

    async def get_global_overview(self, currency: str = "usd", top: int = 10,
                                  force_refresh: bool = False) -> Outcome:
        """Market dominance per coin, with coin images for the ``top`` coins.

        Returns:
            Outcome of a list of DominanceShare, largest share first
        """
        metrics_outcome = await self.get_global_metrics(force_refresh)
        if metrics_outcome.is_failed:
            return metrics_outcome

        metrics: GlobalMetrics = metrics_outcome.value
        symbols = metrics.top_symbols(top)

        images: Dict[str, str] = {}
        images_outcome: Optional[Outcome] = None
        if symbols:
            images_outcome = await self.resolve(
                coin_image_set_key(symbols, currency), decode_coin_images, force_refresh
            )
            if images_outcome.has_value:
                images = images_outcome.value

        total = metrics.total_for(currency) or 0.0
        shares = sorted(
            (
                DominanceShare(
                    symbol=symbol.upper(),
                    percentage=percentage,
                    market_cap=total * percentage / 100,
                    image=images.get(symbol.lower(), ""),
                )
                for symbol, percentage in metrics.market_cap_percentage.items()
            ),
            key=lambda share: share.percentage,
            reverse=True,
        )

        if metrics_outcome.is_stale:
            return Stale(shares, metrics_outcome.reason, metrics_outcome.stored_at)
        if images_outcome is not None and images_outcome.is_stale:
            return Stale(shares, images_outcome.reason, metrics_outcome.stored_at)
        if images_outcome is not None and images_outcome.is_failed:
            return Stale(shares, images_outcome.error, metrics_outcome.stored_at)
        return Fresh(shares, metrics_outcome.stored_at)

    async def get_sectors(self, force_refresh: bool = False) -> Outcome:
        return await self.resolve(sector_list_key(), decode_sector_list, force_refresh)

    async def get_watchlist(self, currency: str = "usd", force_refresh: bool = False) -> Outcome:
        """Market rows for the watched coin ids. An empty watchlist needs no fetch."""
        ids = await self.watchlist.get_watchlist()
        if not ids:
            return Fresh([], self.clock.now())
        return await self.resolve(watchlist_key(ids, currency), decode_watchlist, force_refresh)

    async def get_price_history(self, coin_id: str, days: int = 7, currency: str = "usd",
                                force_refresh: bool = False) -> Outcome:
        """Price series for a coin over 1, 7 or 30 days."""
        key = price_history_key(coin_id, days, currency)
        return await self.resolve(key, decode_price_history, force_refresh)

    async def clear_cache(self, resource_class: Optional[ResourceClass] = None) -> int:
        """Drop cached entries of one class, or of every class, from both tiers.

        Returns:
            Number of entries removed
        """
        if resource_class is None:
            return await self.cache.clear_all()
        return await self.cache.clear_class(resource_class)

    def get_stats(self) -> Dict[str, Any]:
        """Get service statistics."""
        return {
            **self._stats,
            'cache': self.cache.get_stats(),
            'rate_limiter': self.rate_limiter.get_stats(),
            'coalescer': self.coalescer.get_stats(),
            'subscriptions': self.subscriptions.get_stats(),
        }
