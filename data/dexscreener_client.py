"""
DexScreener market-data client for the DEX volume-spike scalper.

Free public API, no authentication. All requests share one RateLimiter
(default 200 ms spacing, ~300 req/min). Snapshots are cached for a short
TTL; when a refresh fails the last good snapshot is returned instead so a
transient outage does not blind the monitor loop.

Endpoints:
    GET {base}/pairs/{chain}/{pair}   single pair snapshot
    GET {base}/search?q=...           discovery by base-token search

Usage:
    client = DexScreenerClient()
    snapshot = await client.get_snapshot("bsc", "0xabc...")
    candidates = await client.discover_pairs("base")
    await client.close()
"""

from __future__ import annotations

import time
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import aiohttp

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from data.rate_limiter import RateLimiter
from shared.clock import Clock, SystemClock
from shared.constants import (
    DEFAULT_DISCOVERY_TOKENS,
    DEFAULT_MAX_DISCOVERED_PAIRS,
    DEFAULT_MIN_DISCOVERY_LIQUIDITY_USD,
    DEFAULT_MIN_REQUEST_INTERVAL_MS,
    DEFAULT_SNAPSHOT_CACHE_TTL_SECONDS,
    DEXSCREENER_BASE_URL,
)
from shared.types import MarketSnapshot, TokenInfo

_ZERO = Decimal("0")
_SEARCH_RESULTS_PER_TOKEN = 10


class MarketDataProvider(Protocol):
    async def get_snapshot(self, chain: str, pair_address: str) -> MarketSnapshot | None: ...

    async def discover_pairs(self, chain: str) -> list[MarketSnapshot]: ...


# ---------------------------------------------------------------------------
# Cache entry
# ---------------------------------------------------------------------------


class _CacheEntry:
    """Snapshot with TTL. Expired entries are kept as the stale fallback."""

    __slots__ = ("data", "expires_at")

    def __init__(self, data: MarketSnapshot, ttl_seconds: float) -> None:
        self.data = data
        self.expires_at = time.monotonic() + ttl_seconds

    @property
    def is_valid(self) -> bool:
        return time.monotonic() < self.expires_at


def _to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return _ZERO
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return _ZERO


class DexScreenerClient:
    """
    Async DexScreener client implementing MarketDataProvider.

    Network and HTTP failures never raise: ``get_snapshot`` falls back to
    the cached value (or None), ``discover_pairs`` skips the failed search.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        rate_limiter: RateLimiter | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._clock = clock or SystemClock()

        cfg = get_config()
        market_cfg = cfg.get_app_config().get("market_data", {})
        timing_cfg = cfg.get_timing_config().get("market_data", {})
        self._chains_cfg = cfg.get_chains_config()

        self._base_url: str = market_cfg.get("base_url", DEXSCREENER_BASE_URL).rstrip("/")
        self._min_discovery_liquidity = Decimal(
            str(market_cfg.get("min_discovery_liquidity_usd", DEFAULT_MIN_DISCOVERY_LIQUIDITY_USD))
        )
        self._max_discovered: int = int(
            market_cfg.get("max_discovered_pairs", DEFAULT_MAX_DISCOVERED_PAIRS)
        )

        self._cache_ttl: float = float(
            timing_cfg.get("snapshot_cache_ttl_seconds", DEFAULT_SNAPSHOT_CACHE_TTL_SECONDS)
        )
        self._timeout: float = float(timing_cfg.get("request_timeout_seconds", 10))

        if rate_limiter is None:
            interval_ms = timing_cfg.get("min_request_interval_ms", DEFAULT_MIN_REQUEST_INTERVAL_MS)
            rate_limiter = RateLimiter(interval_ms / 1000)
        self._rate_limiter = rate_limiter

        self._cache: dict[str, _CacheEntry] = {}

        self._logger = setup_module_logger(
            "market_data", "market_data.log", module_folder="Market_Data_Logs"
        )

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _get_json(self, url: str, params: dict[str, str] | None = None) -> Any:
        """Rate-limited GET. Returns None on any HTTP or network failure."""
        await self._rate_limiter.acquire()
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as resp:
                if resp.status == 429:
                    self._logger.warning("Rate limited by DexScreener: %s", url)
                    return None
                if resp.status != 200:
                    self._logger.warning("HTTP %d from %s", resp.status, url)
                    return None
                return await resp.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            self._logger.warning("Request failed for %s: %s", url, e)
            return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_snapshot(self, chain: str, pair_address: str) -> MarketSnapshot | None:
        """Current snapshot for one pair; stale cache on failure, None if never seen."""
        key = f"{chain}:{pair_address.lower()}"
        entry = self._cache.get(key)
        if entry is not None and entry.is_valid:
            self._logger.debug("Cache hit: %s", key)
            return entry.data

        data = await self._get_json(f"{self._base_url}/pairs/{chain}/{pair_address}")
        pair = self._first_pair(data)
        snapshot = self._parse_pair(pair, chain) if pair else None

        if snapshot is None:
            if entry is not None:
                self._logger.warning("Serving stale snapshot for %s", key)
                return entry.data
            return None

        self._cache[key] = _CacheEntry(snapshot, self._cache_ttl)
        return snapshot

    async def discover_pairs(self, chain: str) -> list[MarketSnapshot]:
        """
        Candidate pairs for ``chain``: searches each of the chain's base
        tokens, keeps pairs on this chain with liquidity >= the discovery
        floor, de-duplicates and returns them by liquidity, highest first.
        """
        tokens = self._chains_cfg.get(chain, {}).get(
            "discovery_tokens", DEFAULT_DISCOVERY_TOKENS.get(chain, [])
        )
        found: dict[str, MarketSnapshot] = {}

        for token in tokens:
            data = await self._get_json(f"{self._base_url}/search", params={"q": f"{token} {chain}"})
            if not isinstance(data, dict):
                continue
            on_chain = [p for p in data.get("pairs") or [] if p.get("chainId") == chain]
            for pair in on_chain[:_SEARCH_RESULTS_PER_TOKEN]:
                snapshot = self._parse_pair(pair, chain)
                if snapshot is None or snapshot.liquidity_usd < self._min_discovery_liquidity:
                    continue
                found.setdefault(snapshot.pair_address.lower(), snapshot)

        ranked = sorted(found.values(), key=lambda s: s.liquidity_usd, reverse=True)
        self._logger.info(
            "Discovered %d pairs on %s (%d searches)", len(ranked), chain, len(tokens)
        )
        return ranked[: self._max_discovered]

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _first_pair(data: Any) -> dict[str, Any] | None:
        if not isinstance(data, dict):
            return None
        pairs = data.get("pairs")
        if pairs:
            return pairs[0]
        return data.get("pair")

    def _parse_pair(self, pair: dict[str, Any], chain: str) -> MarketSnapshot | None:
        pair_address = pair.get("pairAddress")
        if not pair_address:
            return None

        base = pair.get("baseToken") or {}
        quote = pair.get("quoteToken") or {}
        price_change = pair.get("priceChange") or {}
        volume = pair.get("volume") or {}
        liquidity = pair.get("liquidity") or {}
        txns_24h = (pair.get("txns") or {}).get("h24") or {}
        created_ms = pair.get("pairCreatedAt")

        return MarketSnapshot(
            chain=pair.get("chainId", chain),
            pair_address=pair_address,
            price_usd=_to_decimal(pair.get("priceUsd")),
            price_native=_to_decimal(pair.get("priceNative")),
            dex=pair.get("dexId", ""),
            base_token=TokenInfo(
                address=base.get("address", ""),
                symbol=base.get("symbol", ""),
                name=base.get("name", ""),
            ),
            quote_token=TokenInfo(
                address=quote.get("address", ""),
                symbol=quote.get("symbol", ""),
                name=quote.get("name", ""),
            ),
            price_change_5m=_to_decimal(price_change.get("m5")),
            price_change_1h=_to_decimal(price_change.get("h1")),
            price_change_6h=_to_decimal(price_change.get("h6")),
            price_change_24h=_to_decimal(price_change.get("h24")),
            volume_5m=_to_decimal(volume.get("m5")),
            volume_1h=_to_decimal(volume.get("h1")),
            volume_6h=_to_decimal(volume.get("h6")),
            volume_24h=_to_decimal(volume.get("h24")),
            liquidity_usd=_to_decimal(liquidity.get("usd")),
            liquidity_base=_to_decimal(liquidity.get("base")),
            liquidity_quote=_to_decimal(liquidity.get("quote")),
            buys_24h=int(txns_24h.get("buys") or 0),
            sells_24h=int(txns_24h.get("sells") or 0),
            created_at=created_ms / 1000 if created_ms else None,
            url=pair.get("url", ""),
            has_info=bool(pair.get("info")),
            fetched_at=self._clock.now(),
        )
