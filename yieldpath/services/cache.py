from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

from yieldpath.models import (
    UNKNOWN_SYMBOL,
    AgentOutput,
    Route,
    RouteCacheEntry,
    RouteToken,
    Token,
    TokenSymbolCacheEntry,
    YieldCacheEntry,
    YieldSnapshot,
)

logger = logging.getLogger(__name__)

MAX_CACHE_SIZE = 1000
DEFAULT_CACHE_TTL_MS = 24 * 60 * 60 * 1000
TOKEN_SYMBOL_CACHE_TTL_MS = 30 * 24 * 60 * 60 * 1000


class CapabilityCache:
    """Process-wide caches for discovered yield, routes and token symbols.

    Entries expire lazily on read. When a map is full, inserting a new key
    drops the oldest inserted entry (not the least recently used one).
    """

    def __init__(
        self,
        ttl_ms: int = DEFAULT_CACHE_TTL_MS,
        max_size: int = MAX_CACHE_SIZE,
        symbol_ttl_ms: int = TOKEN_SYMBOL_CACHE_TTL_MS,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_ms = ttl_ms
        self.max_size = max_size
        self.symbol_ttl_ms = symbol_ttl_ms
        self._clock = clock
        self._lock = threading.RLock()
        self._yield: Optional[YieldCacheEntry] = None
        self._routes: Dict[str, RouteCacheEntry] = {}
        self._symbols: Dict[str, TokenSymbolCacheEntry] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    # Yield

    def get_cached_yield(self) -> Optional[YieldSnapshot]:
        with self._lock:
            if self._yield is None:
                return None
            age = self._now_ms() - self._yield.timestamp
            if age > self.ttl_ms:
                self._yield = None
                logger.info(f"Yield cache expired (age: {round(age / 1000 / 60 / 60)}h)")
                return None
            return self._yield.yield_

    def set_cached_yield(self, snapshot: YieldSnapshot) -> None:
        with self._lock:
            self._yield = YieldCacheEntry(yield_=snapshot, timestamp=self._now_ms())
        logger.info("Cached yield data globally")

    def get_yield_cache_age(self) -> Optional[int]:
        """Age of the cached yield in whole minutes."""
        with self._lock:
            if self._yield is None:
                return None
            return round((self._now_ms() - self._yield.timestamp) / 1000 / 60)

    # Routes

    @staticmethod
    def _route_key(token_address: str, amount: str, yield_fingerprint: str) -> str:
        return f"{token_address}:{amount}:{yield_fingerprint}"

    def get_cached_route(self, token_address: str, amount: str, yield_fingerprint: str) -> Optional[RouteCacheEntry]:
        key = self._route_key(token_address, amount, yield_fingerprint)
        with self._lock:
            entry = self._routes.get(key)
            if entry is None:
                return None
            if self._now_ms() - entry.timestamp > self.ttl_ms:
                del self._routes[key]
                logger.info(f"Route cache expired for token: {token_address} and amount: {amount}")
                return None
            return entry

    def route_cache_age(self, entry: RouteCacheEntry) -> int:
        return round((self._now_ms() - entry.timestamp) / 1000 / 60)

    def set_cached_route(
        self,
        token_address: str,
        amount: str,
        yield_fingerprint: str,
        routes: Optional[List[Route]],
        errors: Optional[List[str]] = None,
    ) -> None:
        if not routes:
            return

        key = self._route_key(token_address, amount, yield_fingerprint)
        with self._lock:
            self._evict_oldest(self._routes, key, "Route")
            self._routes[key] = RouteCacheEntry(
                routes=list(routes),
                errors=list(errors or []),
                yield_fingerprint=yield_fingerprint,
                timestamp=self._now_ms(),
            )
        logger.info(f"Cached route result for token: {token_address} and amount: {amount}")

    # Token symbols

    def get_cached_token_symbol(self, token_address: str) -> Optional[str]:
        address = token_address.lower()
        with self._lock:
            entry = self._symbols.get(address)
            if entry is None:
                return None
            if self._now_ms() - entry.timestamp > self.symbol_ttl_ms:
                del self._symbols[address]
                logger.info(f"Token symbol cache expired for: {address}")
                return None
            return entry.symbol

    def set_cached_token_symbol(self, token_address: str, symbol: str) -> None:
        address = token_address.lower()
        with self._lock:
            self._evict_oldest(self._symbols, address, "Token symbol")
            self._symbols[address] = TokenSymbolCacheEntry(symbol=symbol, timestamp=self._now_ms())
        logger.debug(f"Cached token symbol for: {address} -> {symbol}")

    def extract_and_cache_token_symbols(self, output: AgentOutput) -> None:
        tokens: List[Token | RouteToken] = list(output.yield_.deposit_tokens())
        for route in output.routes:
            tokens.extend([route.from_token, route.to_token])
        self._cache_known_symbols(tokens)

    def _cache_known_symbols(self, tokens: Iterable[Token | RouteToken]) -> None:
        with self._lock:
            for token in tokens:
                if token.address and token.symbol and token.symbol != UNKNOWN_SYMBOL:
                    self.set_cached_token_symbol(token.address, token.symbol)

    def _evict_oldest(self, store: Dict[str, object], key: str, label: str) -> None:
        if len(store) < self.max_size or key in store:
            return
        oldest = next(iter(store), None)
        if oldest is not None:
            del store[oldest]
            logger.info(f"{label} cache evicted oldest entry: {oldest}")

    # Fingerprint

    @staticmethod
    def compute_yield_fingerprint(snapshot: YieldSnapshot) -> str:
        payload = {
            "protocol": snapshot.protocol,
            "apy_pct": snapshot.apy_pct,
            "source": snapshot.source,
            "pool_or_contract_address": snapshot.pool_or_contract_address,
            "snapshot_at": snapshot.snapshot_at,
            "deposit_tokens": [
                {"symbol": t.symbol, "address": t.address.lower(), "decimals": t.decimals}
                for t in snapshot.deposit_tokens()
            ],
        }
        encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
