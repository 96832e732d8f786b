"""
Token price and pool liquidity lookups.
DexScreener is the primary source; token prices it misses are retried on
CoinGecko. Both are best effort: a missing entry means zero, never an error.
"""

import abc
import asyncio
import logging
import time
from typing import Dict, Iterable, List, Optional, Tuple

import requests
from pycoingecko import CoinGeckoAPI

from config import Config
from config.settings import (
    COINGECKO_PLATFORM,
    DEXSCREENER_CHAIN,
    DEXSCREENER_URL,
    MARKET_CHUNK_DELAY,
    MARKET_CHUNK_SIZE,
    MARKET_TIMEOUT,
)

logger = logging.getLogger(__name__)


class MarketData(abc.ABC):
    """Batched, partial-result market lookups keyed by lowercase address."""

    @abc.abstractmethod
    async def prices_for(self, tokens: Iterable[str]) -> Dict[str, float]:
        ...

    @abc.abstractmethod
    async def liquidity_for(self, pools: Iterable[str]) -> Dict[str, float]:
        ...


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class PriceFeed(MarketData):
    """Fetches and caches token prices and pool liquidity."""

    def __init__(
        self,
        api_key: Optional[str] = Config.COINGECKO_API_KEY,
        session: Optional[requests.Session] = None,
        use_coingecko: bool = True,
    ):
        """
        Initialize price feed.

        Args:
            api_key: Optional CoinGecko API key for higher rate limits
            session: Optional requests session (shared connection pool)
            use_coingecko: Whether to fall back to CoinGecko for missing prices
        """
        self.session = session or requests.Session()
        self.coingecko = None
        if use_coingecko:
            self.coingecko = CoinGeckoAPI(api_key=api_key) if api_key else CoinGeckoAPI()
        self.cache: Dict[str, Tuple[float, float]] = {}  # token -> (price, fetched_at)
        self.cache_ttl = Config.PRICE_CACHE_TTL
        logger.info("Price feed initialized")

    def _get_json(self, url: str) -> Optional[dict]:
        try:
            response = self.session.get(url, timeout=MARKET_TIMEOUT)
            if not response.ok:
                logger.warning(f"DexScreener call failed with status {response.status_code}: {url}")
                return None
            return response.json()
        except requests.RequestException as e:
            logger.warning(f"DexScreener call failed: {e}")
            return None

    def _fetch_dexscreener_prices(self, tokens: List[str]) -> Dict[str, float]:
        prices: Dict[str, float] = {}
        for chunk in _chunks(tokens, MARKET_CHUNK_SIZE):
            data = self._get_json(f"{DEXSCREENER_URL}/tokens/{','.join(chunk)}")
            for pair in (data or {}).get("pairs") or []:
                address = (pair.get("baseToken") or {}).get("address", "").lower()
                price = pair.get("priceUsd")
                # First pair listed for a token is the most liquid one
                if address and price and address not in prices:
                    prices[address] = float(price)
            time.sleep(MARKET_CHUNK_DELAY)
        return prices

    def _fetch_coingecko_prices(self, tokens: List[str]) -> Dict[str, float]:
        prices: Dict[str, float] = {}
        if self.coingecko is None or not tokens:
            return prices
        for chunk in _chunks(tokens, MARKET_CHUNK_SIZE):
            try:
                data = self.coingecko.get_token_price(
                    id=COINGECKO_PLATFORM, contract_addresses=",".join(chunk), vs_currencies="usd"
                )
            except Exception as e:
                logger.warning(f"CoinGecko price lookup failed: {e}")
                continue
            for address, entry in (data or {}).items():
                if entry and "usd" in entry:
                    prices[address.lower()] = float(entry["usd"])
        return prices

    def _fetch_prices(self, tokens: List[str]) -> Dict[str, float]:
        prices = self._fetch_dexscreener_prices(tokens)
        missing = [t for t in tokens if t not in prices]
        if missing:
            prices.update(self._fetch_coingecko_prices(missing))
        return prices

    def _fetch_liquidity(self, pools: List[str]) -> Dict[str, float]:
        liquidity: Dict[str, float] = {}
        for chunk in _chunks(pools, MARKET_CHUNK_SIZE):
            data = self._get_json(f"{DEXSCREENER_URL}/pairs/{DEXSCREENER_CHAIN}/{','.join(chunk)}")
            for pair in (data or {}).get("pairs") or []:
                usd = (pair.get("liquidity") or {}).get("usd")
                if pair.get("pairAddress") and usd:
                    liquidity[pair["pairAddress"].lower()] = float(usd)
            time.sleep(MARKET_CHUNK_DELAY)
        return liquidity

    async def prices_for(self, tokens: Iterable[str]) -> Dict[str, float]:
        now = time.time()
        wanted = sorted({t.lower() for t in tokens})
        prices: Dict[str, float] = {}
        to_fetch = []
        for token in wanted:
            cached = self.cache.get(token)
            if cached and now - cached[1] < self.cache_ttl:
                prices[token] = cached[0]
            else:
                to_fetch.append(token)

        if to_fetch:
            logger.info(f"Fetching live prices for {len(to_fetch)} tokens")
            fetched = await asyncio.to_thread(self._fetch_prices, to_fetch)
            for token, price in fetched.items():
                self.cache[token] = (price, now)
            prices.update(fetched)
            logger.info(f"Fetched {len(fetched)} of {len(to_fetch)} prices")
        return prices

    async def liquidity_for(self, pools: Iterable[str]) -> Dict[str, float]:
        wanted = sorted({p.lower() for p in pools})
        if not wanted:
            return {}
        logger.info(f"Fetching liquidity for {len(wanted)} pools")
        return await asyncio.to_thread(self._fetch_liquidity, wanted)
