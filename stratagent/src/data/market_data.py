"""
Market Data - Token snapshots consumed by the condition evaluator.

This module provides:
- TokenQuote / MarketSnapshot data structures
- MarketDataProvider interface (pull model, never raises)
- HttpMarketDataProvider backed by an aiohttp session
- StaticMarketDataProvider for paper runs and tests
- Network alias normalization and a coarse market sentiment read
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import aiohttp

from ..strategy.task import parse_datetime, utcnow

logger = logging.getLogger(__name__)


DEFAULT_NETWORK = "sei-evm"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_TOKENS = 20

# User-facing network names -> provider network codes
NETWORK_ALIASES = {
    'sei': 'sei-evm',
    'sei-network': 'sei-evm',
    'sei network': 'sei-evm',
    'sei_evm': 'sei-evm',
    'sei evm': 'sei-evm',
    'sei-evm': 'sei-evm',
    'ethereum': 'eth',
    'ether': 'eth',
    'eth': 'eth',
    'bsc': 'bsc',
    'binance': 'bsc',
    'binance smart chain': 'bsc',
    'bnb': 'bsc',
    'polygon': 'polygon_pos',
    'matic': 'polygon_pos',
    'arbitrum': 'arbitrum',
    'arb': 'arbitrum',
    'optimism': 'optimism',
    'op': 'optimism',
    'avalanche': 'avax',
    'avax': 'avax',
    'fantom': 'ftm',
    'ftm': 'ftm',
    'hedera': 'hedera-hashgraph',
}

# Sentiment thresholds over 24h % change across the top tokens
VOLATILE_STDDEV_PCT = 10.0
BULLISH_AVG_PCT = 2.0
BEARISH_AVG_PCT = -2.0


def normalize_network(network: Optional[str]) -> str:
    """Map a user-supplied network name to its provider code."""
    if not network:
        return DEFAULT_NETWORK
    key = network.strip().lower()
    return NETWORK_ALIASES.get(key, key)


@dataclass(frozen=True)
class TokenQuote:
    """Market data for one token."""
    symbol: str
    price_usd: float
    volume_24h: float = 0.0
    change_24h: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'priceUsd': self.price_usd,
            'volume24h': self.volume_24h,
            'change24h': self.change_24h,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'TokenQuote':
        """Accept both the provider's camelCase and short field names."""
        price = data.get('priceUsd', data.get('price'))
        volume = data.get('volume24h', data.get('volume'))
        change = data.get('change24h')
        return cls(
            symbol=str(data['symbol']),
            price_usd=float(price),
            volume_24h=float(volume) if volume is not None else 0.0,
            change_24h=float(change) if change is not None else None,
        )


@dataclass(frozen=True)
class MarketSnapshot:
    """
    Immutable point-in-time view of the top tokens on a network.

    One snapshot is taken per execution cycle and shared by every task
    evaluated in that cycle.
    """
    top_tokens: tuple[TokenQuote, ...] = ()
    timestamp: datetime = field(default_factory=utcnow)
    network: str = DEFAULT_NETWORK

    @classmethod
    def empty(cls, network: Optional[str] = None) -> 'MarketSnapshot':
        return cls(top_tokens=(), network=normalize_network(network))

    @property
    def is_empty(self) -> bool:
        return not self.top_tokens

    def get(self, symbol: Optional[str]) -> Optional[TokenQuote]:
        """Quote for ``symbol`` or None if the token is not in the snapshot."""
        if not symbol:
            return None
        for quote in self.top_tokens:
            if quote.symbol == symbol:
                return quote
        return None

    def prices(self) -> dict[str, float]:
        return {quote.symbol: quote.price_usd for quote in self.top_tokens}

    def sentiment(self) -> str:
        """
        Coarse market read from 24h changes.

        Returns:
            'volatile', 'bullish', 'bearish' or 'neutral'
        """
        changes = [q.change_24h for q in self.top_tokens if q.change_24h is not None]
        if not changes:
            return 'neutral'

        avg = sum(changes) / len(changes)
        stddev = math.sqrt(sum((c - avg) ** 2 for c in changes) / len(changes))

        if stddev > VOLATILE_STDDEV_PCT:
            return 'volatile'
        if avg > BULLISH_AVG_PCT:
            return 'bullish'
        if avg < BEARISH_AVG_PCT:
            return 'bearish'
        return 'neutral'

    def to_dict(self) -> dict:
        return {
            'topTokens': [q.to_dict() for q in self.top_tokens],
            'timestamp': self.timestamp.isoformat(),
            'network': self.network,
        }

    @classmethod
    def from_dict(cls, data: dict, network: Optional[str] = None) -> 'MarketSnapshot':
        """
        Build a snapshot from a provider payload.

        Malformed token entries are skipped rather than failing the whole
        snapshot.
        """
        quotes = []
        for item in data.get('topTokens') or data.get('tokens') or []:
            try:
                quotes.append(TokenQuote.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed token entry {item!r}: {e}")
        return cls(
            top_tokens=tuple(quotes),
            timestamp=parse_datetime(data.get('timestamp')) or utcnow(),
            network=normalize_network(network or data.get('network')),
        )


class MarketDataProvider(ABC):
    """
    Market data source.

    Contract: ``fetch_snapshot`` never raises; on any internal failure it
    returns an empty snapshot.
    """

    @abstractmethod
    async def fetch_snapshot(self, network: Optional[str] = None) -> MarketSnapshot:
        """Fetch the current snapshot for a network."""

    async def close(self) -> None:
        """Release resources held by the provider."""
        return None


class StaticMarketDataProvider(MarketDataProvider):
    """
    Provider serving manually set quotes.

    Used for paper runs and tests; quotes can be changed between cycles.
    """

    def __init__(self, quotes: Optional[list[TokenQuote]] = None, network: str = DEFAULT_NETWORK):
        self.network = normalize_network(network)
        self._quotes: dict[str, TokenQuote] = {q.symbol: q for q in quotes or []}
        self.fetch_count = 0

    def set_quote(
        self,
        symbol: str,
        price_usd: float,
        volume_24h: float = 0.0,
        change_24h: Optional[float] = None,
    ) -> None:
        self._quotes[symbol] = TokenQuote(symbol, price_usd, volume_24h, change_24h)

    def remove_quote(self, symbol: str) -> None:
        self._quotes.pop(symbol, None)

    async def fetch_snapshot(self, network: Optional[str] = None) -> MarketSnapshot:
        self.fetch_count += 1
        return MarketSnapshot(
            top_tokens=tuple(self._quotes.values()),
            network=normalize_network(network or self.network),
        )


class HttpMarketDataProvider(MarketDataProvider):
    """
    Pull-based provider for an HTTP market data service.

    Expects ``GET {base_url}{tokens_path}`` to return
    ``{"topTokens": [{"symbol", "priceUsd", "volume24h", "change24h"}], "timestamp"}``.
    """

    def __init__(self, config: dict):
        """
        Initialize provider.

        Args:
            config: Market data configuration with:
                - base_url: Service root URL
                - tokens_path: Path template with a {network} placeholder
                - timeout_seconds: Total request timeout
                - max_tokens: Number of top tokens to keep
                - network: Default network
        """
        self.base_url = str(config.get('base_url', 'http://localhost:3001')).rstrip('/')
        self.tokens_path = config.get('tokens_path', '/api/networks/{network}/tokens')
        self.timeout = aiohttp.ClientTimeout(
            total=config.get('timeout_seconds', DEFAULT_TIMEOUT_SECONDS)
        )
        self.max_tokens = int(config.get('max_tokens', DEFAULT_MAX_TOKENS))
        self.network = normalize_network(config.get('network'))
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _url_for(self, network: str) -> str:
        return f"{self.base_url}{self.tokens_path.format(network=network)}"

    async def fetch_snapshot(self, network: Optional[str] = None) -> MarketSnapshot:
        network = normalize_network(network or self.network)
        url = self._url_for(network)

        try:
            session = await self._get_session()
            async with session.get(url, params={'limit': self.max_tokens}) as response:
                if response.status != 200:
                    logger.warning(f"Market data request failed: HTTP {response.status} from {url}")
                    return MarketSnapshot.empty(network)
                payload: Any = await response.json()

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Market data unavailable for {network}: {e}")
            return MarketSnapshot.empty(network)
        except ValueError as e:
            logger.warning(f"Invalid market data payload from {url}: {e}")
            return MarketSnapshot.empty(network)

        if isinstance(payload, list):
            payload = {'topTokens': payload}
        elif isinstance(payload, dict) and 'data' in payload and 'topTokens' not in payload:
            payload = payload['data'] if isinstance(payload['data'], dict) else {'topTokens': payload['data']}
        if not isinstance(payload, dict):
            logger.warning(f"Unexpected market data payload type from {url}: {type(payload).__name__}")
            return MarketSnapshot.empty(network)

        snapshot = MarketSnapshot.from_dict(payload, network=network)
        if len(snapshot.top_tokens) > self.max_tokens:
            snapshot = MarketSnapshot(
                top_tokens=snapshot.top_tokens[:self.max_tokens],
                timestamp=snapshot.timestamp,
                network=snapshot.network,
            )
        logger.debug(f"Fetched {len(snapshot.top_tokens)} token quotes for {network}")
        return snapshot


async def fetch_snapshot_with_timeout(
    provider: MarketDataProvider,
    network: Optional[str],
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> MarketSnapshot:
    """
    Fetch a snapshot, degrading to an empty one on timeout or failure.

    Guards against providers that break the never-raise contract.
    """
    try:
        return await asyncio.wait_for(provider.fetch_snapshot(network), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"Market snapshot timed out after {timeout_seconds}s, using empty snapshot")
    except Exception as e:
        logger.error(f"Market data provider failed: {e}", exc_info=True)
    return MarketSnapshot.empty(network)


def create_provider_from_config(config: dict) -> MarketDataProvider:
    """
    Create a market data provider from the ``market_data`` config section.

    ``provider: static`` yields an empty StaticMarketDataProvider seeded
    from ``static_quotes``; anything else uses HTTP.
    """
    provider_type = config.get('provider', 'http')
    if provider_type == 'static':
        quotes = [TokenQuote.from_dict(q) for q in config.get('static_quotes') or []]
        return StaticMarketDataProvider(quotes, network=config.get('network', DEFAULT_NETWORK))
    return HttpMarketDataProvider(config)
