"""Data modules - market snapshots, persistence and the database pool."""

from .market_data import (
    HttpMarketDataProvider,
    MarketDataProvider,
    MarketSnapshot,
    StaticMarketDataProvider,
    TokenQuote,
    create_provider_from_config,
    fetch_snapshot_with_timeout,
    normalize_network,
)
from .database import DatabasePool, DatabaseConfig, create_pool_from_config
from .store import InMemoryStore, PostgresStore, StrategyStore

__all__ = [
    'HttpMarketDataProvider',
    'MarketDataProvider',
    'MarketSnapshot',
    'StaticMarketDataProvider',
    'TokenQuote',
    'create_provider_from_config',
    'fetch_snapshot_with_timeout',
    'normalize_network',
    'DatabasePool',
    'DatabaseConfig',
    'create_pool_from_config',
    'InMemoryStore',
    'PostgresStore',
    'StrategyStore',
]
