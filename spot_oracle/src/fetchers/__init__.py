"""
Provider fetchers feeding the collector.

Importing this package registers every provider::

    fetcher = get_fetcher("coinmarketcap", api_key="key1,key2")
    prices = await fetcher.fetch_many(["BTC", "KAS"], "USD")
"""

from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    FetcherConfigError,
    FetcherError,
    FetcherHTTPError,
    get_available_fetchers,
    get_fetcher,
    register_fetcher,
)

# Provider modules register themselves on import
from .coingecko import CoinGeckoFetcher
from .coinmarketcap import CoinMarketCapFetcher

__all__ = [
    "BaseFetcher",
    "CoinGeckoFetcher",
    "CoinMarketCapFetcher",
    "FETCHER_REGISTRY",
    "FetcherConfigError",
    "FetcherError",
    "FetcherHTTPError",
    "get_available_fetchers",
    "get_fetcher",
    "register_fetcher",
]
