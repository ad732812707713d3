"""CoinMarketCap fetcher.

Endpoint: https://pro-api.coinmarketcap.com/v2/cryptocurrency/quotes/latest
Rate Limit: 333 calls/day (free tier)
API Key: Required

Several keys may be configured comma-separated
(API_KEY_COINMARKETCAP=key1,key2). Keys are tried round-robin; a key that
hits the rate limit is put in cooldown and the next one is tried.
"""

from __future__ import annotations

import logging
import time

from .base import (
    BaseFetcher,
    FetcherConfigError,
    FetcherError,
    FetcherHTTPError,
    register_fetcher,
)

logger = logging.getLogger(__name__)


class ApiKeyRotation:
    """Round-robin API keys with per-key cooldown.

    :ivar keys: Configured API keys.
    :ivar cooldown_seconds: How long a rate-limited key is skipped.
    """

    def __init__(self, keys: list[str], cooldown_seconds: float = 60.0) -> None:
        self.keys = keys
        self.cooldown_seconds = cooldown_seconds
        self._next = 0
        self._cooldown_until: dict[str, float] = {}

    def available(self) -> list[str]:
        """Return usable keys, starting from the next one in rotation."""
        now = time.time()
        ordered = [
            self.keys[(self._next + i) % len(self.keys)] for i in range(len(self.keys))
        ]
        usable = [k for k in ordered if now >= self._cooldown_until.get(k, 0.0)]
        if usable:
            self._next = (self.keys.index(usable[0]) + 1) % len(self.keys)
        return usable

    def cool_down(self, key: str) -> None:
        """Skip a key for ``cooldown_seconds``."""
        self._cooldown_until[key] = time.time() + self.cooldown_seconds


@register_fetcher
class CoinMarketCapFetcher(BaseFetcher):
    """Fetcher for CoinMarketCap API. API key is REQUIRED."""

    name = "coinmarketcap"
    BASE_URL = "https://pro-api.coinmarketcap.com"

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        super().__init__(api_key=api_key, timeout=timeout)
        keys = [k.strip() for k in (api_key or "").split(",") if k.strip()]
        self.rotation = ApiKeyRotation(keys) if keys else None

    async def fetch_many(self, assets: list[str], quote: str) -> dict[str, float]:
        """Fetch prices for several assets in one request.

        :param assets: Asset symbols (e.g., ["BTC", "ETH"]).
        :param quote: Quote currency (e.g., "USD").
        :returns: Dict mapping asset symbol to price.
        :raises FetcherConfigError: If no API key is configured.
        :raises FetcherError: If every available key failed.
        """
        if self.rotation is None:
            raise FetcherConfigError("API key required but not provided")

        keys = self.rotation.available()
        if not keys:
            raise FetcherError("All API keys are in cooldown")

        last_error: FetcherError | None = None
        for index, key in enumerate(keys, start=1):
            try:
                return await self._fetch_with_key(key, assets, quote)
            except FetcherHTTPError as e:
                last_error = e
                if e.rate_limited:
                    self.rotation.cool_down(key)
                    logger.warning(
                        f"[coinmarketcap] Key #{index} placed in cooldown: {e}"
                    )
                    continue
                raise
        raise FetcherError(f"All API keys failed: {last_error}")

    async def _fetch_with_key(
        self, key: str, assets: list[str], quote: str
    ) -> dict[str, float]:
        symbols = [a.upper() for a in assets]
        data = await self._get_json(
            f"{self.BASE_URL}/v2/cryptocurrency/quotes/latest",
            params={"symbol": ",".join(symbols), "convert": quote.upper()},
            headers={"X-CMC_PRO_API_KEY": key},
        )

        try:
            status = data.get("status") or {}
            if status.get("error_code"):
                raise FetcherError(
                    f"API error {status['error_code']}: "
                    f"{status.get('error_message') or 'Unknown'}"
                )

            prices: dict[str, float] = {}
            for symbol in symbols:
                entry = (data.get("data") or {}).get(symbol)
                # v2 returns a list of matches per symbol, take the first one
                if isinstance(entry, list):
                    entry = entry[0] if entry else None
                if not entry:
                    continue
                price = entry.get("quote", {}).get(quote.upper(), {}).get("price")
                if price is not None:
                    prices[symbol] = float(price)
            return prices
        except (AttributeError, KeyError, ValueError, TypeError) as e:
            raise FetcherError(f"Failed to parse response: {e}") from e
