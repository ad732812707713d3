"""CoinGecko fetcher.

Endpoint: https://api.coingecko.com/api/v3/simple/price?ids={ids}&vs_currencies={quote}
Rate Limit: 30 calls/min (free), higher with API key
All assets of a tick are fetched with a single request.
"""

import logging

from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinGeckoFetcher(BaseFetcher):
    """Fetcher for CoinGecko API.

    API tiers:
        - Free: api.coingecko.com (no key, 30 calls/min)
        - Demo: api.coingecko.com + x-cg-demo-api-key header
        - Pro: pro-api.coingecko.com + x-cg-pro-api-key header

    To use a demo key, prefix with "demo:": API_KEY_COINGECKO=demo:CG-xxxxx
    Pro keys need no prefix: API_KEY_COINGECKO=xxxxx
    """

    name = "coingecko"
    BASE_URL_FREE = "https://api.coingecko.com/api/v3"
    BASE_URL_PRO = "https://pro-api.coingecko.com/api/v3"

    # Map asset symbols to CoinGecko IDs
    COIN_IDS = {
        "BTC": "bitcoin",
        "ETH": "ethereum",
        "KAS": "kaspa",
        "USDT": "tether",
        "USDC": "usd-coin",
        "SOL": "solana",
    }

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize with optional demo: prefix handling."""
        self._is_demo = False
        if api_key and api_key.lower().startswith("demo:"):
            self._is_demo = True
            api_key = api_key[5:]
        super().__init__(api_key=api_key, timeout=timeout)

    @property
    def base_url(self) -> str:
        """Return appropriate base URL based on API key type."""
        if not self.has_api_key or self._is_demo:
            return self.BASE_URL_FREE
        return self.BASE_URL_PRO

    def _headers(self) -> dict[str, str] | None:
        if not self.has_api_key:
            return None
        header_name = "x-cg-demo-api-key" if self._is_demo else "x-cg-pro-api-key"
        return {header_name: self.api_key}

    async def fetch_many(self, assets: list[str], quote: str) -> dict[str, float]:
        """Fetch prices for several assets in one request.

        :param assets: Asset symbols (e.g., ["BTC", "ETH", "KAS"]).
        :param quote: Quote currency (e.g., "USD").
        :returns: Dict mapping asset symbol to price; unknown assets are absent.
        :raises FetcherError: On request or parse failure.
        """
        ids = {a.upper(): self.COIN_IDS[a.upper()] for a in assets if a.upper() in self.COIN_IDS}
        unknown = [a for a in assets if a.upper() not in self.COIN_IDS]
        if unknown:
            logger.debug(f"[coingecko] Unknown assets: {unknown}")
        if not ids:
            return {}

        quote_lower = quote.lower()
        data = await self._get_json(
            f"{self.base_url}/simple/price",
            params={"ids": ",".join(ids.values()), "vs_currencies": quote_lower},
            headers=self._headers(),
        )

        try:
            prices: dict[str, float] = {}
            for asset, coin_id in ids.items():
                value = data.get(coin_id, {}).get(quote_lower)
                if value is not None:
                    prices[asset] = float(value)
            return prices
        except (AttributeError, ValueError, TypeError) as e:
            raise FetcherError(f"Failed to parse response: {e}") from e
