"""ProviderCollector: concurrent fetching normalized into observations.

Architecture:
    - One ``fetch_many()`` call per provider covers every asset of the tick
    - Providers are queried concurrently, each bounded by ``fetch_timeout``
    - Any failure (timeout, HTTP error, missing asset) becomes an ``ok=False``
      observation carrying the error text, so failed providers are still
      part of the evidence
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING

from .Evidence import ProviderObservation, now_millis

if TYPE_CHECKING:
    from .fetchers import BaseFetcher

logger = logging.getLogger(__name__)


class ProviderCollector:
    """Collects one tick of observations from several providers.

    :ivar fetchers: Dict mapping provider names to fetcher instances.
    :ivar fetch_timeout: Timeout per provider in seconds.
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        fetch_timeout: float = 10.0,
    ) -> None:
        """Initialize the collector.

        :param fetchers: Dict mapping provider names to fetcher instances.
        :param fetch_timeout: Timeout per provider (default: 10.0).
        """
        self.fetchers = fetchers
        self.fetch_timeout = fetch_timeout

    @property
    def providers(self) -> list[str]:
        return list(self.fetchers)

    async def collect(self, assets: list[str], quote: str = "USD") -> list[ProviderObservation]:
        """Fetch every asset from every provider.

        :param assets: Asset symbols to fetch.
        :param quote: Quote currency.
        :returns: Observations ordered by provider, then by asset.
        """
        assets = [a.upper() for a in assets]
        if not assets or not self.fetchers:
            return []

        results = await asyncio.gather(
            *(self._collect_provider(name, f, assets, quote) for name, f in self.fetchers.items())
        )
        return [obs for provider_obs in results for obs in provider_obs]

    async def _collect_provider(
        self,
        provider: str,
        fetcher: BaseFetcher,
        assets: list[str],
        quote: str,
    ) -> list[ProviderObservation]:
        """Fetch all assets from one provider; never raises fetch errors."""
        observed_at = now_millis()
        try:
            prices = await asyncio.wait_for(
                fetcher.fetch_many(assets, quote),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            error = f"Timeout after {self.fetch_timeout}s"
            logger.warning(f"[{provider}] {error}")
            return [ProviderObservation.failure(provider, a, error, observed_at) for a in assets]
        except Exception as e:  # Any fetcher failure becomes evidence, not a crash
            error = str(e) or type(e).__name__
            logger.warning(f"[{provider}] Fetch error: {error}")
            return [ProviderObservation.failure(provider, a, error, observed_at) for a in assets]

        observations = []
        for asset in assets:
            price = prices.get(asset)
            if price is None:
                observations.append(
                    ProviderObservation.failure(
                        provider, asset, f"Missing {asset} price", observed_at
                    )
                )
            elif not math.isfinite(price) or price <= 0:
                observations.append(
                    ProviderObservation.failure(
                        provider, asset, f"Invalid {asset} price: {price}", observed_at
                    )
                )
            else:
                observations.append(
                    ProviderObservation.success(provider, asset, price, observed_at)
                )
        return observations
