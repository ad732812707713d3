"""PriceAggregator: Median aggregation with outlier rejection and quorum status.

Algorithm:
    1. Keep ``ok`` observations for the requested asset (the valid set)
    2. Calculate initial median across the valid set
    3. Exclude outliers (relative distance to the initial median > ratio)
    4. Recalculate median from the retained set
    5. Classify OK / DEGRADED / STALE against min_valid_sources
    6. Compute dispersion over the retained set

Absence of data is a normal outcome: an empty valid set yields a STALE
result rather than an exception.

.. code-block:: python

    >>> aggregator = PriceAggregator(AggregationConfig(outlier_threshold_ratio=0.01))
    >>> result = aggregator.aggregate(observations, "BTC")
    >>> result.status
    <IndexStatus.OK: 'OK'>
"""

from __future__ import annotations

from dataclasses import dataclass
from statistics import median as _median
from typing import Iterable

from .Evidence import EvidenceBundle, IndexResult, IndexStatus, ProviderObservation


@dataclass(frozen=True)
class AggregationConfig:
    """Aggregation thresholds.

    :ivar outlier_threshold_ratio: Max relative distance from the initial
        median before a source is rejected (0.01 = 1%). Inclusive.
    :ivar min_valid_sources: Retained sources required for an OK status.
    """

    outlier_threshold_ratio: float = 0.01
    min_valid_sources: int = 2

    def __post_init__(self) -> None:
        if self.min_valid_sources < 1:
            raise ValueError("min_valid_sources must be at least 1")
        if self.outlier_threshold_ratio <= 0:
            raise ValueError("outlier_threshold_ratio must be positive")


class PriceAggregator:
    """Aggregates provider observations into one IndexResult.

    Stateless: the same observations and configuration always produce an
    identical result, which is what lets a verifier re-derive the index
    from a stored bundle.

    :ivar config: Aggregation thresholds.

    .. code-block:: python

        >>> agg = PriceAggregator(AggregationConfig(min_valid_sources=2))
        >>> agg.aggregate(
        ...     [
        ...         ProviderObservation.success("a", "BTC", 97500.0, 1),
        ...         ProviderObservation.success("b", "BTC", 97510.0, 2),
        ...     ],
        ...     "BTC",
        ... ).price
        97505.0
    """

    def __init__(self, config: AggregationConfig | None = None) -> None:
        """Initialize the aggregator.

        :param config: Aggregation thresholds (default: 1% ratio, 2 sources).
        """
        self.config = config or AggregationConfig()

    def aggregate(
        self,
        observations: Iterable[ProviderObservation],
        asset: str,
        quote: str = "USD",
        observed_at: int | None = None,
    ) -> IndexResult:
        """Aggregate observations for one asset into an index.

        :param observations: Observations of the tick, any asset, failed ones included.
        :param asset: Asset symbol to aggregate (case-insensitive).
        :param quote: Quote currency recorded on the result.
        :param observed_at: Timestamp recorded on the result in epoch ms
            (default: newest valid observation, 0 when there is none).
        :returns: IndexResult; STALE when no valid source is available.
        """
        asset = asset.upper()
        quote = quote.upper()

        # Step 1: valid set
        valid = [
            o for o in observations
            if o.ok and o.price is not None and o.asset.upper() == asset
        ]

        if not valid:
            return IndexResult(
                asset=asset,
                quote=quote,
                price=0.0,
                sources_used=(),
                source_count=0,
                dispersion=0.0,
                observed_at=observed_at or 0,
                status=IndexStatus.STALE,
            )

        if observed_at is None:
            observed_at = max(o.observed_at for o in valid)

        # Step 2: initial median
        initial_median = float(_median(o.price for o in valid))

        # Step 3: outlier filter, boundary inclusive
        kept = [
            o for o in valid
            if abs(o.price - initial_median) / initial_median
            <= self.config.outlier_threshold_ratio
        ]

        # Step 4: final median, falling back to the initial one
        kept_prices = [o.price for o in kept]
        final_median = float(_median(kept_prices)) if kept_prices else initial_median

        # Step 5: quorum
        note = None
        if len(kept) >= self.config.min_valid_sources:
            status = IndexStatus.OK
        elif kept:
            status = IndexStatus.DEGRADED
            note = (
                f"Only {len(kept)} of {self.config.min_valid_sources} required "
                f"sources agree; relying on {', '.join(o.provider for o in kept)}"
            )
        else:
            status = IndexStatus.STALE

        # Step 6: dispersion
        dispersion = 0.0
        if len(kept_prices) > 1:
            dispersion = (max(kept_prices) - min(kept_prices)) / final_median

        return IndexResult(
            asset=asset,
            quote=quote,
            price=final_median,
            sources_used=tuple(o.provider for o in kept),
            source_count=len(kept),
            dispersion=dispersion,
            observed_at=observed_at,
            status=status,
            note=note,
        )

    def reaggregate(self, bundle: EvidenceBundle) -> tuple[IndexResult, bool]:
        """Recompute a bundle's index from its own observations.

        :param bundle: Bundle to audit.
        :returns: Tuple of (recomputed index, whether it equals the stored index).
        """
        recomputed = self.aggregate(
            bundle.observations, bundle.index.asset, bundle.index.quote
        )
        return recomputed, recomputed == bundle.index


def aggregate(
    observations: Iterable[ProviderObservation],
    config: AggregationConfig,
    asset: str,
    quote: str = "USD",
    observed_at: int | None = None,
) -> IndexResult:
    """Aggregate observations with the given configuration.

    Functional form of :meth:`PriceAggregator.aggregate`.
    """
    return PriceAggregator(config).aggregate(observations, asset, quote, observed_at)


def reaggregate(
    bundle: EvidenceBundle, config: AggregationConfig
) -> tuple[IndexResult, bool]:
    """Functional form of :meth:`PriceAggregator.reaggregate`."""
    return PriceAggregator(config).reaggregate(bundle)
