"""OracleConfig: runtime configuration of the spot oracle."""

from __future__ import annotations

from dataclasses import dataclass, field

from .Evidence import CollectorSettings
from .PriceAggregator import AggregationConfig


@dataclass
class OracleConfig:
    """Runtime configuration.

    :ivar network: Ledger network identifier (e.g., "testnet-10").
    :ivar asset: Asset whose index is anchored.
    :ivar quote: Quote currency.
    :ivar display_assets: Additional assets aggregated for display only.
    :ivar providers: Enabled provider names.
    :ivar api_keys: API keys by provider name.
    :ivar interval_seconds: Seconds between ticks.
    :ivar jitter_seconds: Max random deviation applied to each interval.
    :ivar outlier_threshold_ratio: Outlier rejection ratio (0.01 = 1%).
    :ivar min_valid_sources: Sources required for an OK index.
    :ivar fetch_timeout: Timeout per provider request in seconds.
    :ivar anchor_timeout: Timeout for ledger submission and lookups in seconds.
    :ivar store_dir: Root directory of the bundle store.
    :ivar explorer_url: Explorer API override (default: per network).
    :ivar submit_url: Signing daemon URL; anchoring is disabled without it.
    """

    network: str = "testnet-10"
    asset: str = "BTC"
    quote: str = "USD"
    display_assets: list[str] = field(default_factory=list)
    providers: list[str] = field(default_factory=lambda: ["coingecko", "coinmarketcap"])
    api_keys: dict[str, str] = field(default_factory=dict)
    interval_seconds: int = 60
    jitter_seconds: int = 5
    outlier_threshold_ratio: float = 0.01
    min_valid_sources: int = 2
    fetch_timeout: float = 10.0
    anchor_timeout: float = 30.0
    store_dir: str = "proofs"
    explorer_url: str | None = None
    submit_url: str | None = None

    def __post_init__(self) -> None:
        self.asset = self.asset.upper()
        self.quote = self.quote.upper()
        self.display_assets = [
            a.upper() for a in self.display_assets if a.upper() != self.asset
        ]
        self.providers = [p.lower() for p in self.providers]

    @property
    def aggregation(self) -> AggregationConfig:
        return AggregationConfig(
            outlier_threshold_ratio=self.outlier_threshold_ratio,
            min_valid_sources=self.min_valid_sources,
        )

    @property
    def collector(self) -> CollectorSettings:
        return CollectorSettings(
            interval=self.interval_seconds, jitter=self.jitter_seconds
        )

    @property
    def assets(self) -> list[str]:
        """Anchored asset first, then display assets."""
        return [self.asset, *self.display_assets]

    def validate(self) -> list[str]:
        """Check the configuration.

        Hard errors raise; combinations that are legal but make an OK index
        unreachable or outliers impossible to reject are returned as warnings.

        :returns: List of warnings.
        :raises ValueError: If the configuration cannot work at all.
        """
        if self.interval_seconds < 1:
            raise ValueError("interval_seconds must be at least 1")
        if self.jitter_seconds < 0:
            raise ValueError("jitter_seconds must not be negative")
        if self.jitter_seconds >= self.interval_seconds:
            raise ValueError("jitter_seconds must be smaller than interval_seconds")
        if self.fetch_timeout <= 0 or self.anchor_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if not self.providers:
            raise ValueError("At least one provider must be enabled")
        # Raises ValueError for invalid thresholds
        self.aggregation

        warnings: list[str] = []
        if self.min_valid_sources > len(self.providers):
            warnings.append(
                f"min_valid_sources={self.min_valid_sources} exceeds the "
                f"{len(self.providers)} enabled provider(s); an OK index is unreachable"
            )
        if self.outlier_threshold_ratio >= 1:
            warnings.append(
                f"outlier_threshold_ratio={self.outlier_threshold_ratio} "
                "never rejects a source below the median"
            )
        if self.fetch_timeout >= self.interval_seconds:
            warnings.append("fetch_timeout is not shorter than the tick interval")
        return warnings
