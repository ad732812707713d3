"""Evidence: value objects shared by the aggregation and anchoring pipeline.

- ProviderObservation: one provider's reading for one asset at one instant
- IndexResult: the aggregated index for one asset at one tick
- EvidenceBundle: the full, reproducible record of one tick

All objects are frozen and serialize to plain dicts via ``to_dict()`` so the
Canonicalizer can hash them, and the BundleStore can persist them as JSON.

.. code-block:: python

    >>> obs = ProviderObservation.success("coingecko", "BTC", 97500.0, 1700000000000)
    >>> obs.ok
    True
    >>> ProviderObservation.failure("coinmarketcap", "BTC", "HTTP 429", 1700000000000).price is None
    True
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def now_millis() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def utc_timestamp(moment: datetime | None = None) -> str:
    """Format a UTC instant as ISO-8601 with millisecond precision and ``Z``.

    :param moment: Instant to format (default: now).
    :returns: Timestamp such as ``2024-05-01T12:00:00.000Z``.
    """
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


class IndexStatus(str, Enum):
    """Quorum classification of an aggregated index."""

    OK = "OK"
    DEGRADED = "DEGRADED"
    STALE = "STALE"


@dataclass(frozen=True)
class ProviderObservation:
    """One provider's reading for one asset.

    :ivar provider: Provider identifier (e.g., "coingecko").
    :ivar asset: Asset symbol, upper case (e.g., "BTC").
    :ivar price: Observed price, or None if the fetch failed.
    :ivar observed_at: Local observation time in epoch milliseconds.
    :ivar ok: Whether the provider returned a usable price.
    :ivar error: Failure reason when ``ok`` is False.
    """

    provider: str
    asset: str
    price: float | None
    observed_at: int
    ok: bool
    error: str | None = None

    def __post_init__(self) -> None:
        if self.ok:
            if self.price is None or isinstance(self.price, bool):
                raise ValueError(f"{self.provider}: ok observation requires a price")
            if not math.isfinite(self.price) or self.price <= 0:
                raise ValueError(
                    f"{self.provider}: price must be finite and positive, got {self.price}"
                )
        elif self.price is not None:
            raise ValueError(f"{self.provider}: failed observation must not carry a price")

    @classmethod
    def success(
        cls, provider: str, asset: str, price: float, observed_at: int
    ) -> ProviderObservation:
        """Create a successful observation."""
        return cls(provider, asset.upper(), float(price), observed_at, True, None)

    @classmethod
    def failure(
        cls, provider: str, asset: str, error: str, observed_at: int
    ) -> ProviderObservation:
        """Create a failed observation carrying the failure reason."""
        return cls(provider, asset.upper(), None, observed_at, False, error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "asset": self.asset,
            "price": self.price,
            "observed_at": self.observed_at,
            "ok": self.ok,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderObservation:
        price = data.get("price")
        return cls(
            provider=data["provider"],
            asset=data["asset"],
            price=float(price) if price is not None else None,
            observed_at=int(data["observed_at"]),
            ok=bool(data["ok"]),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class IndexResult:
    """Aggregated price index for one asset at one tick.

    :ivar asset: Asset symbol.
    :ivar quote: Quote currency (e.g., "USD").
    :ivar price: Final median price (0 when no valid source existed).
    :ivar sources_used: Providers retained after outlier filtering.
    :ivar source_count: Number of retained providers.
    :ivar dispersion: ``(max - min) / price`` over retained providers.
    :ivar observed_at: Newest observation time among valid sources.
    :ivar status: OK, DEGRADED or STALE.
    :ivar note: Explanation, present only when DEGRADED.
    """

    asset: str
    quote: str
    price: float
    sources_used: tuple[str, ...]
    source_count: int
    dispersion: float
    observed_at: int
    status: IndexStatus
    note: str | None = None

    def __post_init__(self) -> None:
        if self.source_count != len(self.sources_used):
            raise ValueError("source_count must equal len(sources_used)")
        if (self.status is IndexStatus.STALE) != (self.source_count == 0):
            raise ValueError("status must be STALE exactly when no source was used")
        if self.dispersion < 0:
            raise ValueError("dispersion must be non-negative")
        if self.source_count <= 1 and self.dispersion != 0:
            raise ValueError("dispersion must be 0 with fewer than two sources")
        if self.note is not None and self.status is not IndexStatus.DEGRADED:
            raise ValueError("note is only allowed on DEGRADED results")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "asset": self.asset,
            "quote": self.quote,
            "price": self.price,
            "sources_used": list(self.sources_used),
            "source_count": self.source_count,
            "dispersion": self.dispersion,
            "observed_at": self.observed_at,
            "status": self.status.value,
        }
        if self.note is not None:
            data["note"] = self.note
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexResult:
        return cls(
            asset=data["asset"],
            quote=data["quote"],
            price=float(data["price"]),
            sources_used=tuple(data["sources_used"]),
            source_count=int(data["source_count"]),
            dispersion=float(data["dispersion"]),
            observed_at=int(data["observed_at"]),
            status=IndexStatus(data["status"]),
            note=data.get("note"),
        )


@dataclass(frozen=True)
class CollectorSettings:
    """Collector cadence recorded in each bundle for audit."""

    interval: int
    jitter: int

    def to_dict(self) -> dict[str, Any]:
        return {"interval": self.interval, "jitter": self.jitter}


@dataclass(frozen=True)
class EvidenceBundle:
    """The full evidentiary record of one tick.

    :ivar tick_id: ISO-8601 UTC timestamp identifying the tick.
    :ivar network: Ledger network identifier.
    :ivar collector: Collector cadence at the time of the tick.
    :ivar observations: Every observation gathered this tick, failed ones included.
    :ivar index: The anchored index derived from ``observations``.
    """

    tick_id: str
    network: str
    collector: CollectorSettings
    observations: tuple[ProviderObservation, ...]
    index: IndexResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_id": self.tick_id,
            "network": self.network,
            "collector": self.collector.to_dict(),
            "observations": [o.to_dict() for o in self.observations],
            "index": self.index.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvidenceBundle:
        collector = data["collector"]
        return cls(
            tick_id=data["tick_id"],
            network=data["network"],
            collector=CollectorSettings(
                interval=int(collector["interval"]), jitter=int(collector["jitter"])
            ),
            observations=tuple(
                ProviderObservation.from_dict(o) for o in data["observations"]
            ),
            index=IndexResult.from_dict(data["index"]),
        )
