"""OracleState: observable status of a running oracle.

The state object is owned by the tick driver, which is the only writer;
everything else reads immutable snapshots through :meth:`OracleState.snapshot`.

.. code-block:: python

    >>> state = OracleState("testnet-10")
    >>> state.snapshot().last_tick_id is None
    True
    >>> evaluate_health(state.snapshot()).status
    'unhealthy'
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from .Evidence import IndexStatus

# Tick lag thresholds in seconds.
LAG_DEGRADED_SECONDS = 60
LAG_UNHEALTHY_SECONDS = 120


@dataclass(frozen=True)
class DisplayPrice:
    """Price of a non-anchored asset, for display only."""

    price: float | None
    status: IndexStatus | None


@dataclass(frozen=True)
class OracleSnapshot:
    """Immutable view of the oracle state.

    :ivar network: Ledger network identifier.
    :ivar last_tick_id: Tick id of the most recent tick.
    :ivar last_updated_at: Completion time of the most recent tick.
    :ivar last_tx_id: Anchoring transaction of the most recent tick, if any.
    :ivar last_hash: Bundle hash prefix of the most recent tick.
    :ivar providers_ok: Providers that answered for the anchored asset.
    :ivar providers_total: Providers queried for the anchored asset.
    :ivar last_price: Price of the anchored asset.
    :ivar last_index_status: Status of the anchored index.
    :ivar display: Display-only prices by asset.
    """

    network: str
    last_tick_id: str | None = None
    last_updated_at: datetime | None = None
    last_tx_id: str | None = None
    last_hash: str | None = None
    providers_ok: int = 0
    providers_total: int = 0
    last_price: float | None = None
    last_index_status: IndexStatus | None = None
    display: dict[str, DisplayPrice] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "network": self.network,
            "last_tick_id": self.last_tick_id,
            "last_updated_at": (
                self.last_updated_at.isoformat() if self.last_updated_at else None
            ),
            "last_txid": self.last_tx_id,
            "last_hash": self.last_hash,
            "providers_ok": self.providers_ok,
            "providers_total": self.providers_total,
            "last_price": self.last_price,
            "last_index_status": (
                self.last_index_status.value if self.last_index_status else None
            ),
            "display": {
                asset: {
                    "price": d.price,
                    "status": d.status.value if d.status else None,
                }
                for asset, d in self.display.items()
            },
        }


class OracleState:
    """Mutable holder of the latest oracle snapshot.

    Updates swap in a new frozen snapshot under a lock, so readers on other
    threads (e.g. an HTTP server) never observe a half-applied update.
    """

    def __init__(self, network: str) -> None:
        self._lock = threading.Lock()
        self._snapshot = OracleSnapshot(network=network)

    def snapshot(self) -> OracleSnapshot:
        """Return the current immutable snapshot."""
        with self._lock:
            return self._snapshot

    def update(self, **changes: Any) -> OracleSnapshot:
        """Apply field changes and return the new snapshot.

        :raises TypeError: If a field name is unknown.
        """
        with self._lock:
            self._snapshot = replace(self._snapshot, **changes)
            return self._snapshot


@dataclass(frozen=True)
class HealthReport:
    """Operator-facing health verdict.

    :ivar status: "healthy", "degraded" or "unhealthy".
    :ivar issues: Reasons for a non-healthy verdict.
    :ivar lag_seconds: Seconds since the last completed tick, if any.
    """

    status: str
    issues: tuple[str, ...]
    lag_seconds: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "issues": list(self.issues),
            "lag_seconds": self.lag_seconds,
        }


def evaluate_health(
    snapshot: OracleSnapshot, now: datetime | None = None
) -> HealthReport:
    """Classify oracle health from a snapshot.

    Rules:
        - unhealthy: no tick yet, lag above 120s, or every provider failed
        - degraded: lag above 60s, DEGRADED index, or some providers failed

    :param snapshot: State snapshot to evaluate.
    :param now: Evaluation time (default: now, UTC).
    :returns: HealthReport.
    """
    now = now or datetime.now(timezone.utc)
    issues: list[str] = []
    status = "healthy"

    def degrade() -> None:
        nonlocal status
        if status == "healthy":
            status = "degraded"

    lag_seconds = None
    if snapshot.last_updated_at is not None:
        lag_seconds = round((now - snapshot.last_updated_at).total_seconds())

    if snapshot.last_tick_id is None:
        status = "unhealthy"
        issues.append("No ticks recorded yet")
    elif lag_seconds is not None and lag_seconds > LAG_UNHEALTHY_SECONDS:
        status = "unhealthy"
        issues.append(f"Lag too high: {lag_seconds}s")
    elif lag_seconds is not None and lag_seconds > LAG_DEGRADED_SECONDS:
        degrade()
        issues.append(f"Lag elevated: {lag_seconds}s")

    if snapshot.providers_total > 0 and snapshot.providers_ok == 0:
        status = "unhealthy"
        issues.append("All providers failed, no valid price")
    elif snapshot.last_index_status is IndexStatus.DEGRADED:
        degrade()
        issues.append(
            f"Degraded price ({snapshot.providers_ok}/{snapshot.providers_total} providers OK)"
        )
    elif snapshot.providers_ok < snapshot.providers_total:
        degrade()
        issues.append(
            f"Only {snapshot.providers_ok}/{snapshot.providers_total} providers OK"
        )

    return HealthReport(status=status, issues=tuple(issues), lag_seconds=lag_seconds)
