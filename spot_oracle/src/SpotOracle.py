"""SpotOracle: tick driver of the spot price oracle.

One tick runs the whole pipeline::

    collect -> aggregate -> build bundle -> hash -> anchor -> store -> publish

Architecture:
    - Observations for every configured asset are collected in one pass
    - Only the primary asset's index is anchored; display assets are
      aggregated for the status view only
    - Anchoring happens for OK and DEGRADED indexes, never for STALE ones
    - An anchoring failure is logged and the bundle is still stored, without
      a transaction id
    - A storage failure leaves the latest pointer where it was
    - The loop sleeps interval +/- uniform jitter between ticks and survives
      tick errors
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from .AnchorPayload import encode_payload
from .BundleBuilder import build_bundle, hash_bundle, hash_prefix
from .BundleStore import BundleStore, BundleStoreError, LatestPointer, StoredBundle
from .Evidence import (
    EvidenceBundle,
    IndexResult,
    IndexStatus,
    ProviderObservation,
    utc_timestamp,
)
from .LedgerAnchor import AnchorError, LedgerAnchor
from .OracleConfig import OracleConfig
from .OracleState import DisplayPrice, OracleState
from .PriceAggregator import PriceAggregator
from .ProviderCollector import ProviderCollector
from .Verifier import VerificationResult, Verifier

logger = logging.getLogger(__name__)


class AnchorStatus(str, Enum):
    ANCHORED = "ANCHORED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class TickOutcome:
    """Result of a single tick.

    :ivar bundle: Evidence bundle built this tick.
    :ivar full_hash: SHA-256 hex digest of the bundle.
    :ivar hash_prefix: Published 16-char fingerprint.
    :ivar tx_id: Anchoring transaction id, if anchored.
    :ivar anchor_status: Whether the fingerprint was anchored.
    :ivar anchor_error: Error text when anchoring failed or was skipped.
    :ivar stored: Whether the bundle was persisted and the pointer advanced.
    :ivar storage_error: Error text when persisting failed.
    """

    bundle: EvidenceBundle
    full_hash: str
    hash_prefix: str
    tx_id: str | None
    anchor_status: AnchorStatus
    anchor_error: str | None = None
    stored: bool = False
    storage_error: str | None = None

    @property
    def index(self) -> IndexResult:
        return self.bundle.index


class SpotOracle:
    """Runs ticks on a schedule and serves the outward interfaces.

    :ivar config: Oracle configuration.
    :ivar collector: Provider collector, or None when observations are
        always passed to :meth:`run_tick`.
    :ivar anchor: Ledger anchor, or None to never anchor.
    :ivar store: Bundle store.
    :ivar state: Observable oracle state.
    """

    def __init__(
        self,
        config: OracleConfig,
        collector: ProviderCollector | None,
        anchor: LedgerAnchor | None,
        store: BundleStore,
        state: OracleState | None = None,
    ) -> None:
        """Initialize the oracle.

        :param config: Oracle configuration.
        :param collector: Provider collector.
        :param anchor: Ledger anchor (optional).
        :param store: Bundle store.
        :param state: State holder (default: a fresh one for ``config.network``).
        :raises ValueError: If the configuration is invalid.
        """
        for warning in config.validate():
            logger.warning(f"Configuration: {warning}")

        self.config = config
        self.collector = collector
        self.anchor = anchor
        self.store = store
        self.state = state or OracleState(config.network)
        self.aggregator = PriceAggregator(config.aggregation)
        self.verifier = (
            Verifier(
                anchor,
                store,
                timeout=config.anchor_timeout,
                recheck_config=config.aggregation,
            )
            if anchor is not None
            else None
        )
        self._task: asyncio.Task | None = None
        self._rng = random.Random()

        logger.info(
            f"SpotOracle initialized: network={config.network}, "
            f"asset={config.asset}/{config.quote}, "
            f"display={config.display_assets}, providers={config.providers}, "
            f"interval={config.interval_seconds}s +/- {config.jitter_seconds}s"
        )

    async def run_tick(
        self, observations: list[ProviderObservation] | None = None
    ) -> TickOutcome:
        """Run one tick of the pipeline.

        :param observations: Pre-collected observations (default: collect now).
        :returns: TickOutcome.
        :raises RuntimeError: If no observations are given and there is no collector.
        """
        tick_id = utc_timestamp()
        if observations is None:
            if self.collector is None:
                raise RuntimeError("No collector configured and no observations given")
            observations = await self.collector.collect(
                self.config.assets, self.config.quote
            )

        asset = self.config.asset
        index = self.aggregator.aggregate(observations, asset, self.config.quote)
        display = {
            a: self.aggregator.aggregate(observations, a, self.config.quote)
            for a in self.config.display_assets
        }

        bundle = build_bundle(
            observations,
            index,
            network=self.config.network,
            collector=self.config.collector,
            tick_id=tick_id,
        )
        full_hash = hash_bundle(bundle)
        prefix = hash_prefix(full_hash)

        logger.info(
            f"[{tick_id}] {asset}/{self.config.quote} = {index.price} "
            f"({index.status.value}, {index.source_count} sources, "
            f"dispersion={index.dispersion:.6f}), hash={prefix}"
        )
        if index.note:
            logger.warning(f"[{tick_id}] {index.note}")

        tx_id, anchor_status, anchor_error = await self._anchor(bundle, prefix)

        stored = True
        storage_error = None
        try:
            self.store.put(bundle, full_hash, tx_id=tx_id)
            self.store.publish_latest(prefix, tx_id=tx_id)
        except BundleStoreError as e:
            stored = False
            storage_error = str(e)
            logger.error(f"[{tick_id}] Failed to store bundle {prefix}: {e}")

        primary = [o for o in observations if o.asset == asset]
        self.state.update(
            last_tick_id=tick_id,
            last_updated_at=datetime.now(timezone.utc),
            last_tx_id=tx_id,
            last_hash=prefix,
            providers_ok=sum(1 for o in primary if o.ok),
            providers_total=len(primary),
            last_price=index.price if index.status is not IndexStatus.STALE else None,
            last_index_status=index.status,
            display={
                a: DisplayPrice(
                    price=r.price if r.status is not IndexStatus.STALE else None,
                    status=r.status,
                )
                for a, r in display.items()
            },
        )

        return TickOutcome(
            bundle=bundle,
            full_hash=full_hash,
            hash_prefix=prefix,
            tx_id=tx_id,
            anchor_status=anchor_status,
            anchor_error=anchor_error,
            stored=stored,
            storage_error=storage_error,
        )

    async def _anchor(
        self, bundle: EvidenceBundle, prefix: str
    ) -> tuple[str | None, AnchorStatus, str | None]:
        """Encode and submit the fingerprint of a bundle.

        :returns: Tuple of (tx id, anchor status, error text).
        """
        index = bundle.index
        if index.status is IndexStatus.STALE:
            return None, AnchorStatus.SKIPPED, "Index is STALE"
        if self.anchor is None or self.anchor.read_only:
            return None, AnchorStatus.SKIPPED, "No writable anchor configured"

        try:
            payload = encode_payload(index, prefix)
            tx_id = await asyncio.wait_for(
                self.anchor.submit(payload), timeout=self.config.anchor_timeout
            )
        except asyncio.TimeoutError:
            error = f"Timed out after {self.config.anchor_timeout}s"
            logger.warning(f"[{bundle.tick_id}] Anchoring {prefix} failed: {error}")
            return None, AnchorStatus.FAILED, error
        except (AnchorError, ValueError) as e:
            logger.warning(f"[{bundle.tick_id}] Anchoring {prefix} failed: {e}")
            return None, AnchorStatus.FAILED, str(e)

        logger.info(f"[{bundle.tick_id}] Anchored {prefix} in tx {tx_id}")
        return tx_id, AnchorStatus.ANCHORED, None

    def next_delay(self) -> float:
        """Seconds to wait before the next tick: interval +/- uniform jitter."""
        jitter = self.config.jitter_seconds
        return max(0.0, self.config.interval_seconds + self._rng.uniform(-jitter, jitter))

    async def run_forever(self) -> None:
        """Run ticks until cancelled."""
        logger.info("Starting tick loop")
        while True:
            try:
                await self.run_tick()
            except Exception as e:  # A failed tick must not stop the loop
                logger.exception(f"Tick failed: {e}")
            await asyncio.sleep(self.next_delay())

    def start(self) -> asyncio.Task:
        """Start the tick loop as a background task of the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        """Cancel the tick loop and release network resources."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self.anchor is not None:
            await self.anchor.close()
        logger.info("Tick loop stopped")

    def latest(self) -> StoredBundle | None:
        """Return the bundle the latest pointer refers to, if any.

        :raises BundleStoreError: If the store cannot be read.
        """
        pointer = self.latest_pointer()
        if pointer is None:
            return None
        return self.store.get(pointer.hash_prefix)

    def latest_pointer(self) -> LatestPointer | None:
        return self.store.get_latest_pointer()

    def get_bundle(self, prefix: str) -> StoredBundle | None:
        """Return a stored bundle by hash prefix.

        :raises ValueError: If ``prefix`` is malformed.
        :raises BundleStoreError: If the store cannot be read.
        """
        return self.store.get(prefix)

    async def verify(self, tx_id: str) -> VerificationResult:
        """Verify an anchoring transaction against the local store.

        :raises RuntimeError: If no anchor is configured to read the ledger.
        """
        if self.verifier is None:
            raise RuntimeError("Verification requires a ledger anchor")
        return await self.verifier.verify(tx_id, self.config.network)
