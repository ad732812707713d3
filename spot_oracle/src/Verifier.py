"""Verifier: re-derive and check an anchored bundle fingerprint.

Stages of a single verification request::

    START -> FETCHED_TX -> DECODED -> VALIDATED_SCHEMA
          -> BUNDLE_LOOKED_UP -> HASH_COMPARED

Terminal statuses:
    PASSED:  on-chain prefix equals the recomputed prefix
    FAILED:  no payload, invalid payload, or hash mismatch
    PARTIAL: payload valid but the bundle is not available locally
    ERROR:   malformed tx id, transaction not found, or fetch failure

Verification is a pure read-then-compute operation: no retries, transient
failures are reported as ERROR for the caller to retry.

.. code-block:: python

    >>> verifier = Verifier(anchor, store)
    >>> result = await verifier.verify(tx_id, "testnet-10")
    >>> result.status
    <VerificationStatus.PASSED: 'PASSED'>
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .AnchorPayload import AnchorPayload, decode_payload
from .BundleBuilder import HASH_PREFIX_LENGTH, hash_bundle
from .BundleStore import BundleStore, BundleStoreError, CorruptBundleError
from .Canonicalizer import CanonicalizationError
from .Evidence import EvidenceBundle
from .LedgerAnchor import AnchorError, LedgerAnchor, is_valid_tx_id
from .PriceAggregator import AggregationConfig, PriceAggregator

logger = logging.getLogger(__name__)


class VerificationStatus(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"
    ERROR = "ERROR"


class VerificationStage(str, Enum):
    """Last stage a verification request reached."""

    START = "START"
    FETCHED_TX = "FETCHED_TX"
    DECODED = "DECODED"
    VALIDATED_SCHEMA = "VALIDATED_SCHEMA"
    BUNDLE_LOOKED_UP = "BUNDLE_LOOKED_UP"
    HASH_COMPARED = "HASH_COMPARED"


@dataclass
class VerificationResult:
    """Diagnostic record of one verification request.

    Built up stage by stage by :class:`Verifier`; ``to_dict()`` returns a
    JSON-serializable view for API consumers.
    """

    tx_id: str
    network: str
    status: VerificationStatus = VerificationStatus.ERROR
    stage: VerificationStage = VerificationStage.START
    error: str | None = None

    # Transaction
    tx_found: bool = False
    block_time: str | None = None
    payload_hex: str | None = None
    payload_size: int | None = None

    # Payload
    decoded: AnchorPayload | None = None
    validation_errors: list[str] = field(default_factory=list)

    # Bundle
    bundle_found: bool = False
    hash_verified: bool | None = None
    onchain_hash: str | None = None
    recomputed_hash: str | None = None
    full_hash: str | None = None
    bundle_summary: dict[str, Any] | None = None
    observations: list[dict[str, Any]] | None = None
    index_reproducible: bool | None = None

    @property
    def passed(self) -> bool:
        return self.status is VerificationStatus.PASSED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "txid": self.tx_id,
            "network": self.network,
            "status": self.status.value,
            "stage": self.stage.value,
            "tx_found": self.tx_found,
            "bundle_found": self.bundle_found,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.block_time is not None:
            data["block_time"] = self.block_time
        if self.payload_hex is not None:
            data["payload_hex"] = self.payload_hex
            data["payload_size"] = self.payload_size
        if self.decoded is not None:
            data["decoded"] = self.decoded.to_dict()
        if self.stage is not VerificationStage.START and self.payload_hex is not None:
            data["validation"] = {
                "valid": not self.validation_errors,
                "errors": list(self.validation_errors),
            }
        if self.hash_verified is not None:
            data["hash_verified"] = self.hash_verified
            data["onchain_hash"] = self.onchain_hash
            data["recomputed_hash"] = self.recomputed_hash
            data["full_hash"] = self.full_hash
        if self.bundle_summary is not None:
            data["bundle_summary"] = self.bundle_summary
        if self.observations is not None:
            data["provider_responses"] = self.observations
        if self.index_reproducible is not None:
            data["index_reproducible"] = self.index_reproducible
        return data


def _format_block_time(block_time_ms: int) -> str | None:
    """ISO form of a ledger block time, or None when it is not a representable date."""
    try:
        moment = datetime.fromtimestamp(block_time_ms / 1000, tz=timezone.utc)
    except (OverflowError, ValueError, OSError) as e:
        logger.warning(f"Ignoring unrepresentable block time {block_time_ms}: {e}")
        return None
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Verifier:
    """Verifies anchored transactions against locally stored evidence.

    :ivar anchor: Ledger collaborator used to fetch transactions.
    :ivar store: Bundle store holding the evidence.
    :ivar timeout: Upper bound in seconds for the ledger fetch.
    :ivar recheck_config: When set, the index is also re-aggregated from the
        bundle's observations with this configuration.
    """

    def __init__(
        self,
        anchor: LedgerAnchor,
        store: BundleStore,
        timeout: float = 10.0,
        recheck_config: AggregationConfig | None = None,
    ) -> None:
        self.anchor = anchor
        self.store = store
        self.timeout = timeout
        self.recheck_config = recheck_config

    async def verify(self, tx_id: str, network: str) -> VerificationResult:
        """Verify one anchoring transaction.

        :param tx_id: Transaction id (64 hex chars).
        :param network: Network the transaction belongs to (reported back).
        :returns: VerificationResult with status and per-stage diagnostics.
        """
        result = VerificationResult(tx_id=tx_id, network=network)

        # START: reject malformed ids before any I/O
        if not is_valid_tx_id(tx_id):
            result.error = "Invalid TXID format (expected 64 hex characters)"
            return result
        tx_id = tx_id.lower()
        result.tx_id = tx_id

        # START -> FETCHED_TX
        try:
            tx = await asyncio.wait_for(
                self.anchor.fetch_transaction(tx_id), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            result.error = f"Timed out fetching transaction after {self.timeout}s"
            return result
        except AnchorError as e:
            result.error = f"Failed to fetch transaction: {e}"
            return result

        if tx is None:
            result.error = "Transaction not found"
            return result

        result.tx_found = True
        result.stage = VerificationStage.FETCHED_TX
        if tx.block_time is not None:
            result.block_time = _format_block_time(tx.block_time)

        if not tx.payload:
            result.status = VerificationStatus.FAILED
            result.error = "Transaction has no payload"
            return result

        result.payload_hex = tx.payload.hex()
        result.payload_size = len(tx.payload)

        # FETCHED_TX -> DECODED -> VALIDATED_SCHEMA
        decoded = decode_payload(tx.payload)
        if decoded.raw is not None:
            result.stage = VerificationStage.DECODED
        if not decoded.success:
            result.validation_errors = list(decoded.violations)
            result.status = VerificationStatus.FAILED
            result.error = f"Payload validation failed: {'; '.join(decoded.violations)}"
            return result

        payload = decoded.payload
        result.decoded = payload
        result.stage = VerificationStage.VALIDATED_SCHEMA

        # VALIDATED_SCHEMA -> BUNDLE_LOOKED_UP
        try:
            stored = self.store.get(payload.h)
        except CorruptBundleError as e:
            # The record exists but cannot be the evidence that was anchored
            result.bundle_found = True
            result.stage = VerificationStage.BUNDLE_LOOKED_UP
            result.hash_verified = False
            result.status = VerificationStatus.FAILED
            result.error = f"Stored bundle is corrupt: {e}"
            return result
        except BundleStoreError as e:
            result.error = f"Bundle store unavailable: {e}"
            return result

        if stored is None:
            result.status = VerificationStatus.PARTIAL
            result.error = f"Bundle {payload.h} not available locally"
            return result

        result.bundle_found = True
        result.stage = VerificationStage.BUNDLE_LOOKED_UP

        # BUNDLE_LOOKED_UP -> HASH_COMPARED, envelope already separated by the store
        content = stored.content
        try:
            full_hash = hash_bundle(content)
        except CanonicalizationError as e:
            result.hash_verified = False
            result.status = VerificationStatus.FAILED
            result.error = f"Bundle content not canonicalizable: {e}"
            return result
        recomputed = full_hash[:HASH_PREFIX_LENGTH]

        result.stage = VerificationStage.HASH_COMPARED
        result.full_hash = full_hash
        result.onchain_hash = payload.h
        result.recomputed_hash = recomputed
        result.hash_verified = recomputed == payload.h

        self._summarize(result, content)

        if result.hash_verified:
            result.status = VerificationStatus.PASSED
        else:
            result.status = VerificationStatus.FAILED
            result.error = f"Hash mismatch: on-chain={payload.h}, computed={recomputed}"

        logger.info(f"Verified {tx_id}: {result.status.value}")
        return result

    def _summarize(self, result: VerificationResult, content: dict[str, Any]) -> None:
        """Attach a human-oriented summary of the bundle to the result.

        Tampered bundles may no longer parse; the summary is best-effort and
        never changes the verdict.
        """
        index = content.get("index") if isinstance(content.get("index"), dict) else {}
        result.bundle_summary = {
            "tick_id": content.get("tick_id"),
            "network": content.get("network"),
            "price": index.get("price"),
            "status": index.get("status"),
            "sources_used": index.get("sources_used"),
            "dispersion": index.get("dispersion"),
        }
        observations = content.get("observations")
        if isinstance(observations, list):
            result.observations = [
                {
                    "provider": o.get("provider"),
                    "asset": o.get("asset"),
                    "price": o.get("price"),
                    "ok": o.get("ok"),
                    "error": o.get("error"),
                }
                for o in observations
                if isinstance(o, dict)
            ]

        if self.recheck_config is not None:
            try:
                bundle = EvidenceBundle.from_dict(content)
            except (AttributeError, KeyError, ValueError, TypeError) as e:
                logger.warning(f"Bundle could not be parsed for re-aggregation: {e}")
                result.index_reproducible = False
                return
            _, matches = PriceAggregator(self.recheck_config).reaggregate(bundle)
            result.index_reproducible = matches
