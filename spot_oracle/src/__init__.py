"""
Spot Oracle - Evidence-Anchored Price Index Module

This module provides the price index pipeline and its verification:
- Evidence: Observation, index and bundle records
- PriceAggregator: Median calculation with outlier detection and quorum
- Canonicalizer / BundleBuilder: Deterministic bundle bytes and fingerprints
- AnchorPayload: Compact CBOR payload anchored on the ledger
- BundleStore: Content-addressed evidence storage with a latest pointer
- LedgerAnchor: Ledger collaborators (HTTP explorer/daemon, in-memory)
- Verifier: Re-derives anchored fingerprints from stored evidence
- SpotOracle: Tick driver and outward interfaces
- fetchers: Modular price fetcher implementations
"""

from .AnchorPayload import AnchorPayload, DecodeResult, decode_payload, encode_payload
from .BundleBuilder import build_bundle, hash_bundle, hash_prefix
from .BundleStore import BundleStore, BundleStoreError, CorruptBundleError, FileBundleStore
from .Canonicalizer import CanonicalizationError, canonicalize
from .Evidence import EvidenceBundle, IndexResult, IndexStatus, ProviderObservation
from .LedgerAnchor import AnchorError, LedgerAnchor, LedgerTransaction
from .LedgerAnchorHttp import LedgerAnchorHttp
from .LedgerAnchorMemory import LedgerAnchorMemory
from .OracleConfig import OracleConfig
from .OracleState import OracleState, evaluate_health
from .PriceAggregator import AggregationConfig, PriceAggregator, aggregate, reaggregate
from .ProviderCollector import ProviderCollector
from .SpotOracle import AnchorStatus, SpotOracle, TickOutcome
from .Verifier import VerificationResult, VerificationStatus, Verifier

__all__ = [
    "AggregationConfig",
    "AnchorError",
    "AnchorPayload",
    "AnchorStatus",
    "BundleStore",
    "BundleStoreError",
    "CanonicalizationError",
    "CorruptBundleError",
    "DecodeResult",
    "EvidenceBundle",
    "FileBundleStore",
    "IndexResult",
    "IndexStatus",
    "LedgerAnchor",
    "LedgerAnchorHttp",
    "LedgerAnchorMemory",
    "LedgerTransaction",
    "OracleConfig",
    "OracleState",
    "PriceAggregator",
    "ProviderCollector",
    "ProviderObservation",
    "SpotOracle",
    "TickOutcome",
    "VerificationResult",
    "VerificationStatus",
    "Verifier",
    "aggregate",
    "reaggregate",
    "build_bundle",
    "canonicalize",
    "decode_payload",
    "encode_payload",
    "evaluate_health",
    "hash_bundle",
    "hash_prefix",
]
