"""BundleBuilder: evidence bundle assembly and content hashing.

The full SHA-256 digest of the canonical bundle is kept in storage; the
on-chain fingerprint is its first ``HASH_PREFIX_LENGTH`` hex characters.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any, Iterable, Mapping

from .Canonicalizer import canonicalize
from .Evidence import (
    CollectorSettings,
    EvidenceBundle,
    IndexResult,
    ProviderObservation,
    utc_timestamp,
)

# Hex characters of the bundle hash published on-chain (8 bytes).
HASH_PREFIX_LENGTH = 16

# Key of the non-hashed metadata envelope attached to stored bundles.
ENVELOPE_KEY = "_meta"

_PREFIX_RE = re.compile(rf"[0-9a-f]{{{HASH_PREFIX_LENGTH}}}")
_FULL_HASH_RE = re.compile(r"[0-9a-f]{64}")


def build_bundle(
    observations: Iterable[ProviderObservation],
    index: IndexResult,
    network: str,
    collector: CollectorSettings,
    tick_id: str | None = None,
) -> EvidenceBundle:
    """Assemble the evidence bundle of one tick.

    :param observations: All observations gathered this tick.
    :param index: The finalized index derived from ``observations``.
    :param network: Ledger network identifier.
    :param collector: Collector cadence for audit.
    :param tick_id: Tick identifier (default: current UTC timestamp).
    :returns: Immutable EvidenceBundle.
    """
    return EvidenceBundle(
        tick_id=tick_id or utc_timestamp(),
        network=network,
        collector=collector,
        observations=tuple(observations),
        index=index,
    )


def strip_envelope(record: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of a stored record without its metadata envelope."""
    return {k: v for k, v in record.items() if k != ENVELOPE_KEY}


def hash_bundle(bundle: EvidenceBundle | Mapping[str, Any]) -> str:
    """Compute the SHA-256 hex digest of a bundle's canonical form.

    Accepts either an EvidenceBundle or the plain dict loaded from storage;
    a metadata envelope on the dict is ignored.

    :param bundle: Bundle to hash.
    :returns: 64-character lowercase hex digest.
    :raises CanonicalizationError: If the content holds non-canonical values.
    """
    if isinstance(bundle, Mapping):
        bundle = strip_envelope(bundle)
    return hashlib.sha256(canonicalize(bundle)).hexdigest()


def hash_prefix(full_hash: str, length: int = HASH_PREFIX_LENGTH) -> str:
    """Truncate a full digest to the published fingerprint length.

    :raises ValueError: If ``full_hash`` is not a 64-character hex digest.
    """
    if not is_full_hash(full_hash):
        raise ValueError(f"Invalid bundle hash: {full_hash!r}")
    return full_hash[:length]


def is_hash_prefix(value: Any) -> bool:
    """Check that a value is a well-formed lowercase hash prefix."""
    return isinstance(value, str) and _PREFIX_RE.fullmatch(value) is not None


def is_full_hash(value: Any) -> bool:
    """Check that a value is a well-formed lowercase SHA-256 hex digest."""
    return isinstance(value, str) and _FULL_HASH_RE.fullmatch(value) is not None
