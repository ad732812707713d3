"""AnchorPayload: compact on-chain commitment to an evidence bundle.

The payload is a four-key CBOR map, keys sorted alphabetically:

    d: dispersion rounded to DISPERSION_DECIMALS
    h: bundle hash prefix (16 lowercase hex chars)
    n: number of sources used
    p: price rounded to PRICE_DECIMALS

Decoding is strict: anything that is not exactly this shape is reported as a
list of violations instead of being coerced.

.. code-block:: python

    >>> data = encode_payload(index, "0123456789abcdef")
    >>> len(data) <= MAX_PAYLOAD_BYTES
    True
    >>> decode_payload(data).payload.h
    '0123456789abcdef'
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import cbor2

from .BundleBuilder import HASH_PREFIX_LENGTH, is_hash_prefix
from .Evidence import IndexResult

# Ledger payload ceiling in bytes.
MAX_PAYLOAD_BYTES = 80

PRICE_DECIMALS = 2
DISPERSION_DECIMALS = 4

MAX_PRICE = 10_000_000
MIN_SOURCES = 1
MAX_SOURCES = 10

PAYLOAD_KEYS = ("d", "h", "n", "p")


class PayloadTooLargeError(ValueError):
    """Raised when an encoded payload exceeds the ledger size ceiling.

    :ivar size: Encoded size in bytes.
    :ivar limit: Configured maximum.
    """

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Payload too large: {size} bytes (max {limit})")


@dataclass(frozen=True)
class AnchorPayload:
    """Decoded or to-be-encoded anchor payload.

    :ivar d: Rounded dispersion.
    :ivar h: Bundle hash prefix.
    :ivar n: Number of sources used.
    :ivar p: Rounded price.
    """

    d: float
    h: str
    n: int
    p: float

    def to_dict(self) -> dict[str, Any]:
        return {"d": self.d, "h": self.h, "n": self.n, "p": self.p}


@dataclass(frozen=True)
class DecodeResult:
    """Tagged result of payload decoding.

    Exactly one of ``payload`` and ``violations`` is meaningful: a successful
    decode has a payload and no violations.

    :ivar payload: Decoded payload, or None on failure.
    :ivar violations: Human-readable schema violations.
    :ivar raw: The raw decoded CBOR object, kept for diagnostics.
    """

    payload: AnchorPayload | None
    violations: tuple[str, ...] = ()
    raw: Any = None

    @property
    def success(self) -> bool:
        """Check if decoding produced a valid payload."""
        return self.payload is not None

    @classmethod
    def ok(cls, payload: AnchorPayload, raw: Any = None) -> DecodeResult:
        return cls(payload=payload, violations=(), raw=raw)

    @classmethod
    def fail(cls, violations: list[str], raw: Any = None) -> DecodeResult:
        return cls(payload=None, violations=tuple(violations), raw=raw)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite_number(value: Any) -> bool:
    # CBOR bignums decode to arbitrarily large ints; never convert them to float
    if not _is_number(value):
        return False
    return isinstance(value, int) or math.isfinite(value)


def _describe(value: Any) -> str:
    """Short printable form of a decoded value for violation messages."""
    if isinstance(value, int) and not isinstance(value, bool) and value.bit_length() > 64:
        return f"<{value.bit_length()}-bit integer>"
    text = repr(value)
    return text if len(text) <= 40 else text[:37] + "..."


def validate_payload(obj: Any) -> list[str]:
    """Check a decoded payload object against the fixed schema.

    :param obj: Decoded CBOR value.
    :returns: List of violations; empty if the payload is well-formed.
    """
    if not isinstance(obj, dict):
        return [f"Payload is not a map, got {type(obj).__name__}"]

    errors: list[str] = []

    keys = set(obj.keys())
    missing = sorted(k for k in PAYLOAD_KEYS if k not in keys)
    extra = sorted(_describe(k) for k in keys if k not in PAYLOAD_KEYS)
    if missing:
        errors.append(f"Missing keys: {', '.join(missing)}")
    if extra:
        errors.append(f"Unexpected keys: {', '.join(extra)}")

    if "p" in obj:
        p = obj["p"]
        if not _is_finite_number(p):
            errors.append(f"p (price) must be a number, got {type(p).__name__}")
        elif p <= 0 or p > MAX_PRICE:
            errors.append(f"p (price) out of range: {_describe(p)}")

    if "n" in obj:
        n = obj["n"]
        if not isinstance(n, int) or isinstance(n, bool):
            errors.append(f"n (source count) must be an integer, got {type(n).__name__}")
        elif n < MIN_SOURCES or n > MAX_SOURCES:
            errors.append(f"n (source count) out of range: {_describe(n)}")

    if "d" in obj:
        d = obj["d"]
        if not _is_finite_number(d):
            errors.append(f"d (dispersion) must be a number, got {type(d).__name__}")
        elif d < 0 or d > 1:
            errors.append(f"d (dispersion) out of range: {_describe(d)}")

    if "h" in obj:
        h = obj["h"]
        if not isinstance(h, str):
            errors.append(f"h (hash) must be a string, got {type(h).__name__}")
        elif not is_hash_prefix(h):
            errors.append(
                f"h (hash) must be {HASH_PREFIX_LENGTH} lowercase hex chars, got {_describe(h)}"
            )

    return errors


def build_payload(index: IndexResult, bundle_hash_prefix: str) -> AnchorPayload:
    """Reduce an index and bundle fingerprint to the anchor payload.

    :param index: Aggregated index of the tick.
    :param bundle_hash_prefix: Published fingerprint of the bundle.
    :returns: AnchorPayload with rounded numeric fields.
    """
    return AnchorPayload(
        d=round(index.dispersion, DISPERSION_DECIMALS),
        h=bundle_hash_prefix,
        n=index.source_count,
        p=round(index.price, PRICE_DECIMALS),
    )


def encode_payload(
    index: IndexResult,
    bundle_hash_prefix: str,
    max_bytes: int = MAX_PAYLOAD_BYTES,
) -> bytes:
    """Encode the anchor payload for ledger submission.

    The payload is validated with the same rules the verifier applies, so a
    payload that could never verify is never submitted.

    :param index: Aggregated index of the tick.
    :param bundle_hash_prefix: Published fingerprint of the bundle.
    :param max_bytes: Size ceiling (default: 80).
    :returns: Canonical CBOR bytes.
    :raises ValueError: If the payload violates the schema (e.g., STALE index).
    :raises PayloadTooLargeError: If the encoding exceeds ``max_bytes``.
    """
    payload = build_payload(index, bundle_hash_prefix)
    violations = validate_payload(payload.to_dict())
    if violations:
        raise ValueError(f"Invalid anchor payload: {'; '.join(violations)}")

    data = cbor2.dumps(payload.to_dict(), canonical=True)
    if len(data) > max_bytes:
        raise PayloadTooLargeError(len(data), max_bytes)
    return data


def decode_payload(data: bytes) -> DecodeResult:
    """Decode and validate an anchor payload.

    Never raises on malformed input; failures come back as violations.

    :param data: Raw payload bytes from the ledger.
    :returns: DecodeResult.
    """
    try:
        obj = cbor2.loads(data)
    except (cbor2.CBORDecodeError, ValueError, TypeError, EOFError) as e:
        return DecodeResult.fail([f"Failed to decode CBOR: {e}"])

    violations = validate_payload(obj)
    if violations:
        return DecodeResult.fail(violations, raw=obj)

    return DecodeResult.ok(
        AnchorPayload(d=float(obj["d"]), h=obj["h"], n=obj["n"], p=float(obj["p"])),
        raw=obj,
    )
