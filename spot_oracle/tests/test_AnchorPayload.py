"""Unit tests for AnchorPayload."""

import cbor2
import pytest

from spot_oracle.src.AnchorPayload import (
    MAX_PAYLOAD_BYTES,
    PayloadTooLargeError,
    build_payload,
    decode_payload,
    encode_payload,
    validate_payload,
)
from spot_oracle.src.Evidence import IndexResult, IndexStatus

PREFIX = "0123456789abcdef"


def make_index(
    price: float = 97505.123,
    count: int = 2,
    dispersion: float = 0.000102564,
    status: IndexStatus = IndexStatus.OK,
) -> IndexResult:
    return IndexResult(
        asset="BTC",
        quote="USD",
        price=price,
        sources_used=tuple(f"p{i}" for i in range(count)),
        source_count=count,
        dispersion=dispersion if count > 1 else 0.0,
        observed_at=1,
        status=status,
    )


def raw_payload(**overrides) -> bytes:
    payload = {"d": 0.0001, "h": PREFIX, "n": 2, "p": 97505.12}
    payload.update(overrides)
    return cbor2.dumps({k: v for k, v in payload.items() if v is not None})


class TestEncodePayload:
    """Test payload encoding."""

    def test_rounding(self) -> None:
        """Price is rounded to 2 decimals, dispersion to 4."""
        payload = build_payload(make_index(), PREFIX)
        assert payload.p == 97505.12
        assert payload.d == 0.0001
        assert payload.n == 2
        assert payload.h == PREFIX

    def test_within_size_limit(self) -> None:
        """Encoded payloads fit the ledger ceiling."""
        data = encode_payload(make_index(price=9_999_999.99, count=10, dispersion=0.9999), PREFIX)
        assert len(data) <= MAX_PAYLOAD_BYTES

    def test_keys_sorted(self) -> None:
        """The CBOR map keys come out in alphabetical order."""
        decoded = cbor2.loads(encode_payload(make_index(), PREFIX))
        assert list(decoded) == ["d", "h", "n", "p"]

    def test_deterministic(self) -> None:
        """Encoding the same index twice yields the same bytes."""
        assert encode_payload(make_index(), PREFIX) == encode_payload(make_index(), PREFIX)

    def test_size_limit_enforced(self) -> None:
        """Exceeding max_bytes raises PayloadTooLargeError."""
        with pytest.raises(PayloadTooLargeError) as exc_info:
            encode_payload(make_index(), PREFIX, max_bytes=10)
        assert exc_info.value.limit == 10
        assert exc_info.value.size > 10

    def test_stale_index_not_encodable(self) -> None:
        """A STALE index has no sources and cannot be anchored."""
        stale = IndexResult("BTC", "USD", 0.0, (), 0, 0.0, 0, IndexStatus.STALE)
        with pytest.raises(ValueError, match="Invalid anchor payload"):
            encode_payload(stale, PREFIX)

    def test_invalid_prefix_not_encodable(self) -> None:
        """A malformed fingerprint is rejected before encoding."""
        with pytest.raises(ValueError, match="h \\(hash\\)"):
            encode_payload(make_index(), "ABC")


class TestDecodePayload:
    """Test strict payload decoding."""

    def test_round_trip(self) -> None:
        """Decoding an encoded payload restores the rounded values."""
        result = decode_payload(encode_payload(make_index(), PREFIX))

        assert result.success
        assert result.violations == ()
        assert result.payload == build_payload(make_index(), PREFIX)

    def test_source_count_out_of_range(self) -> None:
        """n=15 is reported as out of range."""
        result = decode_payload(raw_payload(n=15))

        assert not result.success
        assert result.payload is None
        assert any("n (source count) out of range" in v for v in result.violations)

    def test_truncated_cbor(self) -> None:
        """Truncated CBOR is reported, not raised."""
        result = decode_payload(b"\xa4\x61d")
        assert not result.success
        assert result.violations[0].startswith("Failed to decode CBOR")

    def test_empty_bytes(self) -> None:
        """Empty input is a decode failure."""
        assert not decode_payload(b"").success

    def test_not_a_map(self) -> None:
        """A CBOR array is not a payload."""
        result = decode_payload(cbor2.dumps([1, 2, 3]))
        assert result.violations == ("Payload is not a map, got list",)

    def test_missing_and_extra_keys(self) -> None:
        """Missing and unexpected keys are both listed."""
        result = decode_payload(raw_payload(d=None, x=1))
        assert "Missing keys: d" in result.violations
        assert "Unexpected keys: 'x'" in result.violations

    @pytest.mark.parametrize("field", ["p", "d", "n"])
    def test_bignum_reported(self, field: str) -> None:
        """Integers too large for a float are out of range, not an exception."""
        result = decode_payload(raw_payload(**{field: 2**1100}))

        assert not result.success
        assert any(
            v.startswith(f"{field} (") and "<1101-bit integer>" in v
            for v in result.violations
        )

    def test_bignum_key_reported(self) -> None:
        """Huge integer keys are listed without printing every digit."""
        data = cbor2.dumps({"d": 0.0, "h": PREFIX, "n": 2, "p": 1.0, 2**20000: 1})
        result = decode_payload(data)
        assert "Unexpected keys: <20001-bit integer>" in result.violations

    def test_collects_all_violations(self) -> None:
        """Every violated field is reported."""
        result = decode_payload(raw_payload(p=-1, n=0, d=2.0, h="XYZ"))
        assert len(result.violations) == 4


class TestValidatePayload:
    """Test individual field rules."""

    @pytest.mark.parametrize("p", [0, -5, 10_000_000.01, "100", True])
    def test_invalid_price(self, p) -> None:
        """Prices must be numbers in (0, 10M]."""
        errors = validate_payload({"d": 0, "h": PREFIX, "n": 1, "p": p})
        assert len(errors) == 1
        assert errors[0].startswith("p (price)")

    def test_price_upper_bound_inclusive(self) -> None:
        """A price of exactly 10M is valid."""
        assert validate_payload({"d": 0, "h": PREFIX, "n": 1, "p": 10_000_000}) == []

    @pytest.mark.parametrize("n", [0, 11, 2.0, True])
    def test_invalid_source_count(self, n) -> None:
        """n must be an integer in [1, 10]."""
        errors = validate_payload({"d": 0, "h": PREFIX, "n": n, "p": 1})
        assert len(errors) == 1
        assert errors[0].startswith("n (source count)")

    @pytest.mark.parametrize("d", [-0.1, 1.5, None])
    def test_invalid_dispersion(self, d) -> None:
        """d must be a number in [0, 1]."""
        errors = validate_payload({"d": d, "h": PREFIX, "n": 1, "p": 1})
        assert len(errors) == 1
        assert errors[0].startswith("d (dispersion)")

    @pytest.mark.parametrize("h", ["0123456789ABCDEF", "0123", 12345, PREFIX + "00"])
    def test_invalid_hash(self, h) -> None:
        """h must be 16 lowercase hex chars."""
        errors = validate_payload({"d": 0, "h": h, "n": 1, "p": 1})
        assert len(errors) == 1
        assert errors[0].startswith("h (hash)")
