"""Unit tests for Canonicalizer."""

import math

import pytest

from spot_oracle.src.Canonicalizer import CanonicalizationError, canonicalize
from spot_oracle.src.Evidence import IndexStatus, ProviderObservation


class TestCanonicalize:
    """Test canonical JSON output."""

    def test_keys_sorted_recursively(self) -> None:
        """Keys are sorted at every nesting level."""
        assert canonicalize({"b": {"z": 1, "a": 2}, "a": 0}) == b'{"a":0,"b":{"a":2,"z":1}}'

    def test_key_order_independent(self) -> None:
        """Insertion order of keys does not affect the output."""
        first = {"tick_id": "t", "network": "n", "index": {"price": 1.5, "asset": "BTC"}}
        second = {"index": {"asset": "BTC", "price": 1.5}, "network": "n", "tick_id": "t"}
        assert canonicalize(first) == canonicalize(second)

    def test_array_order_preserved(self) -> None:
        """Arrays keep their order."""
        assert canonicalize([3, 1, 2]) == b"[3,1,2]"

    def test_no_whitespace(self) -> None:
        """Output contains no insignificant whitespace."""
        assert b" " not in canonicalize({"a": [1, 2], "b": {"c": None}})

    def test_integral_floats_as_integers(self) -> None:
        """97500.0 is written as 97500."""
        assert canonicalize({"p": 97500.0}) == b'{"p":97500}'

    def test_fractional_floats_shortest(self) -> None:
        """Fractional floats use the shortest round-trip representation."""
        assert canonicalize(0.1) == b"0.1"
        assert canonicalize(97505.5) == b"97505.5"

    def test_large_integral_float_fixed_decimal(self) -> None:
        """Integral floats beyond 2**53 keep their shortest digits without exponent."""
        assert canonicalize(2.0**60) == b"1152921504606847000"
        assert canonicalize(1e16) == b"10000000000000000"

    @pytest.mark.parametrize(
        "value, expected",
        [
            (4.1e-05, b"0.000041"),
            (4.1024799491292484e-05, b"0.000041024799491292484"),
            (-1.5e-07, b"-0.00000015"),
            (1e-4, b"0.0001"),
        ],
    )
    def test_small_floats_fixed_decimal(self, value: float, expected: bytes) -> None:
        """Small floats are never written in exponent form."""
        assert canonicalize(value) == expected

    def test_dispersion_of_near_equal_prices(self) -> None:
        """A tiny dispersion inside an object is written in fixed notation."""
        out = canonicalize({"dispersion": (97504.0 - 97500.0) / 97502.0})
        assert b"e-" not in out
        assert out.startswith(b'{"dispersion":0.0000410')

    def test_strings_escaped(self) -> None:
        """Quotes and control characters in strings are JSON-escaped."""
        assert canonicalize({"e": 'say "hi"\n'}) == b'{"e":"say \\"hi\\"\\n"}'

    def test_non_ascii_verbatim(self) -> None:
        """Non-ASCII characters are emitted as UTF-8, not escaped."""
        assert canonicalize({"e": "café"}) == '{"e":"café"}'.encode("utf-8")

    def test_enums_by_value(self) -> None:
        """Enums are serialized by value."""
        assert canonicalize({"s": IndexStatus.OK}) == b'{"s":"OK"}'

    def test_objects_with_to_dict(self) -> None:
        """Objects exposing to_dict() are serialized through it."""
        obs = ProviderObservation.success("a", "btc", 100.0, 5)
        assert canonicalize(obs) == (
            b'{"asset":"BTC","error":null,"observed_at":5,"ok":true,'
            b'"price":100,"provider":"a"}'
        )

    def test_tuples_as_arrays(self) -> None:
        """Tuples serialize like lists."""
        assert canonicalize(("a", "b")) == canonicalize(["a", "b"])


class TestCanonicalizeErrors:
    """Test rejected inputs."""

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_rejected(self, value: float) -> None:
        """NaN and infinities cannot be canonicalized."""
        with pytest.raises(CanonicalizationError, match="non-finite"):
            canonicalize({"p": value})

    def test_non_string_keys_rejected(self) -> None:
        """Object keys must be strings."""
        with pytest.raises(CanonicalizationError, match="keys must be strings"):
            canonicalize({1: "a"})

    def test_unsupported_type_rejected(self) -> None:
        """Arbitrary objects are rejected with their path."""
        with pytest.raises(CanonicalizationError, match=r"\$\.a\[0\]"):
            canonicalize({"a": [object()]})
