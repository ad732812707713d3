"""Unit tests for OracleConfig."""

import pytest

from spot_oracle.src.OracleConfig import OracleConfig


class TestOracleConfig:
    """Test normalization and derived settings."""

    def test_normalization(self) -> None:
        """Symbols are upper-cased, providers lower-cased, duplicates of the asset dropped."""
        config = OracleConfig(
            asset="kas", quote="usd", display_assets=["btc", "KAS"], providers=["CoinGecko"]
        )
        assert config.asset == "KAS"
        assert config.quote == "USD"
        assert config.display_assets == ["BTC"]
        assert config.providers == ["coingecko"]
        assert config.assets == ["KAS", "BTC"]

    def test_derived_settings(self) -> None:
        """Aggregation and collector settings come from the config."""
        config = OracleConfig(outlier_threshold_ratio=0.02, min_valid_sources=3,
                              interval_seconds=30, jitter_seconds=2)
        assert config.aggregation.outlier_threshold_ratio == 0.02
        assert config.aggregation.min_valid_sources == 3
        assert config.collector.to_dict() == {"interval": 30, "jitter": 2}


class TestValidate:
    """Test configuration validation."""

    def test_defaults_valid(self) -> None:
        """The default configuration has no warnings."""
        assert OracleConfig().validate() == []

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"interval_seconds": 0}, "interval_seconds"),
            ({"jitter_seconds": -1}, "jitter_seconds must not be negative"),
            ({"interval_seconds": 5, "jitter_seconds": 5}, "smaller than interval"),
            ({"fetch_timeout": 0}, "timeouts must be positive"),
            ({"providers": []}, "At least one provider"),
            ({"min_valid_sources": 0}, "min_valid_sources must be at least 1"),
            ({"outlier_threshold_ratio": 0}, "outlier_threshold_ratio must be positive"),
        ],
    )
    def test_hard_errors(self, kwargs: dict, message: str) -> None:
        """Unworkable configurations raise ValueError."""
        with pytest.raises(ValueError, match=message):
            OracleConfig(**kwargs).validate()

    def test_unreachable_quorum_warns(self) -> None:
        """A quorum larger than the provider count is reported."""
        warnings = OracleConfig(providers=["coingecko"], min_valid_sources=2).validate()
        assert len(warnings) == 1
        assert "OK index is unreachable" in warnings[0]

    def test_huge_threshold_warns(self) -> None:
        """A threshold of 100% or more is reported."""
        warnings = OracleConfig(outlier_threshold_ratio=1.5).validate()
        assert any("never rejects" in w for w in warnings)

    def test_slow_fetch_warns(self) -> None:
        """A fetch timeout longer than the interval is reported."""
        warnings = OracleConfig(interval_seconds=10, jitter_seconds=1, fetch_timeout=15).validate()
        assert any("fetch_timeout" in w for w in warnings)
