"""Unit tests for the CLI helpers."""

import json

import pytest

from spot_oracle import main as cli


class TestParseApiKeys:
    """Test API key parsing."""

    def test_cli_format(self) -> None:
        """provider=key pairs are parsed, provider names lower-cased."""
        assert cli.parse_api_keys("CoinGecko=demo:abc, coinmarketcap=xyz") == {
            "coingecko": "demo:abc",
            "coinmarketcap": "xyz",
        }

    def test_empty(self) -> None:
        """Missing input yields no keys."""
        assert cli.parse_api_keys(None) == {}
        assert cli.parse_api_keys("") == {}

    def test_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """API_KEY_<PROVIDER> variables are collected."""
        monkeypatch.setenv("API_KEY_COINMARKETCAP", "k1,k2")
        monkeypatch.setenv("API_KEY_EMPTY", "")
        keys = cli.parse_env_api_keys()
        assert keys["coinmarketcap"] == "k1,k2"
        assert "empty" not in keys


class TestCommands:
    """Test subcommands that need no network."""

    def test_latest_empty(self, tmp_path, capsys) -> None:
        """latest exits non-zero when nothing was published."""
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--store-dir", str(tmp_path), "latest"])
        assert exc_info.value.code == 1
        assert "No bundle published yet" in capsys.readouterr().out

    def test_latest(self, tmp_path, capsys) -> None:
        """latest prints the pointer as JSON."""
        pointer = {
            "hash_prefix": "0123456789abcdef",
            "hash": "0123456789abcdef" * 4,
            "tx_id": None,
            "updated_at": "2024-05-01T12:00:00.000Z",
        }
        (tmp_path / "latest.json").write_text(json.dumps(pointer), encoding="utf-8")

        cli.main(["--store-dir", str(tmp_path), "latest"])
        assert json.loads(capsys.readouterr().out) == pointer

    def test_verify_malformed_txid(self, tmp_path, capsys) -> None:
        """verify reports ERROR and exits 1 for malformed ids, without I/O."""
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--store-dir", str(tmp_path), "verify", "nothex", "--json"])
        assert exc_info.value.code == 1
        report = json.loads(capsys.readouterr().out)
        assert report["status"] == "ERROR"

    def test_unknown_provider(self, tmp_path) -> None:
        """Unknown providers are a usage error."""
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--providers", "nope", "--store-dir", str(tmp_path), "latest"])
        assert exc_info.value.code == 2

    def test_env_defaults(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment defaults flow into the configuration."""
        monkeypatch.setenv("ASSET", "kas")
        monkeypatch.setenv("MIN_VALID_SOURCES", "1")
        monkeypatch.setenv("DISPLAY_ASSETS", "btc,eth")
        monkeypatch.setenv("STORE_DIR", str(tmp_path))
        captured = []
        build_config = cli.build_config
        monkeypatch.setattr(
            cli, "build_config", lambda args: captured.append(build_config(args)) or captured[-1]
        )

        with pytest.raises(SystemExit):
            cli.main(["latest"])

        config = captured[0]
        assert config.asset == "KAS"
        assert config.min_valid_sources == 1
        assert config.display_assets == ["BTC", "ETH"]
        assert config.store_dir == str(tmp_path)
