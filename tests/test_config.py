"""Tests for trade_assistant/config.py."""

from pathlib import Path

import pytest

from trade_assistant.config import AppConfig, ExchangeConfig, _deep_merge, load_config

REPO_DEFAULT = Path(__file__).resolve().parent.parent / "config" / "default.yaml"


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("BINANCE_NETWORK", "TRADE_ASSISTANT_DB", "GEMINI_MODEL"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_repo_default_yaml_matches_models(self) -> None:
        config = load_config(default_path=REPO_DEFAULT)
        assert config == AppConfig()

    def test_missing_files_use_model_defaults(self, tmp_path: Path) -> None:
        config = load_config(default_path=tmp_path / "absent.yaml")
        assert config.exchange.network == "testnet"
        assert config.sync.auto_sync_fallback_symbols == ["BTCUSDT", "ETHUSDT", "BNBUSDT"]
        assert config.risk.default_max_daily_loss == 100.0

    def test_base_url_follows_network(self) -> None:
        assert ExchangeConfig().base_url == "https://testnet.binance.vision"
        assert ExchangeConfig(network="mainnet").base_url == "https://api.binance.com"


class TestMerge:
    def test_deep_merge_keeps_siblings(self) -> None:
        merged = _deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}})
        assert merged == {"a": {"x": 1, "y": 3}, "b": 1}

    def test_override_file_merged_over_default(self, tmp_path: Path) -> None:
        (tmp_path / "default.yaml").write_text(
            "exchange:\n  network: testnet\n  max_retries: 5\n", encoding="utf-8"
        )
        local = tmp_path / "local.yaml"
        local.write_text("exchange:\n  network: mainnet\n", encoding="utf-8")

        config = load_config(local)

        assert config.exchange.network == "mainnet"
        assert config.exchange.max_retries == 5

    def test_environment_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BINANCE_NETWORK", "mainnet")
        monkeypatch.setenv("TRADE_ASSISTANT_DB", "/tmp/journal.db")
        monkeypatch.setenv("GEMINI_MODEL", "gemini-2.0-flash")

        config = load_config(default_path=REPO_DEFAULT)

        assert config.exchange.network == "mainnet"
        assert config.database.path == "/tmp/journal.db"
        assert config.ai.model == "gemini-2.0-flash"
