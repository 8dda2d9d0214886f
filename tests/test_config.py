"""Tests for configuration loading: market.json, env overrides, .env files."""

import json
from pathlib import Path

import pytest

from marketledger.config import DEFAULT_LISTING_FEE, MarketConfig
from marketledger.models.market import FeeSweep, PaymentSource

ENV_KEYS = [
    "MARKET_ADMIN", "MARKET_ESCROW", "MARKET_LISTING_FEE", "MARKET_FEE_SWEEP",
    "MARKET_PAYMENT_SOURCE", "MARKET_DATA_DIR", "MARKET_LOG_LEVEL",
    "MARKET_LOG_JSON",
]


def _write_config(tmp_path: Path, **values) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "market.json").write_text(json.dumps(values), encoding="utf-8")
    return config_dir


class TestMarketConfig:
    def test_defaults(self) -> None:
        config = MarketConfig(admin="admin", escrow="market")
        assert config.listing_fee == DEFAULT_LISTING_FEE == 2_500_000_000_000_000
        assert config.fee_sweep == FeeSweep.DEFERRED
        assert config.payment_source == PaymentSource.ATTACHED
        assert config.data_dir is None

    def test_admin_must_differ_from_escrow(self) -> None:
        with pytest.raises(ValueError, match="must differ"):
            MarketConfig(admin="same", escrow="same")

    def test_missing_account(self) -> None:
        with pytest.raises(ValueError):
            MarketConfig(admin="", escrow="market")

    def test_negative_fee(self) -> None:
        with pytest.raises(ValueError):
            MarketConfig(admin="admin", escrow="market", listing_fee=-1)

    def test_with_overrides(self) -> None:
        config = MarketConfig(admin="admin", escrow="market")
        changed = config.with_overrides(listing_fee=7)
        assert changed.listing_fee == 7
        assert config.listing_fee == DEFAULT_LISTING_FEE


class TestFromConfigDir:
    def test_reads_market_json(self, tmp_path: Path) -> None:
        config_dir = _write_config(
            tmp_path, admin="a", escrow="e", listing_fee=10,
            fee_sweep="immediate", data_dir="state", log_level="debug",
        )
        config = MarketConfig.from_config_dir(config_dir, environ={})
        assert config.admin == "a"
        assert config.listing_fee == 10
        assert config.fee_sweep == FeeSweep.IMMEDIATE
        assert config.data_dir == tmp_path / "state"
        assert config.log_level == "DEBUG"

    def test_env_overrides_file(self, tmp_path: Path) -> None:
        config_dir = _write_config(tmp_path, admin="a", escrow="e", listing_fee=10)
        config = MarketConfig.from_config_dir(config_dir, environ={
            "MARKET_ADMIN": "b",
            "MARKET_LISTING_FEE": "99",
            "MARKET_LOG_JSON": "true",
            "MARKET_ESCROW": "",
        })
        assert config.admin == "b"
        assert config.escrow == "e"
        assert config.listing_fee == 99
        assert config.log_json is True

    def test_missing_required(self, tmp_path: Path) -> None:
        config_dir = _write_config(tmp_path, admin="a")
        with pytest.raises(ValueError, match="Missing required configuration: escrow"):
            MarketConfig.from_config_dir(config_dir, environ={})

    def test_absolute_data_dir_kept(self, tmp_path: Path) -> None:
        target = tmp_path / "elsewhere"
        config_dir = _write_config(tmp_path, admin="a", escrow="e", data_dir=str(target))
        config = MarketConfig.from_config_dir(config_dir, environ={})
        assert config.data_dir == target

    def test_dotenv_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        for key in ENV_KEYS:
            # Record the key so values loaded from .env are undone afterwards
            monkeypatch.setenv(key, "placeholder")
            monkeypatch.delenv(key)
        config_dir = _write_config(tmp_path, escrow="e")
        (tmp_path / ".env").write_text(
            "MARKET_ADMIN=from-dotenv\nMARKET_FEE_SWEEP=immediate\n", encoding="utf-8",
        )
        config = MarketConfig.from_config_dir(config_dir)
        assert config.admin == "from-dotenv"
        assert config.fee_sweep == FeeSweep.IMMEDIATE

    def test_process_env_wins_over_dotenv(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        for key in ENV_KEYS:
            monkeypatch.setenv(key, "placeholder")
            monkeypatch.delenv(key)
        monkeypatch.setenv("MARKET_ADMIN", "from-process")
        config_dir = _write_config(tmp_path, escrow="e")
        (tmp_path / ".env").write_text("MARKET_ADMIN=from-dotenv\n", encoding="utf-8")
        config = MarketConfig.from_config_dir(config_dir)
        assert config.admin == "from-process"

    def test_payment_source_from_file_and_env(self, tmp_path: Path) -> None:
        config_dir = _write_config(
            tmp_path, admin="a", escrow="e", payment_source="wallet",
        )
        config = MarketConfig.from_config_dir(config_dir, environ={})
        assert config.payment_source == PaymentSource.WALLET
        config = MarketConfig.from_config_dir(config_dir, environ={
            "MARKET_PAYMENT_SOURCE": "attached",
        })
        assert config.payment_source == PaymentSource.ATTACHED

    def test_unknown_payment_source_rejected(self, tmp_path: Path) -> None:
        config_dir = _write_config(tmp_path, admin="a", escrow="e", payment_source="card")
        with pytest.raises(ValueError):
            MarketConfig.from_config_dir(config_dir, environ={})

    @pytest.mark.parametrize(("raw", "expected"), [
        ("false", False), ("0", False), ("no", False), ("", False),
        ("true", True), ("Yes", True), (False, False), (True, True),
    ])
    def test_log_json_in_file(self, tmp_path: Path, raw, expected: bool) -> None:
        config_dir = _write_config(tmp_path, admin="a", escrow="e", log_json=raw)
        config = MarketConfig.from_config_dir(config_dir, environ={})
        assert config.log_json is expected

    def test_env_log_json_false(self, tmp_path: Path) -> None:
        config_dir = _write_config(tmp_path, admin="a", escrow="e", log_json=True)
        config = MarketConfig.from_config_dir(config_dir, environ={"MARKET_LOG_JSON": "false"})
        assert config.log_json is False

    def test_shipped_config_loads(self) -> None:
        config_dir = Path(__file__).resolve().parent.parent / "config"
        config = MarketConfig.from_config_dir(config_dir, environ={})
        assert config.fee_sweep == FeeSweep.DEFERRED
        assert config.payment_source == PaymentSource.ATTACHED
        assert config.log_json is False
