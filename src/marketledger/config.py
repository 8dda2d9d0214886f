"""Ledger configuration: accounts, listing fee, fee sweep policy, paths.

Values come from ``config/market.json`` and may be overridden by
environment variables. A ``.env`` file next to the config directory is
loaded first (via python-dotenv), without replacing variables that are
already set in the process environment.

Environment overrides:
    MARKET_ADMIN        administrator account
    MARKET_ESCROW       the ledger's own escrow account
    MARKET_LISTING_FEE  initial listing fee (int, smallest unit)
    MARKET_FEE_SWEEP    "deferred", "held" or "immediate"
    MARKET_PAYMENT_SOURCE  "attached" or "wallet"
    MARKET_DATA_DIR     directory for state.json and events.jsonl
    MARKET_LOG_LEVEL    DEBUG / INFO / WARNING / ERROR
    MARKET_LOG_JSON     "1" / "true" for JSON log lines
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from marketledger.models.market import FeeSweep, PaymentSource

CONFIG_FILENAME = "market.json"

# 0.0025 of a unit with 18 decimals
DEFAULT_LISTING_FEE = 2_500_000_000_000_000

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class MarketConfig:
    """Immutable configuration for one ledger instance."""
    admin: str
    escrow: str
    listing_fee: int = DEFAULT_LISTING_FEE
    fee_sweep: FeeSweep = FeeSweep.DEFERRED
    payment_source: PaymentSource = PaymentSource.ATTACHED
    data_dir: Optional[Path] = None
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self) -> None:
        if not self.admin or not self.escrow:
            raise ValueError("Both admin and escrow accounts must be configured")
        if self.admin == self.escrow:
            raise ValueError("Administrator and escrow accounts must differ")
        if isinstance(self.listing_fee, bool) or not isinstance(self.listing_fee, int):
            raise TypeError("listing_fee must be an int")
        if self.listing_fee < 0:
            raise ValueError(f"listing_fee must be non-negative, got {self.listing_fee}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base_dir: Optional[Path] = None) -> MarketConfig:
        data_dir = data.get("data_dir")
        path: Optional[Path] = None
        if data_dir:
            path = Path(data_dir)
            if not path.is_absolute() and base_dir is not None:
                path = base_dir / path
        return cls(
            admin=data["admin"],
            escrow=data["escrow"],
            listing_fee=int(data.get("listing_fee", DEFAULT_LISTING_FEE)),
            fee_sweep=FeeSweep(data.get("fee_sweep", FeeSweep.DEFERRED.value)),
            payment_source=PaymentSource(
                data.get("payment_source", PaymentSource.ATTACHED.value)
            ),
            data_dir=path,
            log_level=str(data.get("log_level", "INFO")).upper(),
            log_json=_as_bool(data.get("log_json", False)),
        )

    @classmethod
    def from_config_dir(
        cls,
        config_dir: Path,
        environ: Optional[Mapping[str, str]] = None,
    ) -> MarketConfig:
        """Load ``market.json`` from ``config_dir`` and apply env overrides.

        ``environ`` defaults to ``os.environ`` after loading ``.env``
        from the config directory's parent.
        """
        if environ is None:
            load_dotenv(config_dir.parent / ".env", override=False)
            environ = os.environ
        config_path = config_dir / CONFIG_FILENAME
        data: dict[str, Any] = {}
        if config_path.exists():
            data = json.loads(config_path.read_text(encoding="utf-8"))
        return cls.from_dict(_merge_env(data, environ), base_dir=config_dir.parent)

    def with_overrides(self, **changes: Any) -> MarketConfig:
        return replace(self, **changes)


def _merge_env(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    merged = dict(data)
    env_map = {
        "MARKET_ADMIN": "admin",
        "MARKET_ESCROW": "escrow",
        "MARKET_LISTING_FEE": "listing_fee",
        "MARKET_FEE_SWEEP": "fee_sweep",
        "MARKET_PAYMENT_SOURCE": "payment_source",
        "MARKET_DATA_DIR": "data_dir",
        "MARKET_LOG_LEVEL": "log_level",
    }
    for env_key, field_name in env_map.items():
        value = environ.get(env_key)
        if value:
            merged[field_name] = value
    log_json = environ.get("MARKET_LOG_JSON")
    if log_json:
        merged["log_json"] = _as_bool(log_json)
    missing = [k for k in ("admin", "escrow") if not merged.get(k)]
    if missing:
        raise ValueError(f"Missing required configuration: {', '.join(missing)}")
    return merged


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)
