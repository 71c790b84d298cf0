"""Engine configuration loaded from TOML with built-in defaults.

File values are written in human units (USD, whole tokens, days, seconds) and
converted to the WAD-scaled integers used by the engine when the
:class:`EngineConfig` is built.
"""

from __future__ import annotations

import copy
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, cast

from .core.constants import SECONDS_PER_DAY
from .core.fixed_point import to_wad
from .core.models import AssetKind, Tier, TierSpec

logger = logging.getLogger(__name__)


DEFAULTS: dict[str, Any] = {
    "tiers": {
        "global_min_usd": 1_000,
        "min_core_amount": 10,
        "min_btc_amount": "0.001",
        "size_step_bps": 100,
        "size_max_magnitude": 3,
        "bands": [
            {"tier": "BRONZE", "usd_min": 1_000, "usd_max": 10_000, "optimal_ratio": 5_000, "max_bonus_bps": 1_000},
            {"tier": "SILVER", "usd_min": 10_000, "usd_max": 100_000, "optimal_ratio": 10_000, "max_bonus_bps": 2_500},
            {"tier": "GOLD", "usd_min": 100_000, "usd_max": 1_000_000, "optimal_ratio": 25_000, "max_bonus_bps": 4_000},
            {"tier": "SATOSHI", "usd_min": 1_000_000, "usd_max": None, "optimal_ratio": 50_000, "max_bonus_bps": 5_000},
        ],
    },
    "allocation": {"risk_ceiling": 60.0},
    "rebalance": {
        "threshold_bps": 500,
        "min_interval_seconds": 3_600,
        "max_failures": 3,
        "failure_window_seconds": 86_400,
        "failure_cooloff_seconds": 3_600,
        "retry_backoff_seconds": 300,
        "max_slippage_bps": 100,
        "keeper_reward_bps": 1,
        "swap_deadline_seconds": 600,
        "auto_rebalance": True,
    },
    "liquidity": {
        "instant_fee_bps": 30,
        "lp_fee_share_bps": 5_000,
        "max_single_withdrawal_ratio_bps": 2_000,
        "per_withdrawal_cap": {"CORE": 250_000, "BTC": 5},
        "reserve_ratio_bps": {"CORE": 1_000, "BTC": 1_000},
        "unbonding_period_days": {"CORE": 7, "BTC": 1},
    },
}


@dataclass(frozen=True)
class TierConfig:
    specs: tuple[TierSpec, ...]
    global_min_usd: int
    min_core_amount: int
    min_btc_amount: int
    size_step_bps: int = 100
    size_max_magnitude: int = 3


@dataclass(frozen=True)
class RebalanceConfig:
    threshold_bps: int = 500
    min_interval: float = 3_600.0
    max_failures: int = 3
    failure_window: float = 86_400.0
    failure_cooloff: float = 3_600.0
    retry_backoff: float = 300.0
    max_slippage_bps: int = 100
    keeper_reward_bps: int = 1
    swap_deadline: float = 600.0
    auto_rebalance: bool = True


@dataclass(frozen=True)
class LiquidityConfig:
    instant_fee_bps: int
    lp_fee_share_bps: int
    max_single_withdrawal_ratio_bps: int
    per_withdrawal_cap: Mapping[AssetKind, int]
    reserve_ratio_bps: Mapping[AssetKind, int]
    unbonding_period: Mapping[AssetKind, float]


@dataclass(frozen=True)
class EngineConfig:
    tiers: TierConfig
    liquidity: LiquidityConfig
    rebalance: RebalanceConfig = field(default_factory=RebalanceConfig)
    risk_ceiling: float = 60.0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "EngineConfig":
        tiers_raw = raw["tiers"]
        specs = tuple(
            TierSpec(
                tier=Tier[str(band["tier"]).upper()],
                optimal_ratio=int(band["optimal_ratio"]),
                usd_min=to_wad(band["usd_min"]),
                usd_max=to_wad(band["usd_max"]) if band.get("usd_max") is not None else None,
                max_bonus_bps=int(band["max_bonus_bps"]),
            )
            for band in tiers_raw["bands"]
        )
        tiers = TierConfig(
            specs=specs,
            global_min_usd=to_wad(tiers_raw["global_min_usd"]),
            min_core_amount=to_wad(tiers_raw["min_core_amount"]),
            min_btc_amount=to_wad(tiers_raw["min_btc_amount"]),
            size_step_bps=int(tiers_raw.get("size_step_bps", 100)),
            size_max_magnitude=int(tiers_raw.get("size_max_magnitude", 3)),
        )

        rb = raw["rebalance"]
        rebalance = RebalanceConfig(
            threshold_bps=int(rb["threshold_bps"]),
            min_interval=float(rb["min_interval_seconds"]),
            max_failures=int(rb["max_failures"]),
            failure_window=float(rb["failure_window_seconds"]),
            failure_cooloff=float(rb["failure_cooloff_seconds"]),
            retry_backoff=float(rb["retry_backoff_seconds"]),
            max_slippage_bps=int(rb["max_slippage_bps"]),
            keeper_reward_bps=int(rb["keeper_reward_bps"]),
            swap_deadline=float(rb["swap_deadline_seconds"]),
            auto_rebalance=bool(rb["auto_rebalance"]),
        )

        lq = raw["liquidity"]
        liquidity = LiquidityConfig(
            instant_fee_bps=int(lq["instant_fee_bps"]),
            lp_fee_share_bps=int(lq["lp_fee_share_bps"]),
            max_single_withdrawal_ratio_bps=int(lq["max_single_withdrawal_ratio_bps"]),
            per_withdrawal_cap=_per_asset(lq["per_withdrawal_cap"], to_wad),
            reserve_ratio_bps=_per_asset(lq["reserve_ratio_bps"], int),
            unbonding_period=_per_asset(
                lq["unbonding_period_days"], lambda v: float(v) * SECONDS_PER_DAY
            ),
        )

        return cls(
            tiers=tiers,
            liquidity=liquidity,
            rebalance=rebalance,
            risk_ceiling=float(raw["allocation"]["risk_ceiling"]),
        )


def _per_asset(raw: Mapping[str, Any], convert: Any) -> dict[AssetKind, Any]:
    missing = {a.value for a in AssetKind}.difference(k.upper() for k in raw)
    if missing:
        raise ValueError(f"per-asset setting missing entries for: {sorted(missing)}")
    return {AssetKind(k.upper()): convert(v) for k, v in raw.items()}


def merge_config(overrides: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Merge ``overrides`` over :data:`DEFAULTS` one section deep."""

    merged = copy.deepcopy(DEFAULTS)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            cast(dict, merged[key]).update(value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load configuration from a TOML file and merge with defaults.

    Parameters
    ----------
    path:
        Optional path to a configuration file. When ``None`` or missing, the
        built-in defaults are used.
    """

    cfg_path = Path(path) if path else None
    file_cfg: dict[str, Any] = {}
    if cfg_path and cfg_path.is_file():
        with open(cfg_path, "rb") as f:
            file_cfg = tomllib.load(f)
    elif cfg_path:
        logger.warning("Config file not found at %s. Using defaults.", cfg_path)
    return EngineConfig.from_mapping(merge_config(file_cfg))


def default_config() -> EngineConfig:
    return EngineConfig.from_mapping(DEFAULTS)


__all__ = [
    "DEFAULTS",
    "TierConfig",
    "RebalanceConfig",
    "LiquidityConfig",
    "EngineConfig",
    "merge_config",
    "load_config",
    "default_config",
]
