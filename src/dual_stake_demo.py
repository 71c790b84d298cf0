from __future__ import annotations

import logging
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from dual_stake_lab import AssetKind, DualStakeEngine, Visualizer, engine_report, load_config
from dual_stake_lab.collaborators import (
    ConstantRateSwapRouter,
    InMemoryShareToken,
    InMemoryValidatorRegistry,
    RecordingCustodian,
    StaticPriceOracle,
)
from dual_stake_lab.core import from_wad, to_wad
from dual_stake_lab.core.constants import SECONDS_PER_DAY

logger = logging.getLogger(__name__)

OPERATOR = "operator"


class SimClock:
    """Manually advanced clock shared by the engine and the adapters."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def load_demo_settings(path: str | Path | None) -> dict[str, Any]:
    """Read the optional ``[demo]`` table of the engine config file."""

    settings: dict[str, Any] = {"core_price": 1.0, "btc_price": 50_000.0, "outdir": "", "show": False}
    if path and Path(path).is_file():
        with open(path, "rb") as f:
            settings.update(tomllib.load(f).get("demo", {}))
    return settings


def build_engine(cfg_file: str | None, settings: dict[str, Any], clock: SimClock) -> DualStakeEngine:
    oracle = StaticPriceOracle(
        {
            AssetKind.CORE: to_wad(settings["core_price"]),
            AssetKind.BTC: to_wad(settings["btc_price"]),
        },
        max_age=30 * SECONDS_PER_DAY,
        clock=clock,
    )
    registry = InMemoryValidatorRegistry()
    registry.add_validator("val-alpha", 900, uptime=0.999, commission_bps=500)
    registry.add_validator("val-beta", 700, uptime=0.99, commission_bps=1_000)
    registry.add_validator("val-gamma", 1_100, uptime=0.8, commission_bps=2_000, slashing_events=2)
    return DualStakeEngine(
        load_config(cfg_file),
        oracle=oracle,
        router=ConstantRateSwapRouter(oracle, fee_bps=10, clock=clock),
        registry=registry,
        share_token=InMemoryShareToken(),
        custodian=RecordingCustodian(),
        operators=[OPERATOR],
        clock=clock,
    )


def run_simulation(engine: DualStakeEngine, clock: SimClock) -> None:
    for address in ("val-alpha", "val-beta", "val-gamma"):
        engine.register_validator(OPERATOR, address)

    engine.deposit("alice", to_wad(5_000), to_wad(1))
    engine.deposit("bob", to_wad(200_000), to_wad(10))
    engine.allocate_stake(OPERATOR)

    # a CORE-only deposit drifts the pool above its target ratio
    clock.advance(2 * 3_600)
    engine.deposit("carol", to_wad(150_000), 0)
    if engine.needs_rebalance():
        engine.rebalance("keeper")

    engine.provide_liquidity("lp-1", AssetKind.CORE, to_wad(20_000))
    engine.registry.accrue_rewards("val-alpha", to_wad(500))  # type: ignore[attr-defined]
    engine.compound()

    alice = engine.positions.get("alice")
    if alice is not None:
        engine.request_withdrawal("alice", alice.shares)
    bob = engine.positions.get("bob")
    if bob is not None:
        engine.request_withdrawal("bob", bob.shares // 2)

    clock.advance(8 * SECONDS_PER_DAY)
    released = engine.process_ready_requests()
    logger.info("Released %s queued withdrawals", len(released))
    engine.claim_lp_rewards("lp-1")


def main() -> None:
    """Run the demo using configuration from file or environment variables."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    cfg_file = os.getenv("DUAL_STAKE_CONFIG") or (sys.argv[1] if len(sys.argv) > 1 else None)
    settings = load_demo_settings(cfg_file)
    if outdir_env := os.getenv("DUAL_STAKE_OUTDIR"):
        settings["outdir"] = outdir_env

    clock = SimClock()
    engine = build_engine(cfg_file, settings, clock)
    run_simulation(engine, clock)

    status = engine.get_pool_status()
    print(f"Pool tier: {status.tier.name}")
    ratio = f"{from_wad(status.ratio):,.1f}" if status.ratio is not None else "n/a"
    print(f"CORE:BTC ratio {ratio} (target {from_wad(status.target_ratio):,.0f})")
    if status.nav is not None:
        print(f"NAV per share: {from_wad(status.nav):.6f} USD")
    print(engine.positions.to_dataframe().to_string(index=False))
    print(engine.validators.to_dataframe().to_string(index=False))

    outdir = Path(settings["outdir"]) if settings.get("outdir") else None
    show = bool(settings.get("show", False)) if not outdir else False
    frames = engine_report(engine, outdir) if outdir else None
    history = frames["rebalance_history"] if frames else engine.controller.history_frame()
    Visualizer.line_ratio_history(
        history,
        save_path=str(outdir / "ratio_history.png") if outdir else None,
        show=show,
    )
    Visualizer.bar_validator_weights(
        engine.validators.to_dataframe(),
        save_path=str(outdir / "validator_weights.png") if outdir else None,
        show=show,
    )


if __name__ == "__main__":
    main()
