from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pandas as pd

from .core.fixed_point import from_wad
from .core.models import AssetKind

if TYPE_CHECKING:
    from .engine import DualStakeEngine


def _ensure_outdir(outdir: str | Path) -> Path:
    p = Path(outdir)
    p.mkdir(parents=True, exist_ok=True)
    return p


def pool_status_frame(engine: "DualStakeEngine") -> pd.DataFrame:
    status = engine.get_pool_status().to_dict()
    stats = engine.controller.statistics()
    for key in ("total_runs", "successful_rebalances", "failed_rebalances"):
        status[key] = stats[key]
    for asset in AssetKind:
        key = asset.value.lower()
        status[f"pooled_{key}"] = from_wad(engine.pool.pooled(asset))
        status[f"staked_{key}"] = from_wad(engine.pool.staked(asset))
        status[f"queued_{key}"] = from_wad(engine.queue.queued_total(asset))
    return pd.DataFrame([status])


def engine_report(engine: "DualStakeEngine", outdir: str | Path) -> dict[str, pd.DataFrame]:
    """Write the engine's ledgers as CSV files.

    Parameters
    ----------
    engine:
        Engine whose state is exported.
    outdir:
        Directory receiving ``positions.csv``, ``validators.csv``,
        ``unbonding_queue.csv``, ``rebalance_history.csv``,
        ``reserve.csv`` and ``pool_status.csv``.

    Returns
    -------
    dict[str, pandas.DataFrame]
        The written frames keyed by file stem.
    """

    out = _ensure_outdir(outdir)
    queued = {a: engine.queue.queued_total(a) for a in AssetKind}
    frames = {
        "positions": engine.positions.to_dataframe(),
        "validators": engine.validators.to_dataframe(),
        "unbonding_queue": engine.queue.to_dataframe(),
        "rebalance_history": engine.controller.history_frame(),
        "reserve": engine.reserve.to_dataframe(queued),
        "pool_status": pool_status_frame(engine),
    }
    for name, frame in frames.items():
        frame.to_csv(out / f"{name}.csv", index=False)
    return frames


__all__ = ["engine_report", "pool_status_frame"]
