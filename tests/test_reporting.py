from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from dual_stake_lab import DualStakeEngine, engine_report
from dual_stake_lab.core import to_wad


def test_engine_report_writes_all_ledgers(engine: DualStakeEngine, registry, tmp_path: Path) -> None:
    registry.add_validator("v1", 800, risk_score=10.0)
    engine.register_validator("ops", "v1")
    alice = engine.deposit("alice", to_wad(5_000), to_wad(1))
    engine.deposit("bob", to_wad(5_000), to_wad(1))
    engine.request_withdrawal("alice", alice.shares // 2)
    engine.rebalance("keeper")

    frames = engine_report(engine, tmp_path / "out")

    expected = {
        "positions",
        "validators",
        "unbonding_queue",
        "rebalance_history",
        "reserve",
        "pool_status",
    }
    assert set(frames) == expected
    for name in expected:
        assert (tmp_path / "out" / f"{name}.csv").is_file()

    positions = pd.read_csv(tmp_path / "out" / "positions.csv")
    assert list(positions["owner"]) == ["alice", "bob"]
    assert positions.loc[1, "shares"] == pytest.approx(55_000.0)

    queue = pd.read_csv(tmp_path / "out" / "unbonding_queue.csv")
    assert set(queue["asset"]) == {"CORE", "BTC"}

    status = pd.read_csv(tmp_path / "out" / "pool_status.csv")
    assert status.loc[0, "tier"] == "GOLD"
    assert status.loc[0, "successful_rebalances"] == 1
    assert status.loc[0, "queued_btc"] == pytest.approx(0.5)
