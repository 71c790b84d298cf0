from __future__ import annotations

import pytest

from dual_stake_lab.config import default_config
from dual_stake_lab.core import AssetKind, to_wad
from dual_stake_lab.errors import (
    AlreadyProcessed,
    InsufficientLiquidity,
    InsufficientShares,
    NotYetUnlocked,
    UnknownRequest,
)
from dual_stake_lab.liquidity import LiquidityReserve
from dual_stake_lab.unbonding import UnbondingQueue

CORE = AssetKind.CORE
BTC = AssetKind.BTC
DAY = 86_400.0


@pytest.fixture
def reserve() -> LiquidityReserve:
    reserve = LiquidityReserve(default_config().liquidity)
    reserve.credit(CORE, to_wad(100_000))
    reserve.credit(BTC, to_wad(2))
    return reserve


def test_instant_withdrawal_limited_to_single_ratio(reserve: LiquidityReserve) -> None:
    assert reserve.can_withdraw_instantly(to_wad(20_000), CORE)
    assert not reserve.can_withdraw_instantly(to_wad(20_001), CORE)
    assert reserve.can_withdraw_instantly(to_wad("0.4"), BTC)
    assert not reserve.can_withdraw_instantly(to_wad("0.41"), BTC)


def test_instant_withdrawal_limited_by_per_request_cap(reserve: LiquidityReserve) -> None:
    reserve.credit(CORE, to_wad(2_000_000))
    assert reserve.can_withdraw_instantly(to_wad(250_000), CORE)
    assert not reserve.can_withdraw_instantly(to_wad(250_001), CORE)


def test_instant_fee_split(reserve: LiquidityReserve) -> None:
    fee, provider_cut = reserve.instant_fee(to_wad(1_000))
    assert fee == to_wad(3)
    assert provider_cut == to_wad("1.5")


def test_fees_distributed_pro_rata_to_providers(reserve: LiquidityReserve) -> None:
    assert reserve.distribute_fee(CORE, to_wad(9)) == 0

    reserve.add_liquidity("lp-a", CORE, to_wad(3_000))
    reserve.add_liquidity("lp-b", CORE, to_wad(1_000))
    assert reserve.distribute_fee(CORE, to_wad(8)) == to_wad(8)

    assert reserve.pending_rewards("lp-a") == {CORE: to_wad(6)}
    assert reserve.pending_rewards("lp-b") == {CORE: to_wad(2)}
    assert reserve.lp_outstanding(CORE) == to_wad(4_008)


def test_provider_round_trip(reserve: LiquidityReserve) -> None:
    reserve.add_liquidity("lp", BTC, to_wad(1))
    assert reserve.available[BTC] == to_wad(3)
    with pytest.raises(InsufficientShares):
        reserve.remove_liquidity("lp", BTC, to_wad(2))
    assert reserve.remove_liquidity("lp", BTC, to_wad(1)) == to_wad(1)
    assert reserve.lp_liquidity(BTC) == 0


def test_debit_refuses_overdraw(reserve: LiquidityReserve) -> None:
    with pytest.raises(InsufficientLiquidity):
        reserve.debit(BTC, to_wad(3))


def test_reserve_target_and_health(reserve: LiquidityReserve) -> None:
    # 10% of available plus queued
    assert reserve.target_reserve(CORE, to_wad(100_000)) == to_wad(20_000)
    assert reserve.health(CORE, to_wad(100_000)) == pytest.approx(5.0)

    reserve.set_reserve_ratio(CORE, 0)
    assert reserve.health(CORE, 0) == 1.0
    with pytest.raises(ValueError):
        reserve.set_reserve_ratio(CORE, 10_001)


def test_reserve_frame(reserve: LiquidityReserve) -> None:
    frame = reserve.to_dataframe({CORE: to_wad(10)})
    assert list(frame["asset"]) == ["CORE", "BTC"]
    assert frame.loc[0, "queued"] == pytest.approx(10.0)


def test_queue_enforces_unlock_time(clock) -> None:
    queue = UnbondingQueue()
    request = queue.enqueue("alice", to_wad(5), CORE, clock(), 7 * DAY)

    assert request.unlock_time == clock() + 7 * DAY
    with pytest.raises(NotYetUnlocked):
        queue.check_releasable(request.request_id, clock())
    assert queue.ready(clock()) == []

    clock.advance(7 * DAY)
    assert queue.check_releasable(request.request_id, clock()) is request
    assert queue.ready(clock()) == [request]

    queue.mark_processed(request.request_id)
    with pytest.raises(AlreadyProcessed):
        queue.check_releasable(request.request_id, clock())
    assert queue.queued_total(CORE) == 0


def test_queue_lookup_and_totals(clock) -> None:
    queue = UnbondingQueue()
    queue.enqueue("alice", 10, CORE, clock(), DAY)
    queue.enqueue("bob", 20, CORE, clock(), DAY)
    queue.enqueue("bob", 3, BTC, clock(), DAY)

    assert queue.queued_total(CORE) == 30
    assert [r.user for r in queue.pending(BTC)] == ["bob"]
    assert len(queue) == 3
    with pytest.raises(UnknownRequest):
        queue.get(99)
    with pytest.raises(KeyError):
        queue.get(99)
    assert set(queue.to_dataframe().columns) >= {"request_id", "unlock_time_iso", "processed"}


def test_processed_requests_leave_the_pending_view(clock) -> None:
    queue = UnbondingQueue()
    done = [queue.enqueue("alice", 1, CORE, clock(), 0.0) for _ in range(50)]
    open_request = queue.enqueue("bob", 7, CORE, clock(), 0.0)
    for request in done:
        queue.mark_processed(request.request_id)

    assert queue.pending() == [open_request]
    assert queue.ready(clock()) == [open_request]
    assert queue.queued_total(CORE) == 7
    assert len(queue) == 51
    assert queue.get(done[0].request_id).processed
