from __future__ import annotations

import threading
from dataclasses import replace

import pytest

from dual_stake_lab.collaborators import RecordingCustodian
from dual_stake_lab.config import default_config
from dual_stake_lab.core import WAD, AssetKind, ControllerState, PoolState, to_wad
from dual_stake_lab.errors import (
    CooloffActive,
    ExecutionError,
    NotNeeded,
    Paused,
    RebalanceInProgress,
    SlippageExceeded,
    StalePrice,
)
from dual_stake_lab.liquidity import LiquidityReserve
from dual_stake_lab.rebalance import (
    RebalanceController,
    exceeds_threshold,
    plan_swap,
    pool_ratio,
)
from dual_stake_lab.unbonding import UnbondingQueue

CORE = AssetKind.CORE
BTC = AssetKind.BTC
TARGET = 10_000 * WAD


@pytest.fixture
def custodian() -> RecordingCustodian:
    return RecordingCustodian()


@pytest.fixture
def controller(oracle, router, custodian, clock) -> RebalanceController:
    """Pool holding 11,500 CORE per BTC against a 10,000 target (15% high)."""

    pool = PoolState(total_pooled_core=to_wad(11_500), total_pooled_btc=WAD, target_ratio=TARGET)
    reserve = LiquidityReserve(default_config().liquidity)
    reserve.credit(CORE, pool.total_pooled_core)
    reserve.credit(BTC, pool.total_pooled_btc)
    return RebalanceController(
        default_config().rebalance,
        pool=pool,
        reserve=reserve,
        queue=UnbondingQueue(),
        oracle=oracle,
        router=router,
        custodian=custodian,
        clock=clock,
    )


def _fail_and_wait(controller: RebalanceController, clock, error: Exception) -> None:
    controller.router.fail_next(error)  # type: ignore[attr-defined]
    with pytest.raises(ExecutionError):
        controller.rebalance("keeper")
    clock.advance(controller.config.retry_backoff + 1)


def test_ratio_helpers() -> None:
    assert pool_ratio(to_wad(10), 0) is None
    assert pool_ratio(to_wad(10), to_wad(2)) == to_wad(5)
    assert not exceeds_threshold(105, 100, 500)
    assert exceeds_threshold(106, 100, 500)
    assert exceeds_threshold(94, 100, 500)


def test_plan_swap_lands_on_target_when_uncapped() -> None:
    plan = plan_swap(
        to_wad(11_500), WAD, TARGET, WAD, 50_000 * WAD,
        liquid={CORE: to_wad(11_500), BTC: WAD}, max_slippage_bps=100,
    )
    assert plan is not None
    assert plan.asset_in is CORE
    assert plan.amount_in == to_wad(1_250)
    assert plan.expected_out == to_wad("0.025")
    assert plan.min_amount_out == to_wad("0.02475")


def test_plan_swap_is_capped_by_half_smaller_side_and_liquidity() -> None:
    plan = plan_swap(
        to_wad(5_000), WAD, TARGET, WAD, 50_000 * WAD,
        liquid={CORE: to_wad(5_000), BTC: WAD}, max_slippage_bps=100,
    )
    assert plan is not None
    assert plan.asset_in is BTC
    # ideal is 1/12 BTC, half of the $5,000 CORE side caps it at 0.05 BTC
    assert plan.amount_in == to_wad("0.05")

    capped = plan_swap(
        to_wad(5_000), WAD, TARGET, WAD, 50_000 * WAD,
        liquid={CORE: 0, BTC: to_wad("0.01")}, max_slippage_bps=100,
    )
    assert capped is not None and capped.amount_in == to_wad("0.01")
    assert plan_swap(to_wad(5_000), WAD, TARGET, WAD, 50_000 * WAD, liquid={}, max_slippage_bps=100) is None


def test_drifted_pool_is_rebalanced_toward_target(controller: RebalanceController, custodian, clock) -> None:
    assert controller.needs_rebalance()

    outcome = controller.rebalance("keeper")

    assert outcome.asset_in is CORE and outcome.asset_out is BTC
    assert outcome.amount_in == to_wad(1_250)
    assert outcome.amount_out == to_wad("0.025")
    assert abs(outcome.ratio_after - TARGET) < abs(outcome.ratio_before - TARGET)
    assert controller.state.last_rebalance_time == clock()
    assert controller.state.rebalance_count == 1
    assert controller.state.state is ControllerState.IDLE
    # 1 bps of the $61,500 pool, paid in CORE
    assert outcome.keeper_reward == to_wad("6.15")
    assert custodian.paid[("keeper", CORE)] == to_wad("6.15")
    assert controller.reserve.available[CORE] == controller.pool.total_pooled_core


def test_rebalance_is_idempotent(controller: RebalanceController, clock) -> None:
    controller.rebalance("keeper")
    with pytest.raises(NotNeeded):
        controller.rebalance("keeper")
    clock.advance(controller.config.min_interval + 1)
    assert not controller.needs_rebalance()
    with pytest.raises(NotNeeded):
        controller.rebalance("keeper")


def test_within_threshold_is_not_needed(controller: RebalanceController) -> None:
    controller.pool.total_pooled_core = to_wad(10_400)
    assert not controller.needs_rebalance()


def test_circuit_breaker_pauses_after_max_failures(
    controller: RebalanceController, clock, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level("WARNING"):
        for _ in range(controller.config.max_failures):
            _fail_and_wait(controller, clock, RuntimeError("revert"))

    state = controller.state
    assert state.paused
    assert state.state is ControllerState.PAUSED
    assert state.failure_count == 3
    assert not controller.needs_rebalance()
    with pytest.raises(Paused):
        controller.rebalance("keeper")
    assert "Circuit breaker tripped" in caplog.text
    assert [r.error_kind for r in controller.history()] == ["terminal"] * 3
    assert controller.statistics()["failed_rebalances"] == 3


def test_failure_enters_cooling_with_backoff(controller: RebalanceController, clock) -> None:
    controller.router.fail_next(TimeoutError("rpc"))  # type: ignore[attr-defined]
    with pytest.raises(ExecutionError) as info:
        controller.rebalance("keeper")
    assert info.value.kind.value == "transient"
    assert controller.state.state is ControllerState.COOLING
    assert not controller.needs_rebalance()

    clock.advance(controller.config.retry_backoff + 1)
    assert controller.needs_rebalance()
    controller.rebalance("keeper")
    assert controller.state.failure_count == 0


def test_failures_outside_window_do_not_accumulate(controller: RebalanceController, clock) -> None:
    _fail_and_wait(controller, clock, RuntimeError("revert"))
    clock.advance(controller.config.failure_window + 1)
    for asset in AssetKind:
        controller.oracle.set_price(asset, controller.oracle.get_price(asset))  # type: ignore[attr-defined]
    _fail_and_wait(controller, clock, RuntimeError("revert"))
    assert controller.state.failure_count == 1
    assert not controller.state.paused


def test_resume_requires_cooloff(controller: RebalanceController, clock) -> None:
    assert controller.resume() is False
    for _ in range(controller.config.max_failures):
        _fail_and_wait(controller, clock, RuntimeError("revert"))

    with pytest.raises(CooloffActive):
        controller.resume()
    clock.advance(controller.config.failure_cooloff)
    assert controller.resume() is True
    assert controller.state.state is ControllerState.IDLE
    assert controller.state.failure_count == 0
    assert controller.needs_rebalance()


def test_output_below_minimum_is_rejected_client_side(
    controller: RebalanceController, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(controller.router, "swap", lambda *args, **kwargs: 1)
    with pytest.raises(SlippageExceeded):
        controller.rebalance("keeper")
    assert controller.pool.total_pooled_core == to_wad(11_500)
    assert controller.history()[0].error_kind == "transient"


def test_stale_price_aborts_without_counting_failure(controller: RebalanceController, clock) -> None:
    clock.advance(controller.oracle.max_age + 1)  # type: ignore[attr-defined]
    with pytest.raises(StalePrice):
        controller.rebalance("keeper")
    assert controller.state.failure_count == 0
    assert controller.state.state is ControllerState.IDLE


def test_non_positive_price_counts_as_failed_read(controller: RebalanceController, clock) -> None:
    controller.oracle.set_price(CORE, 0)  # type: ignore[attr-defined]
    with pytest.raises(ExecutionError, match="non-positive"):
        controller.rebalance("keeper")
    assert controller.state.failure_count == 1
    assert controller.state.state is ControllerState.COOLING
    assert controller.history()[0].error_kind == "terminal"
    assert controller.pool.total_pooled_core == to_wad(11_500)

    clock.advance(controller.config.retry_backoff + 1)
    assert controller.maybe_rebalance("deposit") is None
    assert controller.state.failure_count == 2


def test_reentrant_rebalance_is_rejected(
    controller: RebalanceController, monkeypatch: pytest.MonkeyPatch
) -> None:
    seen: list[Exception] = []

    def reentrant_swap(*args, **kwargs):
        try:
            controller.rebalance("attacker")
        except RebalanceInProgress as exc:
            seen.append(exc)
            raise
        return 0

    monkeypatch.setattr(controller.router, "swap", reentrant_swap)
    with pytest.raises(ExecutionError):
        controller.rebalance("keeper")
    assert len(seen) == 1
    assert controller.pool.total_pooled_core == to_wad(11_500)


def test_concurrent_callers_execute_once(controller: RebalanceController) -> None:
    barrier = threading.Barrier(2)
    results: list[object] = []

    def worker(name: str) -> None:
        barrier.wait()
        try:
            results.append(controller.rebalance(name))
        except (NotNeeded, RebalanceInProgress) as exc:
            results.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in ("k1", "k2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert sum(isinstance(r, Exception) for r in results) == 1
    assert controller.state.rebalance_count == 1


def test_operator_pause_and_thresholds(controller: RebalanceController) -> None:
    controller.pause()
    with pytest.raises(Paused):
        controller.rebalance("keeper")
    controller.resume()

    controller.update_thresholds(threshold_bps=2_000)
    assert not controller.needs_rebalance()
    with pytest.raises(ValueError):
        controller.update_thresholds(bogus=1)


def test_internal_trigger_pays_no_reward(controller: RebalanceController, custodian) -> None:
    outcome = controller.maybe_rebalance("deposit")
    assert outcome is not None
    assert outcome.keeper_reward == 0
    assert dict(custodian.paid) == {}
    assert controller.history()[0].trigger == "deposit"


def test_internal_trigger_respects_auto_flag(controller: RebalanceController) -> None:
    controller.config = replace(controller.config, auto_rebalance=False)
    assert controller.maybe_rebalance("deposit") is None
    assert controller.state.rebalance_count == 0


def test_history_frame(controller: RebalanceController) -> None:
    controller.rebalance("keeper")
    frame = controller.history_frame()
    assert list(frame["executed"]) == [True]
    assert frame.loc[0, "target_ratio"] == pytest.approx(10_000.0)
    stats = controller.statistics()
    assert stats["successful_rebalances"] == 1
    assert stats["total_keeper_rewards"] == to_wad("6.15")
