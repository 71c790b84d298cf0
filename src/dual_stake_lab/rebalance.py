"""Ratio rebalancing control loop with cooldown and circuit breaker.

The controller compares the pool's CORE:BTC ratio with the tier target and,
when the deviation exceeds ``threshold_bps`` and the cooldown has elapsed,
swaps the over-weight asset through the router.  Swap size is the amount that
would land exactly on target at oracle prices, capped at half of the smaller
side's USD value so that a bad quote cannot overshoot the ratio.

State machine::

    IDLE -> EVALUATING -> EXECUTING -> IDLE      (success)
                                    -> COOLING   (failure, retried later)
    any  -> PAUSED once failure_count >= max_failures (operator resume only)
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, fields, replace

import pandas as pd

from .collaborators import Custodian, PriceOracle, SwapRouter, guarded_call
from .config import RebalanceConfig
from .core.constants import BPS, HISTORY_LIMIT, WAD
from .core.fixed_point import bps_of, checked_add, checked_sub, from_wad, mul_div, usd_value
from .core.models import AssetKind, ControllerState, PoolState, RebalanceState
from .errors import (
    CooloffActive,
    DualStakeError,
    ExecutionError,
    FailureKind,
    NotNeeded,
    Paused,
    RebalanceInProgress,
    SlippageExceeded,
    StalePrice,
)
from .liquidity import LiquidityReserve
from .unbonding import UnbondingQueue

logger = logging.getLogger(__name__)

INTERNAL_CALLER = "internal"


@dataclass(frozen=True)
class SwapPlan:
    asset_in: AssetKind
    asset_out: AssetKind
    amount_in: int
    expected_out: int
    min_amount_out: int


@dataclass(frozen=True)
class RebalanceOutcome:
    """Result of an executed rebalance (``swapped_in``, ``swapped_out``, reward)."""

    asset_in: AssetKind
    asset_out: AssetKind
    amount_in: int
    amount_out: int
    keeper_reward: int
    ratio_before: int
    ratio_after: int | None
    trigger: str


@dataclass(frozen=True)
class RebalanceRecord:
    timestamp: float
    trigger: str
    executed: bool
    reason: str
    asset_in: str | None = None
    amount_in: int = 0
    amount_out: int = 0
    keeper_reward: int = 0
    ratio_before: int | None = None
    ratio_after: int | None = None
    error_kind: str | None = None


def pool_ratio(core: int, btc: int) -> int | None:
    """CORE per BTC as a WAD value; ``None`` when the pool holds no BTC."""

    if btc == 0:
        return None
    return mul_div(core, WAD, btc)


def exceeds_threshold(ratio: int, target: int, threshold_bps: int) -> bool:
    """``|ratio - target| / target > threshold_bps / 10000`` without rounding."""

    return abs(ratio - target) * BPS > threshold_bps * target


def plan_swap(
    core: int,
    btc: int,
    target: int,
    core_price: int,
    btc_price: int,
    *,
    liquid: dict[AssetKind, int],
    max_slippage_bps: int,
) -> SwapPlan | None:
    """Size the swap that moves ``core/btc`` toward ``target``.

    Returns ``None`` when the bounded size rounds to zero.
    """

    ratio = pool_ratio(core, btc)
    if ratio is None or ratio == target:
        return None
    target_core = mul_div(target, btc, WAD)
    if ratio < target:
        asset_in, asset_out = AssetKind.BTC, AssetKind.CORE
        core_per_btc = mul_div(btc_price, WAD, core_price)
        ideal = mul_div(target_core - core, WAD, target + core_per_btc)
    else:
        asset_in, asset_out = AssetKind.CORE, AssetKind.BTC
        denominator = WAD + mul_div(target, core_price, btc_price)
        ideal = mul_div(core - target_core, WAD, denominator)

    price_in = core_price if asset_in is AssetKind.CORE else btc_price
    price_out = btc_price if asset_in is AssetKind.CORE else core_price
    half_smaller_usd = min(usd_value(core, core_price), usd_value(btc, btc_price)) // 2
    cap = mul_div(half_smaller_usd, WAD, price_in)

    amount_in = min(ideal, cap, max(liquid.get(asset_in, 0), 0))
    if amount_in <= 0:
        return None
    expected = mul_div(amount_in, price_in, price_out)
    return SwapPlan(
        asset_in=asset_in,
        asset_out=asset_out,
        amount_in=amount_in,
        expected_out=expected,
        min_amount_out=bps_of(expected, BPS - max_slippage_bps),
    )


class RebalanceController:
    """Owns :class:`RebalanceState`; all mutation happens under ``lock``."""

    def __init__(
        self,
        config: RebalanceConfig,
        *,
        pool: PoolState,
        reserve: LiquidityReserve,
        queue: UnbondingQueue,
        oracle: PriceOracle,
        router: SwapRouter,
        custodian: Custodian,
        clock: Callable[[], float] = time.time,
        lock: threading.RLock | None = None,
    ) -> None:
        self.config = config
        self.pool = pool
        self.reserve = reserve
        self.queue = queue
        self.oracle = oracle
        self.router = router
        self.custodian = custodian
        self.clock = clock
        self.lock = lock or threading.RLock()
        self.state = RebalanceState(
            min_interval=config.min_interval, max_failures=config.max_failures
        )
        self._in_flight = False
        self._history: deque[RebalanceRecord] = deque(maxlen=HISTORY_LIMIT)

    # -----------------
    # Pool views
    # -----------------

    def net_pooled(self, asset: AssetKind) -> int:
        """Pooled balance owned by shareholders (excludes queued withdrawals)."""

        return max(self.pool.pooled(asset) - self.queue.queued_total(asset), 0)

    def free_liquid(self, asset: AssetKind) -> int:
        return max(self.pool.liquid(asset) - self.queue.queued_total(asset), 0)

    def current_ratio(self) -> int | None:
        return pool_ratio(self.net_pooled(AssetKind.CORE), self.net_pooled(AssetKind.BTC))

    # -----------------
    # Decision
    # -----------------

    def needs_rebalance(self) -> bool:
        st = self.state
        now = self.clock()
        if st.paused:
            return False
        if now < st.last_rebalance_time + self.config.min_interval:
            return False
        if (
            st.state is ControllerState.COOLING
            and now < st.last_failure_time + self.config.retry_backoff
        ):
            return False
        core = self.net_pooled(AssetKind.CORE)
        btc = self.net_pooled(AssetKind.BTC)
        target = self.pool.target_ratio
        if core == 0 or btc == 0 or target == 0:
            return False
        ratio = pool_ratio(core, btc)
        return ratio is not None and exceeds_threshold(ratio, target, self.config.threshold_bps)

    # -----------------
    # Execution
    # -----------------

    def rebalance(
        self, caller: str, *, trigger: str = "keeper", pay_reward: bool = True
    ) -> RebalanceOutcome:
        with self.lock:
            if self._in_flight:
                raise RebalanceInProgress("a rebalance is already executing")
            if self.state.paused:
                raise Paused("rebalancing is paused by the circuit breaker")
            if not self.needs_rebalance():
                raise NotNeeded("pool ratio is within threshold or cooldown is active")

            self._in_flight = True
            resting = self.state.state
            self.state.state = ControllerState.EVALUATING
            try:
                return self._execute(caller, trigger, pay_reward, resting)
            finally:
                self._in_flight = False

    def _execute(
        self, caller: str, trigger: str, pay_reward: bool, resting: ControllerState
    ) -> RebalanceOutcome:
        prices: dict[AssetKind, int] = {}
        for asset in AssetKind:
            if self.oracle.is_stale(asset):
                self.state.state = resting
                raise StalePrice(f"{asset.value} price is stale")
            result = guarded_call(f"oracle.get_price({asset.value})", self.oracle.get_price, asset)
            if not result.ok:
                self._record_failure(trigger, str(result.error), result.kind)
                raise ExecutionError(f"price read failed: {result.error}", result.kind)
            price = int(result.value or 0)
            if price <= 0:
                reason = f"oracle returned non-positive {asset.value} price {price}"
                self._record_failure(trigger, reason, FailureKind.TERMINAL)
                raise ExecutionError(reason)
            prices[asset] = price

        core = self.net_pooled(AssetKind.CORE)
        btc = self.net_pooled(AssetKind.BTC)
        ratio_before = pool_ratio(core, btc)
        try:
            plan = plan_swap(
                core,
                btc,
                self.pool.target_ratio,
                prices[AssetKind.CORE],
                prices[AssetKind.BTC],
                liquid={a: self.free_liquid(a) for a in AssetKind},
                max_slippage_bps=self.config.max_slippage_bps,
            )
        except DualStakeError:
            self.state.state = resting
            raise
        if plan is None:
            self.state.state = resting
            raise NotNeeded("bounded swap size rounds to zero")

        self.state.state = ControllerState.EXECUTING
        now = self.clock()
        result = guarded_call(
            "router.swap",
            self.router.swap,
            plan.asset_in,
            plan.asset_out,
            plan.amount_in,
            plan.min_amount_out,
            now + self.config.swap_deadline,
        )
        if not result.ok:
            self._record_failure(trigger, str(result.error), result.kind, ratio_before)
            raise ExecutionError(f"swap failed: {result.error}", result.kind or FailureKind.TERMINAL)
        amount_out = int(result.value or 0)
        if amount_out < plan.min_amount_out:
            reason = f"swap returned {amount_out}, below minimum {plan.min_amount_out}"
            self._record_failure(trigger, reason, FailureKind.TRANSIENT, ratio_before)
            raise SlippageExceeded(reason)

        self._apply_swap(plan.asset_in, plan.amount_in, plan.asset_out, amount_out)

        st = self.state
        st.failure_count = 0
        st.last_rebalance_time = now
        st.rebalance_count += 1
        st.state = ControllerState.IDLE

        reward = self._pay_keeper(caller, prices) if pay_reward else 0
        ratio_after = self.current_ratio()
        logger.info(
            "Rebalanced via %s: swapped %s %s for %s %s (keeper reward %s)",
            trigger,
            plan.amount_in,
            plan.asset_in.value,
            amount_out,
            plan.asset_out.value,
            reward,
        )
        self._history.append(
            RebalanceRecord(
                timestamp=now,
                trigger=trigger,
                executed=True,
                reason="ratio deviation above threshold",
                asset_in=plan.asset_in.value,
                amount_in=plan.amount_in,
                amount_out=amount_out,
                keeper_reward=reward,
                ratio_before=ratio_before,
                ratio_after=ratio_after,
            )
        )
        return RebalanceOutcome(
            asset_in=plan.asset_in,
            asset_out=plan.asset_out,
            amount_in=plan.amount_in,
            amount_out=amount_out,
            keeper_reward=reward,
            ratio_before=ratio_before or 0,
            ratio_after=ratio_after,
            trigger=trigger,
        )

    def _apply_swap(
        self, asset_in: AssetKind, amount_in: int, asset_out: AssetKind, amount_out: int
    ) -> None:
        self.pool.set_pooled(asset_in, checked_sub(self.pool.pooled(asset_in), amount_in))
        self.reserve.debit(asset_in, amount_in)
        self.pool.set_pooled(asset_out, checked_add(self.pool.pooled(asset_out), amount_out))
        self.reserve.credit(asset_out, amount_out)

    def _pay_keeper(self, caller: str, prices: dict[AssetKind, int]) -> int:
        pool_usd = usd_value(self.net_pooled(AssetKind.CORE), prices[AssetKind.CORE]) + usd_value(
            self.net_pooled(AssetKind.BTC), prices[AssetKind.BTC]
        )
        reward_usd = bps_of(pool_usd, self.config.keeper_reward_bps)
        reward = mul_div(reward_usd, WAD, prices[AssetKind.CORE])
        reward = min(reward, self.free_liquid(AssetKind.CORE))
        if reward == 0:
            return 0
        result = guarded_call("custodian.transfer_out", self.custodian.transfer_out, caller, AssetKind.CORE, reward)
        if not result.ok:
            logger.warning("Keeper reward to %s not paid: %s", caller, result.error)
            return 0
        sent = min(int(result.value or 0), reward)
        self.pool.set_pooled(AssetKind.CORE, checked_sub(self.pool.total_pooled_core, sent))
        self.reserve.debit(AssetKind.CORE, sent)
        return sent

    def _record_failure(
        self,
        trigger: str,
        reason: str,
        kind: FailureKind | None,
        ratio_before: int | None = None,
    ) -> None:
        st = self.state
        now = self.clock()
        if st.failure_count == 0 or now - st.failure_window_start > self.config.failure_window:
            st.failure_window_start = now
            st.failure_count = 0
        st.failure_count += 1
        st.last_failure_time = now
        kind = kind or FailureKind.TERMINAL
        self._history.append(
            RebalanceRecord(
                timestamp=now,
                trigger=trigger,
                executed=False,
                reason=reason,
                ratio_before=ratio_before,
                error_kind=kind.value,
            )
        )
        if st.failure_count >= self.config.max_failures:
            st.paused = True
            st.state = ControllerState.PAUSED
            logger.error(
                "Circuit breaker tripped after %s failures; rebalancing paused (%s)",
                st.failure_count,
                reason,
            )
        else:
            st.state = ControllerState.COOLING
            logger.warning(
                "Rebalance failed (%s, %s/%s): %s",
                kind.value,
                st.failure_count,
                self.config.max_failures,
                reason,
            )

    def maybe_rebalance(self, trigger: str) -> RebalanceOutcome | None:
        """Internal trigger used by deposits and compounding; never raises."""

        with self.lock:
            if self._in_flight or not self.config.auto_rebalance or not self.needs_rebalance():
                return None
            try:
                return self.rebalance(INTERNAL_CALLER, trigger=trigger, pay_reward=False)
            except RebalanceInProgress:
                raise
            except DualStakeError as exc:
                logger.warning("Internal rebalance on %s skipped: %s", trigger, exc)
                return None

    # -----------------
    # Operator controls
    # -----------------

    def pause(self) -> None:
        with self.lock:
            self.state.paused = True
            self.state.state = ControllerState.PAUSED
            logger.warning("Rebalancing paused by operator")

    def resume(self) -> bool:
        """Clear the circuit breaker; returns ``False`` when nothing was paused."""

        with self.lock:
            st = self.state
            if not st.paused:
                return False
            ready_at = st.last_failure_time + self.config.failure_cooloff
            if st.last_failure_time and self.clock() < ready_at:
                raise CooloffActive(
                    f"failure cool-off active for another {ready_at - self.clock():.0f}s"
                )
            st.paused = False
            st.failure_count = 0
            st.state = ControllerState.IDLE
            logger.info("Rebalancing resumed by operator")
            return True

    def update_thresholds(self, **changes: float | int | bool) -> RebalanceConfig:
        known = {f.name for f in fields(RebalanceConfig)}
        unknown = set(changes).difference(known)
        if unknown:
            raise ValueError(f"unknown rebalance settings: {sorted(unknown)}")
        with self.lock:
            self.config = replace(self.config, **changes)
            self.state.min_interval = self.config.min_interval
            self.state.max_failures = self.config.max_failures
            logger.info("Updated rebalance settings: %s", changes)
            return self.config

    # -----------------
    # History
    # -----------------

    def history(self, limit: int | None = None) -> list[RebalanceRecord]:
        """Most recent first."""

        records = list(reversed(self._history))
        return records[:limit] if limit else records

    def statistics(self) -> dict[str, float | int | None]:
        records = list(self._history)
        executed = [r for r in records if r.executed]
        failed = [r for r in records if not r.executed]
        return {
            "total_runs": len(records),
            "successful_rebalances": len(executed),
            "failed_rebalances": len(failed),
            "total_keeper_rewards": sum(r.keeper_reward for r in executed),
            "last_success": executed[-1].timestamp if executed else None,
            "last_failure": failed[-1].timestamp if failed else None,
        }

    def history_frame(self) -> pd.DataFrame:
        rows = []
        for r in self._history:
            rows.append(
                {
                    "timestamp": pd.Timestamp(r.timestamp, unit="s", tz="UTC"),
                    "trigger": r.trigger,
                    "executed": r.executed,
                    "reason": r.reason,
                    "asset_in": r.asset_in,
                    "amount_in": from_wad(r.amount_in),
                    "amount_out": from_wad(r.amount_out),
                    "keeper_reward": from_wad(r.keeper_reward),
                    "ratio_before": from_wad(r.ratio_before) if r.ratio_before is not None else float("nan"),
                    "ratio_after": from_wad(r.ratio_after) if r.ratio_after is not None else float("nan"),
                    "target_ratio": from_wad(self.pool.target_ratio),
                    "error_kind": r.error_kind,
                }
            )
        return pd.DataFrame(rows)


__all__ = [
    "INTERNAL_CALLER",
    "SwapPlan",
    "RebalanceOutcome",
    "RebalanceRecord",
    "RebalanceController",
    "pool_ratio",
    "exceeds_threshold",
    "plan_swap",
]
