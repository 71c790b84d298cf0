"""In-memory collaborator adapters for simulations and tests.

They mirror the behaviour of the on-chain counterparts closely enough to
exercise the engine: prices go stale, routers revert below ``min_amount_out``
and past their deadline, undelegations can move less than requested.  Each
adapter accepts a queue of exceptions to raise on upcoming calls so failure
paths can be scripted.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from ..core.constants import BPS
from ..core.fixed_point import mul_div
from ..core.models import AssetKind
from ..risk_scoring import calculate_risk_score

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class _FailureScript:
    def __init__(self) -> None:
        self._pending: list[Exception] = []

    def fail_next(self, *errors: Exception) -> None:
        self._pending.extend(errors)

    def _maybe_fail(self) -> None:
        if self._pending:
            raise self._pending.pop(0)


class StaticPriceOracle(_FailureScript):
    """Prices set by hand; stale once older than ``max_age`` seconds."""

    def __init__(
        self,
        prices: Mapping[AssetKind, int] | None = None,
        *,
        max_age: float = 3_600.0,
        clock: Clock = time.time,
    ) -> None:
        super().__init__()
        self.max_age = max_age
        self._clock = clock
        self._prices: dict[AssetKind, int] = {}
        self._updated: dict[AssetKind, float] = {}
        for asset, price in (prices or {}).items():
            self.set_price(asset, price)

    def set_price(self, asset: AssetKind, price: int) -> None:
        self._prices[asset] = price
        self._updated[asset] = self._clock()

    def get_price(self, asset: AssetKind) -> int:
        self._maybe_fail()
        if asset not in self._prices:
            raise KeyError(f"no price for {asset.value}")
        return self._prices[asset]

    def is_stale(self, asset: AssetKind) -> bool:
        updated = self._updated.get(asset)
        return updated is None or self._clock() - updated > self.max_age


class ConstantRateSwapRouter(_FailureScript):
    """Swaps at oracle prices less ``fee_bps``; reverts like an AMM router."""

    def __init__(self, oracle: StaticPriceOracle, *, fee_bps: int = 0, clock: Clock = time.time) -> None:
        super().__init__()
        self.oracle = oracle
        self.fee_bps = fee_bps
        self._clock = clock
        self.swaps: list[tuple[AssetKind, AssetKind, int, int]] = []

    def quote(self, asset_in: AssetKind, asset_out: AssetKind, amount_in: int) -> int:
        gross = mul_div(amount_in, self.oracle.get_price(asset_in), self.oracle.get_price(asset_out))
        return mul_div(gross, BPS - self.fee_bps, BPS)

    def swap(
        self,
        asset_in: AssetKind,
        asset_out: AssetKind,
        amount_in: int,
        min_amount_out: int,
        deadline: float,
    ) -> int:
        self._maybe_fail()
        if self._clock() > deadline:
            raise RuntimeError("swap deadline expired")
        out = self.quote(asset_in, asset_out, amount_in)
        if out < min_amount_out:
            raise RuntimeError("insufficient output amount")
        self.swaps.append((asset_in, asset_out, amount_in, out))
        return out


@dataclass
class _ValidatorEntry:
    is_active: bool
    apy_bps: int
    uptime: float = 1.0
    commission_bps: int = 0
    slashing_events: int = 0
    risk_score: float | None = None
    delegated: int = 0
    pending_rewards: int = 0

    def risk(self) -> float:
        if self.risk_score is not None:
            return self.risk_score
        return calculate_risk_score(self.uptime, self.commission_bps, self.slashing_events)


class InMemoryValidatorRegistry(_FailureScript):
    """Staking registry with optional per-call undelegation limits."""

    def __init__(self, *, max_undelegate_per_call: int | None = None) -> None:
        super().__init__()
        self.max_undelegate_per_call = max_undelegate_per_call
        self._validators: dict[str, _ValidatorEntry] = {}

    def add_validator(
        self,
        address: str,
        apy_bps: int,
        *,
        is_active: bool = True,
        risk_score: float | None = None,
        uptime: float = 1.0,
        commission_bps: int = 0,
        slashing_events: int = 0,
    ) -> None:
        self._validators[address] = _ValidatorEntry(
            is_active=is_active,
            apy_bps=apy_bps,
            uptime=uptime,
            commission_bps=commission_bps,
            slashing_events=slashing_events,
            risk_score=risk_score,
        )

    def set_status(self, address: str, **changes: object) -> None:
        entry = self._validators[address]
        for key, value in changes.items():
            setattr(entry, key, value)

    def accrue_rewards(self, address: str, amount: int) -> None:
        self._validators[address].pending_rewards += amount

    def delegated(self, address: str) -> int:
        return self._validators[address].delegated

    def addresses(self) -> Iterable[str]:
        return list(self._validators)

    def delegate(self, validator: str, amount: int) -> int:
        self._maybe_fail()
        entry = self._validators[validator]
        if not entry.is_active:
            raise RuntimeError(f"validator {validator} is not active")
        entry.delegated += amount
        return amount

    def undelegate(self, validator: str, amount: int) -> int:
        self._maybe_fail()
        entry = self._validators[validator]
        moved = min(amount, entry.delegated)
        if self.max_undelegate_per_call is not None:
            moved = min(moved, self.max_undelegate_per_call)
        entry.delegated -= moved
        return moved

    def redelegate(self, source: str, destination: str, amount: int) -> int:
        self._maybe_fail()
        src = self._validators[source]
        dst = self._validators[destination]
        moved = min(amount, src.delegated)
        src.delegated -= moved
        dst.delegated += moved
        return moved

    def get_validator_info(self, validator: str) -> tuple[bool, float, int]:
        self._maybe_fail()
        entry = self._validators[validator]
        return entry.is_active, entry.risk(), entry.apy_bps

    def claim_rewards(self, validator: str) -> int:
        self._maybe_fail()
        entry = self._validators[validator]
        claimed, entry.pending_rewards = entry.pending_rewards, 0
        return claimed


class InMemoryShareToken(_FailureScript):
    def __init__(self) -> None:
        super().__init__()
        self._balances: dict[str, int] = defaultdict(int)

    def mint(self, to: str, amount: int) -> None:
        self._maybe_fail()
        self._balances[to] += amount

    def burn(self, owner: str, amount: int) -> None:
        self._maybe_fail()
        if self._balances[owner] < amount:
            raise ValueError("burn amount exceeds balance")
        self._balances[owner] -= amount

    def total_supply(self) -> int:
        return sum(self._balances.values())

    def balance_of(self, owner: str) -> int:
        return self._balances.get(owner, 0)


class RecordingCustodian(_FailureScript):
    """Records every payout instead of moving real tokens."""

    def __init__(self) -> None:
        super().__init__()
        self.paid: dict[tuple[str, AssetKind], int] = defaultdict(int)

    def transfer_out(self, to: str, asset: AssetKind, amount: int) -> int:
        self._maybe_fail()
        self.paid[(to, asset)] += amount
        logger.debug("Paid %s %s to %s", amount, asset.value, to)
        return amount


__all__ = [
    "StaticPriceOracle",
    "ConstantRateSwapRouter",
    "InMemoryValidatorRegistry",
    "InMemoryShareToken",
    "RecordingCustodian",
]
