"""Data models used throughout DualStakeLab.

Configuration and snapshot records are frozen dataclasses; ledgers that the
engine mutates in place (positions, pool and rebalance state, unbonding
requests) are plain dataclasses owned by a single engine instance.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any

from .constants import BPS
from .fixed_point import from_wad


class AssetKind(str, Enum):
    """The two assets held by the pool."""

    CORE = "CORE"
    BTC = "BTC"

    @property
    def other(self) -> "AssetKind":
        return AssetKind.BTC if self is AssetKind.CORE else AssetKind.CORE


class Tier(IntEnum):
    BRONZE = 0
    SILVER = 1
    GOLD = 2
    SATOSHI = 3


class ControllerState(str, Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    EXECUTING = "executing"
    COOLING = "cooling"
    PAUSED = "paused"


@dataclass(frozen=True)
class TierSpec:
    """USD band, optimal CORE:BTC ratio and bonus cap for one tier.

    ``optimal_ratio`` is CORE per BTC in whole tokens (e.g. ``10_000``),
    ``usd_min``/``usd_max`` are WAD-scaled USD and ``usd_max=None`` marks the
    unbounded top band.
    """

    tier: Tier
    optimal_ratio: int
    usd_min: int
    usd_max: int | None
    max_bonus_bps: int

    def contains(self, usd: int) -> bool:
        return usd >= self.usd_min and (self.usd_max is None or usd < self.usd_max)


@dataclass
class Position:
    owner: str
    core_amount: int = 0
    btc_amount: int = 0
    shares: int = 0
    tier: Tier | None = None
    bonus_bps: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "core_amount": from_wad(self.core_amount),
            "btc_amount": from_wad(self.btc_amount),
            "shares": from_wad(self.shares),
            "tier": self.tier.name if self.tier is not None else "",
            "bonus_bps": self.bonus_bps,
        }


@dataclass
class PoolState:
    total_pooled_core: int = 0
    total_pooled_btc: int = 0
    total_staked_core: int = 0
    total_staked_btc: int = 0
    target_ratio: int = 0  # CORE per BTC, WAD-scaled
    target_tier: Tier = Tier.BRONZE

    def pooled(self, asset: AssetKind) -> int:
        return self.total_pooled_core if asset is AssetKind.CORE else self.total_pooled_btc

    def staked(self, asset: AssetKind) -> int:
        return self.total_staked_core if asset is AssetKind.CORE else self.total_staked_btc

    def set_pooled(self, asset: AssetKind, value: int) -> None:
        if asset is AssetKind.CORE:
            self.total_pooled_core = value
        else:
            self.total_pooled_btc = value

    def set_staked(self, asset: AssetKind, value: int) -> None:
        if asset is AssetKind.CORE:
            self.total_staked_core = value
        else:
            self.total_staked_btc = value

    def liquid(self, asset: AssetKind) -> int:
        return self.pooled(asset) - self.staked(asset)

    def check_invariants(self) -> None:
        for asset in AssetKind:
            if self.staked(asset) > self.pooled(asset):
                raise AssertionError(f"staked {asset.value} exceeds pooled {asset.value}")


@dataclass(frozen=True)
class Validator:
    """Mirrored view of a validator; ``effective_apy`` in bps, risk in 0-100."""

    address: str
    is_active: bool = True
    risk_score: float = 50.0
    effective_apy: int = 0
    delegated_amount: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["effective_apy"] = self.effective_apy / BPS
        data["delegated_amount"] = from_wad(self.delegated_amount)
        return data


@dataclass
class RebalanceState:
    min_interval: float
    max_failures: int
    last_rebalance_time: float = 0.0
    failure_count: int = 0
    paused: bool = False
    failure_window_start: float = 0.0
    last_failure_time: float = 0.0
    rebalance_count: int = 0
    state: ControllerState = ControllerState.IDLE


@dataclass
class UnbondingRequest:
    request_id: int
    user: str
    amount: int
    asset: AssetKind
    request_time: float
    unlock_time: float
    processed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "user": self.user,
            "asset": self.asset.value,
            "amount": from_wad(self.amount),
            "request_time_iso": _iso(self.request_time),
            "unlock_time_iso": _iso(self.unlock_time),
            "processed": self.processed,
        }


@dataclass(frozen=True)
class TransferInstruction:
    """Move ``amount`` of delegated stake from ``source`` to ``destination``."""

    source: str
    destination: str
    amount: int


@dataclass(frozen=True)
class DepositReceipt:
    owner: str
    shares: int
    tier: Tier
    usd_value: int
    bonus_bps: int


@dataclass(frozen=True)
class WithdrawalReceipt:
    """Outcome of a redemption.

    ``instant`` is true only when every non-zero asset leg was paid from the
    reserve; queued legs are listed in ``request_ids``.
    """

    instant: bool
    amounts: dict[AssetKind, int] = field(default_factory=dict)
    fees: dict[AssetKind, int] = field(default_factory=dict)
    request_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class PoolStatus:
    tier: Tier
    ratio: int | None
    target_ratio: int
    needs_rebalance: bool
    reserve_health: dict[AssetKind, float]
    paused: bool
    state: ControllerState
    nav: int | None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tier": self.tier.name,
            "ratio": from_wad(self.ratio) if self.ratio is not None else float("nan"),
            "target_ratio": from_wad(self.target_ratio),
            "needs_rebalance": self.needs_rebalance,
            "paused": self.paused,
            "state": self.state.value,
            "nav": from_wad(self.nav) if self.nav is not None else float("nan"),
        }
        for asset, health in self.reserve_health.items():
            data[f"reserve_health_{asset.value.lower()}"] = health
        return data


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).isoformat() if ts else ""


__all__ = [
    "AssetKind",
    "Tier",
    "ControllerState",
    "TierSpec",
    "Position",
    "PoolState",
    "Validator",
    "RebalanceState",
    "UnbondingRequest",
    "TransferInstruction",
    "DepositReceipt",
    "WithdrawalReceipt",
    "PoolStatus",
]
