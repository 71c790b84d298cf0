"""Instant-withdrawal liquidity buffer and its liquidity providers.

``available`` tracks every liquid unit the engine holds for an asset: the
pool's unstaked balance, liquidity provider principal and fees earned by
providers but not yet claimed.  Providers receive one LP share per unit
supplied and a pro-rata cut of instant-withdrawal fees.
"""

from __future__ import annotations

import logging
from collections import defaultdict

import pandas as pd

from .config import LiquidityConfig
from .core.constants import BPS
from .core.fixed_point import bps_of, checked_add, from_wad, mul_div
from .core.models import AssetKind
from .errors import InsufficientAmount, InsufficientLiquidity, InsufficientShares

logger = logging.getLogger(__name__)


class LiquidityReserve:
    def __init__(self, config: LiquidityConfig) -> None:
        self.config = config
        self.available: dict[AssetKind, int] = {a: 0 for a in AssetKind}
        self.reserve_ratio_bps: dict[AssetKind, int] = dict(config.reserve_ratio_bps)
        self.lp_shares: dict[AssetKind, dict[str, int]] = {a: defaultdict(int) for a in AssetKind}
        self.lp_rewards: dict[str, dict[AssetKind, int]] = defaultdict(lambda: defaultdict(int))

    # -----------------
    # Ledger moves
    # -----------------

    def credit(self, asset: AssetKind, amount: int) -> None:
        self.available[asset] = checked_add(self.available[asset], amount)

    def debit(self, asset: AssetKind, amount: int) -> None:
        if amount > self.available[asset]:
            raise InsufficientLiquidity(
                f"reserve holds {self.available[asset]} {asset.value}, {amount} requested"
            )
        self.available[asset] -= amount

    # -----------------
    # Instant withdrawals
    # -----------------

    def can_withdraw_instantly(self, amount: int, asset: AssetKind) -> bool:
        available = self.available[asset]
        return (
            amount <= self.config.per_withdrawal_cap[asset]
            and amount <= available
            and amount <= bps_of(available, self.config.max_single_withdrawal_ratio_bps)
        )

    def instant_fee(self, amount: int) -> tuple[int, int]:
        """Return ``(fee, provider_cut)`` for an instant withdrawal of ``amount``."""

        fee = bps_of(amount, self.config.instant_fee_bps)
        return fee, bps_of(fee, self.config.lp_fee_share_bps)

    def distribute_fee(self, asset: AssetKind, amount: int) -> int:
        """Credit ``amount`` to providers pro rata; returns what was distributed.

        Rounding dust and the whole amount when nobody provides liquidity are
        left to the caller.
        """

        holders = {p: s for p, s in self.lp_shares[asset].items() if s > 0}
        total = sum(holders.values())
        if amount == 0 or total == 0:
            return 0
        distributed = 0
        for provider, shares in holders.items():
            cut = mul_div(amount, shares, total)
            self.lp_rewards[provider][asset] += cut
            distributed += cut
        return distributed

    # -----------------
    # Sizing
    # -----------------

    def target_reserve(self, asset: AssetKind, queued: int) -> int:
        return bps_of(checked_add(self.available[asset], queued), self.reserve_ratio_bps[asset])

    def health(self, asset: AssetKind, queued: int) -> float:
        """``available / target``; 1.0 when no reserve is required."""

        target = self.target_reserve(asset, queued)
        if target == 0:
            return 1.0
        return self.available[asset] / target

    def set_reserve_ratio(self, asset: AssetKind, bps: int) -> None:
        if not 0 <= bps <= BPS:
            raise ValueError("reserve ratio must be within [0, 10000] bps")
        logger.info(
            "Reserve ratio for %s changed %s -> %s bps",
            asset.value,
            self.reserve_ratio_bps[asset],
            bps,
        )
        self.reserve_ratio_bps[asset] = bps

    # -----------------
    # Liquidity providers
    # -----------------

    def lp_liquidity(self, asset: AssetKind) -> int:
        return sum(self.lp_shares[asset].values())

    def lp_outstanding(self, asset: AssetKind) -> int:
        """Liquid units owed to providers (principal plus unclaimed fees)."""

        rewards = sum(r.get(asset, 0) for r in self.lp_rewards.values())
        return self.lp_liquidity(asset) + rewards

    def add_liquidity(self, provider: str, asset: AssetKind, amount: int) -> int:
        if amount <= 0:
            raise InsufficientAmount("liquidity amount must be positive")
        self.credit(asset, amount)
        self.lp_shares[asset][provider] += amount
        return amount

    def remove_liquidity(self, provider: str, asset: AssetKind, shares: int) -> int:
        held = self.lp_shares[asset].get(provider, 0)
        if shares <= 0 or shares > held:
            raise InsufficientShares(f"{provider} holds {held} LP shares of {asset.value}")
        self.debit(asset, shares)
        self.lp_shares[asset][provider] = held - shares
        return shares

    def pending_rewards(self, provider: str) -> dict[AssetKind, int]:
        return {a: v for a, v in self.lp_rewards.get(provider, {}).items() if v > 0}

    def settle_rewards(self, provider: str, asset: AssetKind, amount: int) -> None:
        """Remove ``amount`` of claimed fees once the payout succeeded."""

        self.debit(asset, amount)
        self.lp_rewards[provider][asset] -= amount

    def to_dataframe(self, queued: dict[AssetKind, int] | None = None) -> pd.DataFrame:
        queued = queued or {}
        rows = []
        for asset in AssetKind:
            q = queued.get(asset, 0)
            rows.append(
                {
                    "asset": asset.value,
                    "available": from_wad(self.available[asset]),
                    "queued": from_wad(q),
                    "target_reserve": from_wad(self.target_reserve(asset, q)),
                    "reserve_ratio_bps": self.reserve_ratio_bps[asset],
                    "lp_liquidity": from_wad(self.lp_liquidity(asset)),
                    "health": self.health(asset, q),
                }
            )
        return pd.DataFrame(rows)


__all__ = ["LiquidityReserve"]
