"""Proportional share accounting for pool entry and exit."""

from __future__ import annotations

from .core.constants import WAD
from .core.fixed_point import mul_div
from .core.models import PoolState
from .errors import DivisionByZero, ZeroShares


class ShareAccountant:
    """Stateless NAV math; callers pass the pool view to price against."""

    @staticmethod
    def shares_to_mint(contribution_usd: int, pool_total_usd: int, total_shares: int) -> int:
        if contribution_usd <= 0:
            raise ZeroShares("contribution has no value")
        if total_shares == 0:
            # bootstrap price: one share per USD
            return contribution_usd
        if pool_total_usd == 0:
            raise DivisionByZero("pool has outstanding shares but no value")
        shares = mul_div(contribution_usd, total_shares, pool_total_usd)
        if shares == 0:
            raise ZeroShares("contribution rounds to zero shares")
        return shares

    @staticmethod
    def assets_to_return(shares: int, pool: PoolState, total_shares: int) -> tuple[int, int]:
        """Pro-rata slice of the pool's current CORE/BTC mix."""

        if shares <= 0:
            raise ZeroShares("cannot redeem zero shares")
        if total_shares == 0:
            raise DivisionByZero("no shares outstanding")
        core = mul_div(pool.total_pooled_core, shares, total_shares)
        btc = mul_div(pool.total_pooled_btc, shares, total_shares)
        return core, btc

    @staticmethod
    def nav(pool_total_usd: int, total_shares: int) -> int:
        """USD value per share (WAD); 1.0 before the first deposit."""

        if total_shares == 0:
            return WAD
        return mul_div(pool_total_usd, WAD, total_shares)


__all__ = ["ShareAccountant"]
