"""Tier classification and dual-asset bonus computation."""

from __future__ import annotations

from collections.abc import Sequence

from .config import TierConfig
from .core.constants import WAD
from .core.fixed_point import checked_add, mul_div, usd_value
from .core.models import Tier, TierSpec
from .errors import BelowMinimum, InsufficientAmount

# USD unit of the size multiplier's order-of-magnitude step.
_SIZE_UNIT_USD = 1_000 * WAD


def _validate_bands(specs: Sequence[TierSpec]) -> tuple[TierSpec, ...]:
    if not specs:
        raise ValueError("at least one tier band is required")
    ordered = tuple(sorted(specs, key=lambda s: s.usd_min))
    for lower, upper in zip(ordered, ordered[1:]):
        if lower.usd_min >= upper.usd_min:
            raise ValueError(f"tier {upper.tier.name} does not increase usd_min")
        if lower.usd_max != upper.usd_min:
            raise ValueError(
                f"tier bands are not contiguous between {lower.tier.name} and {upper.tier.name}"
            )
        if lower.tier >= upper.tier:
            raise ValueError("tier order must follow usd_min order")
    if ordered[-1].usd_max is not None:
        raise ValueError("top tier must be unbounded")
    for spec in ordered:
        if spec.optimal_ratio <= 0:
            raise ValueError(f"tier {spec.tier.name} needs a positive optimal ratio")
    return ordered


class TierEngine:
    """Classify deposits into USD bands and price the ratio bonus."""

    def __init__(self, config: TierConfig) -> None:
        self.config = config
        self.specs = _validate_bands(config.specs)
        self._by_tier = {spec.tier: spec for spec in self.specs}

    def spec(self, tier: Tier) -> TierSpec:
        return self._by_tier[tier]

    def tier_for_usd(self, usd: int) -> Tier:
        """Highest tier whose ``usd_min`` is met; lowest tier below the first band."""

        chosen = self.specs[0]
        for spec in self.specs:
            if spec.usd_min <= usd:
                chosen = spec
        return chosen.tier

    def classify(
        self, core_amount: int, btc_amount: int, core_price: int, btc_price: int
    ) -> tuple[Tier, int]:
        cfg = self.config
        if core_amount <= 0 and btc_amount <= 0:
            raise InsufficientAmount("deposit requires a non-zero CORE or BTC amount")
        if 0 < core_amount < cfg.min_core_amount:
            raise BelowMinimum("CORE amount is below the minimum deposit")
        if 0 < btc_amount < cfg.min_btc_amount:
            raise BelowMinimum("BTC amount is below the minimum deposit")

        usd = checked_add(usd_value(core_amount, core_price), usd_value(btc_amount, btc_price))
        if usd < cfg.global_min_usd:
            raise BelowMinimum("deposit value is below the global USD minimum")
        return self.tier_for_usd(usd), usd

    def size_multiplier(self, usd: int) -> int:
        """Order-of-magnitude step above $1,000, saturating at the configured cap."""

        units = usd // _SIZE_UNIT_USD
        magnitude = len(str(units)) - 1 if units >= 1 else 0
        return min(magnitude, self.config.size_max_magnitude) * self.config.size_step_bps

    def ratio_score(self, core_amount: int, btc_amount: int, tier: Tier) -> int:
        """WAD-scaled score in ``[0, WAD]``; ``WAD`` at the tier's optimal ratio."""

        if btc_amount == 0:
            return 0
        optimal = self.spec(tier).optimal_ratio * WAD
        actual = mul_div(core_amount, WAD, btc_amount)
        diff = mul_div(abs(actual - optimal), WAD, optimal)
        return WAD - min(diff, WAD)

    def bonus_bps(self, core_amount: int, btc_amount: int, tier: Tier, usd: int) -> int:
        if btc_amount == 0:
            return 0
        spec = self.spec(tier)
        ratio_part = mul_div(self.ratio_score(core_amount, btc_amount, tier), spec.max_bonus_bps, WAD)
        return min(spec.max_bonus_bps, ratio_part + self.size_multiplier(usd))


__all__ = ["TierEngine"]
