"""Risk-adjusted validator allocation.

:meth:`ValidatorAllocator.optimal_distribution` is a pure recommendation.
Turning it into delegations is done by diffing current stake against the
recommendation with :meth:`ValidatorAllocator.plan_transfers`, which pairs
over- and under-allocated validators greedily so that the number of transfers
stays minimal.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

import pandas as pd

from .core.constants import BPS
from .core.fixed_point import from_wad, mul_div
from .core.models import TransferInstruction, Validator


def _spread(total: int, weights: Sequence[int]) -> list[int]:
    """Split ``total`` by ``weights`` (bps), giving the rounding dust to the first."""

    parts = [mul_div(total, w, BPS) for w in weights]
    if parts:
        parts[0] += total - sum(parts)
    return parts


class ValidatorAllocator:
    def __init__(self, risk_ceiling: float = 60.0) -> None:
        self.risk_ceiling = risk_ceiling

    def eligible(self, validators: Iterable[Validator]) -> list[Validator]:
        return [v for v in validators if v.is_active and v.risk_score < self.risk_ceiling]

    def optimal_distribution(self, validators: Iterable[Validator]) -> list[tuple[Validator, int]]:
        """APY-proportional weights in bps over eligible validators.

        An empty eligible set yields an empty distribution, which callers
        treat as "nothing to do".  When every eligible validator reports zero
        APY the weights fall back to an equal split.
        """

        chosen = self.eligible(validators)
        if not chosen:
            return []
        total_apy = sum(max(v.effective_apy, 0) for v in chosen)
        if total_apy == 0:
            raw = [BPS // len(chosen)] * len(chosen)
        else:
            raw = [max(v.effective_apy, 0) * BPS // total_apy for v in chosen]
        raw[0] += BPS - sum(raw)
        return list(zip(chosen, raw))

    def targets(
        self, distribution: Sequence[tuple[Validator, int]], total: int
    ) -> dict[str, int]:
        amounts = _spread(total, [w for _, w in distribution])
        return {v.address: amount for (v, _), amount in zip(distribution, amounts)}

    def plan_transfers(
        self,
        current: Mapping[str, int],
        distribution: Sequence[tuple[Validator, int]],
        total: int | None = None,
    ) -> list[TransferInstruction]:
        """Minimal redelegations moving ``current`` stake onto the recommendation."""

        if not distribution:
            return []
        total = sum(current.values()) if total is None else total
        target = self.targets(distribution, total)

        addresses = list(dict.fromkeys([*current, *target]))
        excess: list[list] = []
        deficit: list[list] = []
        for address in addresses:
            delta = current.get(address, 0) - target.get(address, 0)
            if delta > 0:
                excess.append([address, delta])
            elif delta < 0:
                deficit.append([address, -delta])
        excess.sort(key=lambda item: (-item[1], item[0]))
        deficit.sort(key=lambda item: (-item[1], item[0]))

        plan: list[TransferInstruction] = []
        i = j = 0
        while i < len(excess) and j < len(deficit):
            amount = min(excess[i][1], deficit[j][1])
            plan.append(TransferInstruction(excess[i][0], deficit[j][0], amount))
            excess[i][1] -= amount
            deficit[j][1] -= amount
            if excess[i][1] == 0:
                i += 1
            if deficit[j][1] == 0:
                j += 1
        return plan

    @staticmethod
    def undelegation_order(validators: Iterable[Validator]) -> list[Validator]:
        """Validators with stake, lowest yield first, then highest risk."""

        staked = [v for v in validators if v.delegated_amount > 0]
        return sorted(staked, key=lambda v: (v.effective_apy, -v.risk_score, v.address))

    @staticmethod
    def distribution_frame(distribution: Sequence[tuple[Validator, int]]) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "address": v.address,
                    "weight": w / BPS,
                    "effective_apy": v.effective_apy / BPS,
                    "risk_score": v.risk_score,
                    "delegated_amount": from_wad(v.delegated_amount),
                }
                for v, w in distribution
            ]
        )


__all__ = ["ValidatorAllocator"]
