from __future__ import annotations

"""Heuristic risk scoring for validators."""

from dataclasses import replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - imported only for type checking
    from dual_stake_lab.core import Validator

# Commission above this level (bps) counts as maximally risky.
MAX_COMMISSION_BPS = 2_000

# Slashing events beyond this count are capped.
MAX_SLASHING_EVENTS = 3


def calculate_risk_score(uptime: float, commission_bps: int, slashing_events: int) -> float:
    """Combine factors into a normalized risk score in the range [0, 100].

    Parameters
    ----------
    uptime:
        Fraction of blocks signed, ``0`` (offline) to ``1`` (always up).
    commission_bps:
        Validator commission in basis points. Values above ``2000`` are capped.
    slashing_events:
        Number of recorded slashing events. Values above ``3`` are capped.
    """

    # Clamp inputs to expected ranges
    uptime = max(0.0, min(uptime, 1.0))
    commission_bps = max(0, min(commission_bps, MAX_COMMISSION_BPS))
    slashing_events = max(0, min(slashing_events, MAX_SLASHING_EVENTS))

    uptime_component = 1.0 - uptime
    commission_component = commission_bps / MAX_COMMISSION_BPS
    slashing_component = slashing_events / MAX_SLASHING_EVENTS

    # slashing dominates: a validator that was slashed is risky even when up
    raw = 0.4 * uptime_component + 0.2 * commission_component + 0.4 * slashing_component
    return round(100.0 * raw, 4)


def score_validator(
    validator: "Validator",
    *,
    uptime: float = 1.0,
    commission_bps: int = 0,
    slashing_events: int = 0,
) -> "Validator":
    """Return a new :class:`~dual_stake_lab.core.Validator` with an updated ``risk_score``."""

    score = calculate_risk_score(uptime, commission_bps, slashing_events)
    return replace(validator, risk_score=score)
