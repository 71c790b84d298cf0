"""Core data structures for :mod:`dual_stake_lab`.

This subpackage groups the fixed-point helpers, models and repositories used
across the project so they can be shared without importing the engine.
"""

from __future__ import annotations

from .constants import BPS, MAX_UINT256, WAD
from .fixed_point import bps_of, from_wad, mul_div, to_wad, usd_value
from .models import (
    AssetKind,
    ControllerState,
    DepositReceipt,
    PoolState,
    PoolStatus,
    Position,
    RebalanceState,
    Tier,
    TierSpec,
    TransferInstruction,
    UnbondingRequest,
    Validator,
    WithdrawalReceipt,
)
from .repositories import PositionRepository, ValidatorRepository

__all__ = [
    "BPS",
    "MAX_UINT256",
    "WAD",
    "bps_of",
    "from_wad",
    "mul_div",
    "to_wad",
    "usd_value",
    "AssetKind",
    "ControllerState",
    "DepositReceipt",
    "PoolState",
    "PoolStatus",
    "Position",
    "RebalanceState",
    "Tier",
    "TierSpec",
    "TransferInstruction",
    "UnbondingRequest",
    "Validator",
    "WithdrawalReceipt",
    "PositionRepository",
    "ValidatorRepository",
]
