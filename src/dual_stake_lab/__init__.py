"""
DualStakeLab: pooled CORE + BTC staking engine.

Design goals:
- Integer WAD fixed point for every ledger value
- Tiered dual-asset bonus and proportional share accounting
- Risk-filtered validator allocation
- Ratio rebalancing behind a cooldown and circuit breaker
- Instant withdrawals from a liquidity reserve, unbonding queue otherwise
- External collaborators behind protocols; in-memory adapters for simulation
"""

from __future__ import annotations

import logging

from . import risk_scoring
from .access import AccessControl, Role
from .allocation import ValidatorAllocator
from .config import EngineConfig, default_config, load_config
from .core import (
    AssetKind,
    DepositReceipt,
    PoolStatus,
    Position,
    Tier,
    Validator,
    WithdrawalReceipt,
)
from .engine import DualStakeEngine
from .errors import DualStakeError
from .liquidity import LiquidityReserve
from .rebalance import RebalanceController, RebalanceOutcome
from .reporting import engine_report
from .scheduler import RebalanceScheduler
from .shares import ShareAccountant
from .tiers import TierEngine
from .unbonding import UnbondingQueue
from .visualization import Visualizer

logger = logging.getLogger(__name__)

__all__ = [
    "AccessControl",
    "AssetKind",
    "DepositReceipt",
    "DualStakeEngine",
    "DualStakeError",
    "EngineConfig",
    "LiquidityReserve",
    "PoolStatus",
    "Position",
    "RebalanceController",
    "RebalanceOutcome",
    "RebalanceScheduler",
    "Role",
    "ShareAccountant",
    "Tier",
    "TierEngine",
    "UnbondingQueue",
    "Validator",
    "ValidatorAllocator",
    "Visualizer",
    "WithdrawalReceipt",
    "default_config",
    "engine_report",
    "load_config",
    "risk_scoring",
]
