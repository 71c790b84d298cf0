"""Interfaces of the external collaborators consumed by the engine.

Concrete in-memory adapters live in :mod:`dual_stake_lab.collaborators.memory`;
production adapters wrap chain RPC clients behind the same protocols.
"""

from __future__ import annotations

from typing import Protocol

from ..core.models import AssetKind
from .calls import CallResult, classify_failure, guarded_call
from .memory import (
    ConstantRateSwapRouter,
    InMemoryShareToken,
    InMemoryValidatorRegistry,
    RecordingCustodian,
    StaticPriceOracle,
)


class PriceOracle(Protocol):
    """USD prices as WAD integers."""

    def get_price(self, asset: AssetKind) -> int: ...

    def is_stale(self, asset: AssetKind) -> bool: ...


class SwapRouter(Protocol):
    def swap(
        self,
        asset_in: AssetKind,
        asset_out: AssetKind,
        amount_in: int,
        min_amount_out: int,
        deadline: float,
    ) -> int: ...


class ValidatorRegistry(Protocol):
    """Delegation moves return the amount that actually moved."""

    def delegate(self, validator: str, amount: int) -> int: ...

    def undelegate(self, validator: str, amount: int) -> int: ...

    def redelegate(self, source: str, destination: str, amount: int) -> int: ...

    def get_validator_info(self, validator: str) -> tuple[bool, float, int]: ...

    def claim_rewards(self, validator: str) -> int: ...


class ShareToken(Protocol):
    def mint(self, to: str, amount: int) -> None: ...

    def burn(self, owner: str, amount: int) -> None: ...

    def total_supply(self) -> int: ...

    def balance_of(self, owner: str) -> int: ...


class Custodian(Protocol):
    """Moves released funds out of the pool; returns the amount sent."""

    def transfer_out(self, to: str, asset: AssetKind, amount: int) -> int: ...


__all__ = [
    "PriceOracle",
    "SwapRouter",
    "ValidatorRegistry",
    "ShareToken",
    "Custodian",
    "CallResult",
    "classify_failure",
    "guarded_call",
    "StaticPriceOracle",
    "ConstantRateSwapRouter",
    "InMemoryValidatorRegistry",
    "InMemoryShareToken",
    "RecordingCustodian",
]
