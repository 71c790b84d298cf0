"""In-memory repositories for DualStakeLab data models."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import replace

import pandas as pd

from .models import Position, Validator


class PositionRepository:
    """Positions keyed by owner with pandas export."""

    def __init__(self, positions: Iterable[Position] | None = None) -> None:
        self._positions: dict[str, Position] = {p.owner: p for p in positions or ()}

    def get(self, owner: str) -> Position | None:
        return self._positions.get(owner)

    def get_or_create(self, owner: str) -> Position:
        position = self._positions.get(owner)
        if position is None:
            position = Position(owner=owner)
            self._positions[owner] = position
        return position

    def total_shares(self) -> int:
        return sum(p.shares for p in self._positions.values())

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([p.to_dict() for p in self._positions.values()])

    def __len__(self) -> int:
        return len(self._positions)

    def __iter__(self) -> Iterator[Position]:
        return iter(self._positions.values())


class ValidatorRepository:
    """Eventually-consistent mirror of the external validator registry.

    Records are immutable snapshots; updates replace the stored record while
    preserving registration order.
    """

    def __init__(self, validators: Iterable[Validator] | None = None) -> None:
        self._validators: dict[str, Validator] = {v.address: v for v in validators or ()}

    def upsert(self, validator: Validator) -> None:
        self._validators[validator.address] = validator

    def get(self, address: str) -> Validator:
        return self._validators[address]

    def update(self, address: str, **changes: object) -> Validator:
        updated = replace(self._validators[address], **changes)
        self._validators[address] = updated
        return updated

    def filter(
        self,
        *,
        active_only: bool = False,
        max_risk: float | None = None,
        min_apy: int = 0,
        delegated_only: bool = False,
    ) -> "ValidatorRepository":
        res: list[Validator] = []
        for validator in self._validators.values():
            if active_only and not validator.is_active:
                continue
            if max_risk is not None and validator.risk_score >= max_risk:
                continue
            if validator.effective_apy < min_apy:
                continue
            if delegated_only and validator.delegated_amount == 0:
                continue
            res.append(validator)
        return ValidatorRepository(res)

    def delegations(self) -> dict[str, int]:
        return {v.address: v.delegated_amount for v in self._validators.values()}

    def total_delegated(self) -> int:
        return sum(v.delegated_amount for v in self._validators.values())

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([v.to_dict() for v in self._validators.values()])

    def __contains__(self, address: object) -> bool:
        return address in self._validators

    def __len__(self) -> int:
        return len(self._validators)

    def __iter__(self) -> Iterator[Validator]:
        return iter(self._validators.values())


__all__ = ["PositionRepository", "ValidatorRepository"]
