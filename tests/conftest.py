import sys
from pathlib import Path
from typing import Any, Callable

import pytest


# Ensure the package is importable without installation when running tests locally
pkg_src = Path(__file__).resolve().parents[1] / "src"
if str(pkg_src) not in sys.path:
    sys.path.insert(0, str(pkg_src))

from dual_stake_lab import DualStakeEngine  # noqa: E402
from dual_stake_lab.collaborators import (  # noqa: E402
    ConstantRateSwapRouter,
    InMemoryShareToken,
    InMemoryValidatorRegistry,
    RecordingCustodian,
    StaticPriceOracle,
)
from dual_stake_lab.config import EngineConfig, merge_config  # noqa: E402
from dual_stake_lab.core import WAD, AssetKind  # noqa: E402

START = 1_700_000_000.0
OPERATOR = "ops"


class FakeClock:
    """Deterministic clock advanced by hand."""

    def __init__(self, start: float = START) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def oracle(clock: FakeClock) -> StaticPriceOracle:
    return StaticPriceOracle(
        {AssetKind.CORE: WAD, AssetKind.BTC: 50_000 * WAD}, max_age=3_600.0, clock=clock
    )


@pytest.fixture
def router(oracle: StaticPriceOracle, clock: FakeClock) -> ConstantRateSwapRouter:
    return ConstantRateSwapRouter(oracle, clock=clock)


@pytest.fixture
def registry() -> InMemoryValidatorRegistry:
    return InMemoryValidatorRegistry()


@pytest.fixture
def share_token() -> InMemoryShareToken:
    return InMemoryShareToken()


@pytest.fixture
def custodian() -> RecordingCustodian:
    return RecordingCustodian()


@pytest.fixture
def make_engine(
    oracle: StaticPriceOracle,
    router: ConstantRateSwapRouter,
    registry: InMemoryValidatorRegistry,
    share_token: InMemoryShareToken,
    custodian: RecordingCustodian,
    clock: FakeClock,
) -> Callable[..., DualStakeEngine]:
    """Build an engine over the shared in-memory collaborators.

    Keyword arguments are config sections merged over the defaults.
    """

    def factory(**overrides: Any) -> DualStakeEngine:
        config = EngineConfig.from_mapping(merge_config(overrides))
        return DualStakeEngine(
            config,
            oracle=oracle,
            router=router,
            registry=registry,
            share_token=share_token,
            custodian=custodian,
            operators=[OPERATOR],
            clock=clock,
        )

    return factory


@pytest.fixture
def engine(make_engine: Callable[..., DualStakeEngine]) -> DualStakeEngine:
    """Engine with internal rebalancing switched off so ledgers stay predictable."""

    return make_engine(rebalance={"auto_rebalance": False})
