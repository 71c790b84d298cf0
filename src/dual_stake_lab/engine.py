"""Pooled CORE + BTC staking engine.

:class:`DualStakeEngine` is the single owner of pool, reserve, queue and
rebalance state.  Every mutating operation runs under one re-entrant lock;
status reads do not lock.  External collaborators are only called through
:func:`~dual_stake_lab.collaborators.guarded_call` and ledgers move after the
call is confirmed, by the amount the collaborator reports.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable

from .access import AccessControl, Role, requires_role
from .allocation import ValidatorAllocator
from .collaborators import (
    Custodian,
    PriceOracle,
    ShareToken,
    SwapRouter,
    ValidatorRegistry,
    guarded_call,
)
from .config import EngineConfig
from .core.constants import WAD
from .core.fixed_point import checked_add, checked_sub, mul_div, usd_value
from .core.models import (
    AssetKind,
    DepositReceipt,
    PoolState,
    PoolStatus,
    Position,
    TransferInstruction,
    Validator,
    WithdrawalReceipt,
)
from .core.repositories import PositionRepository, ValidatorRepository
from .errors import (
    ExternalCallFailed,
    InsufficientAmount,
    InsufficientLiquidity,
    InsufficientShares,
    StalePrice,
    ZeroShares,
)
from .liquidity import LiquidityReserve
from .rebalance import RebalanceController, RebalanceOutcome
from .shares import ShareAccountant
from .tiers import TierEngine
from .unbonding import UnbondingQueue

logger = logging.getLogger(__name__)


class DualStakeEngine:
    def __init__(
        self,
        config: EngineConfig,
        *,
        oracle: PriceOracle,
        router: SwapRouter,
        registry: ValidatorRegistry,
        share_token: ShareToken,
        custodian: Custodian,
        operators: Iterable[str] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.oracle = oracle
        self.registry = registry
        self.share_token = share_token
        self.custodian = custodian
        self.clock = clock
        self.lock = threading.RLock()
        self.access = AccessControl(operators)

        self.tiers = TierEngine(config.tiers)
        self.shares = ShareAccountant()
        self.allocator = ValidatorAllocator(config.risk_ceiling)
        self.positions = PositionRepository()
        self.validators = ValidatorRepository()
        self.reserve = LiquidityReserve(config.liquidity)
        self.queue = UnbondingQueue()

        lowest = self.tiers.specs[0]
        self.pool = PoolState(target_ratio=lowest.optimal_ratio * WAD, target_tier=lowest.tier)
        self.controller = RebalanceController(
            config.rebalance,
            pool=self.pool,
            reserve=self.reserve,
            queue=self.queue,
            oracle=oracle,
            router=router,
            custodian=custodian,
            clock=clock,
            lock=self.lock,
        )

    # -----------------
    # Valuation helpers
    # -----------------

    def _prices(self) -> dict[AssetKind, int]:
        prices: dict[AssetKind, int] = {}
        for asset in AssetKind:
            if self.oracle.is_stale(asset):
                raise StalePrice(f"{asset.value} price is stale")
            price = guarded_call(
                f"oracle.get_price({asset.value})", self.oracle.get_price, asset
            ).unwrap()
            if not price or price <= 0:
                raise ExternalCallFailed(f"oracle returned non-positive {asset.value} price {price}")
            prices[asset] = price
        return prices

    def _pool_usd(self, prices: dict[AssetKind, int]) -> int:
        return checked_add(
            usd_value(self.controller.net_pooled(AssetKind.CORE), prices[AssetKind.CORE]),
            usd_value(self.controller.net_pooled(AssetKind.BTC), prices[AssetKind.BTC]),
        )

    def _net_view(self) -> PoolState:
        return PoolState(
            total_pooled_core=self.controller.net_pooled(AssetKind.CORE),
            total_pooled_btc=self.controller.net_pooled(AssetKind.BTC),
        )

    def _retarget(self, prices: dict[AssetKind, int]) -> None:
        tier = self.tiers.tier_for_usd(self._pool_usd(prices))
        if tier is not self.pool.target_tier:
            logger.info("Pool target tier %s -> %s", self.pool.target_tier.name, tier.name)
        self.pool.target_tier = tier
        self.pool.target_ratio = self.tiers.spec(tier).optimal_ratio * WAD

    def _reprice_position(self, position: Position, prices: dict[AssetKind, int]) -> None:
        if position.shares == 0:
            position.core_amount = position.btc_amount = 0
            position.tier = None
            position.bonus_bps = 0
            return
        usd = usd_value(position.core_amount, prices[AssetKind.CORE]) + usd_value(
            position.btc_amount, prices[AssetKind.BTC]
        )
        position.tier = self.tiers.tier_for_usd(usd)
        position.bonus_bps = self.tiers.bonus_bps(
            position.core_amount, position.btc_amount, position.tier, usd
        )

    def total_shares(self) -> int:
        return self.positions.total_shares()

    # -----------------
    # Deposits & withdrawals
    # -----------------

    def deposit(self, owner: str, core_amount: int, btc_amount: int) -> DepositReceipt:
        if core_amount < 0 or btc_amount < 0:
            raise InsufficientAmount("amounts must not be negative")
        with self.lock:
            prices = self._prices()
            _, usd = self.tiers.classify(
                core_amount, btc_amount, prices[AssetKind.CORE], prices[AssetKind.BTC]
            )
            minted = self.shares.shares_to_mint(usd, self._pool_usd(prices), self.total_shares())
            guarded_call("share_token.mint", self.share_token.mint, owner, minted).unwrap()

            for asset, amount in ((AssetKind.CORE, core_amount), (AssetKind.BTC, btc_amount)):
                if amount:
                    self.pool.set_pooled(asset, checked_add(self.pool.pooled(asset), amount))
                    self.reserve.credit(asset, amount)

            position = self.positions.get_or_create(owner)
            position.core_amount = checked_add(position.core_amount, core_amount)
            position.btc_amount = checked_add(position.btc_amount, btc_amount)
            position.shares = checked_add(position.shares, minted)
            self._reprice_position(position, prices)
            self._retarget(prices)
            logger.info(
                "Deposit by %s: %s CORE + %s BTC -> %s shares (%s, bonus %s bps)",
                owner,
                core_amount,
                btc_amount,
                minted,
                position.tier.name if position.tier is not None else "-",
                position.bonus_bps,
            )

            self.controller.maybe_rebalance("deposit")
            return DepositReceipt(
                owner=owner,
                shares=minted,
                tier=position.tier,  # type: ignore[arg-type]
                usd_value=usd,
                bonus_bps=position.bonus_bps,
            )

    def request_withdrawal(self, owner: str, shares: int) -> WithdrawalReceipt:
        if shares <= 0:
            raise ZeroShares("cannot redeem zero shares")
        with self.lock:
            position = self.positions.get(owner)
            if position is None or position.shares < shares:
                raise InsufficientShares(f"{owner} does not hold {shares} shares")
            core, btc = self.shares.assets_to_return(shares, self._net_view(), self.total_shares())
            guarded_call("share_token.burn", self.share_token.burn, owner, shares).unwrap()

            position.core_amount -= mul_div(position.core_amount, shares, position.shares)
            position.btc_amount -= mul_div(position.btc_amount, shares, position.shares)
            position.shares -= shares
            if position.shares == 0:
                position.core_amount = position.btc_amount = 0
                position.tier = None
                position.bonus_bps = 0

            amounts = {AssetKind.CORE: core, AssetKind.BTC: btc}
            fees: dict[AssetKind, int] = {}
            request_ids: list[int] = []
            instant = True
            for asset, amount in amounts.items():
                if amount == 0:
                    continue
                if self.reserve.can_withdraw_instantly(amount, asset) and amount <= self.controller.free_liquid(asset):
                    fees[asset], queued = self._pay_instant(owner, asset, amount)
                    if queued is not None:
                        request_ids.append(queued)
                        instant = False
                    continue
                request = self.queue.enqueue(
                    owner, amount, asset, self.clock(), self.config.liquidity.unbonding_period[asset]
                )
                request_ids.append(request.request_id)
                instant = False
                logger.info(
                    "Queued withdrawal %s for %s: %s %s unlocks at %s",
                    request.request_id,
                    owner,
                    amount,
                    asset.value,
                    request.unlock_time,
                )
            return WithdrawalReceipt(
                instant=instant, amounts=amounts, fees=fees, request_ids=tuple(request_ids)
            )

    def _pay_instant(self, owner: str, asset: AssetKind, amount: int) -> tuple[int, int | None]:
        """Pay an instant leg; returns the fee and a request id for any unpaid remainder."""

        fee, provider_cut = self.reserve.instant_fee(amount)
        payout = amount - fee
        result = guarded_call("custodian.transfer_out", self.custodian.transfer_out, owner, asset, payout)
        if not result.ok:
            # nothing moved: the whole leg becomes a request releasable right away
            request = self.queue.enqueue(owner, amount, asset, self.clock(), 0.0)
            logger.warning(
                "Instant payout to %s failed; %s %s queued as request %s",
                owner,
                amount,
                asset.value,
                request.request_id,
            )
            return 0, request.request_id

        sent = min(int(result.value or 0), payout)
        distributed = self.reserve.distribute_fee(asset, provider_cut)
        self.pool.set_pooled(asset, checked_sub(self.pool.pooled(asset), sent + distributed))
        self.reserve.debit(asset, sent)

        remainder = payout - sent
        if remainder == 0:
            logger.info("Instant withdrawal: %s %s to %s (fee %s)", sent, asset.value, owner, fee)
            return fee, None
        request = self.queue.enqueue(owner, remainder, asset, self.clock(), 0.0)
        logger.warning(
            "Instant payout of %s %s to %s incomplete; %s queued as request %s",
            payout,
            asset.value,
            owner,
            remainder,
            request.request_id,
        )
        return fee, request.request_id

    def process_withdrawal(self, request_id: int) -> int:
        """Release one unlocked request; returns the amount sent."""

        with self.lock:
            request = self.queue.check_releasable(request_id, self.clock())
            return self._release(request.request_id)

    def process_ready_requests(self) -> list[int]:
        """Release every unlocked request that can be covered; others stay queued."""

        released: list[int] = []
        with self.lock:
            for request in self.queue.ready(self.clock()):
                try:
                    self._release(request.request_id)
                except (InsufficientLiquidity, ExternalCallFailed) as exc:
                    logger.warning("Request %s stays queued: %s", request.request_id, exc)
                    continue
                if request.processed:
                    released.append(request.request_id)
        return released

    def _release(self, request_id: int) -> int:
        request = self.queue.get(request_id)
        asset, amount = request.asset, request.amount
        shortfall = amount - self.pool.liquid(asset)
        if shortfall > 0:
            self._undelegate(asset, shortfall)
        if self.pool.liquid(asset) < amount:
            raise InsufficientLiquidity(
                f"request {request_id} needs {amount} {asset.value}, "
                f"{self.pool.liquid(asset)} liquid after undelegation"
            )

        result = guarded_call("custodian.transfer_out", self.custodian.transfer_out, request.user, asset, amount)
        sent = min(int(result.unwrap() or 0), amount)
        self.pool.set_pooled(asset, checked_sub(self.pool.pooled(asset), sent))
        self.reserve.debit(asset, sent)
        request.amount -= sent
        if request.amount == 0:
            request.amount = amount
            self.queue.mark_processed(request_id)
            logger.info("Released request %s: %s %s to %s", request_id, amount, asset.value, request.user)
        else:
            logger.warning(
                "Request %s partially released (%s of %s %s)", request_id, sent, amount, asset.value
            )
        return sent

    def _undelegate(self, asset: AssetKind, needed: int) -> int:
        """Pull stake back, lowest-yield and riskiest validators first."""

        if asset is not AssetKind.CORE:
            return 0
        moved = 0
        for validator in self.allocator.undelegation_order(self.validators):
            if moved >= needed:
                break
            take = min(validator.delegated_amount, needed - moved)
            result = guarded_call("registry.undelegate", self.registry.undelegate, validator.address, take)
            if not result.ok:
                continue
            got = min(int(result.value or 0), take)
            self.validators.update(validator.address, delegated_amount=validator.delegated_amount - got)
            self.pool.total_staked_core = checked_sub(self.pool.total_staked_core, got)
            self.reserve.credit(AssetKind.CORE, got)
            moved += got
        if moved < needed:
            logger.warning("Undelegated %s of %s CORE needed", moved, needed)
        return moved

    # -----------------
    # Rebalancing
    # -----------------

    def needs_rebalance(self) -> bool:
        return self.controller.needs_rebalance()

    def rebalance(self, caller: str) -> RebalanceOutcome:
        return self.controller.rebalance(caller)

    def compound(self) -> int:
        """Claim validator rewards into the pool, then run the internal trigger."""

        with self.lock:
            claimed = 0
            for validator in self.validators:
                result = guarded_call("registry.claim_rewards", self.registry.claim_rewards, validator.address)
                if result.ok and result.value:
                    claimed += int(result.value)
            if claimed:
                self.pool.total_pooled_core = checked_add(self.pool.total_pooled_core, claimed)
                self.reserve.credit(AssetKind.CORE, claimed)
                logger.info("Compounded %s CORE of validator rewards", claimed)
            try:
                self._retarget(self._prices())
            except (StalePrice, ExternalCallFailed) as exc:
                logger.warning("Target not refreshed after compounding: %s", exc)
            self.controller.maybe_rebalance("compound")
            return claimed

    @requires_role(Role.OPERATOR)
    def resume(self, caller: str) -> bool:
        return self.controller.resume()

    @requires_role(Role.OPERATOR)
    def pause(self, caller: str) -> None:
        self.controller.pause()

    @requires_role(Role.OPERATOR)
    def update_thresholds(self, caller: str, **changes: float | int | bool) -> None:
        self.controller.update_thresholds(**changes)

    @requires_role(Role.OPERATOR)
    def set_reserve_ratio(self, caller: str, asset: AssetKind, bps: int) -> None:
        with self.lock:
            self.reserve.set_reserve_ratio(asset, bps)

    # -----------------
    # Validators
    # -----------------

    @requires_role(Role.OPERATOR)
    def register_validator(self, caller: str, address: str) -> Validator:
        with self.lock:
            active, risk, apy = guarded_call(
                "registry.get_validator_info", self.registry.get_validator_info, address
            ).unwrap()
            validator = Validator(address=address, is_active=active, risk_score=risk, effective_apy=apy)
            self.validators.upsert(validator)
            return validator

    def refresh_validators(self) -> int:
        """Sync the mirror from the registry; returns the number refreshed."""

        refreshed = 0
        with self.lock:
            for validator in list(self.validators):
                result = guarded_call(
                    "registry.get_validator_info", self.registry.get_validator_info, validator.address
                )
                if not result.ok:
                    continue
                active, risk, apy = result.value  # type: ignore[misc]
                self.validators.update(
                    validator.address, is_active=active, risk_score=risk, effective_apy=apy
                )
                refreshed += 1
        return refreshed

    @requires_role(Role.OPERATOR)
    def allocate_stake(self, caller: str) -> dict[str, int]:
        """Delegate liquid CORE above the reserve target; returns moved amounts."""

        with self.lock:
            queued = self.queue.queued_total(AssetKind.CORE)
            deployable = self.controller.free_liquid(AssetKind.CORE) - self.reserve.target_reserve(
                AssetKind.CORE, queued
            )
            distribution = self.allocator.optimal_distribution(self.validators)
            if deployable <= 0 or not distribution:
                logger.info("Nothing to allocate (deployable=%s, eligible=%s)", deployable, len(distribution))
                return {}

            moved: dict[str, int] = {}
            for address, amount in self.allocator.targets(distribution, deployable).items():
                if amount == 0:
                    continue
                result = guarded_call("registry.delegate", self.registry.delegate, address, amount)
                if not result.ok:
                    continue
                got = min(int(result.value or 0), amount)
                self.reserve.debit(AssetKind.CORE, got)
                self.pool.total_staked_core = checked_add(self.pool.total_staked_core, got)
                current = self.validators.get(address).delegated_amount
                self.validators.update(address, delegated_amount=current + got)
                moved[address] = got
            return moved

    @requires_role(Role.OPERATOR)
    def rebalance_validators(self, caller: str) -> list[TransferInstruction]:
        """Redelegate existing stake onto the current recommendation."""

        with self.lock:
            distribution = self.allocator.optimal_distribution(self.validators)
            plan = self.allocator.plan_transfers(self.validators.delegations(), distribution)
            done: list[TransferInstruction] = []
            for step in plan:
                result = guarded_call(
                    "registry.redelegate", self.registry.redelegate, step.source, step.destination, step.amount
                )
                if not result.ok:
                    continue
                got = min(int(result.value or 0), step.amount)
                src = self.validators.get(step.source)
                dst = self.validators.get(step.destination)
                self.validators.update(src.address, delegated_amount=src.delegated_amount - got)
                self.validators.update(dst.address, delegated_amount=dst.delegated_amount + got)
                done.append(TransferInstruction(step.source, step.destination, got))
            return done

    # -----------------
    # Liquidity providers
    # -----------------

    def provide_liquidity(self, provider: str, asset: AssetKind, amount: int) -> int:
        with self.lock:
            return self.reserve.add_liquidity(provider, asset, amount)

    def withdraw_liquidity(self, provider: str, asset: AssetKind, shares: int) -> int:
        with self.lock:
            held = self.reserve.lp_shares[asset].get(provider, 0)
            if shares <= 0 or shares > held:
                raise InsufficientShares(f"{provider} holds {held} LP shares of {asset.value}")
            result = guarded_call(
                "custodian.transfer_out", self.custodian.transfer_out, provider, asset, shares
            )
            sent = min(int(result.unwrap() or 0), shares)
            if sent == 0:
                return 0
            if sent < shares:
                logger.warning(
                    "LP withdrawal for %s moved %s of %s %s", provider, sent, shares, asset.value
                )
            return self.reserve.remove_liquidity(provider, asset, sent)

    def claim_lp_rewards(self, provider: str) -> dict[AssetKind, int]:
        paid: dict[AssetKind, int] = {}
        with self.lock:
            for asset, amount in self.reserve.pending_rewards(provider).items():
                result = guarded_call(
                    "custodian.transfer_out", self.custodian.transfer_out, provider, asset, amount
                )
                if not result.ok:
                    continue
                sent = min(int(result.value or 0), amount)
                self.reserve.settle_rewards(provider, asset, sent)
                paid[asset] = sent
        return paid

    # -----------------
    # Status
    # -----------------

    def get_pool_status(self) -> PoolStatus:
        queued = {a: self.queue.queued_total(a) for a in AssetKind}
        try:
            nav: int | None = self.shares.nav(self._pool_usd(self._prices()), self.total_shares())
        except (StalePrice, ExternalCallFailed):
            nav = None
        return PoolStatus(
            tier=self.pool.target_tier,
            ratio=self.controller.current_ratio(),
            target_ratio=self.pool.target_ratio,
            needs_rebalance=self.controller.needs_rebalance(),
            reserve_health={a: self.reserve.health(a, queued[a]) for a in AssetKind},
            paused=self.controller.state.paused,
            state=self.controller.state.state,
            nav=nav,
        )

    def check_invariants(self) -> None:
        """Raise ``AssertionError`` if any ledger identity is broken."""

        self.pool.check_invariants()
        for asset in AssetKind:
            expected = self.pool.liquid(asset) + self.reserve.lp_outstanding(asset)
            if self.reserve.available[asset] != expected:
                raise AssertionError(
                    f"{asset.value} reserve {self.reserve.available[asset]} != ledger {expected}"
                )
        if self.total_shares() != self.share_token.total_supply():
            raise AssertionError("position shares diverge from share token supply")
        if self.validators.total_delegated() != self.pool.total_staked_core:
            raise AssertionError("validator delegations diverge from staked CORE")


__all__ = ["DualStakeEngine"]
