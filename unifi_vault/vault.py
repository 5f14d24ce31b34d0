"""Vault façade.

Composes the engine components into one ERC-4626 / ERC-7540 style vault:

- Deposits and mints are synchronous
- Redemptions are asynchronous: :py:meth:`Vault.request_redeem` first, then
  :py:meth:`Vault.withdraw` or :py:meth:`Vault.redeem` after the timelock
- A fraction of the assets is deployed to one strategy by the :py:class:`unifi_vault.allocator.CapitalAllocator`

`total_assets() == on_hand + currently_invested` at all times.

Every mutating entry point is atomic: if it raises, all state is rolled back.
Governance entry points take an :py:class:`unifi_vault.auth.AuthorizationContext`.

Example:

.. code-block:: python

    vault = Vault(vault_address, usdc, share_token, treasury, clock=ManualClock())
    vault.set_strategy(auth, strategy)
    vault.set_investment_ratio(auth, 8000)

    usdc.approve(alice, vault.address, amount)
    shares = vault.deposit(alice, amount, alice)

    vault.request_redeem(alice, shares, alice, alice)
    clock.advance(vault.redemptions.min_timelock)
    vault.redeem(alice, shares, alice, alice)
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from eth_typing import HexAddress
from eth_utils import is_address

from unifi_vault import events
from unifi_vault.allocator import CapitalAllocator
from unifi_vault.auth import Action, AuthorizationContext
from unifi_vault.config import VaultConfig
from unifi_vault.conversion import ConversionPolicy, DecimalOffsetConversion, PoolTotals, Rounding
from unifi_vault.errors import ExceededMaxDeposit, ExceededMaxMint, TransferFailed, VaultPaused, ZeroAmount
from unifi_vault.operator import OperatorRegistry
from unifi_vault.oracle.checker import DefaultChecker
from unifi_vault.redemption import PoolLedger, RedemptionEngine, RedemptionRequest
from unifi_vault.strategy.base import StrategyAdapter
from unifi_vault.timestamp import Clock, SystemClock
from unifi_vault.token import ERC20Ledger, ShareToken
from unifi_vault.transaction import AtomicExecutor, Stateful, atomic


logger = logging.getLogger(__name__)


#: Unlimited deposit
MAX_UINT256 = 2**256 - 1


@dataclass(slots=True)
class VaultSummary:
    """Human readable snapshot of the vault, see :py:meth:`Vault.fetch_summary`."""

    total_assets: Decimal
    on_hand: Decimal
    currently_invested: Decimal
    strategy_managed: Decimal
    strategy_yield: Decimal
    pending_redeem_assets: Decimal
    total_shares: Decimal
    share_price: Decimal
    investment_ratio_bps: int
    paused: bool


class Vault(Stateful):
    """Tokenised vault with asynchronous redemptions and one strategy."""

    snapshot_fields = ("paused", "treasury", "deposit_cap")
    snapshot_refs = ("price_checker",)

    def __init__(
        self,
        address: HexAddress,
        asset: ERC20Ledger,
        share_token: ShareToken,
        treasury: HexAddress,
        config: VaultConfig | None = None,
        conversion: ConversionPolicy | None = None,
        clock: Clock | None = None,
        chain_id: int = 1,
        name: str = "Unifi Vault",
    ):
        assert is_address(address), f"Not an address: {address}"
        assert is_address(treasury), f"Not an address: {treasury}"
        assert isinstance(share_token, ShareToken), f"Got {type(share_token)}"

        if config is None:
            config = VaultConfig()

        self.address = address
        self.name = name
        self.asset = asset
        self.share_token = share_token
        self.treasury = treasury
        self.deposit_cap = config.deposit_cap
        self.paused = False
        self.clock = clock or SystemClock()
        self.conversion = conversion or DecimalOffsetConversion(asset.decimals, share_token.decimals)

        self.event_log = events.EventLog()
        self.pool = PoolLedger()
        self.operators = OperatorRegistry(address, chain_id, name, self.event_log, self.clock)
        self.allocator = CapitalAllocator(address, asset, self.event_log, self.clock, config.investment_ratio_bps)
        self.redemptions = RedemptionEngine(
            address,
            asset,
            share_token,
            self.pool,
            to_assets=self._to_assets,
            capital=self.allocator,
            operators=self.operators,
            event_log=self.event_log,
            clock=self.clock,
            min_timelock=config.min_timelock_seconds,
            max_timelock=config.max_timelock_seconds,
            min_vault_share_bps=config.min_vault_share_bps,
        )
        self.price_checker: DefaultChecker | None = None

        self.executor = AtomicExecutor(share_token.execution_lock)
        share_token.add_minter(address)

    def __repr__(self):
        return f"<Vault {self.name} {self.asset.symbol} at {self.address}>"

    def get_stateful_participants(self) -> list[Stateful]:
        """Every component a vault operation may mutate."""
        participants = [
            self,
            self.pool,
            self.event_log,
            self.operators,
            self.allocator,
            self.redemptions,
            self.asset,
            self.share_token,
            self.price_checker,
        ]
        if self.allocator.strategy is not None:
            participants += self.allocator.strategy.get_stateful_participants()
        return participants

    #
    # Accounting views
    #

    def total_assets(self) -> int:
        """On hand balance plus capital deployed to the strategy."""
        return self.allocator.on_hand() + self.allocator.currently_invested

    def pool_totals(self) -> PoolTotals:
        state = self.pool.state
        return PoolTotals(state.internal_shares, self.total_assets(), state.pending_redeem_assets)

    def _to_shares(self, assets: int, rounding: Rounding) -> int:
        return self.conversion.to_shares(assets, self.pool_totals(), rounding)

    def _to_assets(self, shares: int, rounding: Rounding) -> int:
        return self.conversion.to_assets(shares, self.pool_totals(), rounding)

    def convert_to_shares(self, assets: int) -> int:
        return self._to_shares(assets, Rounding.floor)

    def convert_to_assets(self, shares: int) -> int:
        return self._to_assets(shares, Rounding.floor)

    def preview_deposit(self, assets: int) -> int:
        """Shares minted for `assets`, rounded down."""
        return self._to_shares(assets, Rounding.floor)

    def preview_mint(self, shares: int) -> int:
        """Assets collected for `shares`, rounded up."""
        return self._to_assets(shares, Rounding.ceil)

    def share_price(self) -> Decimal:
        """Assets one whole share converts to, human readable."""
        one_share = 10**self.share_token.decimals
        return self.asset.convert_to_decimals(self.convert_to_assets(one_share))

    def is_paused(self) -> bool:
        return self.paused or self.share_token.is_paused()

    def max_deposit(self, receiver: HexAddress) -> int:
        if self.is_paused():
            return 0
        if self.deposit_cap is None:
            return MAX_UINT256
        return max(0, self.deposit_cap - self.total_assets())

    def max_mint(self, receiver: HexAddress) -> int:
        max_assets = self.max_deposit(receiver)
        if max_assets == MAX_UINT256:
            return MAX_UINT256
        return self.convert_to_shares(max_assets)

    def max_withdraw(self, controller: HexAddress) -> int:
        return self.redemptions.max_withdraw(controller)

    def max_redeem(self, controller: HexAddress) -> int:
        return self.redemptions.max_redeem(controller)

    def pending_redeem_request(self, controller: HexAddress) -> int:
        return self.redemptions.pending_redeem_request(controller)

    def claimable_redeem_request(self, controller: HexAddress) -> int:
        return self.redemptions.claimable_redeem_request(controller)

    def get_redemption_request(self, controller: HexAddress) -> RedemptionRequest | None:
        return self.redemptions.get_request(controller)

    def preview_redeem_timelock(self, shares: int) -> int:
        return self.redemptions.preview_redeem_timelock(shares)

    def is_operator(self, controller: HexAddress, operator: HexAddress) -> bool:
        return self.operators.is_operator(controller, operator)

    def fetch_summary(self) -> VaultSummary:
        to_decimals = self.asset.convert_to_decimals
        strategy = self.allocator.strategy
        return VaultSummary(
            total_assets=to_decimals(self.total_assets()),
            on_hand=to_decimals(self.allocator.on_hand()),
            currently_invested=to_decimals(self.allocator.currently_invested),
            strategy_managed=to_decimals(self.allocator.strategy_managed()),
            strategy_yield=to_decimals(strategy.total_yield() if strategy else 0),
            pending_redeem_assets=to_decimals(self.pool.state.pending_redeem_assets),
            total_shares=self.share_token.convert_to_decimals(self.pool.state.internal_shares),
            share_price=self.share_price(),
            investment_ratio_bps=self.allocator.investment_ratio,
            paused=self.is_paused(),
        )

    #
    # Depositor entry points
    #

    @atomic
    def deposit(self, sender: HexAddress, assets: int, receiver: HexAddress) -> int:
        """Deposit exact assets, receive shares.

        :return:
            Shares minted to `receiver`
        """
        if assets == 0:
            raise ZeroAmount("deposit assets", assets)
        self._check_not_paused("deposit")

        max_assets = self.max_deposit(receiver)
        if assets > max_assets:
            raise ExceededMaxDeposit(receiver, assets, max_assets)

        shares = self.preview_deposit(assets)
        if shares == 0:
            raise ZeroAmount("deposit shares", shares)

        self._deposit(sender, receiver, assets, shares)
        return shares

    @atomic
    def mint(self, sender: HexAddress, shares: int, receiver: HexAddress) -> int:
        """Mint exact shares, pay assets.

        :return:
            Assets pulled from `sender`
        """
        if shares == 0:
            raise ZeroAmount("mint shares", shares)
        self._check_not_paused("mint")

        max_shares = self.max_mint(receiver)
        if shares > max_shares:
            raise ExceededMaxMint(receiver, shares, max_shares)

        assets = self.preview_mint(shares)
        self._deposit(sender, receiver, assets, shares)
        return assets

    @atomic
    def request_redeem(self, sender: HexAddress, shares: int, controller: HexAddress, owner: HexAddress) -> RedemptionRequest:
        """Phase 1 of a redemption, see :py:meth:`unifi_vault.redemption.RedemptionEngine.request_redeem`."""
        self._check_not_paused("request redemption")
        return self.redemptions.request_redeem(sender, shares, controller, owner)

    @atomic
    def withdraw(self, sender: HexAddress, assets: int, receiver: HexAddress, controller: HexAddress) -> int:
        """Phase 2 of a redemption, exact assets.

        :return:
            Shares debited from the request
        """
        return self.redemptions.withdraw(sender, assets, receiver, controller)

    @atomic
    def redeem(self, sender: HexAddress, shares: int, receiver: HexAddress, controller: HexAddress) -> int:
        """Phase 2 of a redemption, exact shares.

        :return:
            Assets sent to `receiver`
        """
        return self.redemptions.redeem(sender, shares, receiver, controller)

    @atomic
    def set_operator(self, sender: HexAddress, operator: HexAddress, approved: bool) -> bool:
        return self.operators.set_operator(sender, operator, approved)

    @atomic
    def authorize_operator(
        self,
        controller: HexAddress,
        operator: HexAddress,
        approved: bool,
        nonce: bytes,
        deadline: int,
        signature: bytes,
    ) -> bool:
        return self.operators.authorize_operator(controller, operator, approved, nonce, deadline, signature)

    @atomic
    def invalidate_nonce(self, sender: HexAddress, nonce: bytes):
        self.operators.invalidate_nonce(sender, nonce)

    @atomic
    def check_price(self, sender: HexAddress) -> bool:
        """Poll the price defense. Anyone can call.

        :return:
            Whether the pool is paused
        """
        assert self.price_checker is not None, f"No price checker attached to {self}"
        return self.price_checker.check(sender)

    #
    # Governance entry points
    #

    @atomic
    def set_strategy(self, auth: AuthorizationContext, strategy: StrategyAdapter):
        auth.require(Action.set_strategy)
        self.allocator.set_strategy(strategy)

    @atomic
    def clear_strategy(self, auth: AuthorizationContext):
        auth.require(Action.clear_strategy)
        self.allocator.clear_strategy()

    @atomic
    def set_investment_ratio(self, auth: AuthorizationContext, ratio_bps: int):
        auth.require(Action.set_investment_ratio)
        self.allocator.set_investment_ratio(ratio_bps)

    @atomic
    def rebalance(self, auth: AuthorizationContext):
        auth.require(Action.rebalance)
        self.allocator.rebalance()

    @atomic
    def harvest(self, auth: AuthorizationContext) -> int:
        """Skim strategy yield to the treasury.

        :return:
            Assets sent to the treasury
        """
        auth.require(Action.harvest)
        return self.allocator.harvest(self.treasury)

    @atomic
    def emergency_exit(self, auth: AuthorizationContext) -> int:
        auth.require(Action.emergency_exit)
        return self.allocator.emergency_exit(self.treasury)

    @atomic
    def set_min_timelock(self, auth: AuthorizationContext, seconds: int):
        """Change the base redemption wait. Existing requests keep their timestamps."""
        auth.require(Action.set_min_timelock)
        old = self.redemptions.min_timelock
        self.redemptions.set_min_timelock(seconds)
        self._emit_parameter("min_timelock", old, seconds)

    @atomic
    def set_max_timelock(self, auth: AuthorizationContext, seconds: int):
        auth.require(Action.set_max_timelock)
        old = self.redemptions.max_timelock
        self.redemptions.set_max_timelock(seconds)
        self._emit_parameter("max_timelock", old, seconds)

    @atomic
    def set_min_vault_share_bps(self, auth: AuthorizationContext, bps: int):
        auth.require(Action.set_min_vault_share_bps)
        old = self.redemptions.min_vault_share_bps
        self.redemptions.set_min_vault_share_bps(bps)
        self._emit_parameter("min_vault_share_bps", old, bps)

    @atomic
    def set_treasury(self, auth: AuthorizationContext, treasury: HexAddress):
        auth.require(Action.set_treasury)
        assert is_address(treasury), f"Not an address: {treasury}"
        logger.info("Vault %s treasury %s -> %s", self.address, self.treasury, treasury)
        self.treasury = treasury

    @atomic
    def set_deposit_cap(self, auth: AuthorizationContext, cap: int | None):
        auth.require(Action.set_deposit_cap)
        assert cap is None or cap >= 0, f"Bad cap: {cap}"
        old = self.deposit_cap
        self.deposit_cap = cap
        self._emit_parameter("deposit_cap", old, cap)

    @atomic
    def pause(self, auth: AuthorizationContext):
        auth.require(Action.pause)
        self.paused = True
        self.event_log.emit(events.VaultPaused(self.clock(), auth.caller, "governance"))
        logger.warning("Vault %s paused by %s", self.address, auth.caller)

    @atomic
    def unpause(self, auth: AuthorizationContext):
        """Clear both the governance pause and the price defense pause."""
        auth.require(Action.unpause)
        self.paused = False
        if self.price_checker is not None:
            self.price_checker.unpause()
        self.event_log.emit(events.VaultUnpaused(self.clock(), auth.caller))
        logger.info("Vault %s unpaused by %s", self.address, auth.caller)

    def attach_price_checker(self, checker: DefaultChecker):
        """Wire the price defense. Done once at deployment."""
        assert isinstance(checker, DefaultChecker), f"Got {type(checker)}"
        self.price_checker = checker
        self.share_token.add_pause_guard(checker)

    #
    # Internals
    #

    def _check_not_paused(self, what: str):
        if self.is_paused():
            raise VaultPaused(what)

    def _deposit(self, sender: HexAddress, receiver: HexAddress, assets: int, shares: int):
        state = self.pool.state
        state.internal_shares += shares
        state.internal_assets += assets

        if not self.asset.transfer_from(self.address, sender, self.address, assets):
            raise TransferFailed(f"Could not pull {assets} {self.asset.symbol} from {sender}")

        self.share_token.mint(receiver, shares, minter=self.address)
        self.allocator.allocate(assets)

        self.event_log.emit(events.Deposit(self.clock(), sender, receiver, assets, shares))
        logger.info("Deposit by %s: %d %s for %d shares to %s", sender, assets, self.asset.symbol, shares, receiver)

    def _emit_parameter(self, name: str, old: int | None, new: int | None):
        self.event_log.emit(events.ParameterUpdated(self.clock(), name, old, new))
        logger.info("Vault %s %s %s -> %s", self.address, name, old, new)
