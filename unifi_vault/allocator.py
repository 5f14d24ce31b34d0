"""Single strategy capital allocator.

- Keeps `investment_ratio` BPS of the vault assets deployed to one strategy
- New deposits are invested pro rata, withdrawals divested pro rata,
  so the on-hand reserve keeps its proportion instead of being drained first
- Strategy yield is not vault capital: :py:meth:`CapitalAllocator.harvest` sends it to the treasury

Example:

.. code-block:: python

    allocator.set_strategy(strategy)
    allocator.set_investment_ratio(8000)  # 80% deployed, rebalances immediately
    allocator.allocate(deposit_amount)
"""

import logging
from typing import Protocol

from eth_typing import HexAddress

from unifi_vault import events
from unifi_vault.conversion import Rounding, mul_div
from unifi_vault.errors import RatioExceeds100Percent, TransferFailed
from unifi_vault.strategy.base import StrategyAdapter
from unifi_vault.timestamp import Clock
from unifi_vault.token import ERC20Ledger
from unifi_vault.transaction import Stateful


logger = logging.getLogger(__name__)


#: 100% in basis points
MAX_BPS = 10_000


class CapitalSource(Protocol):
    """What the redemption engine needs from the allocator."""

    def deallocate(self, assets: int) -> int: ...


class CapitalAllocator(Stateful):
    """Route a fraction of idle vault assets to the active strategy."""

    snapshot_fields = ("investment_ratio", "currently_invested")
    snapshot_refs = ("strategy",)

    def __init__(
        self,
        vault_address: HexAddress,
        asset: ERC20Ledger,
        event_log: events.EventLog,
        clock: Clock,
        investment_ratio: int = 0,
    ):
        if investment_ratio > MAX_BPS:
            raise RatioExceeds100Percent(investment_ratio)
        self.vault_address = vault_address
        self.asset = asset
        self.event_log = event_log
        self.clock = clock

        #: Target share of total assets deployed, BPS
        self.investment_ratio = investment_ratio

        #: Book value of capital delegated to the strategy
        self.currently_invested = 0

        self.strategy: StrategyAdapter | None = None

    def on_hand(self) -> int:
        """Assets custodied by the vault itself."""
        return self.asset.balance_of(self.vault_address)

    def strategy_managed(self) -> int:
        if self.strategy is None:
            return 0
        return self.strategy.total_managed_assets()

    def set_strategy(self, strategy: StrategyAdapter):
        """Replace the active strategy.

        Capital in the previous strategy is not divested.
        """
        assert isinstance(strategy, StrategyAdapter), f"Got {type(strategy)}"
        assert strategy.vault_address.lower() == self.vault_address.lower(), f"Strategy {strategy} belongs to another vault"
        self._warn_stranded()
        self.strategy = strategy
        self.event_log.emit(events.StrategySet(self.clock(), strategy.address))
        logger.info("Vault %s strategy set to %s", self.vault_address, strategy)

    def clear_strategy(self):
        self._warn_stranded()
        self.strategy = None
        self.event_log.emit(events.StrategySet(self.clock(), None))
        logger.info("Vault %s strategy cleared", self.vault_address)

    def set_investment_ratio(self, ratio_bps: int):
        """Change the target ratio and rebalance.

        :raise RatioExceeds100Percent:
            Ratio over 10,000 BPS
        """
        assert type(ratio_bps) == int and ratio_bps >= 0, f"Bad ratio: {ratio_bps}"
        if ratio_bps > MAX_BPS:
            raise RatioExceeds100Percent(ratio_bps)
        old = self.investment_ratio
        self.investment_ratio = ratio_bps
        self.event_log.emit(events.RatioUpdated(self.clock(), old, ratio_bps))
        logger.info("Vault %s investment ratio %d -> %d BPS", self.vault_address, old, ratio_bps)
        self.rebalance()

    def allocate(self, assets: int) -> int:
        """Invest the ratio share of freshly deposited assets.

        :return:
            Assets invested
        """
        if self.strategy is None or self.investment_ratio == 0:
            return 0
        amount = min(mul_div(assets, self.investment_ratio, MAX_BPS, Rounding.floor), self.on_hand())
        return self._invest(amount)

    def deallocate(self, assets: int) -> int:
        """Free capital for a withdrawal of `assets`.

        - Divests the ratio share of the withdrawal, so on-hand and strategy drop proportionally
        - If the reserve still cannot cover the withdrawal, divests the shortfall too

        :return:
            Assets returned by the strategy
        """
        if self.strategy is None:
            return 0

        returned = 0
        if self.investment_ratio:
            returned += self._divest(mul_div(assets, self.investment_ratio, MAX_BPS, Rounding.ceil))

        shortfall = assets - self.on_hand()
        if shortfall > 0:
            logger.info("Vault %s reserve short by %d for withdrawal of %d, divesting the rest", self.vault_address, shortfall, assets)
            returned += self._divest(shortfall)

        return returned

    def rebalance(self):
        """Move the strategy position back to the target ratio."""
        on_hand = self.on_hand()
        managed = self.strategy_managed()
        total = on_hand + managed
        target = mul_div(total, self.investment_ratio, MAX_BPS, Rounding.floor)

        if self.strategy is not None:
            if managed < target:
                # Never let the reserve drop below its (1 - ratio) share
                reserve = mul_div(total, MAX_BPS - self.investment_ratio, MAX_BPS, Rounding.ceil)
                amount = min(target - managed, max(0, on_hand - reserve))
                self._invest(amount)
            elif managed > target:
                self._divest(managed - target)

        self.event_log.emit(events.PortfolioRebalanced(self.clock(), self.on_hand(), self.strategy_managed(), target))
        logger.info("Vault %s rebalanced, on hand %d, strategy %d, target %d", self.vault_address, self.on_hand(), self.strategy_managed(), target)

    def harvest(self, treasury: HexAddress) -> int:
        """Skim strategy yield to the treasury. No-op without a strategy."""
        if self.strategy is None:
            return 0
        shares_before = self._strategy_shares()
        harvested = self.strategy.harvest(self.vault_address, treasury)
        if harvested:
            self.event_log.emit(events.StrategyHarvested(self.clock(), self.strategy.address, treasury, harvested, shares_before - self._strategy_shares()))
        return harvested

    def emergency_exit(self, treasury: HexAddress) -> int:
        """Pull all capital out of the active strategy.

        Whatever comes back over the book value is yield and goes to the treasury,
        as :py:meth:`harvest` would have sent it.

        :return:
            Assets kept by the vault
        """
        if self.strategy is None:
            return 0
        shares_before = self._strategy_shares()
        returned = self.strategy.emergency_exit(self.vault_address)
        self.event_log.emit(events.StrategyEmergencyExit(self.clock(), self.strategy.address, returned, shares_before))

        yield_assets = max(0, returned - self.currently_invested)
        if yield_assets:
            if not self.asset.transfer(self.vault_address, treasury, yield_assets):
                raise TransferFailed(f"Could not send {yield_assets} {self.asset.symbol} yield to {treasury}")
            self.event_log.emit(events.StrategyHarvested(self.clock(), self.strategy.address, treasury, yield_assets, 0))
            logger.info("Emergency exit of %s sent %d yield to %s", self.strategy.address, yield_assets, treasury)

        self.currently_invested = 0
        return returned - yield_assets

    def _strategy_shares(self) -> int:
        return self.strategy.total_shares()

    def _invest(self, assets: int) -> int:
        if assets <= 0:
            return 0
        self.asset.approve(self.vault_address, self.strategy.address, assets)
        shares = self.strategy.invest(self.vault_address, assets)
        self.currently_invested += assets
        self.event_log.emit(events.StrategyInvested(self.clock(), self.strategy.address, assets, shares))
        return assets

    def _divest(self, assets: int) -> int:
        if assets <= 0:
            return 0
        shares_before = self._strategy_shares()
        returned = self.strategy.divest(self.vault_address, assets)
        self.currently_invested = max(0, self.currently_invested - returned)
        self.event_log.emit(events.StrategyDivested(self.clock(), self.strategy.address, returned, shares_before - self._strategy_shares()))
        return returned

    def _warn_stranded(self):
        if self.strategy is not None:
            managed = self.strategy.total_managed_assets()
            if managed:
                logger.warning("Vault %s leaves %d assets in previous strategy %s, migrate manually", self.vault_address, managed, self.strategy.address)
