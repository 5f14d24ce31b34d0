"""ERC-4626 yield source strategy.

- Principal is tracked separately from the share position, so yield can be skimmed
  to the treasury without touching depositor capital

- Share price of the vault never rises from strategy yield, it is harvested out
"""

import logging

from eth_typing import HexAddress
from eth_utils import is_address

from unifi_vault.conversion import Rounding, mul_div
from unifi_vault.errors import ReceivedFewerShares, StrategyCallFailed
from unifi_vault.strategy.base import StrategyAdapter
from unifi_vault.strategy.yield_source import YieldSource
from unifi_vault.token import ERC20Ledger
from unifi_vault.transaction import Stateful


logger = logging.getLogger(__name__)


class ERC4626Strategy(StrategyAdapter):
    """Invest vault capital into one ERC-4626 vault."""

    snapshot_fields = ("principal", "shares")

    def __init__(
        self,
        address: HexAddress,
        vault_address: HexAddress,
        asset: ERC20Ledger,
        yield_source: YieldSource,
    ):
        assert is_address(address), f"Not an address: {address}"
        assert is_address(vault_address), f"Not an address: {vault_address}"
        super().__init__(address, vault_address)
        self.asset = asset
        self.yield_source = yield_source

        #: Assets ever deposited into the yield source, net of divestments
        self.principal = 0

        #: Yield source shares held
        self.shares = 0

    def get_stateful_participants(self) -> list[Stateful]:
        participants = [self, self.asset]
        if isinstance(self.yield_source, Stateful):
            participants.append(self.yield_source)
        return participants

    def total_principal(self) -> int:
        return self.principal

    def total_shares(self) -> int:
        return self.shares

    def total_managed_assets(self) -> int:
        if self.shares == 0:
            return 0
        return self.yield_source.preview_redeem(self.shares)

    def invest(self, sender: HexAddress, assets: int) -> int:
        self.only_vault(sender)
        assert type(assets) == int and assets > 0, f"Bad invest amount: {assets}"

        expected = self.yield_source.preview_deposit(assets)

        if not self.asset.transfer_from(self.address, self.vault_address, self.address, assets):
            raise StrategyCallFailed(f"Could not pull {assets} from vault {self.vault_address}")

        self.asset.approve(self.address, self.yield_source.address, assets)
        before = self.yield_source.balance_of(self.address)
        self.yield_source.deposit(self.address, assets, self.address)
        received = self.yield_source.balance_of(self.address) - before

        if received < expected:
            raise ReceivedFewerShares(received, expected)

        self.principal += assets
        self.shares += received
        logger.info("Strategy %s invested %d for %d shares, principal now %d", self.address, assets, received, self.principal)
        return received

    def divest(self, sender: HexAddress, assets: int) -> int:
        self.only_vault(sender)
        assert type(assets) == int and assets >= 0, f"Bad divest amount: {assets}"

        managed = self.total_managed_assets()
        assets = min(assets, managed)
        if assets == 0:
            return 0

        # Round shares up so the vault gets at least what it asked for
        shares = min(mul_div(assets, self.shares, managed, Rounding.ceil), self.shares)
        principal_reduction = mul_div(self.principal, shares, self.shares, Rounding.ceil)

        received = self.yield_source.redeem(self.address, shares, self.vault_address, self.address)

        self.principal = max(0, self.principal - principal_reduction)
        self.shares -= shares
        if self.shares == 0:
            self.principal = 0

        logger.info("Strategy %s divested %d assets for %d shares, principal now %d", self.address, received, shares, self.principal)
        return received

    def harvest(self, sender: HexAddress, treasury: HexAddress) -> int:
        self.only_vault(sender)
        assert is_address(treasury), f"Not an address: {treasury}"

        accrued = self.total_yield()
        if accrued == 0:
            return 0

        burnt = self.yield_source.withdraw(self.address, accrued, treasury, self.address)
        self.shares -= burnt
        logger.info("Strategy %s harvested %d to %s, burning %d shares", self.address, accrued, treasury, burnt)
        return accrued

    def emergency_exit(self, sender: HexAddress) -> int:
        self.only_vault(sender)
        held = self.yield_source.balance_of(self.address)
        received = 0
        if held:
            received = self.yield_source.redeem(self.address, held, self.vault_address, self.address)
        logger.warning("Strategy %s emergency exit, returned %d assets, principal was %d", self.address, received, self.principal)
        self.principal = 0
        self.shares = 0
        return received
