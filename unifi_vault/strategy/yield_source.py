"""External yield source surface.

- Standard ERC-4626 share vault semantics
- Assumed non-malicious, but not assumed loss-free
- :py:class:`SimulatedYieldSource` is an in-memory share vault for tests and simulations
"""

import logging
from typing import Protocol

from eth_typing import HexAddress
from eth_utils import is_address

from unifi_vault.conversion import Rounding, mul_div
from unifi_vault.errors import InsufficientBalance, StrategyCallFailed
from unifi_vault.lower_case_dict import LowercaseDict
from unifi_vault.token import ERC20Ledger
from unifi_vault.transaction import Stateful


logger = logging.getLogger(__name__)


class YieldSource(Protocol):
    """ERC-4626 functions the strategy adapter calls."""

    address: HexAddress

    def balance_of(self, owner: HexAddress) -> int: ...

    def total_assets(self) -> int: ...

    def convert_to_assets(self, shares: int) -> int: ...

    def preview_deposit(self, assets: int) -> int: ...

    def preview_withdraw(self, assets: int) -> int: ...

    def preview_redeem(self, shares: int) -> int: ...

    def max_withdraw(self, owner: HexAddress) -> int: ...

    def deposit(self, sender: HexAddress, assets: int, receiver: HexAddress) -> int: ...

    def withdraw(self, sender: HexAddress, assets: int, receiver: HexAddress, owner: HexAddress) -> int: ...

    def redeem(self, sender: HexAddress, shares: int, receiver: HexAddress, owner: HexAddress) -> int: ...


class SimulatedYieldSource(Stateful):
    """In-memory ERC-4626 vault.

    - Holds the underlying in `asset` under its own address
    - Yield and losses are injected with :py:meth:`accrue_yield` and :py:meth:`realise_loss`

    Example:

    .. code-block:: python

        source = SimulatedYieldSource("0x0000000000000000000000000000000000000b01", usdc)
        source.accrue_yield(usdc.convert_to_raw(Decimal(1)))
    """

    snapshot_fields = ("balances", "total_supply")

    def __init__(self, address: HexAddress, asset: ERC20Ledger):
        assert is_address(address), f"Not an address: {address}"
        assert isinstance(asset, ERC20Ledger), f"Got {type(asset)}"
        self.address = address
        self.asset = asset
        self.balances = LowercaseDict()
        self.total_supply = 0

    def __repr__(self):
        return f"<SimulatedYieldSource {self.asset.symbol} at {self.address}, assets {self.total_assets()}, supply {self.total_supply}>"

    def get_stateful_participants(self) -> list[Stateful]:
        return [self, self.asset]

    def balance_of(self, owner: HexAddress) -> int:
        return self.balances.get(owner, 0)

    def total_assets(self) -> int:
        return self.asset.balance_of(self.address)

    def _to_shares(self, assets: int, rounding: Rounding) -> int:
        total_assets = self.total_assets()
        if self.total_supply == 0 or total_assets == 0:
            return assets
        return mul_div(assets, self.total_supply, total_assets, rounding)

    def _to_assets(self, shares: int, rounding: Rounding) -> int:
        if self.total_supply == 0:
            return shares
        return mul_div(shares, self.total_assets(), self.total_supply, rounding)

    def convert_to_assets(self, shares: int) -> int:
        return self._to_assets(shares, Rounding.floor)

    def preview_deposit(self, assets: int) -> int:
        return self._to_shares(assets, Rounding.floor)

    def preview_withdraw(self, assets: int) -> int:
        return self._to_shares(assets, Rounding.ceil)

    def preview_redeem(self, shares: int) -> int:
        return self._to_assets(shares, Rounding.floor)

    def max_withdraw(self, owner: HexAddress) -> int:
        return min(self.convert_to_assets(self.balance_of(owner)), self.total_assets())

    def deposit(self, sender: HexAddress, assets: int, receiver: HexAddress) -> int:
        shares = self.preview_deposit(assets)
        if not self.asset.transfer_from(self.address, sender, self.address, assets):
            raise StrategyCallFailed(f"Could not pull {assets} from {sender}")
        self._mint(receiver, shares)
        return shares

    def withdraw(self, sender: HexAddress, assets: int, receiver: HexAddress, owner: HexAddress) -> int:
        shares = self.preview_withdraw(assets)
        self._burn(sender, owner, shares)
        self.asset.transfer(self.address, receiver, assets)
        return shares

    def redeem(self, sender: HexAddress, shares: int, receiver: HexAddress, owner: HexAddress) -> int:
        assets = self.preview_redeem(shares)
        self._burn(sender, owner, shares)
        self.asset.transfer(self.address, receiver, assets)
        return assets

    def accrue_yield(self, assets: int):
        """Simulate profit: underlying appears in the source."""
        logger.info("Yield source %s accrues %d", self.address, assets)
        self.asset.mint(self.address, assets)

    def realise_loss(self, assets: int):
        """Simulate loss: underlying disappears from the source."""
        logger.info("Yield source %s loses %d", self.address, assets)
        self.asset.burn(self.address, assets)

    def _mint(self, receiver: HexAddress, shares: int):
        self.balances[receiver] = self.balance_of(receiver) + shares
        self.total_supply += shares

    def _burn(self, sender: HexAddress, owner: HexAddress, shares: int):
        if sender.lower() != owner.lower():
            raise StrategyCallFailed(f"{sender} cannot redeem shares of {owner}")
        balance = self.balance_of(owner)
        if balance < shares:
            raise InsufficientBalance("yield source shares", owner, balance, shares)
        self.balances[owner] = balance - shares
        self.total_supply -= shares
