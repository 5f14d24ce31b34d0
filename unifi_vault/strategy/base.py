"""Strategy adapter contract.

The allocator is only correct if every adapter keeps these invariants:

- `total_yield() == max(0, total_managed_assets() - total_principal())`
- :py:meth:`StrategyAdapter.invest` and :py:meth:`StrategyAdapter.divest` move assets only between
  the vault and the yield source
- :py:meth:`StrategyAdapter.harvest` moves only yield, never principal, to the treasury
- Only the owning vault may call the mutating functions
"""

from abc import ABC, abstractmethod

from eth_typing import HexAddress

from unifi_vault.errors import Unauthorized
from unifi_vault.transaction import Stateful


class StrategyAdapter(Stateful, ABC):
    """Wrap one external yield source for one vault."""

    def __init__(self, address: HexAddress, vault_address: HexAddress):
        self.address = address
        self.vault_address = vault_address

    def __repr__(self):
        return f"<{self.__class__.__name__} at {self.address} for vault {self.vault_address}>"

    def only_vault(self, sender: HexAddress):
        if sender.lower() != self.vault_address.lower():
            raise Unauthorized(sender, f"strategy {self.address}")

    def get_stateful_participants(self) -> list[Stateful]:
        """Components an operation on this strategy may mutate."""
        return [self]

    @abstractmethod
    def invest(self, sender: HexAddress, assets: int) -> int:
        """Pull assets from the vault and deposit them to the yield source.

        :return:
            Yield source shares received
        """

    @abstractmethod
    def divest(self, sender: HexAddress, assets: int) -> int:
        """Return at least `assets` (capped at managed assets) to the vault.

        :return:
            Assets sent to the vault
        """

    @abstractmethod
    def harvest(self, sender: HexAddress, treasury: HexAddress) -> int:
        """Skim accrued yield to the treasury.

        :return:
            Assets sent to the treasury
        """

    @abstractmethod
    def emergency_exit(self, sender: HexAddress) -> int:
        """Pull everything back to the vault and zero the accounting.

        :return:
            Assets sent to the vault
        """

    @abstractmethod
    def total_managed_assets(self) -> int:
        """Current value of the position in the yield source."""

    @abstractmethod
    def total_principal(self) -> int:
        """Assets deposited to the yield source, net of divestments."""

    @abstractmethod
    def total_shares(self) -> int:
        """Yield source shares held."""

    def total_yield(self) -> int:
        return max(0, self.total_managed_assets() - self.total_principal())

    def calculate_yield(self) -> int:
        """Alias of :py:meth:`total_yield`."""
        return self.total_yield()
