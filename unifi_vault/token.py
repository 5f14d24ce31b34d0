"""In-memory ERC-20 style ledgers.

- :py:class:`ERC20Ledger` is the asset transfer primitive the vault consumes:
  exact amount, all-or-nothing transfers

- :py:class:`ShareToken` is the share supply authority: only registered minters
  can mint and burn, and pause guards can halt both

- Fee-on-transfer tokens are not supported
"""

import logging
from decimal import Decimal
from typing import Protocol

from eth_typing import HexAddress
from eth_utils import is_address

from unifi_vault.errors import InsufficientAllowance, InsufficientBalance, Unauthorized, VaultPaused
from unifi_vault.lower_case_dict import LowercaseDict
from unifi_vault.transaction import ExecutionLock, Stateful


logger = logging.getLogger(__name__)


#: Decimals of the vault share token
SHARE_DECIMALS = 18


class PauseGuard(Protocol):
    """Anything that can veto share minting and burning."""

    @property
    def paused(self) -> bool: ...


class ERC20Ledger(Stateful):
    """ERC-20 token balances kept in memory.

    Example:

    .. code-block:: python

        usdc = ERC20Ledger("0x0000000000000000000000000000000000000a01", "USDC", 6)
        usdc.mint(alice, usdc.convert_to_raw(Decimal(100)))
        usdc.transfer(alice, bob, 1_000_000)
        assert usdc.fetch_balance_of(bob) == Decimal(1)
    """

    snapshot_fields = ("balances", "allowances", "total_supply")

    def __init__(self, address: HexAddress, symbol: str, decimals: int, name: str | None = None):
        assert is_address(address), f"Not an address: {address}"
        assert 0 <= decimals <= 36, f"Odd decimals: {decimals}"
        self.address = address
        self.symbol = symbol
        self.name = name or symbol
        self.decimals = decimals
        self.balances = LowercaseDict()
        self.allowances = LowercaseDict()
        self.total_supply = 0

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.symbol} at {self.address}>"

    def balance_of(self, holder: HexAddress) -> int:
        return self.balances.get(holder, 0)

    def allowance(self, owner: HexAddress, spender: HexAddress) -> int:
        return self.allowances.get((owner, spender), 0)

    def approve(self, owner: HexAddress, spender: HexAddress, amount: int) -> bool:
        assert type(amount) == int and amount >= 0, f"Bad amount: {amount}"
        self.allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender: HexAddress, to: HexAddress, amount: int) -> bool:
        self._move(sender, to, amount)
        return True

    def transfer_from(self, spender: HexAddress, from_: HexAddress, to: HexAddress, amount: int) -> bool:
        """Move tokens on behalf of `from_`.

        - Spending own tokens does not need an allowance
        """
        assert type(amount) == int and amount >= 0, f"Bad amount: {amount}"
        if spender.lower() != from_.lower():
            allowance = self.allowance(from_, spender)
            if allowance < amount:
                raise InsufficientAllowance(self.symbol, from_, spender, allowance, amount)
            self.allowances[(from_, spender)] = allowance - amount
        self._move(from_, to, amount)
        return True

    def mint(self, to: HexAddress, amount: int):
        assert type(amount) == int and amount >= 0, f"Bad amount: {amount}"
        assert is_address(to), f"Not an address: {to}"
        self.balances[to] = self.balance_of(to) + amount
        self.total_supply += amount

    def burn(self, from_: HexAddress, amount: int):
        assert type(amount) == int and amount >= 0, f"Bad amount: {amount}"
        balance = self.balance_of(from_)
        if balance < amount:
            raise InsufficientBalance(self.symbol, from_, balance, amount)
        self.balances[from_] = balance - amount
        self.total_supply -= amount

    def convert_to_decimals(self, raw_amount: int) -> Decimal:
        """Convert raw token units to decimals."""
        assert type(raw_amount) == int, f"Got {type(raw_amount)}, expected int: {raw_amount}"
        return Decimal(raw_amount) / Decimal(10**self.decimals)

    def convert_to_raw(self, decimal_amount: Decimal | int) -> int:
        """Convert decimalised token amount to raw units."""
        return int(decimal_amount * 10**self.decimals)

    def fetch_balance_of(self, holder: HexAddress) -> Decimal:
        return self.convert_to_decimals(self.balance_of(holder))

    def _move(self, from_: HexAddress, to: HexAddress, amount: int):
        assert type(amount) == int and amount >= 0, f"Bad amount: {amount}"
        assert is_address(to), f"Not an address: {to}"
        balance = self.balance_of(from_)
        if balance < amount:
            raise InsufficientBalance(self.symbol, from_, balance, amount)
        self.balances[from_] = balance - amount
        self.balances[to] = self.balance_of(to) + amount


class ShareToken(ERC20Ledger):
    """Vault share token.

    - Can be shared by several vaults drawing from the same liquidity pool,
      so :py:attr:`total_supply` is the pool wide share supply

    - Vaults sharing the token share its :py:attr:`execution_lock`
    """

    def __init__(self, address: HexAddress, symbol: str, name: str | None = None):
        super().__init__(address, symbol, SHARE_DECIMALS, name)
        self.minters: set[str] = set()
        self.pause_guards: list[PauseGuard] = []
        self.execution_lock = ExecutionLock()

    def add_minter(self, minter: HexAddress):
        """Grant the share supply authority role."""
        assert is_address(minter), f"Not an address: {minter}"
        self.minters.add(minter.lower())

    def add_pause_guard(self, guard: PauseGuard):
        if guard not in self.pause_guards:
            self.pause_guards.append(guard)

    def is_paused(self) -> bool:
        return any(g.paused for g in self.pause_guards)

    def mint(self, to: HexAddress, amount: int, *, minter: HexAddress):
        self._check_authority(minter, "mint")
        super().mint(to, amount)

    def burn(self, from_: HexAddress, amount: int, *, minter: HexAddress):
        self._check_authority(minter, "burn")
        super().burn(from_, amount)

    def _check_authority(self, minter: HexAddress, what: str):
        if minter.lower() not in self.minters:
            raise Unauthorized(minter, f"share {what}")
        if self.is_paused():
            raise VaultPaused(f"{what} shares")
