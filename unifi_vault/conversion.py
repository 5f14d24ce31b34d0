"""Asset and share conversion.

Share price is derived from the pool totals:

.. code-block:: text

    shares = assets * (total_shares + 10**decimals_offset) / (total_assets - pending_redeem_assets + 1)

- Pending redemption assets are already earmarked for leaving depositors,
  so they are excluded from the assets backing the remaining shares

- The virtual `+1` asset and `10**decimals_offset` shares keep the formula defined for an empty vault
  and make first depositor share price manipulation expensive

- The protocol side always gets the rounding: floor when the vault hands out shares or assets,
  ceil when the vault collects them

Different vault variants plug in their own :py:class:`ConversionPolicy`.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass

from unifi_vault.token import SHARE_DECIMALS


class Rounding(enum.Enum):
    """Integer division rounding direction."""

    #: Towards zero, protocol hands out value
    floor = "floor"

    #: Away from zero, protocol collects value
    ceil = "ceil"


def mul_div(x: int, y: int, denominator: int, rounding: Rounding) -> int:
    """Calculate `x * y / denominator` with full integer precision.

    :raise ZeroDivisionError:
        Denominator is zero
    """
    assert type(x) == int and type(y) == int and type(denominator) == int, f"Integer math only, got {x}, {y}, {denominator}"
    assert x >= 0 and y >= 0 and denominator >= 0, f"Unsigned math only, got {x}, {y}, {denominator}"
    if denominator == 0:
        raise ZeroDivisionError(f"mul_div() by zero: {x} * {y} / 0")
    quotient, remainder = divmod(x * y, denominator)
    if rounding == Rounding.ceil and remainder:
        quotient += 1
    return quotient


@dataclass(frozen=True, slots=True)
class PoolTotals:
    """Pool state the conversion needs."""

    #: Shares this vault has issued, tracked internally
    total_shares: int

    #: Assets on hand plus assets deployed to the strategy
    total_assets: int

    #: Assets set aside for pending redemption requests
    pending_redeem_assets: int = 0

    def __post_init__(self):
        assert self.total_shares >= 0, f"Negative shares: {self.total_shares}"
        assert self.total_assets - self.pending_redeem_assets + 1 > 0, f"Pending redemptions {self.pending_redeem_assets} exceed total assets {self.total_assets}"

    @property
    def backing_assets(self) -> int:
        """Assets backing the outstanding shares, including the virtual asset."""
        return self.total_assets - self.pending_redeem_assets + 1


class ConversionPolicy(ABC):
    """Convert between assets and shares for a given pool state."""

    @abstractmethod
    def to_shares(self, assets: int, pool: PoolTotals, rounding: Rounding) -> int:
        """How many shares correspond to `assets`."""

    @abstractmethod
    def to_assets(self, shares: int, pool: PoolTotals, rounding: Rounding) -> int:
        """How many assets correspond to `shares`. Inverse of :py:meth:`to_shares`."""


class DecimalOffsetConversion(ConversionPolicy):
    """Virtual share conversion with a decimal offset.

    - An asset with 6 decimals gets an offset of 12, so 1 USDC mints 1.0 share with 18 decimals

    - Offset is fixed when the vault is constructed
    """

    def __init__(self, asset_decimals: int, share_decimals: int = SHARE_DECIMALS):
        self.decimals_offset = abs(asset_decimals - share_decimals)
        self.virtual_shares = 10**self.decimals_offset

    def __repr__(self):
        return f"<{self.__class__.__name__} offset {self.decimals_offset}>"

    def to_shares(self, assets: int, pool: PoolTotals, rounding: Rounding) -> int:
        return mul_div(assets, pool.total_shares + self.virtual_shares, pool.backing_assets, rounding)

    def to_assets(self, shares: int, pool: PoolTotals, rounding: Rounding) -> int:
        return mul_div(shares, pool.backing_assets, pool.total_shares + self.virtual_shares, rounding)


class PlainConversion(DecimalOffsetConversion):
    """No decimal offset, one virtual share and one virtual asset.

    For vaults whose asset already has the same precision as the share token.
    """

    def __init__(self):
        super().__init__(SHARE_DECIMALS, SHARE_DECIMALS)
