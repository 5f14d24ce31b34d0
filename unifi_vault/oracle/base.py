"""Price oracle interface."""

import datetime
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from unifi_vault.timestamp import native_datetime_utc_fromtimestamp


@dataclass(frozen=True, slots=True)
class PriceReading:
    """One answer from a price feed."""

    #: Price, non-decimal converted
    price: int

    #: How many decimals `price` has
    decimals: int

    #: UNIX timestamp when the feed was last updated
    updated_at: int

    @property
    def human_price(self) -> Decimal:
        return Decimal(self.price) / Decimal(10**self.decimals)

    @property
    def update_time(self) -> datetime.datetime:
        """Naive UTC datetime of the last update."""
        return native_datetime_utc_fromtimestamp(self.updated_at)


class PriceOracle(Protocol):
    def latest_price(self) -> PriceReading: ...


class ManualPriceOracle:
    """Price feed set by hand, for tests and simulations."""

    def __init__(self, price: Decimal, updated_at: int, decimals: int = 8):
        self.decimals = decimals
        self.reading = None
        self.set_price(price, updated_at)

    def set_price(self, price: Decimal, updated_at: int):
        assert isinstance(price, Decimal), f"Got {type(price)}"
        self.reading = PriceReading(int(price * 10**self.decimals), self.decimals, updated_at)

    def latest_price(self) -> PriceReading:
        return self.reading
