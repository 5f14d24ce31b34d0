"""Price defense.

- Polls a price oracle for the vault asset
- A stale feed is an error, never silently accepted
- A price under the threshold flips the pause flag. Share minting and burning consult the flag,
  see :py:class:`unifi_vault.token.ShareToken`
- Only governance clears the flag
"""

import datetime
import logging
from decimal import Decimal

from eth_typing import HexAddress

from unifi_vault import events
from unifi_vault.errors import PriceFeedStale
from unifi_vault.oracle.base import PriceOracle, PriceReading
from unifi_vault.timestamp import Clock
from unifi_vault.transaction import Stateful


logger = logging.getLogger(__name__)


class DefaultChecker(Stateful):
    """Pause the pool if the asset price defaults."""

    snapshot_fields = ("paused", "last_reading")

    def __init__(
        self,
        oracle: PriceOracle,
        clock: Clock,
        event_log: events.EventLog,
        price_freshness: datetime.timedelta,
        price_threshold: Decimal,
    ):
        assert isinstance(price_threshold, Decimal), f"Got {type(price_threshold)}"
        self.oracle = oracle
        self.clock = clock
        self.event_log = event_log
        self.price_freshness = price_freshness
        self.price_threshold = price_threshold
        self.paused = False
        self.last_reading: PriceReading | None = None

    def check(self, sender: HexAddress) -> bool:
        """Poll the oracle.

        :raise PriceFeedStale:
            Feed older than `price_freshness`

        :return:
            Whether the pool is now paused
        """
        reading = self.oracle.latest_price()
        now = self.clock()
        max_age = int(self.price_freshness.total_seconds())
        if now - reading.updated_at > max_age:
            raise PriceFeedStale(reading.updated_at, now, max_age)

        self.last_reading = reading
        price = reading.human_price
        if price < self.price_threshold and not self.paused:
            self.paused = True
            reason = f"price {price} under threshold {self.price_threshold}"
            self.event_log.emit(events.VaultPaused(now, sender, reason))
            logger.warning("Price defense tripped by %s: %s", sender, reason)

        return self.paused

    def unpause(self):
        self.paused = False
