"""Vault configuration.

Defaults can be overridden per deployment with environment variables, see :py:meth:`VaultConfig.from_env`.
"""

import datetime
import os
from dataclasses import dataclass, field
from decimal import Decimal


#: Base wait between requesting and claiming a redemption
DEFAULT_MIN_TIMELOCK = datetime.timedelta(days=3)

#: Ceiling for the penalised redemption wait
DEFAULT_MAX_TIMELOCK = datetime.timedelta(days=30)

#: Vault share of the pool share supply under which redemptions wait longer, BPS
DEFAULT_MIN_VAULT_SHARE_BPS = 1_000

#: Share of assets deployed to the strategy, BPS
DEFAULT_INVESTMENT_RATIO_BPS = 0

#: How old a price feed answer may be
DEFAULT_PRICE_FRESHNESS = datetime.timedelta(hours=24)

#: Asset price under which the pool pauses.
#:
#: For a USD stablecoin a 2% depeg.
DEFAULT_PRICE_THRESHOLD = Decimal("0.98")

#: Prefix for environment variable overrides
ENV_PREFIX = "UNIFI_"


@dataclass(slots=True)
class VaultConfig:
    """Tunables of one vault."""

    min_timelock: datetime.timedelta = DEFAULT_MIN_TIMELOCK

    max_timelock: datetime.timedelta = DEFAULT_MAX_TIMELOCK

    min_vault_share_bps: int = DEFAULT_MIN_VAULT_SHARE_BPS

    investment_ratio_bps: int = DEFAULT_INVESTMENT_RATIO_BPS

    #: Raw asset amount the vault total assets may grow to.
    #:
    #: `None` for no cap.
    deposit_cap: int | None = None

    price_freshness: datetime.timedelta = DEFAULT_PRICE_FRESHNESS

    price_threshold: Decimal = field(default=DEFAULT_PRICE_THRESHOLD)

    def __post_init__(self):
        assert self.min_timelock <= self.max_timelock, f"min_timelock {self.min_timelock} over max_timelock {self.max_timelock}"
        assert 0 <= self.min_vault_share_bps <= 10_000, f"Bad min_vault_share_bps: {self.min_vault_share_bps}"
        assert 0 <= self.investment_ratio_bps <= 10_000, f"Bad investment_ratio_bps: {self.investment_ratio_bps}"
        assert self.deposit_cap is None or self.deposit_cap >= 0, f"Bad deposit_cap: {self.deposit_cap}"
        assert isinstance(self.price_threshold, Decimal), f"Got {type(self.price_threshold)}"

    @property
    def min_timelock_seconds(self) -> int:
        return int(self.min_timelock.total_seconds())

    @property
    def max_timelock_seconds(self) -> int:
        return int(self.max_timelock.total_seconds())

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "VaultConfig":
        """Read overrides from environment variables.

        - `UNIFI_MIN_TIMELOCK`, `UNIFI_MAX_TIMELOCK`, `UNIFI_PRICE_FRESHNESS`: seconds
        - `UNIFI_MIN_VAULT_SHARE_BPS`, `UNIFI_INVESTMENT_RATIO_BPS`: BPS
        - `UNIFI_DEPOSIT_CAP`: raw asset units
        - `UNIFI_PRICE_THRESHOLD`: decimal price

        Unset variables keep their defaults.
        """
        if environ is None:
            environ = os.environ

        def get(name: str) -> str | None:
            value = environ.get(ENV_PREFIX + name)
            return value.strip() if value else None

        kwargs = {}
        for name in ("min_timelock", "max_timelock", "price_freshness"):
            value = get(name.upper())
            if value is not None:
                kwargs[name] = datetime.timedelta(seconds=int(value))

        for name in ("min_vault_share_bps", "investment_ratio_bps", "deposit_cap"):
            value = get(name.upper())
            if value is not None:
                kwargs[name] = int(value)

        value = get("PRICE_THRESHOLD")
        if value is not None:
            kwargs["price_threshold"] = Decimal(value)

        return cls(**kwargs)
