"""Asynchronous two-phase redemptions.

Per controller the request moves through:

.. code-block:: text

    NONE --request_redeem()--> PENDING --now >= claimable_timestamp--> CLAIMABLE --withdraw()/redeem()--> NONE

- Shares are burnt when the request is made and their asset value is set aside,
  so the share price of the remaining holders is not affected by the wait

- A second request from the same controller merges into the first one and resets the wait
  to a full fresh timelock

- The timelock grows with how much the redemption would shrink this vault's share of the
  pool wide share supply. Redemptions that push the vault below `min_vault_share_bps`
  wait quadratically longer, slowing down bank runs
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Callable

from eth_typing import HexAddress

from unifi_vault import events
from unifi_vault.allocator import MAX_BPS, CapitalSource
from unifi_vault.conversion import Rounding, mul_div
from unifi_vault.errors import (
    ExceededMaxRedeem,
    ExceededMaxWithdraw,
    InsufficientRedeemableBalance,
    InvalidCaller,
    InvalidOwner,
    RatioExceeds100Percent,
    RedeemExceedsOutstandingShares,
    TransferFailed,
    ZeroAmountClaim,
)
from unifi_vault.lower_case_dict import LowercaseDict
from unifi_vault.operator import OperatorRegistry
from unifi_vault.timestamp import Clock, native_datetime_utc_fromtimestamp
from unifi_vault.token import ERC20Ledger, ShareToken
from unifi_vault.transaction import Stateful


logger = logging.getLogger(__name__)


#: Largest timelock we can represent (uint32).
#:
#: Returned by :py:meth:`RedemptionEngine.preview_redeem_timelock` for redemptions that cannot happen.
#: Configured timelocks stay strictly below it.
MAX_TIMELOCK = 2**32 - 1


@dataclass(slots=True)
class PoolState:
    """Share and asset totals of one vault.

    Shadow tracked, independent of the share token ledger, because one share token
    can back several vaults.
    """

    #: Shares this vault has issued and not yet burnt
    internal_shares: int = 0

    #: Assets attributed to this vault: deposits in, claims out
    internal_assets: int = 0

    #: Assets set aside for pending and claimable redemption requests
    pending_redeem_assets: int = 0


class PoolLedger(Stateful):
    """Owner of :py:class:`PoolState`, so it can be snapshotted."""

    snapshot_fields = ("state",)

    def __init__(self):
        self.state = PoolState()


@dataclass(slots=True)
class RedemptionRequest:
    """Pending redemption of one controller."""

    controller: HexAddress

    #: Assets the controller can still claim
    pending_assets: int

    #: Burnt shares the claim still covers
    pending_shares: int

    #: UNIX timestamp when the request becomes claimable
    claimable_timestamp: int

    def __post_init__(self):
        assert (self.pending_shares == 0) == (self.pending_assets == 0), f"Shares and assets must be zero together: {self}"

    def is_claimable(self, now: int) -> bool:
        return now >= self.claimable_timestamp

    def is_empty(self) -> bool:
        return self.pending_shares == 0 and self.pending_assets == 0

    @property
    def claimable_at(self) -> datetime.datetime:
        """Naive UTC datetime when the request becomes claimable."""
        return native_datetime_utc_fromtimestamp(self.claimable_timestamp)


class RedemptionEngine(Stateful):
    """Pending redemption ledger and timelock policy of one vault."""

    snapshot_fields = ("requests", "min_timelock", "max_timelock", "min_vault_share_bps")

    def __init__(
        self,
        vault_address: HexAddress,
        asset: ERC20Ledger,
        share_token: ShareToken,
        pool: PoolLedger,
        to_assets: Callable[[int, Rounding], int],
        capital: CapitalSource,
        operators: OperatorRegistry,
        event_log: events.EventLog,
        clock: Clock,
        min_timelock: int,
        max_timelock: int,
        min_vault_share_bps: int,
    ):
        assert 0 <= min_timelock <= max_timelock < MAX_TIMELOCK, f"Bad timelocks: {min_timelock} - {max_timelock}"
        if min_vault_share_bps > MAX_BPS:
            raise RatioExceeds100Percent(min_vault_share_bps)

        self.vault_address = vault_address
        self.asset = asset
        self.share_token = share_token
        self.pool = pool
        self.to_assets = to_assets
        self.capital = capital
        self.operators = operators
        self.event_log = event_log
        self.clock = clock

        #: Base wait for any redemption, seconds
        self.min_timelock = min_timelock

        #: Ceiling for the penalised wait, seconds
        self.max_timelock = max_timelock

        #: Vault share of the pool supply below which redemptions are penalised
        self.min_vault_share_bps = min_vault_share_bps

        #: controller -> request
        self.requests = LowercaseDict()

    def get_request(self, controller: HexAddress) -> RedemptionRequest | None:
        return self.requests.get(controller)

    def preview_redeem_timelock(self, shares: int) -> int:
        """How long a redemption of `shares` would wait, given the current pool.

        Simulates the vault share of the pool after the redemption:

        - At or over `min_vault_share_bps`: `min_timelock`
        - Under it: the shortfall as a percentage of the minimum, squared, scales an extra wait
          on top of `min_timelock`, clamped at `max_timelock`
        - More than the vault or the pool has issued: :py:data:`MAX_TIMELOCK`

        Monotonically non-decreasing in `shares` for a fixed pool state.

        :return:
            Seconds
        """
        vault_shares = self.pool.state.internal_shares
        global_shares = self.share_token.total_supply

        if shares > vault_shares or shares > global_shares:
            return MAX_TIMELOCK

        remaining_global = global_shares - shares
        if remaining_global == 0:
            # Last holder out, no concentration left to protect
            return self.min_timelock

        ratio_bps = (vault_shares - shares) * MAX_BPS // remaining_global
        if ratio_bps >= self.min_vault_share_bps:
            return self.min_timelock

        shortfall_bps = self.min_vault_share_bps - ratio_bps
        shortfall_pct = shortfall_bps * 100 // self.min_vault_share_bps
        penalty = shortfall_pct * shortfall_pct
        extra = self.min_timelock * penalty // 100
        return min(self.min_timelock + extra, max(self.max_timelock, self.min_timelock))

    def request_redeem(self, sender: HexAddress, shares: int, controller: HexAddress, owner: HexAddress) -> RedemptionRequest:
        """Burn shares now, claim assets after the timelock.

        :raise InvalidOwner:
            Sender is not the owner or its operator

        :raise ZeroAmountClaim:
            Zero shares

        :raise InsufficientRedeemableBalance:
            Owner does not hold the shares

        :raise RedeemExceedsOutstandingShares:
            More shares than this vault or the pool has issued

        :return:
            The merged request
        """
        assert type(shares) == int and shares >= 0, f"Bad shares: {shares}"

        if not self.operators.is_controller_or_operator(owner, sender):
            raise InvalidOwner(sender, owner)

        if shares == 0:
            raise ZeroAmountClaim(controller)

        balance = self.share_token.balance_of(owner)
        if balance < shares:
            raise InsufficientRedeemableBalance(owner, balance, shares)

        if shares > self.pool.state.internal_shares or shares > self.share_token.total_supply:
            raise RedeemExceedsOutstandingShares(shares, self.pool.state.internal_shares, self.share_token.total_supply)
        timelock = self.preview_redeem_timelock(shares)

        assets = self.to_assets(shares, Rounding.floor)
        if assets == 0:
            raise ZeroAmountClaim(controller)

        state = self.pool.state
        state.internal_shares -= shares
        state.pending_redeem_assets += assets

        self.share_token.burn(owner, shares, minter=self.vault_address)

        now = self.clock()
        request = self.requests.get(controller)
        if request is None:
            request = RedemptionRequest(controller, assets, shares, now + timelock)
            self.requests[controller] = request
        else:
            request.pending_assets += assets
            request.pending_shares += shares
            request.claimable_timestamp = now + timelock

        self.event_log.emit(events.RedeemRequested(now, controller, owner, sender, shares, assets, request.claimable_timestamp))
        logger.info(
            "Redemption requested by %s for controller %s: %d shares for %d assets, timelock %d s, request now %d shares / %d assets claimable at %s",
            sender,
            controller,
            shares,
            assets,
            timelock,
            request.pending_shares,
            request.pending_assets,
            request.claimable_at,
        )
        return request

    def pending_redeem_request(self, controller: HexAddress) -> int:
        """Shares still waiting for the timelock."""
        request = self.get_request(controller)
        if request is None or request.is_claimable(self.clock()):
            return 0
        return request.pending_shares

    def claimable_redeem_request(self, controller: HexAddress) -> int:
        """Shares that can be claimed now."""
        return self.max_redeem(controller)

    def max_redeem(self, controller: HexAddress) -> int:
        request = self.get_request(controller)
        if request is None or not request.is_claimable(self.clock()):
            return 0
        return request.pending_shares

    def max_withdraw(self, controller: HexAddress) -> int:
        request = self.get_request(controller)
        if request is None or not request.is_claimable(self.clock()):
            return 0
        return request.pending_assets

    def withdraw(self, sender: HexAddress, assets: int, receiver: HexAddress, controller: HexAddress) -> int:
        """Claim an exact amount of assets.

        :return:
            Shares debited from the request
        """
        self._check_caller(sender, controller)
        if assets == 0:
            raise ZeroAmountClaim(controller)

        max_assets = self.max_withdraw(controller)
        if assets > max_assets:
            raise ExceededMaxWithdraw(controller, assets, max_assets)

        request = self.requests[controller]
        # Debit the stored request rounding up, so it never owes more than it holds
        shares = min(mul_div(assets, request.pending_shares, request.pending_assets, Rounding.ceil), request.pending_shares)
        if assets < request.pending_assets:
            # Keep the request alive until the last asset is claimed
            shares = min(shares, request.pending_shares - 1)
        self._claim(sender, request, assets, shares, receiver)
        return shares

    def redeem(self, sender: HexAddress, shares: int, receiver: HexAddress, controller: HexAddress) -> int:
        """Claim an exact amount of the burnt shares.

        :return:
            Assets sent to the receiver
        """
        self._check_caller(sender, controller)
        if shares == 0:
            raise ZeroAmountClaim(controller)

        max_shares = self.max_redeem(controller)
        if shares > max_shares:
            raise ExceededMaxRedeem(controller, shares, max_shares)

        request = self.requests[controller]
        # Credit the caller rounding down
        assets = mul_div(shares, request.pending_assets, request.pending_shares, Rounding.floor)
        if assets == 0:
            raise ZeroAmountClaim(controller)
        self._claim(sender, request, assets, shares, receiver)
        return assets

    def set_min_timelock(self, seconds: int):
        assert 0 <= seconds < MAX_TIMELOCK, f"Bad timelock: {seconds}"
        self.min_timelock = seconds
        # Keep the ceiling meaningful
        self.max_timelock = max(self.max_timelock, seconds)

    def set_max_timelock(self, seconds: int):
        assert self.min_timelock <= seconds < MAX_TIMELOCK, f"Max timelock {seconds} must be between {self.min_timelock} and {MAX_TIMELOCK - 1}"
        self.max_timelock = seconds

    def set_min_vault_share_bps(self, bps: int):
        assert type(bps) == int and bps >= 0, f"Bad BPS: {bps}"
        if bps > MAX_BPS:
            raise RatioExceeds100Percent(bps)
        self.min_vault_share_bps = bps

    def _check_caller(self, sender: HexAddress, controller: HexAddress):
        if not self.operators.is_controller_or_operator(controller, sender):
            raise InvalidCaller(sender, controller)

    def _claim(self, sender: HexAddress, request: RedemptionRequest, assets: int, shares: int, receiver: HexAddress):
        request.pending_assets -= assets
        request.pending_shares -= shares

        # Both sides run out on the same claim
        assert (request.pending_shares == 0) == (request.pending_assets == 0), f"Unbalanced request after claim: {request}"
        if request.is_empty():
            del self.requests[request.controller]

        state = self.pool.state
        state.pending_redeem_assets -= assets
        state.internal_assets = max(0, state.internal_assets - assets)

        self.capital.deallocate(assets)

        if not self.asset.transfer(self.vault_address, receiver, assets):
            raise TransferFailed(f"Could not send {assets} {self.asset.symbol} to {receiver}")

        self.event_log.emit(events.Withdraw(self.clock(), sender, receiver, request.controller, assets, shares))
        logger.info("Controller %s claimed %d assets for %d shares to %s", request.controller, assets, shares, receiver)
