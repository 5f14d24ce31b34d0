"""Two-phase redemptions and the dynamic timelock."""

import datetime
from decimal import Decimal

import pytest

from unifi_vault import events
from unifi_vault.conversion import PlainConversion
from unifi_vault.errors import (
    ExceededMaxRedeem,
    ExceededMaxWithdraw,
    InsufficientRedeemableBalance,
    InvalidCaller,
    InvalidOwner,
    RatioExceeds100Percent,
    RedeemExceedsOutstandingShares,
    VaultPaused,
    ZeroAmountClaim,
)
from unifi_vault.redemption import MAX_TIMELOCK
from unifi_vault.token import ERC20Ledger, ShareToken
from unifi_vault.vault import Vault


THREE_DAYS = 3 * 24 * 3600

THIRTY_DAYS = 30 * 24 * 3600


@pytest.fixture()
def second_vault(usdc, share_token, treasury, config, clock, bob) -> Vault:
    """Another vault minting the same share token, holding 900 of 1,000 pool shares."""
    vault = Vault("0x000000000000000000000000000000000000fa02", usdc, share_token, treasury, config, clock=clock)
    amount = usdc.convert_to_raw(Decimal(900))
    usdc.approve(bob, vault.address, amount)
    vault.deposit(bob, amount, bob)
    return vault


def test_redeem_lifecycle(vault, usdc, share_token, clock, alice):
    """Request burns shares at once, assets follow after the timelock."""
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)
    price_before = vault.share_price()

    shares = 40 * 10**18
    request = vault.request_redeem(alice, shares, alice, alice)

    assert request.pending_shares == shares
    assert request.pending_assets == 40_000_000
    assert request.claimable_timestamp == clock() + THREE_DAYS
    assert share_token.balance_of(alice) == 60 * 10**18
    assert vault.pool.state.internal_shares == 60 * 10**18
    assert vault.pool.state.pending_redeem_assets == 40_000_000
    # Assets stay in the vault but no longer back the remaining shares
    assert vault.total_assets() == 100_000_000
    assert vault.share_price() == price_before

    assert vault.pending_redeem_request(alice) == shares
    assert vault.claimable_redeem_request(alice) == 0
    assert vault.max_withdraw(alice) == 0
    with pytest.raises(ExceededMaxRedeem):
        vault.redeem(alice, shares, alice, alice)

    clock.advance(datetime.timedelta(days=3))
    assert vault.pending_redeem_request(alice) == 0
    assert vault.claimable_redeem_request(alice) == shares
    assert vault.max_withdraw(alice) == 40_000_000

    assets = vault.redeem(alice, shares, alice, alice)
    assert assets == 40_000_000
    assert usdc.fetch_balance_of(alice) == Decimal(940)
    assert vault.get_redemption_request(alice) is None
    assert vault.pool.state.pending_redeem_assets == 0
    assert vault.total_assets() == 60_000_000
    assert vault.share_price() == price_before

    requested = vault.event_log.filter(events.RedeemRequested)
    assert len(requested) == 1
    assert requested[0].assets == 40_000_000
    withdrawn = vault.event_log.filter(events.Withdraw)
    assert len(withdrawn) == 1
    assert withdrawn[0].shares == shares
    assert withdrawn[0].controller == alice


def test_request_errors(vault, usdc, alice, bob):
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)

    with pytest.raises(InvalidOwner):
        vault.request_redeem(bob, 10**18, bob, alice)

    with pytest.raises(ZeroAmountClaim):
        vault.request_redeem(alice, 0, alice, alice)

    with pytest.raises(InsufficientRedeemableBalance) as exc_info:
        vault.request_redeem(alice, 101 * 10**18, alice, alice)
    assert exc_info.value.balance == 100 * 10**18

    # Worth less than one raw USDC unit
    with pytest.raises(ZeroAmountClaim):
        vault.request_redeem(alice, 10**5, alice, alice)

    assert vault.get_redemption_request(alice) is None


def test_request_more_than_vault_issued(vault, second_vault, usdc, share_token, alice, bob):
    """Shares minted by another vault cannot be redeemed here."""
    vault.deposit(alice, usdc.convert_to_raw(Decimal(10)), alice)
    share_token.transfer(bob, alice, 40 * 10**18)

    assert vault.preview_redeem_timelock(50 * 10**18) == MAX_TIMELOCK
    with pytest.raises(RedeemExceedsOutstandingShares) as exc_info:
        vault.request_redeem(alice, 50 * 10**18, alice, alice)
    assert exc_info.value.vault_shares == 10 * 10**18
    assert exc_info.value.global_shares == 910 * 10**18


def test_claim_errors(vault, usdc, clock, alice, bob):
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)
    vault.request_redeem(alice, 10 * 10**18, alice, alice)
    clock.advance(THREE_DAYS)

    with pytest.raises(InvalidCaller):
        vault.redeem(bob, 10**18, bob, alice)

    with pytest.raises(InvalidCaller):
        vault.withdraw(bob, 10**6, bob, alice)

    with pytest.raises(ZeroAmountClaim):
        vault.withdraw(alice, 0, alice, alice)

    with pytest.raises(ExceededMaxWithdraw) as exc_info:
        vault.withdraw(alice, 10_000_001, alice, alice)
    assert exc_info.value.max_assets == 10_000_000

    with pytest.raises(ExceededMaxRedeem):
        vault.redeem(bob, 10**18, bob, bob)


def test_request_merge_resets_timelock(vault, usdc, clock, alice):
    """Second request adds up and restarts the full wait."""
    vault.deposit(alice, usdc.convert_to_raw(Decimal(200)), alice)
    started = clock()

    vault.request_redeem(alice, 100 * 10**18, alice, alice)
    clock.advance(datetime.timedelta(days=2))
    request = vault.request_redeem(alice, 50 * 10**18, alice, alice)

    assert request.pending_shares == 150 * 10**18
    assert request.pending_assets == 150_000_000
    assert request.claimable_timestamp == started + 2 * 24 * 3600 + THREE_DAYS

    # The first request alone would have been claimable by now
    clock.advance(datetime.timedelta(days=1))
    assert vault.max_redeem(alice) == 0

    clock.advance(datetime.timedelta(days=2))
    assert vault.max_redeem(alice) == 150 * 10**18


def test_partial_claims(vault, usdc, clock, alice):
    """A request can be drained with several withdraws and redeems."""
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)
    vault.request_redeem(alice, 40 * 10**18, alice, alice)
    clock.advance(THREE_DAYS)

    assert vault.withdraw(alice, 10_000_000, alice, alice) == 10 * 10**18
    request = vault.get_redemption_request(alice)
    assert request.pending_assets == 30_000_000
    assert request.pending_shares == 30 * 10**18

    assert vault.redeem(alice, 30 * 10**18, alice, alice) == 30_000_000
    assert vault.get_redemption_request(alice) is None
    assert len(vault.event_log.filter(events.Withdraw)) == 2


def test_partial_claims_uneven_price(vault, usdc, clock, alice, bob):
    """Rounding never pays out more than was set aside."""
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)
    vault.deposit(bob, usdc.convert_to_raw(Decimal(33)), bob)
    # Odd share price
    usdc.mint(vault.address, 333_333)

    request = vault.request_redeem(alice, 30 * 10**18 + 7, alice, alice)
    set_aside = request.pending_assets
    clock.advance(THREE_DAYS)

    vault.withdraw(alice, 1_234_567, alice, alice)
    paid = 1_234_567
    paid += vault.redeem(alice, 10 * 10**18, alice, alice)
    remaining = vault.get_redemption_request(alice)
    assert remaining.pending_assets == set_aside - paid
    paid += vault.redeem(alice, remaining.pending_shares, alice, alice)

    assert paid <= set_aside
    assert vault.get_redemption_request(alice) is None
    assert vault.pool.state.pending_redeem_assets == 0


def _dai_vault(treasury, config, clock, address: str, share_token_address: str) -> tuple[ERC20Ledger, Vault]:
    dai = ERC20Ledger("0x000000000000000000000000000000000000da1a", "DAI", 18)
    vault = Vault(address, dai, ShareToken(share_token_address, "uniDAI"), treasury, config, conversion=PlainConversion(), clock=clock)
    return dai, vault


def test_withdraw_keeps_remainder(treasury, config, clock, alice):
    """A partial withdraw leaves a claimable request even when the share debit rounds up to everything."""
    dai, vault = _dai_vault(treasury, config, clock, "0x000000000000000000000000000000000000fa03", "0x000000000000000000000000000000000000511b")
    dai.mint(alice, 10)
    dai.approve(alice, vault.address, 10)

    assert vault.deposit(alice, 10, alice) == 10
    # 3 assets per share
    dai.mint(vault.address, 20)

    # floor(3 * 31 / 11)
    request = vault.request_redeem(alice, 3, alice, alice)
    assert request.pending_assets == 8
    clock.advance(THREE_DAYS)

    # ceil(7 * 3 / 8) would take all 3 shares, the last one stays behind
    assert vault.withdraw(alice, 7, alice, alice) == 2
    request = vault.get_redemption_request(alice)
    assert request.pending_shares == 1
    assert request.pending_assets == 1

    assert vault.redeem(alice, 1, alice, alice) == 1
    assert vault.get_redemption_request(alice) is None
    assert vault.pool.state.pending_redeem_assets == 0
    assert dai.balance_of(alice) == 8
    assert vault.total_assets() == 22


def test_withdraw_high_share_price(treasury, config, clock, alice):
    """With few shares worth many assets each, withdrawing half does not lose the other half."""
    dai, vault = _dai_vault(treasury, config, clock, "0x000000000000000000000000000000000000fa04", "0x000000000000000000000000000000000000511c")
    dai.mint(alice, 1000)
    dai.approve(alice, vault.address, 1000)

    assert vault.deposit(alice, 1000, alice) == 1000
    # About 1,000 assets per share
    dai.mint(vault.address, 1_000_000)

    # floor(2 * 1,001,001 / 1,001)
    request = vault.request_redeem(alice, 2, alice, alice)
    assert request.pending_assets == 2000
    clock.advance(THREE_DAYS)

    assert vault.withdraw(alice, 1001, alice, alice) == 1
    request = vault.get_redemption_request(alice)
    assert request.pending_shares == 1
    assert request.pending_assets == 999
    assert vault.max_withdraw(alice) == 999

    assert vault.redeem(alice, 1, alice, alice) == 999
    assert vault.get_redemption_request(alice) is None
    assert vault.pool.state.pending_redeem_assets == 0
    assert dai.balance_of(alice) == 2000
    assert vault.total_assets() == 1_001_000 - 2000


def test_operator_requests_and_claims(vault, usdc, share_token, clock, alice, carol):
    """An approved operator acts for the controller without owning the shares."""
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)
    vault.set_operator(alice, carol, True)
    assert vault.is_operator(alice, carol)

    vault.request_redeem(carol, 20 * 10**18, alice, alice)
    clock.advance(THREE_DAYS)
    assert vault.redeem(carol, 20 * 10**18, carol, alice) == 20_000_000
    assert usdc.balance_of(carol) == 20_000_000

    vault.set_operator(alice, carol, False)
    with pytest.raises(InvalidOwner):
        vault.request_redeem(carol, 10**18, alice, alice)

    operator_events = vault.event_log.filter(events.OperatorSet)
    assert [e.approved for e in operator_events] == [True, False]


def test_paused_blocks_requests_not_claims(vault, usdc, clock, dao, alice):
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)
    vault.request_redeem(alice, 10 * 10**18, alice, alice)
    clock.advance(THREE_DAYS)

    vault.pause(dao)
    with pytest.raises(VaultPaused):
        vault.request_redeem(alice, 10 * 10**18, alice, alice)

    assert vault.redeem(alice, 10 * 10**18, alice, alice) == 10_000_000


def test_timelock_last_holder(vault, usdc, alice):
    """Single vault, single holder, full exit waits the base timelock."""
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)
    assert vault.preview_redeem_timelock(100 * 10**18) == THREE_DAYS
    assert vault.preview_redeem_timelock(100 * 10**18 + 1) == MAX_TIMELOCK


def test_timelock_penalty(vault, second_vault, usdc, clock, alice):
    """Redeeming below 10% of the pool supply waits quadratically longer."""
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)

    # Vault holds exactly 10% of the pool
    assert vault.preview_redeem_timelock(0) == THREE_DAYS

    # 90 / 990 = 909 BPS, 9% short, 3 days + 81% of 3 days
    assert vault.preview_redeem_timelock(10 * 10**18) == THREE_DAYS + THREE_DAYS * 81 // 100

    # Deep shortfall clamps at the ceiling
    assert vault.preview_redeem_timelock(50 * 10**18) == THIRTY_DAYS

    # Second vault stays well above the minimum
    assert second_vault.preview_redeem_timelock(100 * 10**18) == THREE_DAYS

    request = vault.request_redeem(alice, 10 * 10**18, alice, alice)
    assert request.claimable_timestamp == clock() + 469_152


def test_timelock_monotonic(vault, second_vault, usdc, alice):
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)
    previous = 0
    for shares in range(0, 102 * 10**18, 10**18):
        timelock = vault.preview_redeem_timelock(shares)
        assert timelock >= previous, f"Timelock went down at {shares}"
        previous = timelock
    assert previous == MAX_TIMELOCK


def test_timelock_governance(vault, usdc, clock, dao, alice):
    """New base wait applies to new requests only."""
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)
    first = vault.request_redeem(alice, 10 * 10**18, alice, alice)
    first_claimable = first.claimable_timestamp

    vault.set_min_timelock(dao, 3600)
    assert vault.get_redemption_request(alice).claimable_timestamp == first_claimable
    assert vault.preview_redeem_timelock(10**18) == 3600

    vault.set_max_timelock(dao, 7200)
    assert vault.redemptions.max_timelock == 7200

    with pytest.raises(RatioExceeds100Percent):
        vault.set_min_vault_share_bps(dao, 10_001)
    vault.set_min_vault_share_bps(dao, 500)

    updates = vault.event_log.filter(events.ParameterUpdated)
    assert [(e.name, e.new_value) for e in updates] == [("min_timelock", 3600), ("max_timelock", 7200), ("min_vault_share_bps", 500)]


def test_timelock_bounded_below_reject_marker(vault, usdc, clock, dao, alice):
    """The largest configurable wait is still a real wait, not a rejection."""
    vault.deposit(alice, usdc.convert_to_raw(Decimal(100)), alice)

    with pytest.raises(AssertionError):
        vault.set_min_timelock(dao, MAX_TIMELOCK)
    with pytest.raises(AssertionError):
        vault.set_max_timelock(dao, MAX_TIMELOCK)
    assert vault.redemptions.min_timelock == THREE_DAYS
    assert vault.redemptions.max_timelock == THIRTY_DAYS

    vault.set_min_timelock(dao, MAX_TIMELOCK - 1)
    assert vault.redemptions.max_timelock == MAX_TIMELOCK - 1
    assert vault.preview_redeem_timelock(10 * 10**18) == MAX_TIMELOCK - 1

    request = vault.request_redeem(alice, 10 * 10**18, alice, alice)
    assert request.claimable_timestamp == clock() + MAX_TIMELOCK - 1


def test_conservation(invested_vault, usdc, share_token, clock, alice, bob):
    """Without yield, remaining shares are worth what went in minus what came out."""
    vault = invested_vault
    assets_in = 0
    assets_out = 0
    operations = 0

    for amount in (10_000_001, 3_333_333, 77):
        assets_in += amount
        vault.deposit(alice, amount, alice)
        operations += 1
    assets_in += vault.mint(bob, 5 * 10**18 + 11, bob)
    operations += 1

    for holder, shares in ((alice, 4 * 10**18 + 3), (bob, 2 * 10**18)):
        vault.request_redeem(holder, shares, holder, holder)
        operations += 1
    clock.advance(THREE_DAYS)

    assets_out += vault.redeem(alice, 4 * 10**18 + 3, alice, alice)
    vault.withdraw(bob, 1_000_000, bob, bob)
    assets_out += 1_000_000
    operations += 2

    assert assets_out <= assets_in
    remaining_value = vault.convert_to_assets(share_token.total_supply)
    pending = vault.pool.state.pending_redeem_assets
    assert abs((remaining_value + pending) - (assets_in - assets_out)) <= operations
