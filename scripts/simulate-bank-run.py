"""Simulate a bank run against two vaults sharing one share token.

Shows how the redemption timelock grows when one vault's share of the pool drops.

Example output::

    Pool: vault A 100 shares, vault B 900 shares
    Redeem     0 from A: 3 days, 0:00:00
    Redeem    10 from A: 5 days, 10:19:12
    Redeem    20 from A: 12 days, 17:16:48
    ...

Set `LOG_LEVEL=info` to see the vault internals.
"""

import datetime
from decimal import Decimal

from unifi_vault.auth import AuthorizationContext, RoleGovernance
from unifi_vault.config import VaultConfig
from unifi_vault.strategy.erc_4626 import ERC4626Strategy
from unifi_vault.strategy.yield_source import SimulatedYieldSource
from unifi_vault.timestamp import ManualClock
from unifi_vault.token import ERC20Ledger, ShareToken
from unifi_vault.utils import setup_console_logging
from unifi_vault.vault import Vault

setup_console_logging(default_log_level="warning")

dao = "0x0000000000000000000000000000000000000da0"
treasury = "0x0000000000000000000000000000000000007ea5"
whale = "0x0000000000000000000000000000000000000bee"
minnow = "0x00000000000000000000000000000000000000f1"

governance = RoleGovernance()
governance.grant_all(dao)
auth = AuthorizationContext(dao, governance)

clock = ManualClock()
config = VaultConfig.from_env()
usdc = ERC20Ledger("0x000000000000000000000000000000000000a0b8", "USDC", 6, "USD Coin")
share_token = ShareToken("0x000000000000000000000000000000000000511a", "uniUSD", "Unifi USD")

vault_a = Vault("0x000000000000000000000000000000000000fa01", usdc, share_token, treasury, config, clock=clock, name="Unifi Vault A")
vault_b = Vault("0x000000000000000000000000000000000000fa02", usdc, share_token, treasury, config, clock=clock, name="Unifi Vault B")

source = SimulatedYieldSource("0x000000000000000000000000000000000000b0b0", usdc)
vault_a.set_strategy(auth, ERC4626Strategy("0x0000000000000000000000000000000000005701", vault_a.address, usdc, source))
vault_a.set_investment_ratio(auth, 8_000)

for depositor, vault, amount in ((minnow, vault_a, Decimal(100)), (whale, vault_b, Decimal(900))):
    raw_amount = usdc.convert_to_raw(amount)
    usdc.mint(depositor, raw_amount)
    usdc.approve(depositor, vault.address, raw_amount)
    vault.deposit(depositor, raw_amount, depositor)

print(f"Pool: vault A {vault_a.fetch_summary().total_shares} shares, vault B {vault_b.fetch_summary().total_shares} shares")

for whole_shares in range(0, 101, 10):
    timelock = vault_a.preview_redeem_timelock(whole_shares * 10**18)
    print(f"Redeem {whole_shares:5} from A: {datetime.timedelta(seconds=timelock)}")

# Yield accrues while the minnow waits
request = vault_a.request_redeem(minnow, 50 * 10**18, minnow, minnow)
source.accrue_yield(usdc.convert_to_raw(Decimal(2)))
print(f"Minnow redemption of {usdc.convert_to_decimals(request.pending_assets)} USDC claimable at {request.claimable_at}")

clock.advance(request.claimable_timestamp - clock())
received = vault_a.redeem(minnow, request.pending_shares, minnow, minnow)
harvested = vault_a.harvest(auth)

summary = vault_a.fetch_summary()
print(f"Minnow received {usdc.convert_to_decimals(received)} USDC")
print(f"Treasury harvested {usdc.convert_to_decimals(harvested)} USDC")
print(f"Vault A: total assets {summary.total_assets}, on hand {summary.on_hand}, invested {summary.currently_invested}, share price {summary.share_price}")
