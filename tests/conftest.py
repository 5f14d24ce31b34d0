"""Shared fixtures: an USDC vault with one ERC-4626 strategy on a manual clock."""

import datetime
from decimal import Decimal

import pytest
from eth_typing import HexAddress

from unifi_vault.auth import AuthorizationContext, RoleGovernance
from unifi_vault.config import VaultConfig
from unifi_vault.strategy.erc_4626 import ERC4626Strategy
from unifi_vault.strategy.yield_source import SimulatedYieldSource
from unifi_vault.timestamp import ManualClock
from unifi_vault.token import ERC20Ledger, ShareToken
from unifi_vault.vault import Vault


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(1_700_000_000)


@pytest.fixture()
def usdc() -> ERC20Ledger:
    return ERC20Ledger("0x000000000000000000000000000000000000a0b8", "USDC", 6, "USD Coin")


@pytest.fixture()
def share_token() -> ShareToken:
    return ShareToken("0x000000000000000000000000000000000000511a", "uniUSD", "Unifi USD")


@pytest.fixture()
def vault_address() -> HexAddress:
    return "0x000000000000000000000000000000000000fa01"


@pytest.fixture()
def treasury() -> HexAddress:
    return "0x0000000000000000000000000000000000007ea5"


@pytest.fixture()
def dao_address() -> HexAddress:
    return "0x0000000000000000000000000000000000000da0"


@pytest.fixture()
def governance(dao_address) -> RoleGovernance:
    governance = RoleGovernance()
    governance.grant_all(dao_address)
    return governance


@pytest.fixture()
def dao(dao_address, governance) -> AuthorizationContext:
    """Governance caller allowed to do everything."""
    return AuthorizationContext(dao_address, governance)


@pytest.fixture()
def config() -> VaultConfig:
    """3 days base wait, 30 days ceiling, penalty under 10% vault share."""
    return VaultConfig(
        min_timelock=datetime.timedelta(days=3),
        max_timelock=datetime.timedelta(days=30),
        min_vault_share_bps=1_000,
    )


@pytest.fixture()
def vault(vault_address, usdc, share_token, treasury, config, clock) -> Vault:
    return Vault(vault_address, usdc, share_token, treasury, config, clock=clock)


@pytest.fixture()
def yield_source(usdc) -> SimulatedYieldSource:
    return SimulatedYieldSource("0x000000000000000000000000000000000000b0b0", usdc)


@pytest.fixture()
def strategy(vault_address, usdc, yield_source) -> ERC4626Strategy:
    return ERC4626Strategy("0x0000000000000000000000000000000000005701", vault_address, usdc, yield_source)


@pytest.fixture()
def invested_vault(vault, strategy, dao) -> Vault:
    """Vault routing 80% of its assets to the strategy."""
    vault.set_strategy(dao, strategy)
    vault.set_investment_ratio(dao, 8_000)
    return vault


def fund(usdc: ERC20Ledger, vault: Vault, depositor: HexAddress, amount: Decimal):
    """Give the depositor USDC and approve the vault for it."""
    raw_amount = usdc.convert_to_raw(amount)
    usdc.mint(depositor, raw_amount)
    usdc.approve(depositor, vault.address, usdc.allowance(depositor, vault.address) + raw_amount)


@pytest.fixture()
def alice(usdc, vault) -> HexAddress:
    """Depositor with 1,000 USDC approved for the vault."""
    address = "0x00000000000000000000000000000000000a11ce"
    fund(usdc, vault, address, Decimal(1_000))
    return address


@pytest.fixture()
def bob(usdc, vault) -> HexAddress:
    """Depositor with 1,000 USDC approved for the vault."""
    address = "0x0000000000000000000000000000000000000b0b"
    fund(usdc, vault, address, Decimal(1_000))
    return address


@pytest.fixture()
def carol() -> HexAddress:
    """Unfunded third party."""
    return "0x00000000000000000000000000000000000ca201"
