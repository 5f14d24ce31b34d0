"""ERC-4626 strategy adapter accounting."""

import pytest

from unifi_vault.errors import ReceivedFewerShares, Unauthorized
from unifi_vault.strategy.erc_4626 import ERC4626Strategy
from unifi_vault.strategy.yield_source import SimulatedYieldSource


class ShortchangingYieldSource(SimulatedYieldSource):
    """Mints one share less than it previewed."""

    def deposit(self, sender, assets, receiver):
        shares = super().deposit(sender, assets, receiver)
        self.balances[receiver] -= 1
        self.total_supply -= 1
        return shares - 1


@pytest.fixture()
def funded_strategy(strategy, usdc, vault_address) -> ERC4626Strategy:
    """Strategy with 100 USDC of vault capital approved."""
    usdc.mint(vault_address, 100_000_000)
    usdc.approve(vault_address, strategy.address, 100_000_000)
    return strategy


def test_invest_tracks_principal(funded_strategy, yield_source, usdc, vault_address):
    strategy = funded_strategy
    shares = strategy.invest(vault_address, 100_000_000)

    assert shares == 100_000_000
    assert strategy.total_principal() == 100_000_000
    assert strategy.total_shares() == 100_000_000
    assert strategy.total_managed_assets() == 100_000_000
    assert strategy.total_yield() == 0
    assert usdc.balance_of(vault_address) == 0
    assert usdc.balance_of(yield_source.address) == 100_000_000


def test_divest_keeps_yield(funded_strategy, yield_source, usdc, vault_address):
    """Divesting reduces principal in proportion to the shares redeemed."""
    strategy = funded_strategy
    strategy.invest(vault_address, 100_000_000)
    yield_source.accrue_yield(10_000_000)
    assert strategy.total_yield() == 10_000_000
    assert strategy.calculate_yield() == 10_000_000

    assert strategy.divest(vault_address, 55_000_000) == 55_000_000
    assert usdc.balance_of(vault_address) == 55_000_000
    assert strategy.total_shares() == 50_000_000
    assert strategy.total_principal() == 50_000_000
    assert strategy.total_yield() == 5_000_000


def test_divest_capped_at_managed(funded_strategy, usdc, vault_address):
    strategy = funded_strategy
    strategy.invest(vault_address, 10_000_000)
    assert strategy.divest(vault_address, 50_000_000) == 10_000_000
    assert strategy.total_shares() == 0
    assert strategy.total_principal() == 0
    assert strategy.divest(vault_address, 1) == 0


def test_harvest_only_yield(funded_strategy, yield_source, usdc, vault_address, treasury):
    strategy = funded_strategy
    strategy.invest(vault_address, 100_000_000)
    assert strategy.harvest(vault_address, treasury) == 0

    yield_source.accrue_yield(3_000_000)
    assert strategy.harvest(vault_address, treasury) == 3_000_000
    assert usdc.balance_of(treasury) == 3_000_000
    assert strategy.total_principal() == 100_000_000
    assert strategy.total_managed_assets() >= 100_000_000 - 1


def test_only_vault(funded_strategy, vault_address, carol, treasury):
    """Strategy refuses calls from anyone but its vault."""
    strategy = funded_strategy
    with pytest.raises(Unauthorized):
        strategy.invest(carol, 1)

    with pytest.raises(Unauthorized):
        strategy.divest(carol, 1)

    with pytest.raises(Unauthorized):
        strategy.harvest(carol, treasury)

    with pytest.raises(Unauthorized):
        strategy.emergency_exit(carol)


def test_received_fewer_shares(usdc, vault_address):
    """Invest fails if the yield source mints less than it previewed."""
    source = ShortchangingYieldSource("0x000000000000000000000000000000000000b0b1", usdc)
    strategy = ERC4626Strategy("0x0000000000000000000000000000000000005703", vault_address, usdc, source)
    usdc.mint(vault_address, 1_000)
    usdc.approve(vault_address, strategy.address, 1_000)

    with pytest.raises(ReceivedFewerShares) as exc_info:
        strategy.invest(vault_address, 1_000)
    assert exc_info.value.expected == 1_000
    assert exc_info.value.received == 999
