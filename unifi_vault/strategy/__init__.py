"""Yield strategies a vault can route idle capital to.

- :py:class:`unifi_vault.strategy.base.StrategyAdapter` is the contract the allocator relies on
- :py:class:`unifi_vault.strategy.erc_4626.ERC4626Strategy` wraps any ERC-4626 like yield source
"""
