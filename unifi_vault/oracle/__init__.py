"""Price feeds and the price defense guard.

- :py:mod:`unifi_vault.oracle.base`: the price oracle interface
- :py:mod:`unifi_vault.oracle.chainlink`: read a Chainlink aggregator over JSON-RPC
- :py:mod:`unifi_vault.oracle.checker`: pause share minting and burning when the asset depegs
"""
