"""unifi_vault package root.

Tokenised vault accounting engine:

- Asset/share conversion, see :py:mod:`unifi_vault.conversion`
- Asynchronous two-phase redemptions, see :py:mod:`unifi_vault.redemption`
- Single-strategy capital allocation, see :py:mod:`unifi_vault.allocator`
- Everything composed together in :py:class:`unifi_vault.vault.Vault`
"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""

    # Use Python tuple comparison for version numbers
    # https://stackoverflow.com/a/1093331/315168
    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"unifi-vault needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
