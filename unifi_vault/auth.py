"""Governance authorisation.

- The engine does not decide who governance is. It asks a :py:class:`GovernanceOracle`.

- The answer is resolved once at the call boundary into an :py:class:`AuthorizationContext`
  which every governance-gated entry point receives explicitly

- Unknown callers and unknown actions are refused (fail closed)
"""

import enum
import logging
from dataclasses import dataclass
from typing import Protocol

from eth_typing import HexAddress
from eth_utils import is_address

from unifi_vault.errors import Unauthorized


logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    """Governance-gated actions."""

    set_strategy = "set_strategy"
    clear_strategy = "clear_strategy"
    set_investment_ratio = "set_investment_ratio"
    rebalance = "rebalance"
    harvest = "harvest"
    emergency_exit = "emergency_exit"
    set_min_timelock = "set_min_timelock"
    set_max_timelock = "set_max_timelock"
    set_min_vault_share_bps = "set_min_vault_share_bps"
    set_treasury = "set_treasury"
    set_deposit_cap = "set_deposit_cap"
    pause = "pause"
    unpause = "unpause"


class GovernanceOracle(Protocol):
    """Permission predicate implemented by the host."""

    def is_authorized(self, caller: HexAddress, action: Action) -> bool: ...


class RoleGovernance:
    """Address to granted actions table.

    Example:

    .. code-block:: python

        governance = RoleGovernance()
        governance.grant_all(dao)
        governance.grant(keeper, Action.rebalance, Action.harvest)
    """

    def __init__(self):
        self.roles: dict[str, set[Action]] = {}

    def grant(self, address: HexAddress, *actions: Action):
        assert is_address(address), f"Not an address: {address}"
        self.roles.setdefault(address.lower(), set()).update(actions)

    def grant_all(self, address: HexAddress):
        self.grant(address, *Action)

    def revoke(self, address: HexAddress, *actions: Action):
        self.roles.get(address.lower(), set()).difference_update(actions)

    def is_authorized(self, caller: HexAddress, action: Action) -> bool:
        return action in self.roles.get(caller.lower(), ())


@dataclass(frozen=True, slots=True)
class AuthorizationContext:
    """Who is calling, and who decides whether they may."""

    caller: HexAddress

    oracle: GovernanceOracle

    def require(self, action: Action):
        """Fail closed unless the oracle explicitly grants the action.

        :raise Unauthorized:
            The caller lacks the permission
        """
        try:
            granted = self.oracle.is_authorized(self.caller, action)
        except Exception as e:
            raise Unauthorized(self.caller, action) from e

        if granted is not True:
            logger.info("Refused %s for %s", action.value, self.caller)
            raise Unauthorized(self.caller, action)
