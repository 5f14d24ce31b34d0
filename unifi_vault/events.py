"""Vault events.

- Emitted for observability only, no internal logic reads them back
- Mirrors the event set of an ERC-7540 vault with a strategy allocator
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Type, TypeVar

from eth_typing import HexAddress

from unifi_vault.transaction import Stateful


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VaultEvent:
    #: Timestamp of the operation that emitted the event
    timestamp: int


@dataclass(frozen=True, slots=True)
class Deposit(VaultEvent):
    sender: HexAddress
    owner: HexAddress
    assets: int
    shares: int


@dataclass(frozen=True, slots=True)
class Withdraw(VaultEvent):
    sender: HexAddress
    receiver: HexAddress
    controller: HexAddress
    assets: int
    shares: int


@dataclass(frozen=True, slots=True)
class RedeemRequested(VaultEvent):
    controller: HexAddress
    owner: HexAddress
    sender: HexAddress
    shares: int
    assets: int

    #: When the merged request becomes claimable
    claimable_timestamp: int


@dataclass(frozen=True, slots=True)
class OperatorSet(VaultEvent):
    controller: HexAddress
    operator: HexAddress
    approved: bool


@dataclass(frozen=True, slots=True)
class StrategySet(VaultEvent):
    #: None when the strategy was cleared
    strategy: HexAddress | None


@dataclass(frozen=True, slots=True)
class RatioUpdated(VaultEvent):
    old_ratio_bps: int
    new_ratio_bps: int


@dataclass(frozen=True, slots=True)
class PortfolioRebalanced(VaultEvent):
    on_hand: int
    strategy_managed: int
    target: int


@dataclass(frozen=True, slots=True)
class StrategyInvested(VaultEvent):
    strategy: HexAddress
    assets: int
    shares: int


@dataclass(frozen=True, slots=True)
class StrategyDivested(VaultEvent):
    strategy: HexAddress
    assets: int
    shares: int


@dataclass(frozen=True, slots=True)
class StrategyHarvested(VaultEvent):
    strategy: HexAddress
    treasury: HexAddress
    assets: int
    shares: int


@dataclass(frozen=True, slots=True)
class StrategyEmergencyExit(VaultEvent):
    strategy: HexAddress
    assets: int
    shares: int


@dataclass(frozen=True, slots=True)
class VaultPaused(VaultEvent):
    by: HexAddress
    reason: str


@dataclass(frozen=True, slots=True)
class VaultUnpaused(VaultEvent):
    by: HexAddress


@dataclass(frozen=True, slots=True)
class ParameterUpdated(VaultEvent):
    """Governance changed a timelock, threshold or cap."""

    name: str
    old_value: int | None
    new_value: int | None


EventType = TypeVar("EventType", bound=VaultEvent)


class EventLog(Stateful):
    """Append-only list of emitted events.

    Events emitted by an operation that is rolled back are discarded with it.
    A snapshot is the log length and a restore truncates back to it.
    """

    def __init__(self):
        self.events: list[VaultEvent] = []

    def snapshot(self) -> dict:
        return {"length": len(self.events)}

    def restore(self, data: dict):
        del self.events[data["length"]:]

    def emit(self, event: VaultEvent):
        logger.debug("Event %s", event)
        self.events.append(event)

    def filter(self, event_type: Type[EventType]) -> list[EventType]:
        return [e for e in self.events if isinstance(e, event_type)]

    def __iter__(self) -> Iterator[VaultEvent]:
        return iter(self.events)

    def __len__(self):
        return len(self.events)
