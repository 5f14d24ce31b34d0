"""All-or-nothing execution of vault entry points.

- Every public mutating vault call runs inside :py:class:`AtomicExecutor`

- The executor snapshots each :py:class:`Stateful` participant before the call
  and restores all of them if the call raises, so a failed operation
  never leaves shares burnt without assets transferred, or similar

- Only one entry point may be in flight per execution lock.
  Vaults sharing a share token share the lock, because they mutate the same ledger.
  A nested call (e.g. a strategy calling back into the vault) raises :py:class:`unifi_vault.errors.ReentrantCall`
"""

import copy
import functools
import logging
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator

from unifi_vault.errors import ReentrantCall


logger = logging.getLogger(__name__)


class Stateful:
    """Component whose state can be snapshotted and rolled back.

    Subclasses list their mutable attributes in :py:attr:`snapshot_fields`.
    """

    #: Attributes deep copied into a snapshot.
    #:
    #: Value data only: dicts, ints, dataclasses.
    snapshot_fields: tuple[str, ...] = ()

    #: Attributes holding references to other live components.
    #:
    #: Stored as is, so a restore puts the same object back.
    snapshot_refs: tuple[str, ...] = ()

    def snapshot(self) -> dict:
        data = {name: copy.deepcopy(getattr(self, name)) for name in self.snapshot_fields}
        data.update({name: getattr(self, name) for name in self.snapshot_refs})
        return data

    def restore(self, data: dict):
        for name, value in data.items():
            setattr(self, name, value)


class ExecutionLock:
    """Mutual exclusion boundary for a group of vaults.

    - Serialises entry points across threads
    - Tracks which operation is in flight to catch re-entrancy from the same thread
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._owner: int | None = None
        self.in_flight: str | None = None

    def acquire(self, operation: str):
        if self._owner == threading.get_ident():
            raise ReentrantCall(operation, self.in_flight)
        self._lock.acquire()
        self._owner = threading.get_ident()
        self.in_flight = operation

    def release(self):
        self.in_flight = None
        self._owner = None
        self._lock.release()

    def __deepcopy__(self, memo):
        # Locks are shared infrastructure, never part of a snapshot
        return self


class AtomicExecutor:
    """Run an operation against a set of stateful participants, all-or-nothing."""

    def __init__(self, lock: ExecutionLock):
        assert isinstance(lock, ExecutionLock), f"Got {type(lock)}"
        self.lock = lock

    @contextmanager
    def run(self, operation: str, participants: Iterable[Stateful]) -> Iterator[None]:
        """Execute a block atomically.

        Example:

        .. code-block:: python

            with executor.run("deposit", vault.get_stateful_participants()):
                ...

        :param operation:
            Name of the entry point, for logging and re-entrancy diagnostics

        :param participants:
            Every component the operation may mutate
        """
        self.lock.acquire(operation)
        try:
            # Same object can be reachable through several paths
            unique = list({id(p): p for p in participants if p is not None}.values())
            snapshots = [(p, p.snapshot()) for p in unique]
            try:
                yield
            except Exception as e:
                for participant, data in reversed(snapshots):
                    participant.restore(data)
                logger.warning("Operation %s failed and was rolled back: %s", operation, e)
                raise
        finally:
            self.lock.release()


def atomic(func):
    """Run a vault entry point through its :py:class:`AtomicExecutor`.

    The decorated object needs `executor` and `get_stateful_participants()`.
    """

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        with self.executor.run(func.__name__, self.get_stateful_participants()):
            return func(self, *args, **kwargs)

    return wrapper
