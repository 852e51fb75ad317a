"""
Relation-level locks shared between sessions.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections import Counter
from collections.abc import Hashable

from .errors import LockNotHeldError

logger = logging.getLogger(__name__.split(".")[0])


class LockMode(enum.IntEnum):
    ACCESS_SHARE = 1
    SHARE_UPDATE_EXCLUSIVE = 4
    ACCESS_EXCLUSIVE = 8


CONFLICTS = {
    LockMode.ACCESS_SHARE: frozenset({LockMode.ACCESS_EXCLUSIVE}),
    LockMode.SHARE_UPDATE_EXCLUSIVE: frozenset({LockMode.SHARE_UPDATE_EXCLUSIVE, LockMode.ACCESS_EXCLUSIVE}),
    LockMode.ACCESS_EXCLUSIVE: frozenset(LockMode),
}


class LockManager:
    """
    Lock table keyed by relation id.

    Locks are re-entrant per owner: a lock request never conflicts with locks held by the same owner.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._held: dict[int, Counter] = {}  # relid -> Counter of (owner, mode)

    def _conflicts(self, relid: int, mode: LockMode, owner: Hashable) -> bool:
        return any(
            count and holder != owner and held_mode in CONFLICTS[mode]
            for (holder, held_mode), count in self._held.get(relid, Counter()).items()
        )

    def acquire(self, relid: int, mode: LockMode, owner: Hashable, blocking: bool = True) -> bool:
        """
        Take a lock on a relation.

        :param blocking: wait for conflicting locks to go away; otherwise give up immediately
        :return: True if the lock was taken
        """
        with self._cond:
            while self._conflicts(relid, mode, owner):
                if not blocking:
                    logger.debug(f"{owner} could not lock relation {relid} in {mode.name} mode")
                    return False
                self._cond.wait()
            self._held.setdefault(relid, Counter())[owner, mode] += 1
            return True

    def release(self, relid: int, mode: LockMode, owner: Hashable) -> None:
        with self._cond:
            held = self._held.get(relid, Counter())
            if not held[owner, mode]:
                raise LockNotHeldError(f"{owner} does not hold a {mode.name} lock on relation {relid}")
            held[owner, mode] -= 1
            if not held[owner, mode]:
                del held[owner, mode]
            if not held:
                self._held.pop(relid, None)
            self._cond.notify_all()

    def release_all(self, owner: Hashable) -> None:
        with self._cond:
            for relid in list(self._held):
                held = self._held[relid]
                for key in [k for k in held if k[0] == owner]:
                    del held[key]
                if not held:
                    del self._held[relid]
            self._cond.notify_all()

    def holds(self, relid: int, mode: LockMode, owner: Hashable) -> bool:
        with self._cond:
            return bool(self._held.get(relid, Counter())[owner, mode])

    def is_locked(self, relid: int) -> bool:
        with self._cond:
            return bool(self._held.get(relid))


class LockGuard:
    """
    Locks taken in one mode by one owner, released together when the guard exits.

    >>> with LockGuard(locks, owner, LockMode.ACCESS_SHARE) as guard:
    ...     if guard.acquire(relid, blocking=False):
    ...         ...
    """

    def __init__(self, manager: LockManager, owner: Hashable, mode: LockMode) -> None:
        self._manager = manager
        self._owner = owner
        self._mode = mode
        self._relids: list[int] = []

    def acquire(self, relid: int, blocking: bool = True) -> bool:
        if not self._manager.acquire(relid, self._mode, self._owner, blocking=blocking):
            return False
        self._relids.append(relid)
        return True

    def release(self, relid: int) -> None:
        self._relids.remove(relid)
        self._manager.release(relid, self._mode, self._owner)

    @property
    def held(self) -> tuple[int, ...]:
        return tuple(self._relids)

    def __enter__(self) -> LockGuard:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        while self._relids:
            self._manager.release(self._relids.pop(), self._mode, self._owner)
