"""Unit tests for locks.py - relation locks and scoped guards."""

import threading

import pytest
from partprune.errors import LockNotHeldError
from partprune.locks import LockGuard, LockManager, LockMode


class TestLockManager:
    """Tests for lock conflicts between owners."""

    def test_shared_locks_coexist(self):
        locks = LockManager()
        assert locks.acquire(1, LockMode.ACCESS_SHARE, "a")
        assert locks.acquire(1, LockMode.ACCESS_SHARE, "b", blocking=False)

    def test_exclusive_conflicts(self):
        locks = LockManager()
        assert locks.acquire(1, LockMode.ACCESS_EXCLUSIVE, "a")
        assert not locks.acquire(1, LockMode.ACCESS_SHARE, "b", blocking=False)
        assert locks.acquire(2, LockMode.ACCESS_SHARE, "b", blocking=False)

    def test_share_update_exclusive_is_self_conflicting(self):
        locks = LockManager()
        assert locks.acquire(1, LockMode.SHARE_UPDATE_EXCLUSIVE, "a")
        assert locks.acquire(1, LockMode.ACCESS_SHARE, "b", blocking=False)
        assert not locks.acquire(1, LockMode.SHARE_UPDATE_EXCLUSIVE, "b", blocking=False)

    def test_reentrant_for_the_same_owner(self):
        locks = LockManager()
        assert locks.acquire(1, LockMode.ACCESS_EXCLUSIVE, "a")
        assert locks.acquire(1, LockMode.ACCESS_SHARE, "a", blocking=False)
        assert locks.acquire(1, LockMode.ACCESS_EXCLUSIVE, "a", blocking=False)
        locks.release(1, LockMode.ACCESS_EXCLUSIVE, "a")
        assert locks.holds(1, LockMode.ACCESS_EXCLUSIVE, "a")
        locks.release(1, LockMode.ACCESS_EXCLUSIVE, "a")
        assert not locks.holds(1, LockMode.ACCESS_EXCLUSIVE, "a")

    def test_release_of_lock_not_held(self):
        with pytest.raises(LockNotHeldError):
            LockManager().release(1, LockMode.ACCESS_SHARE, "a")

    def test_release_all(self):
        locks = LockManager()
        locks.acquire(1, LockMode.ACCESS_EXCLUSIVE, "a")
        locks.acquire(2, LockMode.ACCESS_SHARE, "a")
        locks.acquire(2, LockMode.ACCESS_SHARE, "b")
        locks.release_all("a")
        assert not locks.is_locked(1)
        assert locks.holds(2, LockMode.ACCESS_SHARE, "b")

    def test_blocking_acquire_waits_for_release(self):
        locks = LockManager()
        locks.acquire(1, LockMode.ACCESS_EXCLUSIVE, "a")
        acquired = threading.Event()

        def waiter():
            locks.acquire(1, LockMode.ACCESS_SHARE, "b")
            acquired.set()

        thread = threading.Thread(target=waiter)
        thread.start()
        assert not acquired.wait(0.1)
        locks.release(1, LockMode.ACCESS_EXCLUSIVE, "a")
        assert acquired.wait(5)
        thread.join()
        assert locks.holds(1, LockMode.ACCESS_SHARE, "b")


class TestLockGuard:
    """Tests for the scoped lock guard."""

    def test_releases_on_exit(self):
        locks = LockManager()
        with LockGuard(locks, "a", LockMode.ACCESS_SHARE) as guard:
            assert guard.acquire(1)
            assert guard.acquire(2)
            guard.release(1)
            assert guard.held == (2,)
        assert not locks.is_locked(1)
        assert not locks.is_locked(2)

    def test_releases_on_error(self):
        locks = LockManager()
        with pytest.raises(RuntimeError):
            with LockGuard(locks, "a", LockMode.ACCESS_SHARE) as guard:
                guard.acquire(1)
                raise RuntimeError("rebuild failed")
        assert not locks.is_locked(1)

    def test_failed_acquire_is_not_recorded(self):
        locks = LockManager()
        locks.acquire(1, LockMode.ACCESS_EXCLUSIVE, "b")
        with LockGuard(locks, "a", LockMode.ACCESS_SHARE) as guard:
            assert not guard.acquire(1, blocking=False)
            assert guard.held == ()
        assert locks.holds(1, LockMode.ACCESS_EXCLUSIVE, "b")
