"""
Tests for per-device advisory locks.
"""

import fcntl
import os
import threading

import pytest

from trmove import locks
from trmove.errors import LockError
from trmove.locks import DeviceLockManager, get_device_id


def _is_locked(lock_path) -> bool:
    fd = os.open(lock_path, os.O_WRONLY)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return True
    finally:
        os.close(fd)
    return False


class TestGetDeviceId:
    def test_existing_path(self, tmp_path):
        assert get_device_id(tmp_path) == os.stat(tmp_path).st_dev

    def test_missing_path_uses_nearest_ancestor(self, tmp_path):
        assert get_device_id(tmp_path / "gone" / "deeper") == os.stat(tmp_path).st_dev


class TestDeviceLockManager:
    def test_acquire_creates_lock_file_named_by_device(self, tmp_path):
        manager = DeviceLockManager(tmp_path / "locks")
        with manager.acquire(tmp_path) as lock:
            expected = tmp_path / "locks" / str(os.stat(tmp_path).st_dev)
            assert lock.lock_path == expected
            assert expected.exists()
            assert lock.held
            assert _is_locked(expected)
        assert not lock.held
        assert not _is_locked(expected)
        # lock files are never removed
        assert expected.exists()

    def test_release_is_idempotent(self, tmp_path):
        manager = DeviceLockManager(tmp_path / "locks")
        lock = manager.acquire(tmp_path)
        lock.release()
        lock.release()
        assert not lock.held

    def test_second_acquire_blocks_until_release(self, tmp_path):
        manager = DeviceLockManager(tmp_path / "locks")
        first = manager.acquire(tmp_path)
        acquired = threading.Event()

        def worker():
            with manager.acquire(tmp_path / "other"):
                acquired.set()

        t = threading.Thread(target=worker)
        t.start()
        try:
            assert not acquired.wait(0.3)
        finally:
            first.release()
        assert acquired.wait(5)
        t.join(5)

    def test_acquire_many_same_device_locks_once(self, tmp_path):
        manager = DeviceLockManager(tmp_path / "locks")
        (tmp_path / "src").mkdir()
        (tmp_path / "dst").mkdir()
        held = manager.acquire_many([tmp_path / "src", tmp_path / "dst"])
        try:
            assert len(held) == 1
        finally:
            for lock in held:
                lock.release()

    def test_acquire_many_orders_by_device_id(self, tmp_path, monkeypatch):
        ids = {"src": 77, "dst": 12}
        monkeypatch.setattr(locks, "get_device_id", lambda p: ids[p.name])
        manager = DeviceLockManager(tmp_path / "locks")
        held = manager.acquire_many([tmp_path / "src", tmp_path / "dst"])
        try:
            assert [lock.device_id for lock in held] == [12, 77]
        finally:
            for lock in held:
                lock.release()

    def test_acquire_many_releases_on_failure(self, tmp_path, monkeypatch):
        manager = DeviceLockManager(tmp_path / "locks")
        real_acquire = manager.acquire_device
        taken = []

        def flaky(device_id):
            if device_id == 2:
                raise LockError("boom")
            lock = real_acquire(device_id)
            taken.append(lock)
            return lock

        monkeypatch.setattr(locks, "get_device_id", lambda p: {"a": 1, "b": 2}[p.name])
        monkeypatch.setattr(manager, "acquire_device", flaky)
        with pytest.raises(LockError):
            manager.acquire_many([tmp_path / "a", tmp_path / "b"])
        assert len(taken) == 1
        assert not taken[0].held

    def test_unusable_lock_dir_raises_lock_error(self, tmp_path):
        blocker = tmp_path / "locks"
        blocker.write_text("not a directory")
        manager = DeviceLockManager(blocker)
        with pytest.raises(LockError):
            manager.acquire(tmp_path)
