"""
Per-device advisory locks.

Relocation jobs serialize on the device (st_dev) of their source and
destination rather than on paths, so that two destination directories on one
filesystem share a lock and free-space measurements stay valid while a job
holds it.

Locks are flock(2) locks on ``<lock_dir>/<device_id>``. They belong to the
open file description, so they are released when the handle is closed or the
process dies, whichever comes first. Lock files are never removed.
"""

import fcntl
import logging
import os
from contextlib import ExitStack
from pathlib import Path
from typing import Iterable, List, Optional

from trmove.errors import LockError

logger = logging.getLogger("trmove.locks")


def get_device_id(path: Path) -> int:
    """
    Return the device id of ``path``, walking up to the nearest existing
    ancestor when the path itself does not exist (e.g. an already moved
    payload).

    Raises:
        LockError: If no ancestor can be stat'ed
    """
    current = Path(path)
    while True:
        try:
            return os.stat(current).st_dev
        except FileNotFoundError:
            if current.parent == current:
                break
            current = current.parent
        except OSError as e:
            raise LockError(f"cannot stat {current}: {e}") from e
    raise LockError(f"cannot resolve device for {path}")


class DeviceLock:
    """An acquired exclusive lock on one device. Release by closing."""

    def __init__(self, device_id: int, lock_path: Path, fd: int):
        self.device_id = device_id
        self.lock_path = lock_path
        self._fd: Optional[int] = fd

    @property
    def held(self) -> bool:
        return self._fd is not None

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        os.close(fd)
        logger.debug("released lock %s", self.lock_path)

    def __enter__(self) -> "DeviceLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"DeviceLock(device_id={self.device_id}, held={self.held})"


class DeviceLockManager:
    """
    Hands out device locks backed by files in a shared lock directory.

    Attributes:
        lock_dir: Directory holding one lock file per device id
    """

    def __init__(self, lock_dir: Path):
        self.lock_dir = Path(lock_dir)

    def lock_path(self, device_id: int) -> Path:
        return self.lock_dir / str(device_id)

    def acquire_device(self, device_id: int) -> DeviceLock:
        """
        Block until the exclusive lock for ``device_id`` is held.

        There is no timeout: a holder keeps the lock for at most one
        relocation.

        Raises:
            LockError: If the lock file cannot be opened or locked
        """
        lock_path = self.lock_path(device_id)
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(lock_path, os.O_WRONLY | os.O_CREAT | os.O_CLOEXEC, 0o660)
        except OSError as e:
            raise LockError(f"cannot open lock file {lock_path}: {e}") from e

        logger.debug("waiting for lock %s", lock_path)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError as e:
            os.close(fd)
            raise LockError(f"cannot acquire lock {lock_path}: {e}") from e
        logger.debug("acquired lock %s", lock_path)
        return DeviceLock(device_id, lock_path, fd)

    def acquire(self, path: Path) -> DeviceLock:
        """Lock the device that ``path`` lives on."""
        return self.acquire_device(get_device_id(path))

    def acquire_many(self, paths: Iterable[Path]) -> List[DeviceLock]:
        """
        Lock the devices of all ``paths``.

        Devices are locked once each, in ascending device id order, so two
        jobs with swapped source/destination devices cannot deadlock and a job
        whose source and destination share a device does not wait on itself.
        On failure every lock taken so far is released.

        Returns:
            Held locks, in acquisition order
        """
        device_ids = sorted({get_device_id(p) for p in paths})
        with ExitStack() as stack:
            locks = [stack.enter_context(self.acquire_device(d)) for d in device_ids]
            stack.pop_all()
        return locks
