"""Disk-space admission control for relocation jobs."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from trmove.errors import NotEnoughSpace

logger = logging.getLogger("trmove.admission")


def payload_size(path: Path) -> int:
    """
    Disk usage of ``path`` in bytes, recursively.

    Counts allocated blocks rather than apparent sizes and counts each hard
    linked inode once, which is what ``du -B1 -s`` reports and what the copy
    will consume at the destination.
    """
    path = Path(path)
    seen = set()
    total = 0

    def _account(st: os.stat_result) -> None:
        nonlocal total
        key = (st.st_dev, st.st_ino)
        if key in seen:
            return
        seen.add(key)
        total += st.st_blocks * 512

    _account(os.lstat(path))
    if path.is_dir() and not path.is_symlink():
        for dirpath, dirnames, filenames in os.walk(path):
            for name in dirnames + filenames:
                _account(os.lstat(os.path.join(dirpath, name)))
    return total


def free_space(path: Path) -> int:
    """Bytes available to unprivileged users on the filesystem of ``path``."""
    st = os.statvfs(path)
    return st.f_bavail * st.f_frsize


@dataclass
class AdmissionDecision:
    size: int
    free: int
    margin: int
    forced: bool = False

    @property
    def fits(self) -> bool:
        return self.free > self.size + self.margin


def check_admission(size: int, free: int, margin: int, force: bool = False) -> AdmissionDecision:
    """
    Approve a move iff ``free > size + margin``, or unconditionally when forced.

    Raises:
        NotEnoughSpace: If the move does not fit and ``force`` is unset
    """
    decision = AdmissionDecision(size=size, free=free, margin=margin, forced=force)
    if decision.fits:
        return decision
    if force:
        logger.warning("forcing move: free=%d size=%d margin=%d", free, size, margin)
        return decision
    raise NotEnoughSpace(
        f"not enough space: free={free} size={size} margin={margin}",
        size=size, free=free, margin=margin,
    )
