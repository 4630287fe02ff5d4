"""
Staging, transfer and promotion of a payload into its destination root.

Data is first copied into ``<destination_root>/<hash>/<name>``. Once the copy
is complete it is renamed to ``<destination_root>/<name>`` unless that name is
already taken, in which case the hash directory becomes its permanent home.
A rename within one filesystem is atomic, so the final name never shows a
partial payload.
"""

import enum
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, List, Optional

from trmove.durable import fsync_path, fsync_tree
from trmove.errors import PromoteError, TransferError

logger = logging.getLogger("trmove.staging")

NICE_LEVEL = 10

Transfer = Callable[[Path, Path], None]


class StagingState(enum.Enum):
    PENDING = "pending"
    STAGING_READY = "staging-ready"
    TRANSFERRING = "transferring"
    PROMOTED = "promoted"
    SYNCED = "synced"


def build_rsync_command(source: Path, staging_dir: Path) -> List[str]:
    """
    Build the low-priority, resumable rsync invocation.

    ``--append`` lets an interrupted copy continue where it stopped instead of
    re-sending files that are already complete.
    """
    rsync = shutil.which("rsync")
    if not rsync:
        raise TransferError("rsync not found")

    cmd = []
    nice = shutil.which("nice")
    if nice:
        cmd += [nice, "-n", str(NICE_LEVEL)]
    ionice = shutil.which("ionice")
    if ionice:
        cmd += [ionice, "-c3"]
    cmd += [rsync, "-a", "--append", "--", str(source), f"{staging_dir}/"]
    return cmd


def rsync_transfer(source: Path, staging_dir: Path) -> None:
    """Copy ``source`` into ``staging_dir`` with rsync."""
    cmd = build_rsync_command(source, staging_dir)
    logger.debug("running %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as e:
        raise TransferError(f"cannot run rsync: {e}") from e
    if result.returncode != 0:
        detail = (result.stderr or "").strip().splitlines()
        raise TransferError(
            f"rsync exited with {result.returncode}"
            + (f": {detail[-1]}" if detail else "")
        )


class StagingCoordinator:
    """
    Drives one payload through staging -> transfer -> promotion -> sync.

    Attributes:
        destination_root: Final destination directory
        torrent_hash: Payload hash, names the staging directory
        name: Final name of the payload entry
        state: Last state reached
    """

    def __init__(self, destination_root: Path, torrent_hash: str, name: str,
                 transfer: Optional[Transfer] = None):
        self.destination_root = Path(destination_root)
        self.torrent_hash = torrent_hash
        self.name = name
        self.transfer = transfer or rsync_transfer
        self.state = StagingState.PENDING

    @property
    def staging_dir(self) -> Path:
        return self.destination_root / self.torrent_hash

    @property
    def final_path(self) -> Path:
        return self.destination_root / self.name

    def prepare(self) -> Path:
        """Create the staging directory if needed and make its entry durable."""
        if not self.staging_dir.is_dir():
            self.staging_dir.mkdir()
            fsync_path(self.destination_root)
        self.state = StagingState.STAGING_READY
        return self.staging_dir

    def copy(self, source: Path) -> None:
        self.state = StagingState.TRANSFERRING
        logger.debug("transfer %s -> %s", source, self.staging_dir)
        try:
            self.transfer(Path(source), self.staging_dir)
        except TransferError:
            raise
        except (OSError, subprocess.SubprocessError) as e:
            raise TransferError(f"transfer failed: {e}") from e

    def promotion_container(self) -> Path:
        """
        Where ``promote`` will leave the payload: the destination root, or
        the staging directory when the final name is taken.
        """
        if os.path.lexists(self.final_path):
            return self.staging_dir
        return self.destination_root

    def promote(self, container: Optional[Path] = None) -> Path:
        """
        Move the staged entry to its final name if that name is free.

        Args:
            container: Container chosen by an earlier run. When it is the
                destination root and the staged entry is already gone, that
                run's rename went through and only the staging directory is
                left to remove.

        Returns:
            The directory now containing the payload entry (the destination
            root, or the staging directory on a name collision)
        """
        staged = self.staging_dir / self.name
        if not os.path.lexists(staged):
            if container == self.destination_root and os.path.lexists(self.final_path):
                logger.info("%s already promoted", self.final_path)
                self._remove_staging_dir()
                self.state = StagingState.PROMOTED
                return self.destination_root
            raise PromoteError(f"staged payload missing: {staged}")

        if os.path.lexists(self.final_path):
            logger.info("%s already exists, keeping payload in %s",
                        self.final_path, self.staging_dir)
            container = self.staging_dir
        else:
            try:
                os.rename(staged, self.final_path)
            except OSError as e:
                raise PromoteError(f"cannot promote {staged}: {e}") from e
            self._remove_staging_dir()
            container = self.destination_root
        self.state = StagingState.PROMOTED
        return container

    def _remove_staging_dir(self) -> None:
        try:
            if self.staging_dir.is_dir():
                self.staging_dir.rmdir()
        except OSError as e:
            raise PromoteError(f"cannot remove {self.staging_dir}: {e}") from e

    def sync(self, container: Path) -> None:
        """Force the payload under ``container`` and the container itself to disk."""
        try:
            fsync_tree(container / self.name)
            fsync_path(container)
        except OSError as e:
            raise PromoteError(f"cannot sync {container / self.name}: {e}") from e
        self.state = StagingState.SYNCED
