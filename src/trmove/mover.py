"""
Relocation orchestration.

One ``Mover.run`` moves one payload:

    replicate metadata -> lock source/destination devices -> source check
    -> admission -> set marker -> stage/transfer -> record promotion
    -> promote/sync -> record location
    -> set-location (-> verify) -> remove source -> clear marker

The completion marker is written before anything destructive and removed
last, so any failure in between leaves it behind for ``trmove incomplete``.
Before the rename it records the chosen container; after the sync it records
the location. A rerun that finds either resumes from there instead of copying
again or reporting "already moved".
"""

import logging
import os
import shutil
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Type

from trmove.admission import AdmissionDecision, check_admission, free_space, payload_size
from trmove.console import NOTICE
from trmove.durable import fsync_path
from trmove.errors import (
    AlreadyMoved,
    CleanupError,
    MarkerError,
    NotEnoughSpace,
    PayloadMissing,
    PromoteError,
    TransferError,
    TrmoveError,
)
from trmove.job import RelocationJob
from trmove.locks import DeviceLockManager
from trmove.marker import PROMOTED, PROMOTING, CompletionMarker
from trmove.metadata import MetadataReplicator
from trmove.remote import DEFAULT_ATTEMPTS, RemoteAgent, RemoteSynchronizer
from trmove.staging import StagingCoordinator, Transfer

logger = logging.getLogger("trmove.mover")


@dataclass
class MoveResult:
    job: RelocationJob
    location: Path
    resumed: bool = False
    admission: Optional[AdmissionDecision] = None

    @property
    def payload_path(self) -> Path:
        return self.location / self.job.name


class Mover:
    """
    Runs relocation jobs against one remote agent.

    Attributes:
        agent: Remote agent told about the new location
        transfer: Bulk copy function (rsync by default)
        free_space_fn: Measures destination free space
        size_fn: Measures payload size
        attempts: Attempts per remote command
        step: Name of the step currently running (or last failed)
    """

    def __init__(self, agent: RemoteAgent,
                 transfer: Optional[Transfer] = None,
                 free_space_fn: Callable[[Path], int] = free_space,
                 size_fn: Callable[[Path], int] = payload_size,
                 attempts: int = DEFAULT_ATTEMPTS):
        self.agent = agent
        self.transfer = transfer
        self.free_space_fn = free_space_fn
        self.size_fn = size_fn
        self.attempts = attempts
        self.step: Optional[str] = None

    @contextmanager
    def _step(self, name: str, error_cls: Type[TrmoveError] = TrmoveError) -> Iterator[None]:
        self.step = name
        logger.debug("step: %s", name)
        try:
            yield
        except TrmoveError:
            raise
        except OSError as e:
            raise error_cls(str(e)) from e

    def run(self, job: RelocationJob) -> MoveResult:
        """
        Relocate ``job``'s payload.

        Every failure is logged exactly once here, with the failing step and
        the job's (source, hash, destination) triple, then re-raised.
        Expected outcomes are logged at warning level.

        Raises:
            AlreadyMoved, NotEnoughSpace: Expected outcomes
            TrmoveError: Any fatal failure
        """
        self.step = None
        try:
            return self._run(job)
        except TrmoveError as e:
            if not e.expected:
                logger.error("%s failed: %s (%s)", self.step, e, job.describe())
            elif isinstance(e, NotEnoughSpace):
                logger.warning("not enough space in %s for %s (free=%d size=%d margin=%d)",
                               job.relative(job.destination_root), job.relative(job.source_path),
                               e.free, e.size, e.margin)
            else:
                logger.warning("%s", e)
            raise

    def _run(self, job: RelocationJob) -> MoveResult:
        with self._step("replicate metadata"):
            MetadataReplicator(job.metadata_dir).replicate(job.torrent_hash, job.metadata_file)

        with self._step("check destination"):
            if not job.destination_root.is_dir():
                raise TrmoveError(f"destination {job.destination_root} is not a directory")

        lock_manager = DeviceLockManager(job.lock_dir)
        with ExitStack() as held:
            with self._step("acquire locks"):
                for lock in lock_manager.acquire_many([job.source_path, job.destination_root]):
                    held.enter_context(lock)

            marker = CompletionMarker(job.destination_root, job.torrent_hash)
            staging = StagingCoordinator(job.destination_root, job.torrent_hash, job.name,
                                         transfer=self.transfer)

            with self._step("read marker", MarkerError):
                try:
                    state, container = marker.read()
                except ValueError as e:
                    raise MarkerError(str(e)) from e
            if state == PROMOTED:
                return self._resume(job, marker, staging, container)
            if state == PROMOTING:
                logger.log(NOTICE, "resuming interrupted promotion of %s",
                           job.relative(job.source_path))
                location = self._commit(job, marker, staging, container)
                return MoveResult(job=job, location=location, resumed=True)
            if not os.path.lexists(job.source_path):
                if marker.exists():
                    self.step = "check source"
                    raise PayloadMissing(
                        f"source is gone but {marker.path} records no promotion")
                raise AlreadyMoved(f"already moved {job.relative(job.source_path)}")

            with self._step("admission"):
                size = self.size_fn(job.source_path)
                free = self.free_space_fn(job.destination_root)
                decision = check_admission(size, free, job.free_space_margin, job.force)

            with self._step("set marker", MarkerError):
                marker.set()

            with self._step("stage", TransferError):
                staging.prepare()
            with self._step("transfer", TransferError):
                staging.copy(job.source_path)

            location = self._commit(job, marker, staging)

        logger.log(NOTICE, "moved %s to %s",
                   job.relative(job.source_path), job.relative(location / job.name))
        return MoveResult(job=job, location=location, admission=decision)

    def _commit(self, job: RelocationJob, marker: CompletionMarker,
                staging: StagingCoordinator, decided: Optional[Path] = None) -> Path:
        """
        Promote a fully staged payload and finish the move.

        The chosen container is written into the marker before the rename, so
        a rerun after a crash at any point from here on never copies again.
        ``decided`` is the container an interrupted run had chosen.
        """
        if decided is None:
            with self._step("record promotion", MarkerError):
                decided = staging.promotion_container()
                marker.record_promoting(decided)
        with self._step("promote", PromoteError):
            location = staging.promote(decided)
        with self._step("sync", PromoteError):
            staging.sync(location)
        with self._step("record location", MarkerError):
            marker.record_location(location)

        self._sync_remote(job, location)
        self._cleanup(job, marker)
        return location

    def _resume(self, job: RelocationJob, marker: CompletionMarker,
                staging: StagingCoordinator, location: Path) -> MoveResult:
        """
        Finish a move whose payload was promoted and synced into ``location``
        before the previous run died: redo the remote sync and the cleanup.
        """
        with self._step("locate promoted payload", PayloadMissing):
            if not os.path.lexists(location / job.name):
                raise PayloadMissing(
                    f"{marker.path} records {location} but {location / job.name} is missing")
        logger.log(NOTICE, "resuming interrupted move of %s", job.relative(job.source_path))

        with self._step("sync", PromoteError):
            staging.sync(location)
        self._sync_remote(job, location)
        self._cleanup(job, marker)
        return MoveResult(job=job, location=location, resumed=True)

    def _sync_remote(self, job: RelocationJob, location: Path) -> None:
        synchronizer = RemoteSynchronizer(self.agent, attempts=self.attempts)
        with self._step("set-location"):
            synchronizer.update_location(job.torrent_hash, str(location))
        if job.verify:
            with self._step("verify"):
                synchronizer.start_verify(job.torrent_hash)

    def _cleanup(self, job: RelocationJob, marker: CompletionMarker) -> None:
        with self._step("remove source", CleanupError):
            source = job.source_path
            if source.is_dir() and not source.is_symlink():
                shutil.rmtree(source)
            elif os.path.lexists(source):
                source.unlink()

            source_dir = job.source_dir
            if source_dir.name == job.torrent_hash:
                # private per-torrent download directory
                if source_dir.exists():
                    source_dir.rmdir()
                fsync_path(source_dir.parent)
            else:
                fsync_path(source_dir)

        with self._step("clear marker", CleanupError):
            marker.clear()
