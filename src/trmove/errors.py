"""
Error taxonomy for relocation jobs.

Every error carries the process exit code the CLI should terminate with and
whether the outcome is an expected, retry-later condition rather than an
incident. Only ``trmove.cli`` turns these into exit codes.
"""

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_ALREADY_MOVED = 2
EXIT_NOT_ENOUGH_SPACE = 3
EXIT_REMOTE_SYNC_TIMEOUT = 4


class TrmoveError(Exception):
    """Base class for all relocation errors."""

    exit_code = EXIT_FATAL
    expected = False


class AlreadyMoved(TrmoveError):
    """The source payload is gone and no relocation is pending for it."""

    exit_code = EXIT_ALREADY_MOVED
    expected = True


class NotEnoughSpace(TrmoveError):
    """The destination cannot hold the payload plus the configured margin."""

    exit_code = EXIT_NOT_ENOUGH_SPACE
    expected = True

    def __init__(self, message: str, size: int = 0, free: int = 0, margin: int = 0):
        super().__init__(message)
        self.size = size
        self.free = free
        self.margin = margin


class LockError(TrmoveError):
    """A device lock could not be acquired."""


class MarkerError(TrmoveError):
    """The completion marker could not be written."""


class TransferError(TrmoveError):
    """The bulk transfer into the staging directory failed."""


class PromoteError(TrmoveError):
    """Promotion of staged data to its final name (or the final sync) failed."""


class CleanupError(TrmoveError):
    """Removing the source payload or the completion marker failed."""


class PayloadMissing(TrmoveError):
    """A relocation is pending but neither source nor promoted data exist."""


class RemoteSyncTimeout(TrmoveError):
    """
    A remote command kept failing after all retries.

    The payload data is already relocated when this is raised; only the
    remote agent's record (and the source cleanup) is behind.
    """

    exit_code = EXIT_REMOTE_SYNC_TIMEOUT


class RemoteError(Exception):
    """A single remote agent command failed. Retried by the synchronizer."""


class MultipleErrors(TrmoveError):
    """Several jobs of one operator command failed."""

    def __init__(self, count: int):
        super().__init__(f"Had {count} errors")
        self.count = count
