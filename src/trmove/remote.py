"""
Bounded-retry synchronization of the remote agent's location record.

The agent is only ever told two things: where a payload now lives, and to
start verifying it. Both commands are idempotent, so a failed attempt is
simply re-issued. There is no backoff between attempts; each command blocks
for as long as the agent takes to answer (or time out).
"""

import logging
from typing import Callable, Optional, Protocol

from trmove.console import NOTICE
from trmove.errors import RemoteError, RemoteSyncTimeout

logger = logging.getLogger("trmove.remote")

DEFAULT_ATTEMPTS = 3


class RemoteAgent(Protocol):
    """What the mover needs from the daemon owning the payload."""

    def set_location(self, torrent_hash: str, location: str) -> None:
        """Point ``torrent_hash`` at ``location`` without moving any data."""

    def verify(self, torrent_hash: str) -> None:
        """Start (not await) verification of ``torrent_hash``."""


class RemoteSynchronizer:
    """
    Issues remote commands with a fixed number of attempts.

    Attributes:
        agent: Remote agent client
        attempts: Attempts per command before giving up
    """

    def __init__(self, agent: RemoteAgent, attempts: int = DEFAULT_ATTEMPTS):
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.agent = agent
        self.attempts = attempts

    def _with_retries(self, label: str, command: Callable[[], None]) -> int:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.attempts + 1):
            try:
                command()
                return attempt
            except RemoteError as e:
                last_error = e
                logger.warning("%s attempt %d/%d failed: %s", label, attempt, self.attempts, e)
        raise RemoteSyncTimeout(f"{label} timeout") from last_error

    def update_location(self, torrent_hash: str, location: str) -> int:
        """
        Tell the agent the payload now lives in ``location``.

        Returns:
            The attempt number that succeeded

        Raises:
            RemoteSyncTimeout: After ``attempts`` consecutive failures
        """
        return self._with_retries(
            "set-location", lambda: self.agent.set_location(torrent_hash, location))

    def start_verify(self, torrent_hash: str) -> int:
        """
        Start verification of the payload. Does not wait for it to finish.

        Raises:
            RemoteSyncTimeout: After ``attempts`` consecutive failures
        """
        logger.log(NOTICE, "start verifying %s", torrent_hash)
        return self._with_retries("verify start", lambda: self.agent.verify(torrent_hash))
