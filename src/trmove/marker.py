"""
Completion markers.

``<destination_root>/<hash>.incomplete`` exists from just before the first
destructive step of a relocation until the source has been cleaned up. A
marker left behind identifies an aborted move.

Content records how far the move got:

- empty: the payload may be partially staged
- ``promoting <dir>``: the staged copy is complete and is about to be
  renamed into ``<dir>``
- ``promoted <dir>``: the payload lives, synced, under ``<dir>``

Paths are stored as raw filesystem bytes.
"""

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from trmove.durable import remove_durable, write_durable

SUFFIX = ".incomplete"

PROMOTING = "promoting"
PROMOTED = "promoted"


class CompletionMarker:
    """The marker of one payload hash in one destination root."""

    def __init__(self, destination_root: Path, torrent_hash: str):
        self.destination_root = Path(destination_root)
        self.torrent_hash = torrent_hash

    @property
    def path(self) -> Path:
        return self.destination_root / f"{self.torrent_hash}{SUFFIX}"

    def exists(self) -> bool:
        return self.path.exists()

    def set(self) -> None:
        """Durably create the (empty) marker. Idempotent."""
        write_durable(self.path)

    def _write(self, state: str, container: Path) -> None:
        write_durable(self.path, state.encode() + b" " + os.fsencode(container))

    def record_promoting(self, container: Path) -> None:
        """Durably note that the fully staged payload is about to move into ``container``."""
        self._write(PROMOTING, container)

    def record_location(self, container: Path) -> None:
        """
        Durably note that the payload now lives, synced, under ``container``.

        From here on a rerun only has to redo the remote sync and cleanup.
        """
        self._write(PROMOTED, container)

    def read(self) -> Tuple[Optional[str], Optional[Path]]:
        """
        Returns:
            ``(state, container)``, or ``(None, None)`` for a missing or
            empty marker

        Raises:
            ValueError: On content this module did not write
        """
        try:
            content = self.path.read_bytes()
        except FileNotFoundError:
            return None, None
        if not content:
            return None, None
        state, _, raw_path = content.partition(b" ")
        state = state.decode("ascii", "replace")
        if state not in (PROMOTING, PROMOTED) or not raw_path:
            raise ValueError(f"unrecognized marker content in {self.path}")
        return state, Path(os.fsdecode(raw_path))

    def recorded_location(self) -> Optional[Path]:
        """The container recorded by ``record_location``, if any."""
        state, container = self.read()
        return container if state == PROMOTED else None

    def clear(self) -> None:
        """Durably remove the marker."""
        remove_durable(self.path)


@dataclass
class IncompleteMove:
    destination_root: Path
    torrent_hash: str
    marker_path: Path
    started_at: float
    staging_exists: bool
    state: Optional[str] = None
    container: Optional[Path] = None

    @property
    def age_seconds(self) -> float:
        return max(0.0, time.time() - self.started_at)


def find_incomplete(destination_roots: Iterable[Path]) -> List[IncompleteMove]:
    """List markers of aborted or in-flight moves under the given roots."""
    found = []
    for root in destination_roots:
        root = Path(root)
        if not root.is_dir():
            continue
        for marker_path in sorted(root.glob(f"*{SUFFIX}")):
            if not marker_path.is_file():
                continue
            torrent_hash = marker_path.name[:-len(SUFFIX)]
            try:
                state, container = CompletionMarker(root, torrent_hash).read()
            except ValueError:
                state, container = "unreadable", None
            found.append(IncompleteMove(
                destination_root=root,
                torrent_hash=torrent_hash,
                marker_path=marker_path,
                started_at=marker_path.stat().st_mtime,
                staging_exists=(root / torrent_hash).is_dir(),
                state=state,
                container=container,
            ))
    return found
