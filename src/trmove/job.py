"""Relocation job parameters."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from trmove.config import Settings

ENV_HASH = "TR_TORRENT_HASH"
ENV_NAME = "TR_TORRENT_NAME"
ENV_DIR = "TR_TORRENT_DIR"
ENV_ROOT = "TR_TORRENT_ROOT"
ENV_DESTINATION = "TR_TORRENT_DESTINATION"
ENV_FREE_SPACE = "TR_FREE_SPACE_TO_LEAVE"
ENV_FORCE = "TR_FORCE"
ENV_VERIFY = "TR_VERIFY"
ENV_TORRENT_FILE = "TR_TORRENT_FILE"


@dataclass
class RelocationJob:
    """
    One payload to relocate.

    Attributes:
        torrent_hash: Content hash identifying the payload
        name: Payload entry name (file or directory) inside ``source_dir``
        source_dir: Directory containing the payload
        torrent_root: Root of the shared state (locks, metadata store) and the
            base for paths in log messages
        destination_root: Directory the payload moves into
        force: Skip the free-space check
        verify: Ask the remote agent to verify after relocation
        free_space_margin: Bytes to leave free on the destination
        metadata_file: .torrent file to replicate, if any
    """
    torrent_hash: str
    name: str
    source_dir: Path
    torrent_root: Path
    destination_root: Path
    force: bool = False
    verify: bool = False
    free_space_margin: int = 0
    metadata_file: Optional[Path] = None

    def __post_init__(self):
        if not self.torrent_hash:
            raise ValueError("torrent hash is required")
        if not self.name or "/" in self.name or self.name in (".", ".."):
            raise ValueError(f"invalid payload name: {self.name!r}")
        self.source_dir = Path(self.source_dir)
        self.torrent_root = Path(self.torrent_root)
        self.destination_root = Path(self.destination_root)
        if self.metadata_file is not None:
            self.metadata_file = Path(self.metadata_file)

    @property
    def source_path(self) -> Path:
        return self.source_dir / self.name

    @property
    def lock_dir(self) -> Path:
        """Shared device lock directory."""
        return self.torrent_root / "locks"

    @property
    def metadata_dir(self) -> Path:
        """Canonical .torrent store."""
        return self.torrent_root / "torrents"

    def relative(self, path: Path) -> str:
        """``path`` relative to the torrent root when below it, for log messages."""
        try:
            return str(Path(path).relative_to(self.torrent_root))
        except ValueError:
            return str(path)

    def describe(self) -> str:
        """The (source, hash, destination) triple used in diagnostics."""
        return (f"{self.relative(self.source_path)} {self.torrent_hash} "
                f"{self.relative(self.destination_root)}")

    @classmethod
    def from_torrent(cls, torrent, settings: Settings, destination_root: Path,
                     force: bool = False, verify: Optional[bool] = None) -> "RelocationJob":
        """Build a job from a remote agent torrent record."""
        return cls(
            torrent_hash=torrent.hash,
            name=torrent.name,
            source_dir=Path(torrent.download_dir),
            torrent_root=settings.torrent_root,
            destination_root=destination_root,
            force=force,
            verify=settings.verify if verify is None else verify,
            free_space_margin=settings.free_space_to_leave,
            metadata_file=Path(torrent.torrent_file) if torrent.torrent_file else None,
        )
