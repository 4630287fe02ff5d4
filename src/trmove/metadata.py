"""
Best-effort replication of a payload's .torrent file into the metadata store.

The daemon keeps .torrent files in a private directory we may not be allowed
to read, so every failure here is logged and ignored.
"""

import logging
from pathlib import Path
from typing import Optional

from trmove.durable import copy_durable

logger = logging.getLogger("trmove.metadata")


class MetadataReplicator:
    """
    Copies metadata files into ``store_dir`` as ``<hash>.torrent``.

    Attributes:
        store_dir: Canonical metadata directory
    """

    def __init__(self, store_dir: Path):
        self.store_dir = Path(store_dir)

    def target_path(self, torrent_hash: str) -> Path:
        return self.store_dir / f"{torrent_hash}.torrent"

    def replicate(self, torrent_hash: str, metadata_file: Optional[Path]) -> Optional[Path]:
        """
        Copy ``metadata_file`` into the store unless a copy already exists.

        Returns:
            The stored path, or None if nothing was stored
        """
        target = self.target_path(torrent_hash)
        if target.exists():
            return target
        if not metadata_file:
            logger.debug("no metadata file for %s", torrent_hash)
            return None
        try:
            self.store_dir.mkdir(parents=True, exist_ok=True)
            copy_durable(metadata_file, target)
        except OSError as e:
            logger.warning("could not replicate metadata for %s: %s", torrent_hash, e)
            return None
        logger.debug("replicated %s -> %s", metadata_file, target)
        return target
