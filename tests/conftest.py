"""
Shared fixtures: a torrent root laid out like the daemon's, a fake remote
agent, and an rsync stand-in built on shutil.
"""

import logging
import shutil
from pathlib import Path
from types import SimpleNamespace

import pytest

from trmove.errors import RemoteError
from trmove.job import RelocationJob

TORRENT_HASH = "0123456789abcdef0123456789abcdef01234567"


class FakeAgent:
    def __init__(self, fail_set_location=0, fail_verify=0, torrents=None, local=True):
        self.fail_set_location = fail_set_location
        self.fail_verify = fail_verify
        self.torrents = dict(torrents or {})
        self.is_local = local
        self.locations = {}
        self.verified = []
        self.set_location_calls = 0
        self.verify_calls = 0

    def set_location(self, torrent_hash: str, location: str) -> None:
        self.set_location_calls += 1
        if self.fail_set_location:
            self.fail_set_location -= 1
            raise RemoteError("timed out")
        self.locations[torrent_hash] = location

    def verify(self, torrent_hash: str) -> None:
        self.verify_calls += 1
        if self.fail_verify:
            self.fail_verify -= 1
            raise RemoteError("timed out")
        self.verified.append(torrent_hash)

    def get_torrent(self, torrent_hash: str):
        return self.torrents.get(torrent_hash)


def copy_transfer(source: Path, staging_dir: Path) -> None:
    """Behaves like ``rsync -a SOURCE STAGING/``."""
    target = staging_dir / source.name
    if source.is_dir():
        shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
    else:
        shutil.copy2(source, target)


def make_payload(root: Path, name: str = "Some.Show.S01") -> Path:
    payload = root / name
    (payload / "sub").mkdir(parents=True)
    (payload / "e01.mkv").write_bytes(b"x" * 10000)
    (payload / "e02.mkv").write_bytes(b"y" * 20000)
    (payload / "sub" / "e01.srt").write_text("subtitle")
    return payload


def snapshot(root: Path):
    """Relative path -> (size, mtime_ns) for everything under ``root``."""
    return {
        str(p.relative_to(root)): (p.lstat().st_size, p.lstat().st_mtime_ns)
        for p in sorted(root.rglob("*"))
    }


@pytest.fixture(autouse=True)
def reset_trmove_logger():
    """CLI runs reconfigure the ``trmove`` logger; put it back for caplog."""
    logger = logging.getLogger("trmove")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield
    for handler in list(logger.handlers):
        if handler not in saved[0]:
            logger.removeHandler(handler)
            handler.close()
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


@pytest.fixture
def layout(tmp_path):
    """
    <root>/dl/<hash>/Some.Show.S01/...   payload in a private download dir
    <root>/completed/                     destination root
    <root>/resume/<hash>.torrent          daemon's metadata file
    """
    root = tmp_path / "torrents"
    source_dir = root / "dl" / TORRENT_HASH
    source_dir.mkdir(parents=True)
    payload = make_payload(source_dir)
    destination = root / "completed"
    destination.mkdir()
    torrent_file = root / "resume" / f"{TORRENT_HASH}.torrent"
    torrent_file.parent.mkdir()
    torrent_file.write_bytes(b"d4:infod4:name13:Some.Show.S01ee")
    return SimpleNamespace(
        root=root,
        source_dir=source_dir,
        payload=payload,
        destination=destination,
        torrent_file=torrent_file,
    )


@pytest.fixture
def job(layout):
    return RelocationJob(
        torrent_hash=TORRENT_HASH,
        name=layout.payload.name,
        source_dir=layout.source_dir,
        torrent_root=layout.root,
        destination_root=layout.destination,
        free_space_margin=0,
        metadata_file=layout.torrent_file,
    )


@pytest.fixture
def agent():
    return FakeAgent()
