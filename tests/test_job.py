"""
Tests for relocation job construction.
"""

from pathlib import Path
from types import SimpleNamespace

import pytest

from trmove.config import Settings
from trmove.job import RelocationJob

from conftest import TORRENT_HASH


def make_job(**overrides):
    values = dict(
        torrent_hash=TORRENT_HASH,
        name="Some.Show.S01",
        source_dir=f"/var/cache/torrents/dl/{TORRENT_HASH}",
        torrent_root="/var/cache/torrents",
        destination_root="/var/cache/torrents/completed",
    )
    values.update(overrides)
    return RelocationJob(**values)


def test_paths_are_normalized():
    job = make_job(metadata_file="/var/lib/transmission/torrents/x.torrent")
    assert job.source_path == Path(f"/var/cache/torrents/dl/{TORRENT_HASH}/Some.Show.S01")
    assert job.destination_root == Path("/var/cache/torrents/completed")
    assert job.metadata_file == Path("/var/lib/transmission/torrents/x.torrent")
    assert job.force is False
    assert job.verify is False


def test_shared_state_lives_under_torrent_root():
    job = make_job()
    assert job.lock_dir == Path("/var/cache/torrents/locks")
    assert job.metadata_dir == Path("/var/cache/torrents/torrents")


@pytest.mark.parametrize("name", ["", ".", "..", "a/b"])
def test_rejects_bad_names(name):
    with pytest.raises(ValueError):
        make_job(name=name)


def test_rejects_empty_hash():
    with pytest.raises(ValueError):
        make_job(torrent_hash="")


def test_describe_uses_root_relative_paths():
    job = make_job()
    assert job.describe() == f"dl/{TORRENT_HASH}/Some.Show.S01 {TORRENT_HASH} completed"
    assert job.relative(Path("/elsewhere/x")) == "/elsewhere/x"


def test_from_torrent():
    torrent = SimpleNamespace(hash=TORRENT_HASH, name="Some.Show.S01",
                              download_dir="/srv/dl", torrent_file="")
    settings = Settings(torrent_root=Path("/srv"), free_space_to_leave=123, verify=True)

    job = RelocationJob.from_torrent(torrent, settings, Path("/mnt/b/completed"))

    assert job.source_path == Path("/srv/dl/Some.Show.S01")
    assert job.torrent_root == Path("/srv")
    assert job.lock_dir == Path("/srv/locks")
    assert job.free_space_margin == 123
    assert job.verify is True
    assert job.metadata_file is None
    assert RelocationJob.from_torrent(torrent, settings, Path("/x"), verify=False).verify is False
