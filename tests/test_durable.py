"""
Tests for crash-durable write helpers.
"""

import os
import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from trmove.durable import (
    copy_durable,
    fsync_path,
    fsync_tree,
    remove_durable,
    write_durable,
)


class TestWriteDurable:
    def test_writes_content(self, tmp_path):
        target = tmp_path / "flag"
        write_durable(target, b"hello")
        assert target.read_bytes() == b"hello"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["flag"]

    def test_empty_flag_file(self, tmp_path):
        target = write_durable(tmp_path / "abc.incomplete")
        assert target.exists()
        assert target.stat().st_size == 0

    def test_replaces_existing(self, tmp_path):
        target = tmp_path / "flag"
        target.write_bytes(b"old")
        write_durable(target, b"new")
        assert target.read_bytes() == b"new"

    def test_syncs_file_and_parent(self, tmp_path):
        target = tmp_path / "flag"
        with patch("trmove.durable.os.fsync", wraps=os.fsync) as mock_fsync:
            write_durable(target, b"x")
        # temp file + parent directory
        assert mock_fsync.call_count == 2

    def test_missing_directory_raises_and_leaves_nothing(self, tmp_path):
        target = tmp_path / "missing" / "flag"
        with pytest.raises(OSError):
            write_durable(target, b"x")
        assert not target.exists()
        assert not (tmp_path / "missing").exists()

    def test_failed_rename_removes_temp(self, tmp_path):
        target = tmp_path / "flag"
        with patch("trmove.durable.os.replace", side_effect=OSError("boom")):
            with pytest.raises(OSError):
                write_durable(target, b"x")
        assert not target.exists()
        assert sorted(p.name for p in tmp_path.iterdir()) == []

    def test_concurrent_writers_use_separate_temp_files(self, tmp_path):
        target = tmp_path / "abc.torrent"
        temps = []

        def second_writer_interleaves(src, dst):
            temps.append(src)
            if len(temps) == 1:
                # another job publishes the same target before this rename
                write_durable(target, b"second")
                assert Path(src).read_bytes() == b"first"
            os.rename(src, dst)

        with patch("trmove.durable.os.replace", side_effect=second_writer_interleaves):
            write_durable(target, b"first")

        assert len(set(map(str, temps))) == 2
        assert all(Path(t).parent == tmp_path for t in temps)
        assert target.read_bytes() == b"first"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["abc.torrent"]

    def test_new_file_mode(self, tmp_path):
        target = write_durable(tmp_path / "flag", b"x")
        assert stat.S_IMODE(target.stat().st_mode) == 0o644


class TestCopyDurable:
    def test_copies_content(self, tmp_path):
        src = tmp_path / "a.torrent"
        src.write_bytes(b"d4:infoe")
        dst = copy_durable(src, tmp_path / "b.torrent")
        assert dst.read_bytes() == b"d4:infoe"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["a.torrent", "b.torrent"]

    def test_missing_source_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            copy_durable(tmp_path / "nope", tmp_path / "b")
        assert not (tmp_path / "b").exists()
        assert [p.name for p in tmp_path.iterdir()] == []


class TestFsync:
    def test_fsync_path_file_and_dir(self, tmp_path):
        f = tmp_path / "f"
        f.write_text("x")
        fsync_path(f)
        fsync_path(tmp_path)

    def test_fsync_path_skips_dangling_symlink(self, tmp_path):
        link = tmp_path / "link"
        link.symlink_to(tmp_path / "missing")
        fsync_path(link)

    def test_fsync_tree_counts_entries(self, tmp_path):
        root = tmp_path / "payload"
        (root / "a" / "b").mkdir(parents=True)
        (root / "a" / "b" / "f1").write_text("1")
        (root / "f2").write_text("2")
        # a, a/b, a/b/f1, f2 and root itself
        assert fsync_tree(root) == 5

    def test_fsync_tree_single_file(self, tmp_path):
        f = tmp_path / "movie.mkv"
        f.write_bytes(b"x")
        assert fsync_tree(f) == 1

    def test_remove_durable(self, tmp_path):
        f = tmp_path / "flag"
        f.write_text("")
        remove_durable(f)
        assert not f.exists()
        with pytest.raises(FileNotFoundError):
            remove_durable(f)
