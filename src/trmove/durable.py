"""
Crash-durable filesystem writes.

A rename is only durable once the directory holding the new entry has been
flushed, so every helper here syncs both the file and its parent directory.
See http://blog.httrack.com/blog/2013/11/15/everything-you-always-wanted-to-know-about-fsync/
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Tuple, Union

PathLike = Union[str, Path]

FILE_MODE = 0o644


def fsync_path(path: PathLike) -> None:
    """
    Force a single file or directory entry to stable storage.

    Symlinks are not followed: syncing a dangling link target would fail and
    the link itself lives in its parent directory, which callers sync.
    """
    path = Path(path)
    if path.is_symlink():
        return
    flags = os.O_RDONLY
    if path.is_dir():
        flags |= os.O_DIRECTORY
    fd = os.open(path, flags)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def fsync_tree(path: PathLike) -> int:
    """
    Sync every entry under ``path`` (and ``path`` itself).

    Returns:
        Number of entries synced
    """
    path = Path(path)
    count = 0
    if path.is_dir() and not path.is_symlink():
        for dirpath, dirnames, filenames in os.walk(path):
            for name in filenames + dirnames:
                fsync_path(Path(dirpath) / name)
                count += 1
    fsync_path(path)
    return count + 1


def _open_tmp_sibling(path: Path) -> Tuple[int, Path]:
    """
    Create a uniquely named temp file next to ``path``.

    Concurrent writers of one path each get their own temp file, so the
    rename publishes exactly one writer's complete content.
    """
    fd, name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    os.fchmod(fd, FILE_MODE)
    return fd, Path(name)


def write_durable(path: PathLike, data: bytes = b"") -> Path:
    """
    Write ``data`` to ``path`` so that after a crash the path is either absent
    or complete.

    Protocol: write sibling temp -> fsync temp -> rename -> fsync parent.

    Args:
        path: Final path
        data: File content (empty for flag files)

    Returns:
        The final path

    Raises:
        OSError: On any failure; the temp file is removed best-effort
    """
    path = Path(path)
    fd, tmp = _open_tmp_sibling(path)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
    fsync_path(path.parent)
    return path


def copy_durable(src: PathLike, dst: PathLike) -> Path:
    """
    Copy ``src`` to ``dst`` with the same guarantees as ``write_durable``.

    Only the content is copied; the new file gets mode 0644.
    """
    src = Path(src)
    dst = Path(dst)
    with open(src, "rb") as fin:
        fd, tmp = _open_tmp_sibling(dst)
        try:
            with os.fdopen(fd, "wb") as fout:
                shutil.copyfileobj(fin, fout)
                fout.flush()
                os.fsync(fout.fileno())
            os.replace(tmp, dst)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
    fsync_path(dst.parent)
    return dst


def remove_durable(path: PathLike) -> None:
    """Unlink ``path`` and sync its parent directory."""
    path = Path(path)
    path.unlink()
    fsync_path(path.parent)
