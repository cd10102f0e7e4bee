"""
Filesystem helpers for tsdbmig.store (file protocol baseline).

Responsibilities
- Provide a minimal stdlib-only abstraction for the filesystem operations used by the store:
  directory creation, safe write handles, fsync, atomic renames and the exclusive lock file.
- Parts and the manifest are written as `<name>.tmp`, fsynced, then moved into place.

Notes
- The tmp file always sits next to its final path, so os.replace stays on one filesystem.
- All helpers are synchronous; the store is single-writer.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import BinaryIO


def makedirs(path: str, exist_ok: bool = True) -> None:
    """
    Create a block or store directory and any missing parents.

    Args:
        path (str): Directory to create.
        exist_ok (bool): Accept a directory left by an earlier run.
    """
    os.makedirs(path, exist_ok=exist_ok)


@contextmanager
def open_write(path: str) -> Iterator[BinaryIO]:
    """
    Open a file for binary write as a context manager; flushes and fsyncs before closing.

    Args:
        path (str): Temporary path of the manifest being written.

    Yields:
        BinaryIO: A writable file handle.

    Notes:
        Caller is responsible for the atomic os.replace of the temporary file to final path.
    """
    fh = open(path, "wb")
    try:
        yield fh
        fh.flush()
        os.fsync(fh.fileno())
    finally:
        fh.close()


def fsync_path(path: str) -> None:
    """
    Flush a finished part file to disk by descriptor.

    Notes:
        Used after pyarrow wrote a part directly, before the atomic rename.
    """
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def rename_atomic(src: str, dst: str) -> None:
    """
    Move a fsynced tmp file over its final name.

    Notes:
        Uses os.replace; src and dst must be on the same mount.
    """
    os.replace(src, dst)


def remove_quietly(path: str) -> bool:
    """
    Remove a file, returning False instead of raising if it cannot be removed.

    Notes:
        Used for tmp-file cleanup after a failed write, where the original error matters more.
    """
    try:
        os.remove(path)
    except OSError:
        return False
    return True


def create_lock(path: str) -> None:
    """
    Create an exclusive lock file containing the current pid.

    Raises:
        FileExistsError: If the lock is already held.
    """
    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    try:
        os.write(fd, str(os.getpid()).encode("ascii"))
    finally:
        os.close(fd)


def walk_parquet_files(root: str) -> list[str]:
    """
    List every sample part below the store root, used to rebuild a lost manifest.

    Returns:
        list[str]: Sorted full paths to parquet files found beneath root.
    """
    out: list[str] = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            if name.endswith(".parquet"):
                out.append(os.path.join(dirpath, name))
    return sorted(out)
