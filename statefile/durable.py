"""
Durable file replacement.

Write to a temp file in the same directory, fsync, then atomic rename, so a
reader sees either the old content or the new content and never a mixture.
"""

from __future__ import annotations

import os
import stat
import tempfile
import threading
from pathlib import Path
from typing import Optional
import logging

from statefile.errors import PathLike, StateIOError, WriteAbortedError

log = logging.getLogger("statefile")


def read_bytes(path: PathLike) -> Optional[bytes]:
    """Return file contents, or None if the file does not exist."""
    try:
        return Path(path).read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise StateIOError(f"cannot read {path}: {exc}", path) from exc


def atomic_write(
    path: PathLike,
    payload: bytes,
    *,
    fsync: bool = True,
    fsync_dir: bool = True,
    abort: Optional[threading.Event] = None,
) -> None:
    """
    Replace the contents of ``path`` with ``payload``.

    Args:
        path: Target file; its parent directory must already exist
        payload: Encoded bytes
        fsync: Sync the temp file before the rename (disable for testing)
        fsync_dir: Sync the containing directory after the rename (POSIX)
        abort: When set before the rename, the write is abandoned

    Raises:
        WriteAbortedError: abort was set; target untouched
        StateIOError: any filesystem failure; target untouched unless the
            failure happened after the rename
    """
    target = Path(path)
    tmp_path: Optional[str] = None
    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
        )
        with os.fdopen(fd, "wb") as f:
            _copy_mode(target, tmp_path)
            f.write(payload)
            f.flush()
            if fsync:
                os.fsync(f.fileno())

        if abort is not None and abort.is_set():
            raise WriteAbortedError(f"write to {target} aborted before rename", target)

        os.replace(tmp_path, target)
        tmp_path = None

        if fsync_dir:
            _fsync_directory(target.parent)
    except OSError as exc:
        raise StateIOError(f"cannot write {target}: {exc}", target) from exc
    finally:
        if tmp_path is not None:
            _remove_quietly(tmp_path)


def _copy_mode(target: Path, tmp_path: str) -> None:
    # mkstemp creates 0600; keep the permissions of the file being replaced
    try:
        mode = os.stat(target).st_mode
    except FileNotFoundError:
        return
    os.chmod(tmp_path, stat.S_IMODE(mode))


def _fsync_directory(directory: Path) -> None:
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _remove_quietly(tmp_path: str) -> None:
    try:
        os.unlink(tmp_path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        log.warning("temp_cleanup_failed path=%s err=%s", tmp_path, exc)
