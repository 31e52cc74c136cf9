#!/usr/bin/env python3
"""
catalog_lock.py — Single-writer lock for the catalog's on-disk state.

All writes to config.json, data/ and data_images/ go through write_lock().
Inside one process a threading.Lock serializes writers; across processes a
PID lock file created with O_CREAT|O_EXCL does. Stale locks (from dead
processes) are auto-cleaned.
"""
from __future__ import annotations

import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from catalog_errors import ServerError

log = logging.getLogger("catalog.lock")

LOCK_NAME = ".catalog.lock"
POLL_INTERVAL = 0.05
CORRUPT_GRACE = 2.0

_thread_lock = threading.Lock()


def lock_path(root: Path) -> Path:
    return Path(root) / LOCK_NAME


def _pid_alive(pid: int) -> bool:
    """Check if a process with the given PID is still running."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except PermissionError:
        # Exists, owned by someone else
        return True
    except (OSError, ProcessLookupError):
        return False


def _read_info(path: Path) -> Optional[dict]:
    try:
        return json.loads(path.read_text())
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, OSError):
        return {}


def _try_create(path: Path, owner: str) -> bool:
    lock_info = {
        "pid": os.getpid(),
        "owner": owner,
        "started": datetime.now().isoformat(timespec="seconds"),
    }
    try:
        fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return False
    with os.fdopen(fd, "w") as f:
        json.dump(lock_info, f, indent=2)
    return True


def _clear_if_stale(path: Path) -> None:
    info = _read_info(path)
    if info is None:
        return
    if not info:
        # Unreadable: may be a lock another writer is still filling in
        try:
            age = time.time() - path.stat().st_mtime
        except FileNotFoundError:
            return
        if age < CORRUPT_GRACE:
            return
    pid = info.get("pid", 0) if info else 0
    # Our own PID here means a writer in this process died without releasing;
    # the thread lock guarantees no live writer of ours holds it.
    if pid == os.getpid() or not _pid_alive(pid):
        log.warning("Removing stale lock %s (pid %s, owner %s)",
                    path, pid, (info or {}).get("owner", "?"))
        path.unlink(missing_ok=True)


def acquire_lock(root: Path, owner: str, timeout: float) -> None:
    """Acquire the file lock, waiting up to `timeout` seconds.

    Raises ServerError if another live process keeps holding it.
    """
    path = lock_path(root)
    deadline = time.monotonic() + timeout
    while True:
        try:
            if _try_create(path, owner):
                return
            _clear_if_stale(path)
            if _try_create(path, owner):
                return
        except OSError as exc:
            raise ServerError(f"cannot create lock {path}: {exc}") from exc
        if time.monotonic() >= deadline:
            info = _read_info(path) or {}
            raise ServerError(
                f"Catalog lock held by {info.get('owner', '?')} "
                f"(PID {info.get('pid', '?')}, started {info.get('started', '?')}). "
                f"If this is stale, delete {path}"
            )
        time.sleep(POLL_INTERVAL)


def release_lock(root: Path) -> None:
    """Release the file lock if the current process owns it."""
    path = lock_path(root)
    info = _read_info(path)
    if not info:
        return
    if info.get("pid") == os.getpid():
        path.unlink(missing_ok=True)


def lock_status(root: Path) -> Optional[dict]:
    """Return current lock info, or None if no lock is held."""
    info = _read_info(lock_path(root))
    if not info:
        return None
    info["alive"] = _pid_alive(info.get("pid", 0))
    return info


@contextmanager
def write_lock(root: Path, owner: str, timeout: float = 10.0) -> Iterator[None]:
    """Hold both the in-process and the file lock for the duration."""
    if not _thread_lock.acquire(timeout=timeout):
        raise ServerError(f"timed out waiting for writer lock ({owner})")
    try:
        acquire_lock(root, owner, timeout)
        try:
            yield
        finally:
            release_lock(root)
    finally:
        _thread_lock.release()
