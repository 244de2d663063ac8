from __future__ import annotations

import fcntl
import os
from contextlib import contextmanager
from typing import Iterator

from .errors import RunLockError


@contextmanager
def run_lock(path: str) -> Iterator[None]:
    """Hold an exclusive, non-blocking flock on `path` for the duration of a run.

    The lock dies with the process, so a crashed run never leaves it stuck.
    """
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            raise RunLockError("Another provisioning run holds the lock", resource=path) from e
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
