"""Cross-platform exclusive file lock.

Serialises the read-modify-write cycle on the credential mapping between
processes, using ``fcntl.flock`` on POSIX and ``msvcrt.locking`` on Windows.
The lock file itself is left in place after release.
"""

from __future__ import annotations

import logging
import os
import pathlib
import sys

logger = logging.getLogger(__name__)


class FileLock:
    """Blocking exclusive lock held on *lock_path*.

    Not reentrant: acquiring twice in the same process with separate
    ``FileLock`` objects deadlocks on POSIX.

    Example::

        with FileLock(cache_dir / "credentials.lock"):
            ...  # protected region
    """

    def __init__(self, lock_path: pathlib.Path) -> None:
        self.lock_path = lock_path
        self._fd: int | None = None

    def acquire(self) -> None:
        fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            if sys.platform == "win32":
                import msvcrt

                msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
            else:
                import fcntl

                fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError:
            os.close(fd)
            raise
        self._fd = fd

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            if sys.platform == "win32":
                import msvcrt

                os.lseek(fd, 0, os.SEEK_SET)
                msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            else:
                import fcntl

                fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as exc:
            logger.warning("Error releasing file lock %s: %s", self.lock_path, exc)
        finally:
            os.close(fd)

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.release()
