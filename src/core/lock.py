"""
Check Updates - Exclusivity Guard
File-backed exclusive lock that also stores the time of the last scheduled run.
"""

import fcntl
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from core.errors import LockError, TimestampError

logger = logging.getLogger(__name__)


class FileLock:
    """
    Exclusive advisory lock on a single file.

    The file is opened read-write and created if missing, without truncating
    its content. Its body holds the decimal UNIX timestamp of the last run.
    The lock is tied to the open file, so the OS drops it when the process
    exits even if ``release()`` is never reached.

    Use as a context manager::

        with FileLock(path) as lock:
            if lock.try_lock():
                ...
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._locked = False
        try:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise LockError(f"Failed to open lock file {self.path}: {e}") from e
        self._file = os.fdopen(fd, "r+", encoding="ascii")

    def __enter__(self) -> "FileLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @property
    def locked(self) -> bool:
        return self._locked

    def try_lock(self) -> bool:
        """
        Try to take the exclusive lock without blocking.

        Returns:
            True if acquired, False if another holder owns it.

        Raises:
            LockError: on any other OS failure.
        """
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            logger.debug(f"Lock {self.path} is held by another process")
            return False
        except OSError as e:
            raise LockError(f"Failed to acquire lock {self.path}: {e}") from e
        self._locked = True
        logger.debug(f"Acquired lock {self.path}")
        return True

    def read_timestamp(self) -> Optional[datetime]:
        """
        Read the last run time stored in the lock file.

        Returns:
            Local naive datetime, or None if the file is empty.

        Raises:
            TimestampError: if the body is not a decimal timestamp.
            LockError: if the file cannot be read.
        """
        try:
            self._file.seek(0)
            contents = self._file.read()
        except UnicodeDecodeError as e:
            raise TimestampError(f"Failed to parse timestamp in {self.path}: not ASCII") from e
        except OSError as e:
            raise LockError(f"Failed to read lock file {self.path}: {e}") from e
        if not contents:
            return None
        try:
            timestamp = int(contents.strip())
            return datetime.fromtimestamp(timestamp)
        except (ValueError, OverflowError, OSError) as e:
            raise TimestampError(
                f"Failed to parse timestamp in {self.path}: {contents.strip()!r}"
            ) from e

    def write_timestamp(self, when: datetime) -> None:
        """
        Replace the stored last run time with ``when`` (second precision).

        Raises:
            LockError: if the file cannot be written.
        """
        try:
            self._file.seek(0)
            self._file.truncate()
            self._file.write(str(int(when.timestamp())))
            self._file.flush()
            os.fsync(self._file.fileno())
        except OSError as e:
            raise LockError(f"Failed to write lock file {self.path}: {e}") from e
        logger.debug(f"Stored last run {when.isoformat()} in {self.path}")

    def release(self) -> None:
        """Unlock and close the file. Safe to call more than once."""
        if self._file.closed:
            return
        try:
            if self._locked:
                fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            logger.warning(f"Failed to unlock {self.path}: {e}")
        finally:
            self._locked = False
            self._file.close()
