"""
Tests for core.lock — exclusive lock file and stored last run time.
"""

import sys
import tempfile
from datetime import datetime
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import unittest
from unittest import mock
from core.errors import LockError, TimestampError
from core.lock import FileLock


class TestFileLock(unittest.TestCase):
    """Tests for FileLock."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "check_updates.lock"

    def tearDown(self):
        self._tmp.cleanup()

    def test_creates_file(self):
        with FileLock(self.path):
            self.assertTrue(self.path.exists())

    def test_does_not_truncate(self):
        self.path.write_text("1700000000")
        with FileLock(self.path) as lock:
            self.assertTrue(lock.try_lock())
            self.assertEqual(self.path.read_text(), "1700000000")

    def test_mutually_exclusive(self):
        with FileLock(self.path) as first, FileLock(self.path) as second:
            self.assertTrue(first.try_lock())
            self.assertFalse(second.try_lock())
            self.assertTrue(first.locked)
            self.assertFalse(second.locked)

    def test_released_on_exit(self):
        with FileLock(self.path) as first:
            self.assertTrue(first.try_lock())
        with FileLock(self.path) as second:
            self.assertTrue(second.try_lock())

    def test_released_when_scope_raises(self):
        with self.assertRaises(RuntimeError):
            with FileLock(self.path) as lock:
                lock.try_lock()
                raise RuntimeError("boom")
        with FileLock(self.path) as lock:
            self.assertTrue(lock.try_lock())

    def test_release_twice(self):
        lock = FileLock(self.path)
        lock.try_lock()
        lock.release()
        lock.release()
        self.assertFalse(lock.locked)

    def test_empty_file_has_no_timestamp(self):
        with FileLock(self.path) as lock:
            lock.try_lock()
            self.assertIsNone(lock.read_timestamp())

    def test_timestamp_round_trip(self):
        when = datetime(2024, 5, 10, 14, 47, 33)
        with FileLock(self.path) as lock:
            lock.try_lock()
            lock.write_timestamp(when)
            self.assertEqual(lock.read_timestamp(), when)
        self.assertEqual(self.path.read_text(), str(int(when.timestamp())))

    def test_write_replaces_longer_body(self):
        self.path.write_text("99999999999999")
        when = datetime.fromtimestamp(1000)
        with FileLock(self.path) as lock:
            lock.try_lock()
            lock.write_timestamp(when)
        self.assertEqual(self.path.read_text(), "1000")

    def test_corrupt_timestamp(self):
        self.path.write_text("yesterday")
        with FileLock(self.path) as lock:
            lock.try_lock()
            with self.assertRaises(TimestampError):
                lock.read_timestamp()

    def test_non_ascii_timestamp(self):
        self.path.write_bytes(b"\xff\xfe17")
        with FileLock(self.path) as lock:
            lock.try_lock()
            with self.assertRaises(TimestampError):
                lock.read_timestamp()

    def test_failed_write_raises_lock_error(self):
        with FileLock(self.path) as lock:
            lock.try_lock()
            with mock.patch("core.lock.os.fsync", side_effect=OSError(28, "No space left on device")):
                with self.assertRaises(LockError):
                    lock.write_timestamp(datetime(2024, 5, 10, 14, 0))

    def test_unopenable_path(self):
        with self.assertRaises(LockError):
            FileLock(Path(self._tmp.name) / "missing" / "dir" / "x.lock")


if __name__ == "__main__":
    unittest.main()
