"""
Tests for plugins.base — notification dataclasses and transaction channels.
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import unittest
from plugins.base import (
    END_OF_STREAM,
    FinishedNotification,
    NotificationKind,
    PackageNotification,
    Transaction,
    UpdateDetailNotification,
)


class DummyTransaction(Transaction):
    async def refresh_cache(self, force):
        pass

    async def get_updates(self, filter_):
        pass

    async def get_update_detail(self, package_ids):
        pass

    async def update_packages(self, flags, package_ids):
        pass


class TestNotifications(unittest.TestCase):
    """Tests for notification dataclasses."""

    def test_update_detail_defaults(self):
        n = UpdateDetailNotification(package_id="a;1.0")
        self.assertEqual(n.cve_urls, ())
        self.assertEqual(n.update_text, "")
        self.assertEqual(n.restart, 0)

    def test_frozen(self):
        n = PackageNotification(2, "a;1.0", "A")
        with self.assertRaises(AttributeError):
            n.package_id = "b;2.0"


class TestTransactionChannels(unittest.IsolatedAsyncioTestCase):
    """Tests for Transaction subscribe/publish/close."""

    async def test_publish_reaches_only_its_category(self):
        t = DummyTransaction()
        packages = t.subscribe(NotificationKind.PACKAGE)
        done = t.subscribe(NotificationKind.FINISHED)
        t.publish(NotificationKind.PACKAGE, PackageNotification(2, "a;1.0", "A"))
        self.assertEqual((await packages.get()).package_id, "a;1.0")
        self.assertTrue(done.empty())

    async def test_every_subscriber_gets_a_copy(self):
        t = DummyTransaction()
        first = t.subscribe(NotificationKind.FINISHED)
        second = t.subscribe(NotificationKind.FINISHED)
        t.publish(NotificationKind.FINISHED, FinishedNotification(1, 10))
        self.assertEqual(first.qsize(), 1)
        self.assertEqual(second.qsize(), 1)

    async def test_close_ends_streams(self):
        t = DummyTransaction()
        queue = t.subscribe(NotificationKind.PACKAGE)
        t.close()
        t.publish(NotificationKind.PACKAGE, PackageNotification(2, "late;1.0", "late"))
        self.assertIs(await queue.get(), END_OF_STREAM)
        self.assertTrue(queue.empty())
        self.assertTrue(t.closed)

    async def test_subscribe_after_close(self):
        t = DummyTransaction()
        await t.dispose()
        queue = t.subscribe(NotificationKind.ERROR)
        self.assertIs(await queue.get(), END_OF_STREAM)


if __name__ == "__main__":
    unittest.main()
