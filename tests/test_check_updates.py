"""
Tests for check_updates — command-line entry point, status line and exit codes.
"""

import contextlib
import io
import sys
import tempfile
import time
import types
import unittest
from pathlib import Path
from unittest import mock

from fake_service import check_service

import check_updates


class TestMain(unittest.TestCase):
    """Tests for main()."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.lock_path = Path(self._tmp.name) / "check_updates.lock"
        self.services = []
        # The real backend needs GLib and the system bus
        backend = types.SimpleNamespace(PackageKitService=self._make_service)
        patches = [
            mock.patch.dict(sys.modules, {"plugins.packagekit": backend}),
            mock.patch.object(check_updates, "setup_logging"),
        ]
        for patcher in patches:
            patcher.start()
            self.addCleanup(patcher.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def _make_service(self):
        service = check_service([])
        self.services.append(service)
        return service

    def run_main(self, *argv):
        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout):
            code = check_updates.main(list(argv))
        return code, stdout.getvalue()

    def test_up_to_date(self):
        code, output = self.run_main()
        self.assertEqual(code, 0)
        self.assertEqual(output, "UPDATE OK - Everything is up to date | 'Total Update'=0 'Security Update'=0\n")

    def test_configuration_error_is_unknown(self):
        code, output = self.run_main("--cron", "@daily")
        self.assertEqual(code, 3)
        self.assertTrue(output.startswith("UPDATE Unknown - Configuration error:"), output)
        self.assertEqual(self.services, [])

    def test_bad_config_file_value_is_unknown(self):
        config_path = Path(self._tmp.name) / "check_updates.json"
        config_path.write_text('{"lock": "/tmp/cu.lock", "cron": 5}')
        code, output = self.run_main("--config", str(config_path))
        self.assertEqual(code, 3)
        self.assertTrue(output.startswith("UPDATE Unknown - Configuration error:"), output)

    def test_corrupt_timestamp_is_critical(self):
        self.lock_path.write_text("yesterday")
        code, output = self.run_main("--lock", str(self.lock_path), "--cron", "@daily")
        self.assertEqual(code, 2)
        self.assertTrue(output.startswith("UPDATE Critical - An error occurred:"), output)
        self.assertEqual(self.services[0].calls, [])

    def test_unopenable_lock_is_critical(self):
        missing = Path(self._tmp.name) / "missing" / "check_updates.lock"
        code, output = self.run_main("--lock", str(missing))
        self.assertEqual(code, 2)
        self.assertTrue(output.startswith("UPDATE Critical - An error occurred:"), output)

    def test_skipped_scheduled_run_is_silent(self):
        self.lock_path.write_text(str(int(time.time())))
        code, output = self.run_main("--lock", str(self.lock_path), "--cron", "@yearly")
        self.assertEqual(code, 0)
        self.assertEqual(output, "")
        self.assertEqual(self.services[0].calls, [])


if __name__ == "__main__":
    unittest.main()
