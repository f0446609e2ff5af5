from __future__ import annotations

import logging
import logging.handlers
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from feralsim.logging_setup import LOG_LEVEL_ENV, resolve_level, setup_logging


class LoggingSetupTests(unittest.TestCase):
    def setUp(self) -> None:
        root = logging.getLogger()
        self._handlers = list(root.handlers)
        self._level = root.level

    def tearDown(self) -> None:
        root = logging.getLogger()
        root.handlers[:] = self._handlers
        root.setLevel(self._level)

    def test_resolve_level(self) -> None:
        with mock.patch.dict(os.environ, {LOG_LEVEL_ENV: ""}):
            self.assertEqual(resolve_level(None), logging.WARNING)
            self.assertEqual(resolve_level("debug"), logging.DEBUG)
            self.assertEqual(resolve_level("nonsense"), logging.WARNING)
        with mock.patch.dict(os.environ, {LOG_LEVEL_ENV: "error"}):
            self.assertEqual(resolve_level("debug"), logging.ERROR)

    def test_file_handler_receives_records(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log_path = Path(tmp) / "logs" / "feralsim.log"
            with mock.patch.dict(os.environ, {LOG_LEVEL_ENV: ""}):
                runtime = setup_logging("info", console=False, log_file=log_path)
            try:
                self.assertEqual(runtime.level, logging.INFO)
                logging.getLogger("feralsim.test").info("trial batch finished")
                logging.getLogger("feralsim.test").debug("not written")
            finally:
                runtime.stop()
            text = log_path.read_text(encoding="utf-8")
            self.assertIn("INFO", text)
            self.assertIn("trial batch finished", text)
            self.assertNotIn("not written", text)
            for handler in runtime.listener.handlers:
                handler.close()

    def test_root_gets_a_single_queue_handler(self) -> None:
        runtime = setup_logging("warning", console=False)
        try:
            handlers = logging.getLogger().handlers
            self.assertEqual(len(handlers), 1)
            self.assertIsInstance(handlers[0], logging.handlers.QueueHandler)
        finally:
            runtime.stop()


if __name__ == "__main__":
    unittest.main()
