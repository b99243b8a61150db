from __future__ import annotations

import json
import logging
from pathlib import Path
import tempfile
import unittest

from govscan.logging_config import JsonLogFormatter, configure_logging


class LoggingConfigTests(unittest.TestCase):
    def tearDown(self) -> None:
        logger = logging.getLogger("govscan")
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    def test_json_formatter_includes_extra_fields(self) -> None:
        record = logging.LogRecord("govscan.classifier", logging.INFO, __file__, 1, "Label %s", ("tp",), None)
        record.rule_id = "secret-assignment"
        record.label = "true_positive"

        payload = json.loads(JsonLogFormatter().format(record))

        self.assertEqual(payload["logger"], "govscan.classifier")
        self.assertEqual(payload["message"], "Label tp")
        self.assertEqual(payload["rule_id"], "secret-assignment")
        self.assertEqual(payload["label"], "true_positive")
        self.assertNotIn("path", payload)

    def test_configure_logging_writes_json_lines_to_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log_file = Path(tmp) / "govscan.log"
            logger = configure_logging("info", log_file=str(log_file), json_format=True)
            logging.getLogger("govscan.walker").info("Skipping %s", "a.bin", extra={"path": "a.bin"})
            for handler in logger.handlers:
                handler.flush()

            lines = log_file.read_text(encoding="utf-8").splitlines()

        self.assertEqual(len(lines), 1)
        self.assertEqual(json.loads(lines[0])["path"], "a.bin")
        self.assertFalse(logger.propagate)

    def test_reconfiguring_replaces_handlers(self) -> None:
        configure_logging("WARNING")
        logger = configure_logging("DEBUG")

        self.assertEqual(len(logger.handlers), 1)
        self.assertEqual(logger.level, logging.DEBUG)


if __name__ == "__main__":
    unittest.main()
