import json
import logging
import shutil
import sys
import unittest
from pathlib import Path
from uuid import uuid4

from loguru import logger

from clarifier.logging_config import BRIDGED_LOGGERS, session_context, setup_logging

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class SetupLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"logging-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        self._log_path = self._tmp_dir / "clarifier.jsonl"

    def tearDown(self) -> None:
        logger.remove()
        logger.configure(extra={})
        logger.add(sys.stderr)
        for name in BRIDGED_LOGGERS:
            std_logger = logging.getLogger(name)
            std_logger.handlers = []
            std_logger.propagate = True
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def _setup_json_file(self) -> list[str]:
        return setup_logging(
            "info",
            [{"type": "file", "path": str(self._log_path), "serialize": True, "enqueue": False}],
        )

    def _records(self) -> list[dict]:
        logger.remove()
        lines = self._log_path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line)["record"] for line in lines if line.strip()]

    def test_records_are_tagged_with_session(self) -> None:
        self._setup_json_file()
        logger.info("outside")
        with session_context("session-1"):
            logger.info("inside")

        records = {r["message"]: r for r in self._records()}
        self.assertEqual("-", records["outside"]["extra"]["session"])
        self.assertEqual("session-1", records["inside"]["extra"]["session"])

    def test_level_filters_records(self) -> None:
        self._setup_json_file()
        logger.debug("hidden")
        logger.warning("shown")
        self.assertEqual(["shown"], [r["message"] for r in self._records()])

    def test_uvicorn_records_reach_loguru(self) -> None:
        self._setup_json_file()
        logging.getLogger("uvicorn.error").warning("worker restarted")

        records = self._records()
        self.assertEqual(["worker restarted"], [r["message"] for r in records])
        self.assertEqual("WARNING", records[0]["level"]["name"])
        self.assertEqual("uvicorn.error", records[0]["extra"]["source"])

    def test_descriptions_and_skipped_consumers(self) -> None:
        descriptions = setup_logging(
            "debug",
            [
                {"type": "syslog"},
                {"type": "file", "path": str(self._log_path), "compress": True},
                {"type": "file", "path": str(self._log_path), "level": "warning", "enqueue": False},
            ],
            bridged_loggers=(),
        )
        self.assertEqual([f"file ({self._log_path}, text, WARNING)"], descriptions)


if __name__ == "__main__":
    unittest.main()
