from __future__ import annotations

import json
import logging

from config.monitoring import TestingMonitoringConfig
from guestsync.logging_config import JsonFormatter, TextFormatter, setup_logging


def _record(**extra):
    record = logging.LogRecord("guestsync.pipeline.engine", logging.INFO, __file__, 1, "Reconciled %s rows", (3,), None)
    record.__dict__.update(extra)
    return record


def test_json_formatter_merges_extra_fields():
    payload = json.loads(JsonFormatter().format(_record(run_id=7, dry_run=True)))

    assert payload["message"] == "Reconciled 3 rows"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "guestsync.pipeline.engine"
    assert payload["run_id"] == 7
    assert payload["dry_run"] is True


def test_text_formatter_appends_extras():
    line = TextFormatter().format(_record(run_id=7))
    assert line.endswith("Reconciled 3 rows run_id=7")


def test_setup_logging_without_outputs_installs_null_handler():
    logger = setup_logging(TestingMonitoringConfig)

    assert logger.name == "guestsync"
    assert logger.level == logging.WARNING
    assert [type(h) for h in logger.handlers] == [logging.NullHandler]
    assert not logger.propagate


def test_setup_logging_writes_rotating_file(tmp_path):
    class FileOnly(TestingMonitoringConfig):
        ENABLE_FILE_LOGGING = True
        LOG_DIR = str(tmp_path)
        LOG_FORMAT = "json"

    logger = setup_logging(FileOnly)
    logger.warning("Checkpoint file missing", extra={"path": "sync-state.json"})
    for handler in logger.handlers:
        handler.flush()

    line = (tmp_path / "guestsync.log").read_text(encoding="utf-8").strip()
    assert json.loads(line)["path"] == "sync-state.json"
    setup_logging(TestingMonitoringConfig)
