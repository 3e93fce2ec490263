from __future__ import annotations

import json
import logging
from pathlib import Path

from salestrack.core.logging import configure_logging, get_logger
from salestrack.core.logging.setup import log_paths


def test_json_log_carries_job_and_correlation_id(tmp_path: Path, restore_root_logging) -> None:  # noqa: ANN001
    configure_logging(tmp_path, correlation_id="corr-1", job="tracking")
    logger = get_logger("salestrack.tracking", "corr-1", job="tracking")

    logger.info("Tracking sync done: checked=%s", 3)
    logging.getLogger("salestrack.other").warning("plain record")
    for handler in logging.getLogger().handlers:
        handler.flush()

    text_path, json_path = log_paths(tmp_path, "tracking")
    records = [json.loads(line) for line in json_path.read_text(encoding="utf-8").splitlines()]

    assert records[0]["message"] == "Tracking sync done: checked=3"
    assert records[0]["job"] == "tracking"
    assert records[0]["correlation_id"] == "corr-1"
    assert records[1]["job"] == "tracking"
    assert records[1]["correlation_id"] == "corr-1"
    assert "[tracking corr-1]" in text_path.read_text(encoding="utf-8")
