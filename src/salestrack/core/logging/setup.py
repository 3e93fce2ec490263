from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from pythonjsonlogger import jsonlogger

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(job)s %(correlation_id)s] %(name)s: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(job)s %(correlation_id)s %(message)s"


class JobContextFilter(logging.Filter):
    """Проставляет job и correlation_id записям, пришедшим не через адаптер."""

    def __init__(self, job: str, correlation_id: str):
        super().__init__()
        self._job = job
        self._correlation_id = correlation_id

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "job"):
            record.job = self._job
        if not hasattr(record, "correlation_id"):
            record.correlation_id = self._correlation_id
        return True


def log_paths(log_dir: Path, job: str, when: datetime | None = None) -> tuple[Path, Path]:
    utc_day = (when or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return log_dir / f"{job}-{utc_day}.log", log_dir / f"{job}-{utc_day}.jsonl"


def configure_logging(
    log_dir: Path,
    correlation_id: str,
    job: str = "salestrack",
    level: int = logging.INFO,
) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)
    text_path, json_path = log_paths(log_dir, job)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    context = JobContextFilter(job, correlation_id)
    text_formatter = logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = [
        logging.StreamHandler(),
        logging.FileHandler(text_path, encoding="utf-8"),
        logging.FileHandler(json_path, encoding="utf-8"),
    ]
    handlers[0].setFormatter(text_formatter)
    handlers[1].setFormatter(text_formatter)
    handlers[2].setFormatter(jsonlogger.JsonFormatter(fmt=JSON_FORMAT))

    for handler in handlers:
        handler.addFilter(context)
        root.addHandler(handler)

    # в URL запросов к Bot API есть токен
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str, correlation_id: str, job: str | None = None) -> logging.LoggerAdapter:
    extra = {"correlation_id": correlation_id}
    if job:
        extra["job"] = job
    return logging.LoggerAdapter(logging.getLogger(name), extra=extra)
