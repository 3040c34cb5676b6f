from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _handler(path: Path, level: int) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    fh.setLevel(level)
    return fh


def setup_logging(logs_dir: Path, level: int = logging.INFO) -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers:
        return

    root.addHandler(_handler(logs_dir / "app.log", logging.INFO))
    root.addHandler(_handler(logs_dir / "errors.log", logging.ERROR))

    for channel, filename in (("grnledger.posting", "posting.log"), ("grnledger.ledger", "ledger.log")):
        logger = logging.getLogger(channel)
        logger.addHandler(_handler(logs_dir / filename, logging.INFO))
        logger.setLevel(logging.INFO)
