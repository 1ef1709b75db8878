from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

# logger name -> dedicated audit file
AUDIT_CHANNELS: dict[str, str] = {
    "cit.ledger": "ledger.log",
    "cit.orders": "orders.log",
}

# optional `extra=` keys copied into the JSON payload
CONTEXT_FIELDS = ("actor", "batch_id", "order_id")

_MARKER = "_cit_handler"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.levelno >= logging.ERROR:
            payload["where"] = f"{record.module}:{record.lineno}"
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _handler(path: Path, level: int) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    fh.setLevel(level)
    setattr(fh, _MARKER, True)
    return fh


def _has_our_handler(logger: logging.Logger) -> bool:
    return any(getattr(h, _MARKER, False) for h in logger.handlers)


def setup_logging(logs_dir: Path, level: int = logging.INFO, channels: dict[str, str] | None = None) -> None:
    """Attach JSON file handlers once per process.

    app.log receives everything at ``level``, errors.log only ERROR and
    above. Each audit channel also writes to its own file while still
    propagating to the root handlers.
    """
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if _has_our_handler(root):
        return

    root.addHandler(_handler(logs_dir / "app.log", level))
    root.addHandler(_handler(logs_dir / "errors.log", logging.ERROR))

    for channel, filename in (channels or AUDIT_CHANNELS).items():
        logger = logging.getLogger(channel)
        if not _has_our_handler(logger):
            logger.addHandler(_handler(logs_dir / filename, logging.INFO))
        logger.setLevel(logging.INFO)
