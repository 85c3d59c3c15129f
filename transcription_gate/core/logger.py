import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from transcription_gate.core.settings import LoggingConfig

ROOT_LOGGER_NAME = "transcription_gate"

# Attributes every LogRecord carries; anything else was passed via ``extra=``.
_STANDARD_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with ``extra`` fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_ATTRS and key not in payload:
                payload[key] = value

        return json.dumps(payload, default=str)


def setup_logging(config: LoggingConfig, log_dir: Path) -> None:
    """
    Configure the ``transcription_gate`` logger tree.

    Args:
        config: Logging section of the app config.
        log_dir: Directory receiving ``app.log`` (FS_DIR).
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "app.log"

    formatter: logging.Formatter = JsonFormatter() if config.json_output else logging.Formatter(config.format)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(config.level)
    root_logger.handlers.clear()

    for handler in (
        logging.StreamHandler(sys.stdout),
        RotatingFileHandler(
            filename=log_file,
            maxBytes=config.rotate_max_bytes,
            backupCount=config.rotate_backup_count,
            encoding="utf-8",
        ),
    ):
        handler.setLevel(config.level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    _configure_uvicorn_loggers(config.level, formatter)

    # keep records out of the process root logger
    root_logger.propagate = False

    root_logger.info(
        "Logging configured: level=%s, json=%s, file=%s",
        config.level,
        config.json_output,
        log_file,
    )


def _configure_uvicorn_loggers(level: str, formatter: logging.Formatter) -> None:
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(logger_name)
        logger.handlers.clear()

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger in the application namespace.

    Example:
        >>> logger = get_logger("services.gate")
        >>> logger.name
        'transcription_gate.services.gate'
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
