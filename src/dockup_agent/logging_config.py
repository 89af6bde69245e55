import json
import logging
import sys
from pathlib import Path
from typing import Optional

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

CONTEXT_FIELDS = ("app_name", "deployment_type", "event_type", "duration_seconds")


class SafeStreamHandler(logging.StreamHandler):
    """
    Stream handler that drops records once its stream has been closed.

    Background deploys and metric deliveries can still log while the
    interpreter tears stderr down.
    """

    def _stream_closed(self) -> bool:
        return bool(getattr(self.stream, "closed", False))

    def emit(self, record):
        if self._stream_closed():
            return
        super().emit(record)

    def handleError(self, record):
        if self._stream_closed():
            return
        super().handleError(record)


class StructuredLogFormatter(logging.Formatter):
    """
    Formats log records as JSON with the deploy context passed via ``extra=``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        elif record.exc_text:
            log_record["exception"] = record.exc_text
        return json.dumps(log_record, ensure_ascii=False)


def configure_logging(
    log_level: str = "INFO",
    structured: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """
    Centralized logging configuration for DockUp Agent.

    Installs a stderr handler on the root logger, plain text by default or
    JSON lines when ``structured`` is set. ``log_file`` adds a DEBUG-level
    file handler in the plain format.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = SafeStreamHandler(sys.stderr)
    if structured:
        handler.setFormatter(StructuredLogFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    handler.setLevel(log_level.upper())
    root_logger.addHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
        root_logger.addHandler(file_handler)
        root_logger.setLevel(logging.DEBUG)
    else:
        root_logger.setLevel(log_level.upper())

    logging.getLogger("asyncio").setLevel("WARNING")
    logging.getLogger("aiohttp").setLevel("WARNING")
    logging.getLogger("git").setLevel("WARNING")
