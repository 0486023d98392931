"""
Logging Setup

Every buspoll module logs through a `buspoll.<name>` logger obtained from
`get_service_logger()`. Records are written to stdout either as one JSON
object per line (default, for log shippers) or as plain text for local runs.

Environment:
    BUSPOLL_LOG_LEVEL   DEBUG/INFO/WARNING/ERROR (default INFO)
    BUSPOLL_LOG_FORMAT  json or text (default json)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

LOGGER_PREFIX = "buspoll"

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per record; `extra=` fields become top-level keys"""

    # Attributes every LogRecord carries; anything else came from `extra=`
    _STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "service"}

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in self._STANDARD_ATTRS
        )

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Stamps the service name onto every record, keeping caller `extra=` fields"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = dict(kwargs.get("extra") or {})
        extra["service"] = self.extra["service"]
        kwargs["extra"] = extra
        return msg, kwargs


def _level(log_level: str) -> int:
    return getattr(logging, str(log_level).upper(), logging.INFO)


def _stdout_handler(level: int, json_format: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT))
    return handler


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    (Re)configure the `buspoll.<service_name>` logger.

    Any handler left from an earlier call is replaced, so calling this
    twice does not duplicate output. Records still propagate to the root
    logger.

    Args:
        service_name: Dotted name below `buspoll`, e.g. "binding.runtime"
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines if True, plain text otherwise
    """
    level = _level(log_level)

    logger = logging.getLogger(f"{LOGGER_PREFIX}.{service_name}")
    logger.setLevel(level)
    logger.handlers.clear()
    logger.addHandler(_stdout_handler(level, json_format))
    logger.propagate = True

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """Logger for one module, configured from BUSPOLL_LOG_LEVEL / BUSPOLL_LOG_FORMAT"""
    log_level = os.environ.get("BUSPOLL_LOG_LEVEL", "INFO")
    json_format = os.environ.get("BUSPOLL_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def set_log_level(log_level: str) -> None:
    """Apply a log level to every buspoll logger already created"""
    level = _level(log_level)
    logging.getLogger(LOGGER_PREFIX).setLevel(level)

    for name, logger in logging.root.manager.loggerDict.items():
        if not name.startswith(f"{LOGGER_PREFIX}.") or not isinstance(logger, logging.Logger):
            continue
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)


def _log_device_access(
    logger: logging.Logger | logging.LoggerAdapter,
    action: str,
    item_name: str,
    path: str,
    value: Any,
    ok_level: int,
    failed_level: int,
    success: bool,
) -> None:
    extra = {"item": item_name, "path": path, "value": value}
    if success:
        logger.log(ok_level, f"{action} {item_name} ({path}) = {value}", extra=extra)
    else:
        logger.log(failed_level, f"Failed to {action.lower()} {item_name} ({path})", extra=extra)


def log_device_read(
    logger: logging.Logger | logging.LoggerAdapter,
    item_name: str,
    path: str,
    value: Any,
    success: bool = True,
) -> None:
    """Reads are frequent: debug when they work, warning when they don't"""
    _log_device_access(
        logger, "Read", item_name, path, value,
        ok_level=logging.DEBUG, failed_level=logging.WARNING, success=success,
    )


def log_device_write(
    logger: logging.Logger | logging.LoggerAdapter,
    item_name: str,
    path: str,
    value: Any,
    success: bool = True,
) -> None:
    """Writes change device state: info when they work, error when they don't"""
    _log_device_access(
        logger, "Write", item_name, path, value,
        ok_level=logging.INFO, failed_level=logging.ERROR, success=success,
    )
