# intake_app/utils/logging_config.py
"""
Application logging setup.

Handlers are rebuilt on every call so tests can re-run ``setup_logging`` after
changing ``LOG_LEVEL`` or the file/console switches.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask import has_request_context, request

# Attributes present on every LogRecord; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

_HANDLER_MARKER = "_lead_intake_handler"


class JSONFormatter(logging.Formatter):
    """Render records as one JSON object per line, including ``extra`` fields."""

    def __init__(self, app_name="Lead Intake", app_version=None):
        super().__init__()
        self.app_name = app_name
        self.app_version = app_version

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
            "app": self.app_name,
        }
        if self.app_version:
            payload["version"] = self.app_version
        if has_request_context():
            payload["request"] = {
                "method": request.method,
                "path": request.path,
                "remote_addr": request.remote_addr,
            }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def _build_formatter(app):
    if str(app.config.get("LOG_FORMAT", "json")).lower() == "json":
        return JSONFormatter(
            app_name=app.config.get("APP_NAME", "Lead Intake"),
            app_version=app.config.get("APP_VERSION"),
        )
    return TextFormatter()


def _remove_managed_handlers(logger):
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()


def setup_logging(app):
    """Configure ``app.logger`` and the ``intake_app`` logger tree from app config."""

    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = _build_formatter(app)

    handlers = []
    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, "lead_intake.log"),
                maxBytes=app.config.get("LOG_FILE_MAX_BYTES", 10485760),
                backupCount=app.config.get("LOG_FILE_BACKUP_COUNT", 10),
            )
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as exc:
            app.logger.warning("File logging disabled; could not open log directory %s: %s", log_dir, exc)

    for logger in (app.logger, logging.getLogger("intake_app")):
        _remove_managed_handlers(logger)
        logger.setLevel(level)
        for handler in handlers:
            setattr(handler, _HANDLER_MARKER, True)
            handler.setLevel(level)
            logger.addHandler(handler)

    app.logger.debug(
        "Logging configured",
        extra={"log_level": level_name, "log_handlers": [type(h).__name__ for h in handlers]},
    )
    return app.logger
