"""Root logging setup: level from config, dev/prod formats, PII redaction on every handler."""
from __future__ import annotations

import logging
import re
from typing import Iterable

from flask import Flask

DEV_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"
PROD_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine")

# Profiles carry phone numbers and contact emails; tokens can show up in store errors.
_REDACTIONS = (
    (re.compile(r"[A-Za-z0-9_.+-]+@[A-Za-z0-9-]+\.[A-Za-z0-9-.]+"), "[REDACTED_EMAIL]"),
    (re.compile(r"(token|api[_-]?key|secret|password|authorization)\s*[:=]\s*[^\s,;]+", re.IGNORECASE),
     r"\1=[REDACTED]"),
    (re.compile(r"\b0\d{1,4}-\d{1,4}-\d{3,4}\b"), "[REDACTED_PHONE]"),
)


def redact(message: str) -> str:
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


class PiiRedactionFilter(logging.Filter):
    """Rewrites the fully formatted message so arguments cannot leak PII."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            record.msg = redact(record.getMessage())
            record.args = ()
        except (TypeError, ValueError):  # pragma: no cover
            pass
        return True


def configure_logging(app: Flask) -> None:
    level = _coerce_level(app.config.get("LOG_LEVEL") or ("DEBUG" if app.debug else "INFO"))
    for logger in (logging.getLogger(), app.logger, logging.getLogger("ordinance_portal")):
        logger.setLevel(level)
    if level > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    production = app.config.get("ENV") == "production" and not app.debug
    formatter = logging.Formatter(PROD_FORMAT if production else DEV_FORMAT)
    redact_pii = app.config.get("LOG_REDACT_PII", True)
    _install(logging.getLogger().handlers, formatter, redact_pii)
    _install(app.logger.handlers, formatter, redact_pii)


def _install(handlers: Iterable[logging.Handler], formatter: logging.Formatter, redact_pii: bool) -> None:
    for handler in handlers:
        handler.setFormatter(formatter)
        if redact_pii and not any(isinstance(f, PiiRedactionFilter) for f in handler.filters):
            handler.addFilter(PiiRedactionFilter())


def _coerce_level(raw_level) -> int:
    if isinstance(raw_level, int):
        return raw_level
    if isinstance(raw_level, str):
        level = logging.getLevelName(raw_level.strip().upper())
        return level if isinstance(level, int) else logging.INFO
    return logging.INFO
