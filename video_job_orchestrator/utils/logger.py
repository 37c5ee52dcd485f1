"""
Logging utilities for the Video Job Orchestrator

Structured JSON logging with orchestration context (job, orchestration,
workflow and service identifiers) stamped onto every record.
"""

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

# Attributes of a bare LogRecord; anything else on a record came in through ``extra``
_STANDARD_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "asctime",
}

CONTEXT_FIELDS = (
    "component",
    "job_id",
    "orchestration_id",
    "workflow_id",
    "service_id",
    "step_name",
)

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Logger name -> values bound by LoggerContext; replaced on every bind, never mutated
_scoped_context: ContextVar[Dict[str, Dict[str, Any]]] = ContextVar("vjo_log_context", default={})


class StructuredFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON documents.

    Context fields (``job_id``, ``orchestration_id``, ``workflow_id`` ...) are
    lifted to the top level so log aggregators can index them; every other
    ``extra`` value is nested under ``extra``.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        document: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            document["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        if self.include_extra:
            context, extra = self._split_extras(record)
            document.update(context)
            if extra:
                document["extra"] = extra

        return json.dumps(document, default=str, ensure_ascii=False)

    @staticmethod
    def _split_extras(record: logging.LogRecord) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        context: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _STANDARD_RECORD_ATTRS:
                continue
            (context if key in CONTEXT_FIELDS else extra)[key] = value
        return context, extra


class OrchestrationContextFilter(logging.Filter):
    """
    Stamps orchestration context onto each record of one logger.

    Two layers are merged: ``context`` holds values bound for the logger's
    lifetime (``set_log_context``), while values bound by ``LoggerContext``
    live in a ``ContextVar`` and so stay local to the asyncio task that
    bound them.
    """

    def __init__(self, logger_name: str = ""):
        super().__init__()
        self.logger_name = logger_name
        self.context: Dict[str, Any] = {}

    def bind(self, **values):
        self.context.update(values)

    def clear(self):
        self.context = {}

    def current_context(self) -> Dict[str, Any]:
        merged = dict(self.context)
        merged.update(_scoped_context.get().get(self.logger_name, {}))
        return merged

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.current_context().items():
            # Values passed explicitly through ``extra`` win over bound context
            if key not in record.__dict__:
                setattr(record, key, value)
        return True


def _context_filter(logger: logging.Logger) -> Optional[OrchestrationContextFilter]:
    return getattr(logger, "context_filter", None)


def _attach_context_filter(logger: logging.Logger) -> OrchestrationContextFilter:
    context_filter = _context_filter(logger)
    if context_filter is None:
        context_filter = OrchestrationContextFilter(logger.name)
        logger.addFilter(context_filter)
        logger.context_filter = context_filter  # type: ignore[attr-defined]
    return context_filter


def setup_logger(
    name: str,
    level: str = "INFO",
    structured: bool = True,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Attach stderr (and optionally file) output to a logger.

    Calling it again for an already configured logger only adjusts the level.

    Args:
        name: Logger name, usually the package name
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        structured: JSON lines when True, plain text otherwise
        log_file: Also write to this file, creating its directory

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(numeric_level)

    if _context_filter(logger) is not None:
        for handler in logger.handlers:
            handler.setLevel(numeric_level)
        return logger

    formatter = StructuredFormatter() if structured else logging.Formatter(PLAIN_FORMAT)
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    _attach_context_filter(logger)
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a component logger.

    Component loggers get their own context filter so that ``set_log_context``
    works for them without adding handlers; records still propagate to the
    package logger configured by ``setup_logger``.
    """
    logger = logging.getLogger(name)
    _attach_context_filter(logger)
    return logger


def set_log_context(logger: logging.Logger, **values):
    """Bind ``values`` to every later record of ``logger``."""
    context_filter = _context_filter(logger)
    if context_filter is not None:
        context_filter.bind(**values)


def clear_log_context(logger: logging.Logger):
    context_filter = _context_filter(logger)
    if context_filter is not None:
        context_filter.clear()


class LoggerContext:
    """
    Binds context to a logger for the duration of a ``with`` block.

    The binding is visible only to the current asyncio task (and tasks it
    creates inside the block), so concurrent orchestrations keep their own
    ids even when they share a logger.

    Example:
        with LoggerContext(self.logger, orchestration_id=orch_id):
            self.logger.info("Processing queued job")
    """

    def __init__(self, logger: logging.Logger, **values):
        self.logger = logger
        self.values = values
        self._token: Optional[Token] = None

    def __enter__(self):
        scopes = _scoped_context.get()
        current = scopes.get(self.logger.name, {})
        self._token = _scoped_context.set({**scopes, self.logger.name: {**current, **self.values}})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _scoped_context.reset(self._token)
            self._token = None
