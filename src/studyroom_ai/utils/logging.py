import inspect
import json
import logging
from typing import Any, Optional

import structlog

from studyroom_ai.config import get_settings

# Module-level flag to prevent multiple configuration
_logging_configured = False

_PACKAGE_PREFIX = "studyroom_ai."


def _add_module_info(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
    """
    Add a short ``module`` field derived from the logger name.

    ``studyroom_ai.repositories.filter_injection`` becomes
    ``repositories.filter_injection``; foreign loggers keep their full name.
    """
    logger_name = event_dict.get("logger", "unknown")

    if logger_name.startswith(_PACKAGE_PREFIX):
        event_dict["module"] = ".".join(logger_name.split(".")[-2:])
    else:
        event_dict["module"] = logger_name

    return event_dict


def _json_renderer(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> str:
    """Render every record as indented JSON."""
    return json.dumps(event_dict, indent=2, ensure_ascii=False, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Optional level override; defaults to ``settings.app.log_level``
    """
    global _logging_configured

    # ---- guard: run only once ----
    if _logging_configured:
        return
    _logging_configured = True

    effective_level = level or get_settings().app.log_level.value

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, effective_level),
        handlers=[logging.StreamHandler()],
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _add_module_info,
            _json_renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("Schema snapshot rebuilt", tables_count=9, trace_id="abc-123")

        # {
        #   "timestamp": "2025-10-04T10:30:00Z",
        #   "level": "info",
        #   "logger": "studyroom_ai.repositories.schema_repository",
        #   "module": "repositories.schema_repository",
        #   "event": "Schema snapshot rebuilt",
        #   "tables_count": 9,
        #   "trace_id": "abc-123"
        # }
    """
    return structlog.get_logger(name)


def get_module_logger() -> structlog.stdlib.BoundLogger:
    """
    Get a logger named after the calling module.

    Falls back to 'unknown' when frame inspection is unavailable.
    """
    module_name = "unknown"
    frame = None

    try:
        frame = inspect.currentframe()
        if frame is not None and frame.f_back is not None:
            module_name = frame.f_back.f_globals.get("__name__", "unknown")
    except (AttributeError, RuntimeError):
        # Some interpreters do not expose frames
        pass
    finally:
        if frame is not None:
            del frame

    return get_logger(module_name)
