"""
Structured logging system for the Dispute Desk service layer.

This module provides:
- Structured JSON logging with correlation IDs
- Console-friendly rich output for development
- Performance monitoring around repository and service operations
- Database query logging
- Security (access decision) and business event logging
"""

import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

from disputedesk.config.settings import Settings, get_settings


# Context-local storage; safe across concurrent asyncio tasks
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_performance_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "performance_context", default=None
)

console = Console()


class CorrelationIDProcessor:
    """Structlog processor to add correlation IDs to log records."""

    def __call__(self, logger, method_name, event_dict):
        """Add correlation ID to the log event."""
        correlation_id = get_correlation_id()
        if correlation_id:
            event_dict["correlation_id"] = correlation_id
        return event_dict


class TimestampProcessor:
    """Structlog processor to add ISO timestamps to log records."""

    def __call__(self, logger, method_name, event_dict):
        """Add ISO timestamp to the log event."""
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
        return event_dict


class PerformanceProcessor:
    """Structlog processor to add the active performance context to log records."""

    def __call__(self, logger, method_name, event_dict):
        perf_context = _performance_context.get()
        if perf_context:
            for key, value in perf_context.items():
                event_dict.setdefault(key, value)
        return event_dict


class DisputeDeskLogFormatter:
    """
    Log formatter producing either JSON lines or rich console markup.
    """

    LEVEL_COLORS = {
        "DEBUG": "dim white",
        "INFO": "blue",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "bold red"
    }

    def __init__(self, use_json: bool = False):
        self.use_json = use_json

    def __call__(self, _, __, event_dict):
        if self.use_json:
            return json.dumps(event_dict, default=str)
        return self._format_console_output(event_dict)

    def _format_console_output(self, event_dict: Dict[str, Any]) -> str:
        """Format log event for console output with colors and structure."""
        timestamp = event_dict.get("timestamp", "")
        level = event_dict.get("level", "INFO").upper()
        logger_name = event_dict.get("logger", "")
        correlation_id = event_dict.get("correlation_id", "")
        event = event_dict.get("event", "")

        parts = []

        if timestamp:
            parts.append(f"[dim]{timestamp[:19]}[/dim]")

        level_color = self.LEVEL_COLORS.get(level, "white")
        parts.append(f"[{level_color}]{level:8}[/{level_color}]")

        if logger_name:
            parts.append(f"[cyan]{logger_name}[/cyan]")

        if correlation_id:
            parts.append(f"[magenta]{correlation_id[:8]}[/magenta]")

        parts.append(f"[white]{event}[/white]")

        context_fields = {
            k: v for k, v in event_dict.items()
            if k not in {"timestamp", "level", "logger", "correlation_id", "event"}
        }

        if context_fields:
            context_str = " ".join(f"{k}={v}" for k, v in context_fields.items())
            parts.append(f"[dim]{context_str}[/dim]")

        return " ".join(parts)


def setup_logging(
    level: str = "INFO",
    use_json: bool = False,
    log_file: Optional[Path] = None,
    enable_correlation_ids: bool = True
) -> None:
    """
    Setup structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: Output structured JSON logs
        log_file: Optional file path for log output
        enable_correlation_ids: Enable correlation ID tracking
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        TimestampProcessor(),
    ]

    if enable_correlation_ids:
        processors.append(CorrelationIDProcessor())

    processors.append(PerformanceProcessor())
    processors.append(structlog.processors.format_exc_info)
    processors.append(DisputeDeskLogFormatter(use_json=use_json))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if not use_json:
        rich_handler = RichHandler(
            console=console,
            show_time=False,  # timestamp comes from structlog
            show_path=False,
            rich_tracebacks=True,
            markup=True
        )
        rich_handler.setLevel(numeric_level)
        root_logger.addHandler(rich_handler)
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(numeric_level)
        root_logger.addHandler(handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog bound logger
    """
    return structlog.get_logger(name)


def get_correlation_id() -> Optional[str]:
    """Get the correlation ID for the current request context."""
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None):
    """
    Context manager for correlation ID scoping.

    Usage:
        with correlation_context("req-123"):
            logger.info("This log will have correlation_id=req-123")
    """
    token = _correlation_id.set(correlation_id or str(uuid.uuid4()))
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)


@contextmanager
def performance_context(operation: str, **context: Any):
    """
    Context manager for performance monitoring.

    Args:
        operation: Name of the operation being measured
        **context: Additional context to include in logs

    Usage:
        with performance_context("mongodb_find_case", case_id="123"):
            ...
    """
    start_time = time.perf_counter()
    logger = get_logger("performance")

    perf_context = {"operation": operation, **context}
    token = _performance_context.set(perf_context)

    logger.debug("Operation started", **perf_context)

    try:
        yield perf_context
    except Exception as e:
        duration = time.perf_counter() - start_time
        logger.warning(
            "Operation failed",
            operation=operation,
            duration=round(duration, 4),
            error=str(e),
            **context
        )
        raise
    else:
        duration = time.perf_counter() - start_time
        logger.debug(
            "Operation completed",
            operation=operation,
            duration=round(duration, 4),
            **context
        )
    finally:
        _performance_context.reset(token)


class DatabaseLogger:
    """Specialized logger for database operations."""

    def __init__(self):
        self.logger = get_logger("database")

    def query_executed(
        self,
        database_type: str,
        operation: str,
        collection: Optional[str] = None,
        duration: Optional[float] = None,
        result_count: Optional[int] = None
    ):
        """Log database query execution."""
        self.logger.debug(
            "Database query executed",
            database_type=database_type,
            operation=operation,
            collection=collection,
            duration=duration,
            result_count=result_count,
            event_type="query_executed"
        )

    def connection_established(self, database_type: str, database_name: str):
        """Log database connection establishment."""
        self.logger.info(
            "Database connection established",
            database_type=database_type,
            database_name=database_name,
            event_type="connection_established"
        )

    def connection_failed(self, database_type: str, error: str):
        """Log database connection failures."""
        self.logger.error(
            "Database connection failed",
            database_type=database_type,
            error=error,
            event_type="connection_failed"
        )


database_logger = DatabaseLogger()


def initialize_logging_from_settings(settings: Optional[Settings] = None) -> None:
    """Initialize logging using application settings."""
    settings = settings or get_settings()

    setup_logging(
        level=settings.logging.level,
        use_json=settings.logging.format == "json",
        log_file=Path(settings.logging.log_file) if settings.logging.log_file else None,
        enable_correlation_ids=settings.logging.enable_correlation_ids
    )

    logger = get_logger(__name__)
    logger.info(
        "Logging system initialized",
        level=settings.logging.level,
        format=settings.logging.format,
        correlation_ids_enabled=settings.logging.enable_correlation_ids
    )


def log_business_event(
    event_type: str,
    user_id: Optional[str] = None,
    case_id: Optional[str] = None,
    message_id: Optional[str] = None,
    **context: Any
) -> None:
    """
    Log a domain event (case created, panel assigned, message deleted, ...).

    Usage:
        log_business_event("case_assigned", case_id="c1", user_id="admin-7")
    """
    business_logger = get_logger("business")

    event_context: Dict[str, Any] = {"event_type": event_type}
    if user_id:
        event_context["user_id"] = user_id
    if case_id:
        event_context["case_id"] = case_id
    if message_id:
        event_context["message_id"] = message_id
    event_context.update(context)

    business_logger.info(f"Business event: {event_type}", **event_context)


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    action: Optional[str] = None,
    success: bool = True,
    **context: Any
) -> None:
    """
    Log security-related events for audit trails.

    Args:
        event_type: Type of security event (e.g., "access_denied")
        user_id: User identifier
        resource_type: Type of resource being accessed
        resource_id: Specific resource identifier
        action: Action being performed
        success: Whether the security check succeeded
        **context: Additional security context
    """
    security_logger = get_logger("security")

    security_context: Dict[str, Any] = {
        "event_type": event_type,
        "success": success,
    }

    if user_id:
        security_context["user_id"] = user_id
    if resource_type:
        security_context["resource_type"] = resource_type
    if resource_id:
        security_context["resource_id"] = resource_id
    if action:
        security_context["action"] = action

    security_context.update(context)

    if not success or event_type == "access_denied":
        security_logger.warning(f"Security event: {event_type}", **security_context)
    else:
        security_logger.info(f"Security event: {event_type}", **security_context)
