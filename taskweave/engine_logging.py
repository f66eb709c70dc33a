"""Logging and observability utilities for taskweave.

Structured logging under the ``taskweave`` logger hierarchy, operation
timing, and event hooks for task and directory lifecycle events.
"""

from __future__ import annotations

import json
import time
import logging as std_logging
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Union


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Configure console logging and, optionally, a JSON log file."""

    logger = std_logging.getLogger("taskweave")
    logger.setLevel(log_level)
    logger.handlers.clear()

    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        std_logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(console_handler)

    if log_file:
        file_handler = std_logging.FileHandler(log_file)
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info("taskweave logging initialized")


class JsonFormatter(std_logging.Formatter):
    """Render log records as one JSON object per line."""

    def format(self, record: std_logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra_fields"):
            entry.update(record.extra_fields)
        return json.dumps(entry, default=str)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class PerformanceMonitor:
    """In-memory record of operation durations.

    Only the latest ``max_samples`` values are kept per metric name.
    """

    def __init__(self, max_samples: int = 1000):
        self.max_samples = max_samples
        self.metrics: Dict[str, Deque[Dict[str, Any]]] = {}

    def record_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None) -> None:
        metric = {"timestamp": _utcnow(), "name": name, "value": value, "tags": tags or {}}
        self.metrics.setdefault(name, deque(maxlen=self.max_samples)).append(metric)
        std_logging.getLogger("taskweave.performance").debug(
            f"Metric recorded: {name}={value}", extra={"extra_fields": metric}
        )

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        if name:
            return {name: list(self.metrics.get(name, ()))}
        return {key: list(values) for key, values in self.metrics.items()}

    def reset(self) -> None:
        self.metrics.clear()


performance_monitor = PerformanceMonitor()


def log_performance(operation_name: str):
    """Decorator recording the duration and outcome of an engine operation."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = std_logging.getLogger("taskweave.performance")
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.perf_counter() - start_time
                performance_monitor.record_metric(
                    f"{operation_name}_duration", duration, {"status": "error", "error_type": type(e).__name__}
                )
                logger.error(
                    f"Failed operation: {operation_name} after {duration:.3f}s - {e}",
                    extra={"extra_fields": {
                        "operation": operation_name,
                        "duration": duration,
                        "status": "error",
                        "error_type": type(e).__name__,
                    }},
                )
                raise

            duration = time.perf_counter() - start_time
            performance_monitor.record_metric(f"{operation_name}_duration", duration, {"status": "success"})
            logger.debug(
                f"Completed operation: {operation_name} in {duration:.3f}s",
                extra={"extra_fields": {"operation": operation_name, "duration": duration, "status": "success"}},
            )
            return result

        return wrapper

    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Log the start, completion or failure of a multi-step operation."""
    logger = std_logging.getLogger("taskweave.operations")
    start_time = time.perf_counter()
    logger.info(
        f"Starting operation: {operation_name}",
        extra={"extra_fields": {"operation": operation_name, "status": "started", **extra_fields}},
    )
    try:
        yield
    except Exception as e:
        duration = time.perf_counter() - start_time
        logger.error(
            f"Failed operation: {operation_name} after {duration:.3f}s - {e}",
            extra={"extra_fields": {
                "operation": operation_name,
                "status": "failed",
                "duration": duration,
                "error_type": type(e).__name__,
                "error_message": str(e),
                **extra_fields,
            }},
        )
        raise

    duration = time.perf_counter() - start_time
    logger.info(
        f"Completed operation: {operation_name} in {duration:.3f}s",
        extra={"extra_fields": {
            "operation": operation_name,
            "status": "completed",
            "duration": duration,
            **extra_fields,
        }},
    )


class ObservabilityHooks:
    """Callbacks fired on engine events (task created, phase renamed, ...)."""

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., None]]] = {}
        self.logger = std_logging.getLogger("taskweave.observability")

    def register_hook(self, event_type: str, callback: Callable[..., None]) -> None:
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def clear(self) -> None:
        self.hooks.clear()

    def trigger_hooks(self, event_type: str, **data) -> None:
        for hook in self.hooks.get(event_type, []):
            try:
                hook(**data)
            except Exception as e:
                # A failing observer must not fail the engine operation.
                self.logger.error(f"Hook failed for event {event_type}: {e}")

    def log_engine_event(self, event_type: str, task_id: Optional[str] = None, **data) -> None:
        event_data = {"timestamp": _utcnow(), "event_type": event_type, "task_id": task_id, **data}
        self.logger.info(f"Engine event: {event_type}", extra={"extra_fields": event_data})
        hook_data = {k: v for k, v in event_data.items() if k != "event_type"}
        self.trigger_hooks(event_type, **hook_data)


observability_hooks = ObservabilityHooks()


def log_task_event(event_type: str, task_id: str, **extra_fields) -> None:
    """Log a task lifecycle event (created, updated, moved, deleted)."""
    observability_hooks.log_engine_event(f"task_{event_type.lower()}", task_id=task_id, **extra_fields)


def log_migration_event(event_type: str, source: str, target: Optional[str] = None, **extra_fields) -> None:
    """Log a directory migration event (phase renamed, feature moved, ...)."""
    observability_hooks.log_engine_event(event_type.lower(), source=source, target=target, **extra_fields)


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields) -> None:
    logger = std_logging.getLogger("taskweave.errors")
    error_data = {
        "timestamp": _utcnow(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context,
        **extra_fields,
    }
    logger.error(
        f"Error in {context.get('operation', 'unknown operation')}: {error}",
        extra={"extra_fields": error_data},
        exc_info=True,
    )
