"""Observability utilities for the Gravity notes engine.

Rotating log files for the ``gravity_notes`` logger hierarchy, plus
per-operation call statistics that the ``notes_status`` tool reports.
"""
import functools
import inspect
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".gravity" / "logs"
LOG_FILE_NAME = "gravity.log"

# Root of the package logger hierarchy
ROOT_LOGGER_NAME = "gravity_notes"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Arguments worth echoing into trace lines
_TRACED_ARGUMENTS = ("note_id", "max_age_minutes", "export_format")

F = TypeVar('F', bound=Callable[..., Any])

_logging_configured = False


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating log file (and optionally stderr) to the package logger.

    Calling it again with the same directory does not add a second handler.

    Args:
        log_dir: Directory for ``gravity.log``. Defaults to ~/.gravity/logs/
        level: Logging level for the package loggers.
        max_bytes: Size at which the log file is rotated (default: 10 MB).
        backup_count: Rotated files kept next to the live one.
        console: Also log to stderr.

    Returns:
        The log directory.
    """
    global _logging_configured

    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    has_file_handler = any(
        isinstance(h, RotatingFileHandler)
        and Path(h.baseFilename) == log_file.resolve()
        for h in package_logger.handlers
    )
    if not has_file_handler:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    has_console_handler = any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    )
    if console and not has_console_handler:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    _logging_configured = True
    package_logger.info(f"Logging to {log_file} (rotating at {max_bytes} bytes, {backup_count} kept)")
    return log_path


def is_logging_configured() -> bool:
    return _logging_configured


@dataclass
class OperationStats:
    """Running totals for one operation name."""
    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0
    last_error: Optional[str] = None

    @property
    def mean_ms(self) -> float:
        return self.total_ms / self.calls if self.calls else 0.0


class MetricsCollector:
    """Thread-safe call statistics, keyed by operation name.

    Fed by ``timed_operation``; read back by the ``notes_status`` tool.
    """

    def __init__(self):
        self._stats: Dict[str, OperationStats] = defaultdict(OperationStats)
        self._lock = Lock()
        self._started = time.monotonic()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        with self._lock:
            stats = self._stats[operation]
            stats.calls += 1
            stats.total_ms += duration_ms
            stats.slowest_ms = max(stats.slowest_ms, duration_ms)
            if not success:
                stats.failures += 1
                stats.last_error = error

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation statistics, sorted by operation name."""
        with self._lock:
            return {
                name: {
                    "calls": stats.calls,
                    "failures": stats.failures,
                    "mean_ms": round(stats.mean_ms, 2),
                    "slowest_ms": round(stats.slowest_ms, 2),
                    "last_error": stats.last_error,
                }
                for name, stats in sorted(self._stats.items())
            }

    def get_summary(self) -> Dict[str, Any]:
        """Totals across every operation since the collector was created."""
        with self._lock:
            calls = sum(s.calls for s in self._stats.values())
            failures = sum(s.failures for s in self._stats.values())
        return {
            "uptime_seconds": round(time.monotonic() - self._started, 1),
            "total_operations": calls,
            "total_errors": failures,
            "success_rate": (calls - failures) / calls if calls else 1.0,
        }


# Process-wide collector
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, record it in ``metrics`` and log start/end at DEBUG.

    Yields a dict the block can fill with result details (e.g. ``deleted``);
    they are appended to the END log line.

    Example:
        with timed_operation("notes_list") as op:
            notes = service.list_notes()
            op["result_count"] = len(notes)
    """
    correlation_id = uuid.uuid4().hex[:8]
    started = time.perf_counter()
    details: Dict[str, Any] = {}

    context_str = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    try:
        yield details
    except Exception as e:
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, duration_ms, error_msg is None, error_msg)

        details_str = ', '.join(f'{k}={v}' for k, v in details.items())
        status = 'OK' if error_msg is None else f'ERROR: {error_msg}'
        logger.debug(
            f"[{correlation_id}] END {operation} "
            f"({duration_ms:.2f}ms) [{status}] {details_str}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Wrap a function in ``timed_operation``.

    Note IDs, ages and export formats among the call's arguments (positional
    or keyword) are echoed into the trace lines.

    Example:
        @traced("save_note")
        def save_note(self, note_id: str, content: str) -> NoteMeta:
            ...
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                bound = signature.bind_partial(*args, **kwargs).arguments
            except TypeError:
                bound = kwargs
            context = {k: bound[k] for k in _TRACED_ARGUMENTS if k in bound}

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple)):
                    op['result_count'] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator
