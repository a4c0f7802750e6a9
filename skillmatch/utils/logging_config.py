"""
Logging setup for hosts embedding the skillmatch engine.

Engine modules only create loggers under the ``skillmatch`` namespace and
nothing is configured on import. A host calls ``setup_logging`` once at
startup. Batch failures carry ``entity_id`` and ``phase`` as record extras;
the engine format prints them, with ``-`` for records logged outside a batch.
"""
import functools
import inspect
import logging
import logging.config
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "skillmatch"

ENGINE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "entity=%(entity_id)s phase=%(phase)s | %(message)s"
)
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5


class EntityContextFilter(logging.Filter):
    """Default the batch context fields so the engine format never fails"""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in ("entity_id", "phase"):
            if not hasattr(record, field):
                setattr(record, field, "-")
        return True


def _rotating_file(path: Path, level: str) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "engine",
        "filters": ["entity_context"],
        "filename": str(path),
        "maxBytes": MAX_LOG_BYTES,
        "backupCount": LOG_BACKUPS,
        "encoding": "utf8",
    }


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[str] = "logs",
    console: bool = True,
) -> None:
    """
    Route ``skillmatch.*`` records to stdout and rotating files

    Args:
        level: Level for the engine loggers (default: SKILLMATCH_LOG_LEVEL or INFO)
        log_dir: Directory for skillmatch.log and skillmatch_errors.log; None disables files
        console: Also log to stdout
    """
    level = (level or os.getenv("SKILLMATCH_LOG_LEVEL", "INFO")).upper()

    handlers: Dict[str, Dict[str, Any]] = {}
    if console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "engine",
            "filters": ["entity_context"],
            "stream": "ext://sys.stdout",
        }
    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers["file"] = _rotating_file(log_path / "skillmatch.log", level)
        handlers["error_file"] = _rotating_file(log_path / "skillmatch_errors.log", "ERROR")

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"entity_context": {"()": EntityContextFilter}},
        "formatters": {"engine": {"format": ENGINE_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"}},
        "handlers": handlers,
        "loggers": {
            ROOT_LOGGER_NAME: {"level": level, "handlers": list(handlers), "propagate": False},
        },
    })
    get_logger("logging").info(f"Logging configured - level {level}, handlers: {', '.join(handlers) or 'none'}")


def get_logger(name: str) -> logging.Logger:
    """Logger under the engine namespace (``__name__`` of engine modules is kept as is)"""
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def log_function_call(func):
    """Time each call of a sync or async function with PerformanceMonitor"""
    logger = get_logger(func.__module__)
    name = func.__qualname__

    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            with PerformanceMonitor(name, logger):
                return await func(*args, **kwargs)
        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        with PerformanceMonitor(name, logger):
            return func(*args, **kwargs)
    return wrapper


class PerformanceMonitor:
    """Context manager logging how long an operation took"""

    def __init__(self, operation_name: str, logger: logging.Logger = None, threshold_ms: float = 1000):
        self.operation_name = operation_name
        self.logger = logger or get_logger("performance")
        self.threshold_ms = threshold_ms
        self.start_time = None
        self.elapsed_ms = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug(f"Starting {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is not None:
            self.logger.error(f"{self.operation_name} failed after {self.elapsed_ms:.2f}ms: {exc_val}")
        elif self.elapsed_ms > self.threshold_ms:
            self.logger.warning(
                f"{self.operation_name} took {self.elapsed_ms:.2f}ms (threshold {self.threshold_ms}ms)"
            )
        else:
            self.logger.debug(f"{self.operation_name} completed in {self.elapsed_ms:.2f}ms")
        return False
