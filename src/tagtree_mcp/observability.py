"""Logging and operation metrics for the TagTree MCP server.

Every service mutation runs inside ``timed_operation``, which logs a
start/end pair under a short correlation id and feeds the shared
``metrics`` collector. ``configure_logging`` adds a rotating file handler
to the ``tagtree_mcp`` logger tree.
"""
import json
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, Optional, Union

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "tagtree_mcp"
LOG_FILE_NAME = "tagtree.log"
DEFAULT_LOG_DIR = Path.home() / ".tagtree" / "logs"
DEFAULT_METRICS_FILE = Path.home() / ".tagtree" / "metrics.json"

_FORMATTER = logging.Formatter(
    "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
)


def _has_console_handler(target: logging.Logger) -> bool:
    return any(
        type(handler) is logging.StreamHandler for handler in target.handlers
    )


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Send ``tagtree_mcp`` logs to a rotating file (and optionally stderr).

    Args:
        log_dir: Directory for ``tagtree.log``. Defaults to ~/.tagtree/logs/
        level: Level applied to the package logger and its handlers
        max_bytes: Size at which the file is rotated
        backup_count: Rotated files kept
        console: Also log to stderr

    Returns:
        The log directory actually used
    """
    directory = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    directory.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)

    file_handler = RotatingFileHandler(
        directory / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(_FORMATTER)
    package_logger.addHandler(file_handler)

    # stdout carries the MCP stdio transport
    if console and not _has_console_handler(package_logger):
        stderr_handler = logging.StreamHandler()
        stderr_handler.setLevel(level)
        stderr_handler.setFormatter(_FORMATTER)
        package_logger.addHandler(stderr_handler)

    package_logger.info("Logging to %s", directory / LOG_FILE_NAME)
    return directory


def _sanitize_error_message(message: Optional[str], max_length: int = 200) -> Optional[str]:
    """Make an error message safe to persist in metrics.

    Collapses newlines, hides the home directory and truncates long text.
    """
    if message is None:
        return None
    cleaned = message.replace("\r", " ").replace("\n", " ")
    home = str(Path.home())
    if home and home != "/":
        cleaned = cleaned.replace(home, "~")
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3] + "..."
    return cleaned


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OperationMetrics:
    """Running totals for one operation name."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: Optional[float] = None
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def add(self, duration_ms: float, success: bool, error: Optional[str]) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        if self.min_duration_ms is None or duration_ms < self.min_duration_ms:
            self.min_duration_ms = duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if success:
            self.success_count += 1
            return
        self.error_count += 1
        self.last_error = _sanitize_error_message(error)
        self.last_error_time = _utc_now()

    def snapshot(self) -> Dict[str, Any]:
        """Rounded, JSON-friendly view of the totals."""
        average = self.total_duration_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "success_rate": self.success_count / self.count if self.count else 0,
            "avg_duration_ms": round(average, 2),
            "min_duration_ms": round(self.min_duration_ms or 0.0, 2),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
        }


class MetricsCollector:
    """Thread-safe per-operation metrics (create_tag, move_tag, ...).

    Totals are written to ``metrics_file`` every ``auto_save_interval``
    recorded operations; 0 disables the periodic save.
    """

    def __init__(
        self,
        metrics_file: Optional[Union[str, Path]] = None,
        auto_save_interval: int = 100,
    ):
        self._operations: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._started = _utc_now()
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE
        self._auto_save_interval = auto_save_interval
        self._unsaved = 0

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        """Add one finished operation to the totals."""
        with self._lock:
            self._operations[operation].add(duration_ms, success, error)
            self._unsaved += 1
            if 0 < self._auto_save_interval <= self._unsaved:
                self._write()

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation's totals, keyed by operation name."""
        with self._lock:
            return {name: m.snapshot() for name, m in self._operations.items()}

    def get_summary(self) -> Dict[str, Any]:
        """Totals across all operations, as reported by ``tt_metrics``."""
        with self._lock:
            total = sum(m.count for m in self._operations.values())
            succeeded = sum(m.success_count for m in self._operations.values())
            return {
                "uptime_seconds": (_utc_now() - self._started).total_seconds(),
                "total_operations": total,
                "total_success": succeeded,
                "total_errors": total - succeeded,
                "overall_success_rate": succeeded / total if total else 1.0,
                "operations_tracked": sorted(self._operations),
            }

    def reset(self) -> None:
        """Forget everything recorded so far."""
        with self._lock:
            self._operations.clear()
            self._started = _utc_now()
            self._unsaved = 0

    def save_metrics(self) -> bool:
        """Write the totals to disk now.

        Returns:
            True if the file was written.
        """
        with self._lock:
            return self._write()

    def _write(self) -> bool:
        # Caller holds the lock
        payload = {
            "start_time": self._started.isoformat(),
            "saved_at": _utc_now().isoformat(),
            "operations": {name: m.snapshot() for name, m in self._operations.items()},
        }
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            staging = self._metrics_file.with_suffix(".tmp")
            staging.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            staging.replace(self._metrics_file)
        except OSError as e:
            logger.error("Could not write metrics to %s: %s", self._metrics_file, e)
            return False
        self._unsaved = 0
        return True


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context) -> Iterator[Dict[str, Any]]:
    """Time a block, log it and record it in ``metrics``.

    The yielded dict can be filled with result details, which are appended
    to the END log line. An exception marks the operation failed and is
    re-raised.

    Example:
        with timed_operation("move_tag", active_id=tag.id) as op:
            op["action"] = action.kind
    """
    correlation_id = uuid.uuid4().hex[:8]
    details: Dict[str, Any] = {"correlation_id": correlation_id}
    logger.debug(
        "[%s] START %s (%s)",
        correlation_id,
        operation,
        ", ".join(f"{k}={v}" for k, v in context.items()),
    )
    started = time.perf_counter()
    error: Optional[str] = None
    try:
        yield details
    except Exception as e:
        error = str(e)
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, elapsed_ms, error is None, error)
        logger.debug(
            "[%s] END %s (%.2fms) [%s] %s",
            correlation_id,
            operation,
            elapsed_ms,
            "OK" if error is None else f"ERROR: {error}",
            ", ".join(f"{k}={v}" for k, v in details.items() if k != "correlation_id"),
        )
