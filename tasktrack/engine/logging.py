"""
TaskTrack Logging System — Structured JSON file-based audit logging with async queue.

Implements:
- FileLogger: Per-object-type, per-category log files (daily rotation)
- AsyncLogQueue: In-memory queue with background flush (100ms / 50 entries)
- Log entry builders for task transitions, security denials, notification
  delivery outcomes, web API requests and system events

Layout: {log_dir}/{object_type}/{category}/{YYYY-MM-DD}.jsonl
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

logger = logging.getLogger("tasktrack.engine.logging")

# Valid object types and their permitted categories
OBJECT_TYPE_CATEGORIES = {
    "tasks": ["execution", "security"],
    "comments": ["execution", "security"],
    "notifications": ["execution", "performance"],
    "dashboard": ["execution", "security"],
    "users": ["execution", "security"],
    "web_apis": ["execution", "performance", "security"],
    "system": ["execution", "security"],
}


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        self.object_type = object_type
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Writes structured JSON log entries to per-object-type, per-category files.
    Files rotate daily: logs/{object_type}/{category}/{YYYY-MM-DD}.jsonl

    Thread-safe — uses a lock per file path.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / obj_type / cat).mkdir(parents=True, exist_ok=True)

    def write(self, entry: LogEntry) -> None:
        """Write a single log entry to the appropriate file."""
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Write a batch of log entries, grouping by file path."""
        grouped: Dict[str, List[LogEntry]] = defaultdict(list)
        for entry in entries:
            file_path = str(self._resolve_path(entry.object_type, entry.category))
            grouped[file_path].append(entry)

        for file_path, batch in grouped.items():
            with self._file_locks[file_path]:
                with open(file_path, "a", encoding="utf-8") as f:
                    for entry in batch:
                        f.write(entry.to_json())
                        f.write("\n")

    def _resolve_path(self, object_type: str, category: str) -> Path:
        today = date.today().isoformat()
        return self._log_dir / object_type / category / f"{today}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def query(
        self,
        object_type: str,
        category: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Query log entries from JSONL files for a given object_type/category.

        Args:
            object_type: The object type folder (e.g. "tasks", "notifications").
            category: The category folder (e.g. "execution", "security").
            start_date: Earliest date to include (defaults to 7 days ago).
            end_date: Latest date to include (defaults to today).
            filters: Optional exact-match filters on top-level data keys.
            limit: Max number of entries to return.

        Returns:
            List of parsed log-entry dicts in file order.
        """
        if end_date is None:
            end_date = date.today()
        if start_date is None:
            start_date = end_date - timedelta(days=7)

        log_base = self._log_dir / object_type / category
        if not log_base.exists():
            return []

        results: List[Dict[str, Any]] = []
        current = start_date
        while current <= end_date and len(results) < limit:
            file_path = log_base / f"{current.isoformat()}.jsonl"
            if file_path.exists():
                results.extend(self._read_jsonl(file_path, filters, limit - len(results)))
            current += timedelta(days=1)
        return results

    @staticmethod
    def _read_jsonl(
        path: Path,
        filters: Optional[Dict[str, Any]],
        remaining: int,
    ) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if filters and not all(data.get(k) == v for k, v in filters.items()):
                        continue
                    entries.append(data)
                    if len(entries) >= remaining:
                        break
        except OSError as exc:
            logger.warning("Could not read log file %s: %s", path, exc)
        return entries


class AsyncLogQueue:
    """
    In-memory queue with a background flush thread.

    Entries are pushed non-blocking. A background thread flushes to FileLogger
    every flush_interval_ms OR when flush_batch_size entries accumulate,
    whichever comes first.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._logger = file_logger
        self._flush_interval = flush_interval_ms / 1000.0
        self._flush_batch_size = flush_batch_size
        self._queue: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._running = False
        self._flush_thread: Optional[threading.Thread] = None
        self._dropped_count = 0

    def start(self) -> None:
        """Start the background flush thread."""
        if self._running:
            return
        self._running = True
        self._flush_thread = threading.Thread(
            target=self._flush_loop,
            name="tasktrack-log-flush",
            daemon=True,
        )
        self._flush_thread.start()
        logger.info("Async log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flush thread and drain remaining entries."""
        self._running = False
        if self._flush_thread and self._flush_thread.is_alive():
            self._flush_thread.join(timeout=timeout)
        self._drain()
        logger.info(f"Async log queue stopped (dropped: {self._dropped_count})")

    def push(self, entry: LogEntry) -> bool:
        """
        Push a log entry to the queue. Non-blocking.

        Returns:
            True if queued, False if dropped (queue full).
        """
        try:
            self._queue.put_nowait(entry)
            return True
        except Full:
            self._dropped_count += 1
            return False

    def _flush_loop(self) -> None:
        while self._running:
            batch = self._collect_batch()
            if batch:
                try:
                    self._logger.write_batch(batch)
                except OSError as e:
                    logger.error(f"Log flush error: {e}")
            else:
                time.sleep(self._flush_interval)

    def _collect_batch(self) -> List[LogEntry]:
        batch: List[LogEntry] = []
        deadline = time.monotonic() + self._flush_interval

        while len(batch) < self._flush_batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self._queue.get(timeout=min(remaining, 0.01)))
            except Empty:
                if batch:
                    break
        return batch

    def _drain(self) -> None:
        batch: List[LogEntry] = []
        while not self._queue.empty():
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        if batch:
            try:
                self._logger.write_batch(batch)
            except OSError as e:
                logger.error(f"Log drain error: {e}")

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    actor_id: Optional[Any] = None,
    execution_id: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a base log entry with common fields."""
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    if actor_id is not None:
        entry["actor_id"] = actor_id
    if execution_id:
        entry["execution_id"] = execution_id
    entry.update(extra)
    return entry


def log_task_event(
    operation: str,
    task_id: Optional[int],
    actor_id: Optional[int],
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    fields_changed: Optional[List[str]] = None,
    events_emitted: int = 0,
    execution_id: Optional[str] = None,
) -> LogEntry:
    """Build a task lifecycle log entry (create/assign/start/complete/archive/edit/delete)."""
    data = _base_entry(
        event=f"task_{operation}",
        level="INFO",
        actor_id=actor_id,
        execution_id=execution_id,
        task_id=task_id,
        operation=operation,
        events_emitted=events_emitted,
    )
    if from_status:
        data["from_status"] = from_status
    if to_status:
        data["to_status"] = to_status
    if fields_changed:
        data["fields_changed"] = fields_changed
    return LogEntry("tasks", "execution", data)


def log_security_event(
    event: str,
    object_type: str,
    action: str,
    actor_id: Optional[Any],
    role: Optional[str],
    resource_id: Optional[Any] = None,
    execution_id: Optional[str] = None,
    reason: Optional[str] = None,
    level: str = "WARNING",
) -> LogEntry:
    """Build a security event log entry (deny / unauthenticated)."""
    data = _base_entry(
        event=event,
        level=level,
        actor_id=actor_id,
        execution_id=execution_id,
        object_type=object_type,
        action=action,
        role=role,
    )
    if resource_id is not None:
        data["resource_id"] = resource_id
    if reason:
        data["reason"] = reason
    target = object_type if object_type in OBJECT_TYPE_CATEGORIES else "system"
    return LogEntry(target, "security", data)


def log_notification_event(
    event: str,
    notification_id: Optional[int],
    recipient_id: int,
    event_type: str,
    task_id: Optional[int],
    attempt: Optional[int] = None,
    error: Optional[str] = None,
    duration_ms: Optional[float] = None,
) -> LogEntry:
    """Build a notification log entry (queued/delivered/delivery_failed/enqueue_failed)."""
    level = "ERROR" if "fail" in event else "INFO"
    data = _base_entry(
        event=event,
        level=level,
        notification_id=notification_id,
        recipient_id=recipient_id,
        event_type=event_type,
        task_id=task_id,
    )
    if attempt is not None:
        data["attempt"] = attempt
    if error:
        data["error"] = error
    if duration_ms is not None:
        data["duration_ms"] = duration_ms
    return LogEntry("notifications", "execution", data)


def log_web_api_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    actor_id: Optional[int] = None,
    execution_id: Optional[str] = None,
) -> LogEntry:
    """Build a web API request log entry."""
    data = _base_entry(
        event="web_api_request",
        level="INFO" if status_code < 400 else "ERROR",
        actor_id=actor_id,
        execution_id=execution_id,
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
    )
    return LogEntry("web_apis", "execution", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a system event log entry (startup, shutdown, maintenance runs)."""
    data = _base_entry(event=event, level=level)
    if details:
        data["details"] = details
    return LogEntry("system", "execution", data)


# ---------------------------------------------------------------------------
# Convenience: Global Log Queue Singleton
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    level: str = "INFO",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Configure the tasktrack stdlib logger and start the global async log queue."""
    global _global_queue
    logging.getLogger("tasktrack").setLevel(level.upper())
    file_logger = FileLogger(log_dir=log_dir)
    _global_queue = AsyncLogQueue(
        file_logger=file_logger,
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    """Get the global async log queue."""
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Push a log entry to the global queue. Non-blocking."""
    if _global_queue is None:
        logger.debug("Log queue not initialized — %s/%s entry dropped", entry.object_type, entry.category)
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    """Flush and stop the global log queue."""
    global _global_queue
    if _global_queue:
        _global_queue.stop()
        _global_queue = None
