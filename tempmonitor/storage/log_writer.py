"""
Day-bucketed CSV log writer.
Each accepted reading becomes one durable row in the file for its calendar day.
"""

import fcntl
import logging
import os
import threading
import time
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Union

import pytz

from ..models import Reading
from .formats import format_current_row, format_header


LOG_FILENAME_FORMAT = "log_%Y-%m-%d.csv"
LOG_FILENAME_GLOB = "log_*.csv"


class LogWriteError(Exception):
    """Raised when a reading could not be durably appended."""
    pass


def log_filename_for(day: date) -> str:
    return day.strftime(LOG_FILENAME_FORMAT)


def parse_log_filename(name: str) -> Optional[date]:
    """Return the date encoded in a log file name, or None for foreign files."""
    try:
        return datetime.strptime(name, LOG_FILENAME_FORMAT).date()
    except ValueError:
        return None


class DailyLogWriter:
    """
    Append-only writer for the daily CSV logs.

    Appends from any thread of this process are serialized by a lock; an
    exclusive ``flock`` keeps other writers from interleaving partial rows.
    The target day is derived from the reading's own timestamp in the
    configured timezone, never from the wall clock at write time.
    """

    def __init__(self,
                 data_dir: Union[str, Path],
                 timezone_name: str = "UTC",
                 logger=None,
                 lock_timeout: float = 10.0):
        self.data_dir = Path(data_dir)
        self.timezone = pytz.timezone(timezone_name)
        self.logger = logger or logging.getLogger("tempmonitor.storage")
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()
        self.rows_written = 0

    def day_for(self, reading: Reading) -> date:
        return reading.timestamp.astimezone(self.timezone).date()

    def path_for(self, reading: Reading) -> Path:
        return self.data_dir / log_filename_for(self.day_for(reading))

    @contextmanager
    def _file_lock(self, file_path: Path):
        """
        Open a file for appending and hold an exclusive lock on it.

        Yields:
            file: Opened file handle with lock
        """
        lock_acquired = False
        file_handle = open(file_path, 'a', encoding='utf-8', newline='')

        try:
            start_time = time.monotonic()
            while time.monotonic() - start_time < self.lock_timeout:
                try:
                    fcntl.flock(file_handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    time.sleep(0.05)

            if not lock_acquired:
                raise LogWriteError(f"Could not acquire lock for {file_path} within {self.lock_timeout} seconds")

            yield file_handle

        finally:
            if lock_acquired:
                fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)
            file_handle.close()

    def append(self, reading: Reading) -> Path:
        """
        Append a reading to its day's log file, creating the file with a header.

        Returns:
            Path: File the row was written to

        Raises:
            LogWriteError: If the row could not be written and flushed
        """
        path = self.path_for(reading)
        row = format_current_row(reading)

        with self._lock:
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                with self._file_lock(path) as file_handle:
                    if os.fstat(file_handle.fileno()).st_size == 0:
                        file_handle.write(format_header() + "\n")
                        self.logger.info(f"Started new log file {path.name}")
                    file_handle.write(row + "\n")
                    file_handle.flush()
                    os.fsync(file_handle.fileno())
            except OSError as e:
                raise LogWriteError(f"Failed to write {path}: {e}") from e

            self.rows_written += 1

        self.logger.debug(f"Appended to {path.name}: {row}")
        return path
