"""
Historical log reconciliation.

At startup every daily log file is read, rows in any supported schema are
normalized into Readings, and the initial timeline is assembled according to
the configured history load policy.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytz

from ..models import Reading
from ..schema import HistoryLoadPolicy
from ..storage.formats import ROW_PARSERS, HistoryRowError, RowParser, is_header_row, parse_row_with_schema
from ..storage.log_writer import LOG_FILENAME_GLOB, parse_log_filename


class HistoryFileError(Exception):
    """Raised when a log file cannot be read at all."""
    pass


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""
    files_found: int = 0
    files_read: int = 0
    files_skipped: List[str] = field(default_factory=list)
    rows_loaded: int = 0
    rows_skipped: int = 0
    rows_by_schema: Dict[str, int] = field(default_factory=dict)
    readings_returned: int = 0

    def as_dict(self) -> dict:
        return {
            "files_found": self.files_found,
            "files_read": self.files_read,
            "files_skipped": list(self.files_skipped),
            "rows_loaded": self.rows_loaded,
            "rows_skipped": self.rows_skipped,
            "rows_by_schema": dict(self.rows_by_schema),
            "readings_returned": self.readings_returned,
        }


class HistoryReconciler:
    """
    Loads the day-bucketed logs into a single ascending list of readings.

    Malformed rows and unreadable files are skipped and counted; they never
    abort reconciliation. Must run before any writer touches the same files.
    """

    def __init__(self,
                 data_dir: Union[str, Path],
                 timezone_name: str = "UTC",
                 logger=None,
                 parsers: Sequence[RowParser] = ROW_PARSERS):
        self.data_dir = Path(data_dir)
        self.local_tz = pytz.timezone(timezone_name)
        self.logger = logger or logging.getLogger("tempmonitor.history")
        self.parsers = tuple(parsers)
        self.last_report: Optional[ReconcileReport] = None

    def discover_files(self) -> List[Tuple[date, Path]]:
        """
        List log files in ascending filename-date order.

        Returns:
            List[Tuple[date, Path]]: Day and path of each log file
        """
        if not self.data_dir.is_dir():
            self.logger.warning(f"History directory {self.data_dir} not found")
            return []

        files = []
        for path in self.data_dir.glob(LOG_FILENAME_GLOB):
            day = parse_log_filename(path.name)
            if day is None:
                self.logger.debug(f"Ignoring {path.name}: no date in file name")
                continue
            files.append((day, path))

        files.sort()
        return files

    def parse_file(self, path: Path, report: Optional[ReconcileReport] = None) -> List[Reading]:
        """
        Parse one log file, skipping rows that match no schema.

        Returns:
            List[Reading]: Valid readings in file order

        Raises:
            HistoryFileError: If the file cannot be read
        """
        try:
            with open(path, 'r', encoding='utf-8-sig', errors='replace') as file_handle:
                lines = file_handle.read().splitlines()
        except OSError as e:
            raise HistoryFileError(f"Cannot read {path}: {e}") from e

        readings = []
        skipped = 0
        first_row = True

        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            if first_row:
                first_row = False
                if is_header_row(line):
                    continue

            try:
                reading, schema = parse_row_with_schema(line, self.local_tz, self.parsers)
            except HistoryRowError as e:
                skipped += 1
                self.logger.debug(f"{path.name}:{line_number} skipped: {e}")
                continue

            readings.append(reading)
            if report is not None:
                report.rows_by_schema[schema] = report.rows_by_schema.get(schema, 0) + 1

        if report is not None:
            report.rows_loaded += len(readings)
            report.rows_skipped += skipped
        if skipped:
            self.logger.info(f"{path.name}: skipped {skipped} malformed rows")

        return readings

    def load(self, policy: HistoryLoadPolicy) -> List[Reading]:
        """
        Reconcile all log files into an ascending list of readings.

        Under a last-N policy files are read newest-first and reading stops as
        soon as N valid rows have been collected.

        Args:
            policy: Full history or the most recent N rows

        Returns:
            List[Reading]: Readings in ascending timestamp order
        """
        report = ReconcileReport()
        files = self.discover_files()
        report.files_found = len(files)

        if not policy.is_full:
            files = list(reversed(files))

        collected: List[Reading] = []
        for day, path in files:
            try:
                readings = self.parse_file(path, report)
            except HistoryFileError as e:
                self.logger.warning(f"Skipping history file: {e}")
                report.files_skipped.append(path.name)
                continue

            report.files_read += 1
            collected.extend(readings)

            if not policy.is_full and len(collected) >= policy.last_n:
                break

        collected.sort(key=lambda reading: reading.timestamp)
        if not policy.is_full:
            collected = collected[-policy.last_n:]

        report.readings_returned = len(collected)
        self.last_report = report

        self.logger.info(
            f"Loaded {len(collected)} readings ({policy.describe()}) from "
            f"{report.files_read}/{report.files_found} files, {report.rows_skipped} rows skipped"
        )
        return collected
