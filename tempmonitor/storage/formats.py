"""
Log row schemas.

Rows written today use the current schema; older installations wrote a
semicolon-separated legacy schema with locale formatted dates. Parsers form a
closed, ordered set: the first one that accepts a row wins.
"""

from abc import ABC, abstractmethod
from datetime import datetime, tzinfo
from typing import List, Sequence, Tuple

import pytz

from ..models import InvalidReadingError, Reading


CURRENT_HEADER = ("DateTime", "Temperature", "Humidity")
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"

LEGACY_DATE_FORMATS = ("%Y.%m.%d", "%d.%m.%Y", "%Y-%m-%d")
LEGACY_TIME_FORMATS = ("%H:%M:%S", "%H:%M")


class HistoryRowError(ValueError):
    """Raised when a log row matches none of the known schemas."""
    pass


def format_current_row(reading: Reading) -> str:
    """Serialize a reading in the current schema (without line terminator)."""
    return ",".join([
        reading.timestamp.strftime(TIMESTAMP_FORMAT),
        f"{reading.temperature_c:.1f}",
        str(reading.humidity_pct),
    ])


def format_header() -> str:
    return ",".join(CURRENT_HEADER)


def is_header_row(line: str) -> bool:
    """Header rows start with a purely alphabetic column name."""
    for delimiter in (",", ";"):
        first = line.split(delimiter, 1)[0].strip().strip('"')
        if first and first.isalpha():
            return True
    return False


def _parse_humidity(value: str) -> int:
    value = value.strip()
    if not value.lstrip('+-').isdigit():
        raise HistoryRowError(f"Humidity is not an integer: {value!r}")
    return int(value)


def _parse_timestamp(value: str) -> datetime:
    """Date and time are both required; an offset (or Z) is optional."""
    for timestamp_format in (TIMESTAMP_FORMAT, TIMESTAMP_FORMAT + "%z"):
        try:
            return datetime.strptime(value, timestamp_format)
        except ValueError:
            continue
    raise HistoryRowError(f"Malformed ISO-8601 timestamp: {value!r}")


def _parse_temperature(value: str) -> float:
    try:
        return float(value.strip().replace(',', '.'))
    except ValueError:
        raise HistoryRowError(f"Temperature is not numeric: {value!r}")


class RowParser(ABC):
    """A single log row schema."""

    name: str = ""
    delimiter: str = ","
    columns: int = 0

    def split(self, line: str) -> List[str]:
        fields = [field.strip().strip('"') for field in line.split(self.delimiter)]
        if len(fields) != self.columns:
            raise HistoryRowError(
                f"{self.name} row needs {self.columns} columns, got {len(fields)}"
            )
        return fields

    def parse(self, line: str, local_tz: tzinfo = pytz.utc) -> Reading:
        """
        Parse a row into a Reading.

        Raises:
            HistoryRowError: If the row does not match this schema
        """
        fields = self.split(line)
        try:
            return self._build(fields, local_tz)
        except InvalidReadingError as e:
            raise HistoryRowError(str(e)) from e

    @abstractmethod
    def _build(self, fields: Sequence[str], local_tz: tzinfo) -> Reading:
        raise NotImplementedError


class CurrentRowParser(RowParser):
    """``2025-11-26T14:23:45,23.4,45``; naive timestamps are UTC."""

    name = "current"
    delimiter = ","
    columns = 3

    def _build(self, fields: Sequence[str], local_tz: tzinfo) -> Reading:
        timestamp_str, temperature_str, humidity_str = fields
        timestamp = _parse_timestamp(timestamp_str)
        if timestamp.tzinfo is None:
            timestamp = pytz.utc.localize(timestamp)

        return Reading(
            timestamp=timestamp,
            temperature_c=_parse_temperature(temperature_str),
            humidity_pct=_parse_humidity(humidity_str),
        )


class LegacyRowParser(RowParser):
    """``2024.01.05;14:00:00;23,4;45``; local wall-clock time."""

    name = "legacy"
    delimiter = ";"
    columns = 4

    def _build(self, fields: Sequence[str], local_tz: tzinfo) -> Reading:
        date_str, time_str, temperature_str, humidity_str = fields
        naive = self._parse_datetime(date_str, time_str)
        if hasattr(local_tz, "localize"):
            timestamp = local_tz.localize(naive)
        else:
            timestamp = naive.replace(tzinfo=local_tz)

        return Reading(
            timestamp=timestamp,
            temperature_c=_parse_temperature(temperature_str),
            humidity_pct=_parse_humidity(humidity_str),
        )

    @staticmethod
    def _parse_datetime(date_str: str, time_str: str) -> datetime:
        for date_format in LEGACY_DATE_FORMATS:
            for time_format in LEGACY_TIME_FORMATS:
                try:
                    return datetime.strptime(f"{date_str} {time_str}", f"{date_format} {time_format}")
                except ValueError:
                    continue
        raise HistoryRowError(f"Malformed legacy date/time: {date_str!r} {time_str!r}")


ROW_PARSERS = (CurrentRowParser(), LegacyRowParser())


def parse_row_with_schema(line: str,
                           local_tz: tzinfo = pytz.utc,
                           parsers: Sequence[RowParser] = ROW_PARSERS) -> Tuple[Reading, str]:
    """
    Parse a log row, trying each schema in priority order.

    Returns:
        Tuple[Reading, str]: The reading and the name of the schema that matched

    Raises:
        HistoryRowError: If no schema accepts the row
    """
    errors = []
    for parser in parsers:
        try:
            return parser.parse(line, local_tz), parser.name
        except HistoryRowError as e:
            errors.append(f"{parser.name}: {e}")
    raise HistoryRowError("; ".join(errors))


def parse_row(line: str, local_tz: tzinfo = pytz.utc, parsers: Sequence[RowParser] = ROW_PARSERS) -> Reading:
    """Parse a log row in any supported schema."""
    return parse_row_with_schema(line, local_tz, parsers)[0]
