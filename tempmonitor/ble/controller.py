"""
Scan controller for the Temperature Monitor.

Drives scan windows over an advertisement source, runs every advertisement
through the decoder and duplicate filter, hands accepted readings to the log
writer on a worker thread and notifies display callbacks.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..models import Reading
from ..schema import ScanConfig
from ..storage.log_writer import LogWriteError
from ..utils.logging import PerformanceMonitor
from .decoder import SENSOR_SIGNATURE, DecodeError, DecodeFailure, decode_advertisement, find_manufacturer_data
from .dedup import DuplicateFilter, FilterDecision
from .radio import RawAdvertisement, ScanError


class ScanState(Enum):
    """Scan controller lifecycle states."""
    IDLE = "idle"
    SCANNING = "scanning"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class DisplayEvent:
    """A decoded reading for the live display, accepted or suppressed."""
    reading: Reading
    accepted: bool
    rssi: Optional[int] = None
    raw_manufacturer_data: bytes = b''


@dataclass(frozen=True)
class ScanStatus:
    """State notification for the display."""
    state: ScanState
    degraded: bool = False
    message: str = ""
    consecutive_failures: int = 0


@dataclass(frozen=True)
class WriteResult:
    """Outcome of persisting one accepted reading."""
    reading: Reading
    ok: bool
    path: Optional[Path] = None
    error: Optional[str] = None


_STOP_WRITER = object()


class ScanController:
    """
    Scan/pause state machine feeding the decode -> dedup -> write pipeline.

    In continuous mode a single subscription is held until stop is requested.
    Otherwise scan windows of ``scan_timeout`` seconds alternate with pauses
    of ``scan_pause`` seconds; a window closes early once a reading has been
    accepted. Stop is cooperative: once ``stop()`` has been called no further
    advertisement is processed, and readings already queued for writing are
    still flushed before ``run()`` returns.

    A controller runs one scan session; build a new one (with a fresh
    DuplicateFilter) to reconfigure.
    """

    def __init__(self,
                 config: ScanConfig,
                 source,
                 writer,
                 duplicate_filter: Optional[DuplicateFilter] = None,
                 logger=None,
                 performance_monitor: Optional[PerformanceMonitor] = None,
                 signature: int = SENSOR_SIGNATURE,
                 degraded_after: int = 3):
        """
        Initialize the scan controller.

        Args:
            config: Immutable scan settings for this session
            source: Advertisement source providing ``subscribe()``
            writer: Log writer providing a blocking ``append(reading)``
            duplicate_filter: Filter owning this session's DedupState
            logger: Logger instance
            performance_monitor: Performance monitoring instance
            signature: Expected manufacturer signature byte
            degraded_after: Consecutive scan failures before status is degraded
        """
        self.config = config
        self.source = source
        self.writer = writer
        self.duplicate_filter = duplicate_filter or DuplicateFilter()
        self.logger = logger or logging.getLogger("tempmonitor.ble")
        self.performance_monitor = performance_monitor or PerformanceMonitor()
        self.signature = signature
        self.degraded_after = degraded_after

        self._state = ScanState.IDLE
        self._stop_event = asyncio.Event()
        self._write_queue: asyncio.Queue = asyncio.Queue()
        self._consecutive_failures = 0
        self._last_reading: Optional[Reading] = None

        self._display_callbacks: List[Callable[[DisplayEvent], None]] = []
        self._status_callbacks: List[Callable[[ScanStatus], None]] = []
        self._write_callbacks: List[Callable[[WriteResult], None]] = []

        # Statistics
        self._stats: Dict[str, int] = {
            "advertisements_seen": 0,
            "filtered_by_target": 0,
            "decode_failures": 0,
            "readings_accepted": 0,
            "readings_suppressed": 0,
            "rows_written": 0,
            "write_failures": 0,
            "scan_windows": 0,
            "scan_errors": 0,
        }
        self._decode_failures: Dict[str, int] = {kind.value: 0 for kind in DecodeFailure}

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    @property
    def degraded(self) -> bool:
        return self._consecutive_failures >= self.degraded_after

    @property
    def last_reading(self) -> Optional[Reading]:
        return self._last_reading

    def add_display_callback(self, callback: Callable[[DisplayEvent], None]):
        self._display_callbacks.append(callback)

    def add_status_callback(self, callback: Callable[[ScanStatus], None]):
        self._status_callbacks.append(callback)

    def add_write_callback(self, callback: Callable[[WriteResult], None]):
        self._write_callbacks.append(callback)

    def _notify(self, callbacks: List[Callable], event):
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                self.logger.error(f"Error in callback {getattr(callback, '__name__', callback)}: {e}")

    def _set_state(self, state: ScanState, message: str = ""):
        self._state = state
        status = ScanStatus(
            state=state,
            degraded=self.degraded,
            message=message,
            consecutive_failures=self._consecutive_failures,
        )
        self.logger.debug(f"Scan state -> {state.value} {message}".rstrip())
        self._notify(self._status_callbacks, status)

    def stop(self):
        """Request a cooperative stop; takes effect at the next checkpoint."""
        if not self._stop_event.is_set():
            self.logger.info("Scan stop requested")
            self._stop_event.set()

    def process_advertisement(self, advertisement: RawAdvertisement) -> Optional[FilterDecision]:
        """
        Run one advertisement through target filter, decoder and duplicate filter.

        Returns:
            Optional[FilterDecision]: The filter decision, or None when the
            advertisement was dropped before reaching the filter
        """
        if self._stop_event.is_set():
            return None

        self._stats["advertisements_seen"] += 1

        if not self.config.matches_target(advertisement.source_id):
            self._stats["filtered_by_target"] += 1
            return None

        try:
            reading = decode_advertisement(
                advertisement.payload,
                advertisement.source_id,
                advertisement.received_at,
                self.signature,
            )
        except DecodeError as e:
            self._stats["decode_failures"] += 1
            self._decode_failures[e.kind.value] += 1
            self.performance_monitor.increment(f"decode_{e.kind.value}")
            self.logger.debug(f"Dropped advertisement from {advertisement.source_id}: {e}")
            return None

        decision = self.duplicate_filter.consider(reading, self.config)
        accepted = decision is FilterDecision.ACCEPTED
        self._last_reading = reading

        if accepted:
            self._stats["readings_accepted"] += 1
            self._write_queue.put_nowait(reading)
            self.logger.info(
                f"Accepted reading from {reading.source_id}: "
                f"{reading.temperature_c:.1f}°C {reading.humidity_pct}%"
            )
        else:
            self._stats["readings_suppressed"] += 1

        self._notify(self._display_callbacks, DisplayEvent(
            reading=reading,
            accepted=accepted,
            rssi=advertisement.rssi,
            raw_manufacturer_data=find_manufacturer_data(advertisement.payload) or b'',
        ))
        return decision

    async def run(self):
        """
        Run scan windows until ``stop()`` is called.

        Raises:
            RuntimeError: If the controller has already run
        """
        if self._state is not ScanState.IDLE:
            raise RuntimeError("ScanController instances run a single scan session")

        mode = "continuous" if self.config.continuous_mode else "windowed"
        self.logger.info(
            f"Starting {mode} scanning (target: {self.config.target_id or 'any'}, "
            f"timeout: {self.config.scan_timeout}s, pause: {self.config.scan_pause}s)"
        )
        writer_task = asyncio.create_task(self._writer_loop())

        try:
            while not self._stop_event.is_set():
                try:
                    await self._scan_window()
                except ScanError as e:
                    self._consecutive_failures += 1
                    self._stats["scan_errors"] += 1
                    log = self.logger.error if self.degraded else self.logger.warning
                    log(f"Scan failed ({self._consecutive_failures} in a row): {e}")
                    if self._stop_event.is_set():
                        break
                    self._set_state(ScanState.PAUSED, f"retrying after scan error: {e}")
                    await self._pause()
                    continue

                if self.config.continuous_mode or self._stop_event.is_set():
                    continue

                self._set_state(ScanState.PAUSED)
                await self._pause()
        finally:
            self._stop_event.set()
            await self._write_queue.put(_STOP_WRITER)
            await writer_task
            self._set_state(ScanState.STOPPED)
            self.logger.info("Scanning stopped")

    async def _pause(self):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.scan_pause)
        except asyncio.TimeoutError:
            pass

    async def _scan_window(self):
        """
        Hold one subscription open for a scan window.

        Raises:
            ScanError: If the source fails, or a continuous stream ends on its own
        """
        loop = asyncio.get_running_loop()
        continuous = self.config.continuous_mode
        deadline = None if continuous else loop.time() + self.config.scan_timeout

        window_start = time.monotonic()
        seen_before = self._stats["advertisements_seen"]
        accepted_before = self._stats["readings_accepted"]
        self._stats["scan_windows"] += 1

        async with self.source.subscribe() as subscription:
            # The adapter is up again
            self._consecutive_failures = 0
            self._set_state(ScanState.SCANNING)
            advertisements = subscription.__aiter__()
            stop_waiter = asyncio.ensure_future(self._stop_event.wait())
            try:
                while not self._stop_event.is_set():
                    timeout = None
                    if deadline is not None:
                        timeout = deadline - loop.time()
                        if timeout <= 0:
                            break

                    next_advertisement = asyncio.ensure_future(advertisements.__anext__())
                    done, _ = await asyncio.wait(
                        {next_advertisement, stop_waiter},
                        timeout=timeout,
                        return_when=asyncio.FIRST_COMPLETED,
                    )

                    if next_advertisement not in done:
                        next_advertisement.cancel()
                        try:
                            await next_advertisement
                        except (asyncio.CancelledError, StopAsyncIteration):
                            pass
                        break

                    try:
                        advertisement = next_advertisement.result()
                    except StopAsyncIteration:
                        if continuous and not self._stop_event.is_set():
                            raise ScanError("Advertisement stream ended unexpectedly")
                        break

                    decision = self.process_advertisement(advertisement)
                    if decision is FilterDecision.ACCEPTED and not continuous:
                        break
            finally:
                stop_waiter.cancel()

        self.performance_monitor.log_scan_window(
            duration=time.monotonic() - window_start,
            advertisements=self._stats["advertisements_seen"] - seen_before,
            accepted=self._stats["readings_accepted"] - accepted_before,
            success=True,
        )

    async def _writer_loop(self):
        """Persist accepted readings off the scan task, in acceptance order."""
        loop = asyncio.get_running_loop()
        while True:
            reading = await self._write_queue.get()
            if reading is _STOP_WRITER:
                break

            start_time = time.monotonic()
            try:
                path = await loop.run_in_executor(None, self.writer.append, reading)
            except LogWriteError as e:
                self._stats["write_failures"] += 1
                self.performance_monitor.log_write(time.monotonic() - start_time, False)
                self.logger.error(f"Failed to persist reading at {reading.timestamp.isoformat()}: {e}")
                result = WriteResult(reading=reading, ok=False, error=str(e))
            else:
                self._stats["rows_written"] += 1
                self.performance_monitor.log_write(time.monotonic() - start_time, True)
                result = WriteResult(reading=reading, ok=True, path=path)

            self._notify(self._write_callbacks, result)

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get controller statistics.

        Returns:
            Dict[str, Any]: Counters, decode failures by kind and current state
        """
        return {
            **self._stats,
            "decode_failures_by_kind": dict(self._decode_failures),
            "state": self._state.value,
            "degraded": self.degraded,
            "consecutive_failures": self._consecutive_failures,
            "tracked_devices": len(self.duplicate_filter.state),
            "pending_writes": self._write_queue.qsize(),
        }
