"""
Background Daemon for the Temperature Monitor.
Reconciles history, runs the scan pipeline and handles signals and
configuration hot-reloading.
"""

import asyncio
import logging
import signal
import sys
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ..ble.controller import DisplayEvent, ScanController, ScanStatus, WriteResult
from ..ble.decoder import SENSOR_SIGNATURE
from ..ble.dedup import DuplicateFilter
from ..ble.radio import BleakAdvertisementSource
from ..history.reconciler import HistoryReconciler
from ..history.timeline import Timeline
from ..models import Reading
from ..schema import ScanConfig
from ..storage.log_writer import DailyLogWriter
from ..utils.config import Config, ConfigurationError
from ..utils.logging import PerformanceMonitor


@dataclass
class DaemonStats:
    """Daemon statistics container."""
    start_time: datetime
    uptime_seconds: int = 0
    scan_sessions: int = 0
    config_reloads: int = 0
    history_readings: int = 0
    readings_displayed: int = 0
    readings_accepted: int = 0
    rows_written: int = 0
    write_failures: int = 0
    last_reading_time: Optional[datetime] = None
    last_write_time: Optional[datetime] = None
    memory_usage_mb: Optional[float] = None
    cpu_usage_percent: Optional[float] = None


class ConfigFileHandler(FileSystemEventHandler):
    """File system event handler for configuration hot-reloading."""

    def __init__(self, daemon: 'MonitorDaemon', loop: asyncio.AbstractEventLoop, file_name: str = ".env"):
        """Initialize handler."""
        self.daemon = daemon
        self.loop = loop
        self.file_name = file_name
        self.last_reload = 0.0
        self.reload_cooldown = 5.0  # Minimum seconds between reloads

    def _handle(self, event):
        if event.is_directory or Path(event.src_path).name != self.file_name:
            return

        current_time = time.monotonic()
        if current_time - self.last_reload > self.reload_cooldown:
            self.last_reload = current_time
            # Watchdog delivers events on its own thread
            self.loop.call_soon_threadsafe(self.daemon.request_reload)

    def on_modified(self, event):
        self._handle(event)

    def on_created(self, event):
        self._handle(event)


class MonitorDaemonError(Exception):
    """Base exception for daemon operations."""
    pass


class MonitorDaemon:
    """
    Long-running temperature monitor.

    Startup order is fixed: validate configuration, reconcile the on-disk
    history into the timeline, then start scanning. A configuration reload
    stops the running scan session and starts a new one with a fresh
    duplicate filter.
    """

    def __init__(self,
                 config: Optional[Config] = None,
                 source=None,
                 writer=None,
                 performance_monitor: Optional[PerformanceMonitor] = None,
                 install_signal_handlers: bool = True,
                 watch_config: bool = True):
        """
        Initialize daemon.

        Args:
            config: Application configuration (loaded from .env when omitted)
            source: Advertisement source (bleak scanner when omitted)
            writer: Log writer (daily CSV writer when omitted)
            performance_monitor: Performance monitoring instance
            install_signal_handlers: Handle SIGINT/SIGTERM/SIGHUP
            watch_config: Reload when the .env file changes
        """
        self.config = config
        self.source = source
        self.writer = writer
        self.logger = logging.getLogger("tempmonitor.daemon")
        self.performance_monitor = performance_monitor or PerformanceMonitor()
        self.install_signal_handlers = install_signal_handlers
        self.watch_config = watch_config

        self.reconciler: Optional[HistoryReconciler] = None
        self.timeline: Optional[Timeline] = None
        self.controller: Optional[ScanController] = None
        self.latest_reading: Optional[Reading] = None
        self.last_status: Optional[ScanStatus] = None
        self.last_write: Optional[WriteResult] = None

        # Daemon state
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._reload_event: Optional[asyncio.Event] = None
        self._scan_task: Optional[asyncio.Task] = None
        self._stats_task: Optional[asyncio.Task] = None
        self._scan_config: Optional[ScanConfig] = None
        self._signature = SENSOR_SIGNATURE
        self._degraded_after = 3

        # Configuration monitoring
        self._config_observer: Optional[Observer] = None

        self._stats = DaemonStats(start_time=datetime.now())

        # Callbacks
        self._display_callbacks: Set[Callable[[DisplayEvent], None]] = set()
        self._status_callbacks: Set[Callable[[ScanStatus], None]] = set()
        self._write_callbacks: Set[Callable[[WriteResult], None]] = set()

    def add_display_callback(self, callback: Callable[[DisplayEvent], None]):
        """Add callback for decoded readings (accepted or suppressed)."""
        self._display_callbacks.add(callback)

    def add_status_callback(self, callback: Callable[[ScanStatus], None]):
        """Add callback for scan state changes."""
        self._status_callbacks.add(callback)

    def add_write_callback(self, callback: Callable[[WriteResult], None]):
        """Add callback for log write results."""
        self._write_callbacks.add(callback)

    @property
    def is_running(self) -> bool:
        return self._running

    def _initialize_components(self):
        """Load configuration and build the storage and radio components."""
        try:
            if self.config is None:
                self.config = Config()
            self.config.validate_configuration()
            self._snapshot_settings()
        except ConfigurationError as e:
            raise MonitorDaemonError(f"Initialization failed: {e}") from e

        if self.writer is None:
            self.writer = DailyLogWriter(self.config.data_dir, self.config.log_timezone)
        if self.source is None:
            self.source = BleakAdvertisementSource(adapter=self.config.ble_adapter)
        self.reconciler = HistoryReconciler(self.config.data_dir, self.config.log_timezone)

    def _snapshot_settings(self):
        """Freeze the settings the next scan session will run with."""
        self._scan_config = self.config.to_scan_config()
        self._signature = self.config.sensor_signature
        self._degraded_after = self.config.scan_degraded_after

    def load_history(self) -> Timeline:
        """
        Reconcile the on-disk logs into a fresh timeline.

        Returns:
            Timeline: History readings, capped when only the last N are kept
        """
        policy = self._scan_config.history_load_policy
        readings = self.reconciler.load(policy)
        self.timeline = Timeline(readings, max_points=policy.last_n)
        self._stats.history_readings = len(readings)
        return self.timeline

    def _build_controller(self) -> ScanController:
        controller = ScanController(
            config=self._scan_config,
            source=self.source,
            writer=self.writer,
            duplicate_filter=DuplicateFilter(),
            logger=logging.getLogger("tempmonitor.ble"),
            performance_monitor=self.performance_monitor,
            signature=self._signature,
            degraded_after=self._degraded_after,
        )
        controller.add_display_callback(self._handle_display_event)
        controller.add_status_callback(self._handle_status)
        controller.add_write_callback(self._handle_write_result)
        return controller

    def _handle_display_event(self, event: DisplayEvent):
        self._stats.readings_displayed += 1
        self._stats.last_reading_time = datetime.now()
        self.latest_reading = event.reading
        if event.accepted:
            self._stats.readings_accepted += 1
            if self.timeline is not None:
                self.timeline.append(event.reading)
        self._notify(self._display_callbacks, event)

    def _handle_status(self, status: ScanStatus):
        self.last_status = status
        if status.degraded:
            self.logger.warning(f"Scanning degraded: {status.message}")
        self._notify(self._status_callbacks, status)

    def _handle_write_result(self, result: WriteResult):
        self.last_write = result
        if result.ok:
            self._stats.rows_written += 1
            self._stats.last_write_time = datetime.now()
        else:
            self._stats.write_failures += 1
        self._notify(self._write_callbacks, result)

    def _notify(self, callbacks: Set[Callable], event):
        for callback in list(callbacks):
            try:
                callback(event)
            except Exception as e:
                self.logger.warning(f"Callback failed: {e}")

    def request_shutdown(self):
        """Ask the daemon to stop; safe to call from signal handlers."""
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def request_reload(self):
        """Ask the daemon to reload configuration and restart scanning."""
        if self._reload_event is not None:
            self._reload_event.set()

    def _setup_signal_handlers(self):
        """Set up signal handlers for graceful shutdown and reload."""
        def signal_handler(signum, frame):
            """Handle shutdown signals."""
            self.logger.info(f"Received {signal.Signals(signum).name}, initiating graceful shutdown...")
            self._loop.call_soon_threadsafe(self.request_shutdown)

        def reload_handler(signum, frame):
            """Handle configuration reload signal."""
            self.logger.info("Received SIGHUP, reloading configuration...")
            self._loop.call_soon_threadsafe(self.request_reload)

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)
        if hasattr(signal, "SIGHUP"):
            signal.signal(signal.SIGHUP, reload_handler)

    def _setup_config_monitoring(self):
        """Watch the .env file for hot-reloading."""
        env_file = self.config.env_file
        if not env_file.parent.is_dir():
            self.logger.warning(f"Not watching {env_file}: directory missing")
            return

        try:
            self._config_observer = Observer()
            self._config_observer.schedule(
                ConfigFileHandler(self, self._loop, env_file.name),
                str(env_file.parent),
                recursive=False
            )
            self._config_observer.start()
            self.logger.info(f"Watching {env_file} for configuration changes")
        except Exception as e:
            self.logger.warning(f"Failed to setup configuration monitoring: {e}")
            self._config_observer = None

    def _reload_configuration(self):
        """Re-read configuration; invalid changes keep the previous settings."""
        self.config.reload()
        try:
            self.config.validate_configuration()
            self._snapshot_settings()
        except ConfigurationError as e:
            self.logger.error(f"Configuration reload failed, keeping previous settings: {e}")
            return

        self._stats.config_reloads += 1
        self.logger.info("Configuration reloaded")

    async def _statistics_loop(self, interval: float = 60.0):
        """Background loop for updating statistics and status."""
        while self._running:
            await asyncio.sleep(interval)
            self._stats.uptime_seconds = int((datetime.now() - self._stats.start_time).total_seconds())
            try:
                import psutil
                process = psutil.Process()
                self._stats.memory_usage_mb = process.memory_info().rss / 1024 / 1024
                self._stats.cpu_usage_percent = process.cpu_percent()
            except ImportError:
                pass
            self.performance_monitor.log_system_resources()

    async def _run_session(self) -> bool:
        """
        Run one scan session until shutdown, reload or failure.

        Returns:
            bool: True if a reload was requested and scanning should restart
        """
        self.controller = self._build_controller()
        self._stats.scan_sessions += 1
        self._scan_task = asyncio.create_task(self.controller.run())
        shutdown_waiter = asyncio.ensure_future(self._shutdown_event.wait())
        reload_waiter = asyncio.ensure_future(self._reload_event.wait())

        try:
            await asyncio.wait(
                {self._scan_task, shutdown_waiter, reload_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            shutdown_waiter.cancel()
            reload_waiter.cancel()

        self.controller.stop()
        try:
            await self._scan_task
        except Exception as e:
            raise MonitorDaemonError(f"Scan session failed: {e}") from e

        if self._shutdown_event.is_set():
            return False
        if self._reload_event.is_set():
            self._reload_event.clear()
            self._reload_configuration()
            return True
        raise MonitorDaemonError("Scan session ended unexpectedly")

    async def start(self):
        """
        Start the daemon and run until shutdown is requested.

        Raises:
            MonitorDaemonError: If initialization or scanning fails
        """
        if self._running:
            raise MonitorDaemonError("Daemon is already running")

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._reload_event = asyncio.Event()

        self._initialize_components()
        self.logger.info("Starting Temperature Monitor daemon...")

        # History is reconciled before any writer touches the log files
        await self._loop.run_in_executor(None, self.load_history)

        if self.install_signal_handlers:
            self._setup_signal_handlers()
        if self.watch_config:
            self._setup_config_monitoring()

        self._running = True
        self._stats.start_time = datetime.now()
        self._stats_task = asyncio.create_task(self._statistics_loop())

        try:
            while await self._run_session():
                self.logger.info("Restarting scan session with reloaded configuration")
        finally:
            await self.stop()

    async def stop(self):
        """Stop the daemon gracefully."""
        if not self._running:
            return

        self.logger.info("Stopping Temperature Monitor daemon...")
        self._running = False

        if self.controller is not None:
            self.controller.stop()
        if self._scan_task and not self._scan_task.done():
            try:
                await self._scan_task
            except Exception as e:
                self.logger.warning(f"Error stopping scan session: {e}")

        if self._stats_task and not self._stats_task.done():
            self._stats_task.cancel()
            try:
                await self._stats_task
            except asyncio.CancelledError:
                pass

        if self._config_observer:
            self._config_observer.stop()
            self._config_observer.join()
            self._config_observer = None

        self.logger.info("Temperature Monitor daemon stopped")

    def get_status(self) -> Dict[str, Any]:
        """Get current daemon status."""
        timeline_size = len(self.timeline) if self.timeline is not None else 0
        return {
            "running": self._running,
            "stats": asdict(self._stats),
            "timeline_size": timeline_size,
            "scan_state": self.last_status.state.value if self.last_status else None,
            "degraded": bool(self.last_status and self.last_status.degraded),
            "controller": self.controller.get_statistics() if self.controller else None,
            "history": self.reconciler.last_report.as_dict() if self.reconciler and self.reconciler.last_report else None,
        }

    def get_statistics(self) -> DaemonStats:
        """Get daemon statistics."""
        return self._stats


# CLI entry point for daemon mode
async def run_daemon(config: Optional[Config] = None):
    """Run the daemon from command line."""
    daemon = MonitorDaemon(config)

    try:
        await daemon.start()
    except KeyboardInterrupt:
        print("\nDaemon interrupted by user")
    except MonitorDaemonError as e:
        print(f"Daemon failed: {e}")
        sys.exit(1)
