"""
Logging configuration for the Temperature Monitor.
Provides console, rotating file and optional syslog handlers plus lightweight
pipeline metrics.
"""

import logging
import logging.handlers
import sys
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import colorlog


class ProductionLogger:
    """
    Logging setup with multiple handlers and per-component log files.
    """

    COMPONENT_LOGGERS = {
        'tempmonitor.ble': ("ble_scanner.log", '%(asctime)s [%(levelname)s] BLE: %(message)s'),
        'tempmonitor.storage': ("storage.log", '%(asctime)s [%(levelname)s] STORAGE: %(message)s'),
        'tempmonitor.performance': ("performance.log", '%(asctime)s PERF: %(message)s'),
    }

    def __init__(self,
                 app_name: str = "tempmonitor",
                 log_dir: str = "./logs",
                 log_level: str = "INFO",
                 max_file_size: int = 10 * 1024 * 1024,  # 10MB
                 backup_count: int = 5,
                 enable_console: bool = True,
                 enable_syslog: bool = False):

        self.app_name = app_name
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.enable_console = enable_console
        self.enable_syslog = enable_syslog

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_root_logger()
        self._setup_component_loggers()

    def _setup_root_logger(self):
        """Configure root logger with multiple handlers."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)
        root_logger.handlers.clear()

        if self.enable_console:
            console_handler = colorlog.StreamHandler(sys.stdout)
            console_handler.setLevel(self.log_level)
            console_formatter = colorlog.ColoredFormatter(
                '%(log_color)s%(asctime)s [%(levelname)8s] %(name)s: %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                log_colors={
                    'DEBUG': 'cyan',
                    'INFO': 'green',
                    'WARNING': 'yellow',
                    'ERROR': 'red',
                    'CRITICAL': 'red,bg_white',
                }
            )
            console_handler.setFormatter(console_formatter)
            root_logger.addHandler(console_handler)

        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.app_name}.log",
            maxBytes=self.max_file_size,
            backupCount=self.backup_count
        )
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)8s] %(name)s [%(process)d:%(thread)d] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

        # Syslog handler for systemd integration
        if self.enable_syslog:
            try:
                syslog_handler = logging.handlers.SysLogHandler(address='/dev/log')
                syslog_handler.setLevel(logging.WARNING)
                syslog_handler.setFormatter(logging.Formatter(
                    f'{self.app_name}[%(process)d]: %(levelname)s - %(message)s'
                ))
                root_logger.addHandler(syslog_handler)
            except OSError as e:
                root_logger.warning(f"Could not setup syslog handler: {e}")

    def _setup_component_loggers(self):
        """Give each pipeline component its own rotating log file."""
        for name, (file_name, log_format) in self.COMPONENT_LOGGERS.items():
            component_logger = logging.getLogger(name)
            for handler in list(component_logger.handlers):
                component_logger.removeHandler(handler)
                handler.close()
            handler = logging.handlers.RotatingFileHandler(
                self.log_dir / file_name,
                maxBytes=self.max_file_size,
                backupCount=self.backup_count
            )
            handler.setFormatter(logging.Formatter(log_format))
            component_logger.addHandler(handler)


class PerformanceMonitor:
    """
    Counters and timings for the ingestion pipeline.
    """

    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger('tempmonitor.performance')
        self.metrics: Dict[str, list] = {
            'scan_windows': [],
            'log_writes': [],
        }
        self.counters: Dict[str, int] = {}
        self.start_time = datetime.now()

    def increment(self, counter_name: str, amount: int = 1):
        """Bump a named counter."""
        self.counters[counter_name] = self.counters.get(counter_name, 0) + amount

    def log_scan_window(self, duration: float, advertisements: int, accepted: int, success: bool):
        """Log one scan window's outcome."""
        self.metrics['scan_windows'].append({
            'duration': duration,
            'advertisements': advertisements,
            'accepted': accepted,
            'success': success,
            'timestamp': datetime.now()
        })

        self.logger.info(
            f"SCAN_WINDOW duration={duration:.2f}s advertisements={advertisements} "
            f"accepted={accepted} success={success}"
        )

    def log_write(self, duration: float, success: bool):
        """Log a single log file append."""
        self.metrics['log_writes'].append({
            'duration': duration,
            'success': success,
            'timestamp': datetime.now()
        })
        self.logger.debug(f"LOG_WRITE duration={duration * 1000:.1f}ms success={success}")

    def log_system_resources(self):
        """Log current process resource usage."""
        try:
            import psutil
            process = psutil.Process()
            memory_info = process.memory_info()
            cpu_percent = process.cpu_percent()

            self.logger.info(
                f"RESOURCES memory_rss={memory_info.rss/1024/1024:.1f}MB cpu={cpu_percent:.1f}%"
            )
        except ImportError:
            self.logger.warning("psutil not available for resource monitoring")

    def record_metric(self, metric_name: str, value: float):
        """Record a metric value."""
        if metric_name not in self.metrics:
            self.metrics[metric_name] = []

        self.metrics[metric_name].append({
            'value': value,
            'timestamp': datetime.now()
        })

        self.logger.debug(f"METRIC {metric_name}={value}")

    @contextmanager
    def measure_time(self, operation_name: str):
        """Context manager for measuring operation time."""
        start_time = time.monotonic()
        try:
            yield
        finally:
            duration = time.monotonic() - start_time
            self.record_metric(f"{operation_name}_duration", duration)

    def get_performance_summary(self) -> dict:
        """Generate a summary for status displays."""
        windows = self.metrics['scan_windows']
        writes = self.metrics['log_writes']

        summary = {
            'uptime_seconds': (datetime.now() - self.start_time).total_seconds(),
            'counters': dict(self.counters),
            'scan_windows': {
                'total': len(windows),
                'successful': sum(1 for window in windows if window['success']),
                'avg_duration': 0,
            },
            'log_writes': {
                'total': len(writes),
                'successful': sum(1 for write in writes if write['success']),
                'avg_duration': 0,
            }
        }

        successful_windows = [window for window in windows if window['success']]
        if successful_windows:
            summary['scan_windows']['avg_duration'] = (
                sum(window['duration'] for window in successful_windows) / len(successful_windows)
            )

        successful_writes = [write for write in writes if write['success']]
        if successful_writes:
            summary['log_writes']['avg_duration'] = (
                sum(write['duration'] for write in successful_writes) / len(successful_writes)
            )

        return summary

    def get_metrics(self) -> dict:
        return self.metrics.copy()


def setup_logging(config, enable_console: Optional[bool] = None) -> ProductionLogger:
    """
    Setup logging for the Temperature Monitor using configuration.

    Args:
        config: Configuration instance
        enable_console: Override LOG_ENABLE_CONSOLE (the live dashboard owns the terminal)

    Returns:
        ProductionLogger instance
    """
    return ProductionLogger(
        log_level=config.log_level,
        log_dir=str(config.log_dir),
        max_file_size=config.log_max_file_size,
        backup_count=config.log_backup_count,
        enable_console=config.log_enable_console if enable_console is None else enable_console,
        enable_syslog=config.log_enable_syslog
    )
