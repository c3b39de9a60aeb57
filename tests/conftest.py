"""
Pytest configuration and shared fixtures for Temperature Monitor tests.
Provides common test fixtures, mock objects, and test utilities.
"""

import logging
import os
import pytest
from pathlib import Path
from unittest.mock import Mock, MagicMock

# Import the modules we're testing
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from tempmonitor.schema import HistoryLoadPolicy, ScanConfig
from tempmonitor.utils.config import Config
from tempmonitor.utils.logging import PerformanceMonitor, ProductionLogger
from tests.fixtures.sensor_data import SensorDataFixtures


CONFIG_KEYS = (
    "TARGET_MAC", "SCAN_TIMEOUT_SECS", "SCAN_PAUSE_SECS", "DUPLICATE_THRESHOLD_SECS",
    "CONTINUOUS_MODE", "LOAD_ALL_HISTORY", "HISTORY_LAST_N", "DATA_DIR", "LOG_TIMEZONE",
    "SENSOR_SIGNATURE", "BLE_ADAPTER", "SCAN_DEGRADED_AFTER", "TEMP_WARN_HIGH", "TEMP_WARN_LOW",
    "LOG_LEVEL", "LOG_DIR", "LOG_MAX_FILE_SIZE", "LOG_BACKUP_COUNT", "LOG_ENABLE_CONSOLE",
    "LOG_ENABLE_SYSLOG", "VIRTUAL_ENV_REQUIRED",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove configuration keys from the process environment."""
    for key in CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield monkeypatch
    # load_dotenv writes straight into os.environ
    for key in CONFIG_KEYS:
        os.environ.pop(key, None)


@pytest.fixture
def mock_config(tmp_path):
    """Create a mock configuration for testing."""
    config = Mock(spec=Config)

    # Sensor / scan configuration
    config.target_mac = SensorDataFixtures.TARGET_MAC
    config.scan_timeout = 0.2
    config.scan_pause = 0.05
    config.duplicate_threshold = 30.0
    config.continuous_mode = True
    config.load_all_history = True
    config.history_last_n = 200
    config.sensor_signature = SensorDataFixtures.SIGNATURE
    config.ble_adapter = "auto"
    config.scan_degraded_after = 3

    # Storage configuration
    config.data_dir = tmp_path / "data"
    config.log_timezone = "UTC"
    config.env_file = tmp_path / ".env"

    # Display configuration
    config.temp_warn_high = 30.0
    config.temp_warn_low = 10.0

    # Logging configuration
    config.log_level = "DEBUG"
    config.log_dir = tmp_path / "logs"
    config.log_max_file_size = 1024 * 1024  # 1MB
    config.log_backup_count = 2
    config.log_enable_console = False  # Disable console logging in tests
    config.log_enable_syslog = False

    config.validate_configuration.return_value = True
    config.history_load_policy.return_value = HistoryLoadPolicy.full()
    config.to_scan_config.side_effect = lambda: ScanConfig(
        target_id=config.target_mac,
        scan_timeout=config.scan_timeout,
        scan_pause=config.scan_pause,
        duplicate_threshold=config.duplicate_threshold,
        continuous_mode=config.continuous_mode,
        history_load_policy=config.history_load_policy(),
    )

    return config


@pytest.fixture
def scan_config():
    """Continuous scan settings tracking the fixture sensor."""
    return ScanConfig(
        target_id=SensorDataFixtures.TARGET_MAC,
        scan_timeout=0.2,
        scan_pause=0.05,
        duplicate_threshold=30,
        continuous_mode=True,
    )


@pytest.fixture
def mock_performance_monitor():
    """Create a mock performance monitor for testing."""
    monitor = Mock(spec=PerformanceMonitor)
    monitor.record_metric = Mock()
    monitor.increment = Mock()
    monitor.log_scan_window = Mock()
    monitor.log_write = Mock()
    monitor.measure_time = Mock()
    monitor.get_metrics = Mock(return_value={})

    # Mock the context manager for measure_time
    mock_context = MagicMock()
    mock_context.__enter__ = Mock(return_value=mock_context)
    mock_context.__exit__ = Mock(return_value=None)
    monitor.measure_time.return_value = mock_context

    return monitor


@pytest.fixture
def fixtures():
    return SensorDataFixtures()


@pytest.fixture
def data_dir(tmp_path):
    """Create a temporary directory for log files."""
    directory = tmp_path / "data"
    directory.mkdir()
    return directory


@pytest.fixture
def restore_root_logger():
    """ProductionLogger reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    for name in ProductionLogger.COMPONENT_LOGGERS:
        component = logging.getLogger(name)
        for handler in component.handlers:
            handler.close()
        component.handlers.clear()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "requires_bluetooth: mark test as requiring Bluetooth hardware"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on test location."""
    for item in items:
        # Add unit marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add integration marker to tests in integration/ directory
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
