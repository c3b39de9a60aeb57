"""
Configuration management for the Temperature Monitor.
Loads configuration from environment variables with validation and defaults.
"""

import os
import sys
from pathlib import Path
from typing import Optional, Union
from dotenv import load_dotenv
import logging

import pytz

from ..schema import DEFAULT_HISTORY_LAST_N, HistoryLoadPolicy, ScanConfig


DEFAULT_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


class Config:
    """
    Configuration manager that loads settings from environment variables.
    Provides validation and type conversion for configuration values.
    """

    def __init__(self, env_file: Optional[Union[str, Path]] = None):
        """
        Initialize configuration manager.

        Args:
            env_file: Path to .env file (defaults to .env in project root)
        """
        self.logger = logging.getLogger(__name__)
        self.env_file = Path(env_file) if env_file is not None else DEFAULT_ENV_FILE
        self._load_env_file()

        # Validate virtual environment if required
        if self.get_bool("VIRTUAL_ENV_REQUIRED", False):
            self._check_virtual_environment()

    def _load_env_file(self, override: bool = False):
        if self.env_file.exists():
            load_dotenv(self.env_file, override=override)
            self.logger.info(f"Loaded configuration from {self.env_file}")
        else:
            self.logger.warning(f"Environment file {self.env_file} not found, using system environment")

    def reload(self):
        """Re-read the .env file, letting its values replace earlier ones."""
        self._load_env_file(override=True)

    def _check_virtual_environment(self):
        """Check if running in a virtual environment."""
        if not self.is_virtual_environment():
            raise ConfigurationError(
                "Virtual environment required but not detected. "
                "Please activate the virtual environment or set VIRTUAL_ENV_REQUIRED=false"
            )

    def get_str(self, key: str, default: Optional[str] = None) -> str:
        """Get string configuration value."""
        value = os.getenv(key, default)
        if value is None:
            raise ConfigurationError(f"Required configuration key '{key}' not found")
        return value

    def get_int(self, key: str, default: Optional[int] = None) -> int:
        """Get integer configuration value."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be an integer, got '{value}'")

    def get_float(self, key: str, default: Optional[float] = None) -> float:
        """Get float configuration value."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be a float, got '{value}'")

    def get_bool(self, key: str, default: Optional[bool] = None) -> bool:
        """Get boolean configuration value."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        return value.lower() in ('true', '1', 'yes', 'on', 'enabled')

    def get_path(self, key: str, default: Optional[Union[str, Path]] = None) -> Path:
        """Get path configuration value."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            value = str(default)

        path = Path(value)
        if not path.is_absolute():
            # Relative paths are relative to the directory holding the .env file
            path = self.env_file.parent / path

        return path

    # Sensor / scan configuration
    @property
    def target_mac(self) -> Optional[str]:
        """Tracked sensor address; None accepts any sensor."""
        value = self.get_str("TARGET_MAC", "").strip()
        return value.upper() or None

    @property
    def scan_timeout(self) -> float:
        return self.get_float("SCAN_TIMEOUT_SECS", 20.0)

    @property
    def scan_pause(self) -> float:
        return self.get_float("SCAN_PAUSE_SECS", 20.0)

    @property
    def duplicate_threshold(self) -> float:
        return self.get_float("DUPLICATE_THRESHOLD_SECS", 30.0)

    @property
    def continuous_mode(self) -> bool:
        return self.get_bool("CONTINUOUS_MODE", True)

    @property
    def load_all_history(self) -> bool:
        return self.get_bool("LOAD_ALL_HISTORY", True)

    @property
    def history_last_n(self) -> int:
        return self.get_int("HISTORY_LAST_N", DEFAULT_HISTORY_LAST_N)

    @property
    def sensor_signature(self) -> int:
        """Expected manufacturer signature byte, written in hex with or without 0x."""
        value = self.get_str("SENSOR_SIGNATURE", "0xC2")
        try:
            return int(value, 16)
        except ValueError:
            raise ConfigurationError(f"Configuration key 'SENSOR_SIGNATURE' must be a byte value, got '{value}'")

    @property
    def ble_adapter(self) -> str:
        """Get BLE adapter."""
        return self.get_str("BLE_ADAPTER", "auto")

    @property
    def scan_degraded_after(self) -> int:
        """Consecutive scan failures before the status turns degraded."""
        return self.get_int("SCAN_DEGRADED_AFTER", 3)

    # Storage configuration
    @property
    def data_dir(self) -> Path:
        return self.get_path("DATA_DIR", "./data")

    @property
    def log_timezone(self) -> str:
        return self.get_str("LOG_TIMEZONE", "UTC")

    # Display configuration
    @property
    def temp_warn_high(self) -> float:
        return self.get_float("TEMP_WARN_HIGH", 30.0)

    @property
    def temp_warn_low(self) -> float:
        return self.get_float("TEMP_WARN_LOW", 10.0)

    # Logging Configuration
    @property
    def log_level(self) -> str:
        return self.get_str("LOG_LEVEL", "INFO").upper()

    @property
    def log_dir(self) -> Path:
        return self.get_path("LOG_DIR", "./logs")

    @property
    def log_max_file_size(self) -> int:
        return self.get_int("LOG_MAX_FILE_SIZE", 10 * 1024 * 1024)

    @property
    def log_backup_count(self) -> int:
        return self.get_int("LOG_BACKUP_COUNT", 5)

    @property
    def log_enable_console(self) -> bool:
        return self.get_bool("LOG_ENABLE_CONSOLE", True)

    @property
    def log_enable_syslog(self) -> bool:
        return self.get_bool("LOG_ENABLE_SYSLOG", False)

    def history_load_policy(self) -> HistoryLoadPolicy:
        if self.load_all_history:
            return HistoryLoadPolicy.full()
        return HistoryLoadPolicy.last(self.history_last_n)

    def to_scan_config(self) -> ScanConfig:
        """
        Build the immutable scan settings for one scan session.

        Raises:
            ConfigurationError: If the values do not form a valid ScanConfig
        """
        try:
            return ScanConfig(
                target_id=self.target_mac,
                scan_timeout=self.scan_timeout,
                scan_pause=self.scan_pause,
                duplicate_threshold=self.duplicate_threshold,
                continuous_mode=self.continuous_mode,
                history_load_policy=self.history_load_policy(),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid scan configuration: {e}") from e

    def validate_configuration(self) -> bool:
        """
        Validate all configuration values.

        Returns:
            bool: True if configuration is valid

        Raises:
            ConfigurationError: If configuration is invalid
        """
        errors = []

        # Validate scan configuration
        try:
            if self.scan_timeout <= 0:
                errors.append("SCAN_TIMEOUT_SECS must be positive")
            if self.scan_pause < 0:
                errors.append("SCAN_PAUSE_SECS cannot be negative")
            if self.duplicate_threshold < 0:
                errors.append("DUPLICATE_THRESHOLD_SECS cannot be negative")
            if self.scan_degraded_after < 1:
                errors.append("SCAN_DEGRADED_AFTER must be at least 1")
        except ConfigurationError as e:
            errors.append(str(e))

        # Validate sensor configuration
        try:
            if not 0 <= self.sensor_signature <= 0xFF:
                errors.append("SENSOR_SIGNATURE must be a single byte (0x00-0xFF)")
        except ConfigurationError as e:
            errors.append(str(e))

        # Validate history configuration
        try:
            if self.history_last_n < 1:
                errors.append("HISTORY_LAST_N must be at least 1")
        except ConfigurationError as e:
            errors.append(str(e))

        try:
            if self.log_timezone not in pytz.all_timezones_set:
                errors.append(f"LOG_TIMEZONE '{self.log_timezone}' is not a known timezone")
        except ConfigurationError as e:
            errors.append(str(e))

        # Validate display thresholds
        try:
            if self.temp_warn_low >= self.temp_warn_high:
                errors.append("TEMP_WARN_LOW must be below TEMP_WARN_HIGH")
        except ConfigurationError as e:
            errors.append(str(e))

        # Validate log level
        try:
            valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
            if self.log_level not in valid_levels:
                errors.append(f"LOG_LEVEL must be one of {valid_levels}")
        except ConfigurationError as e:
            errors.append(str(e))

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors))

        return True

    def get_summary(self) -> dict:
        """Get configuration summary for logging/debugging."""
        return {
            'sensor': {
                'target_mac': self.target_mac or 'any',
                'signature': f"0x{self.sensor_signature:02X}",
                'adapter': self.ble_adapter,
            },
            'scan': {
                'continuous_mode': self.continuous_mode,
                'scan_timeout': self.scan_timeout,
                'scan_pause': self.scan_pause,
                'duplicate_threshold': self.duplicate_threshold,
                'degraded_after': self.scan_degraded_after,
            },
            'storage': {
                'data_dir': str(self.data_dir),
                'timezone': self.log_timezone,
                'history': self.history_load_policy().describe(),
            },
            'display': {
                'temp_warn_low': self.temp_warn_low,
                'temp_warn_high': self.temp_warn_high,
            },
            'logging': {
                'level': self.log_level,
                'dir': str(self.log_dir),
                'enable_console': self.log_enable_console,
                'enable_syslog': self.log_enable_syslog,
            },
        }

    def is_virtual_environment(self) -> bool:
        """Check if running in a virtual environment."""
        return (hasattr(sys, 'real_prefix') or
                (hasattr(sys, 'base_prefix') and sys.base_prefix != sys.prefix) or
                'VIRTUAL_ENV' in os.environ)
