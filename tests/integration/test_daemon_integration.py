"""
Integration tests for the monitor daemon.
Runs history reconciliation, scanning and persistence against a scripted source.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from watchdog.events import FileModifiedEvent

from tempmonitor.ble.controller import ScanState
from tempmonitor.service.daemon import ConfigFileHandler, MonitorDaemon, MonitorDaemonError
from tempmonitor.utils.config import ConfigurationError
from tests.fixtures.sensor_data import SensorDataFixtures
from tests.mocks.mock_ble_scanner import FakeAdvertisementSource, RecordingWriter, raw_advertisement, wait_until


LIVE_BASE = datetime(2025, 11, 26, 15, 0, 0, tzinfo=timezone.utc)


def live_advertisement(seconds, temperature_c=22.0, humidity_pct=44):
    return raw_advertisement(temperature_c, humidity_pct, seconds=seconds, base=LIVE_BASE)


class TimelineProbeSource(FakeAdvertisementSource):
    """Records how much history the daemon held when scanning started."""

    def __init__(self, daemon_ref, **kwargs):
        super().__init__(**kwargs)
        self.daemon_ref = daemon_ref
        self.timeline_sizes = []

    def subscribe(self):
        daemon = self.daemon_ref()
        self.timeline_sizes.append(len(daemon.timeline) if daemon.timeline is not None else None)
        return super().subscribe()


def make_daemon(config, source, writer=None, performance_monitor=None):
    return MonitorDaemon(
        config,
        source=source,
        writer=writer,
        performance_monitor=performance_monitor,
        install_signal_handlers=False,
        watch_config=False,
    )


async def shutdown(daemon, task):
    daemon.request_shutdown()
    await asyncio.wait_for(task, timeout=2.0)


class TestDaemonLifecycle:
    """Test startup ordering, persistence and shutdown."""

    @pytest.mark.asyncio
    async def test_history_is_loaded_before_scanning(self, mock_config, data_dir, mock_performance_monitor):
        (data_dir / "log_2025-11-26.csv").write_text("\n".join(SensorDataFixtures.current_rows()) + "\n")
        holder = {}
        source = TimelineProbeSource(lambda: holder["daemon"], windows=[[live_advertisement(0)]])
        daemon = make_daemon(mock_config, source, performance_monitor=mock_performance_monitor)
        holder["daemon"] = daemon

        task = asyncio.create_task(daemon.start())
        await wait_until(lambda: daemon.get_statistics().rows_written == 1)
        assert daemon.is_running
        await shutdown(daemon, task)

        assert source.timeline_sizes[0] == 3
        assert len(daemon.timeline) == 4
        assert daemon.timeline.last.temperature_c == 22.0
        assert not daemon.timeline.out_of_order

        lines = (data_dir / "log_2025-11-26.csv").read_text().splitlines()
        assert lines[0] == "DateTime,Temperature,Humidity"
        assert lines[-1] == "2025-11-26T15:00:00,22.0,44"
        assert lines.count("DateTime,Temperature,Humidity") == 1

        status = daemon.get_status()
        assert status["running"] is False
        assert status["scan_state"] == ScanState.STOPPED.value
        assert status["history"]["readings_returned"] == 3
        assert status["stats"]["history_readings"] == 3

    @pytest.mark.asyncio
    async def test_suppressed_readings_update_latest_only(self, mock_config, data_dir, mock_performance_monitor):
        source = FakeAdvertisementSource(windows=[[
            live_advertisement(0, temperature_c=22.0),
            live_advertisement(10, temperature_c=22.4),
        ]])
        writer = RecordingWriter()
        displayed = []
        daemon = make_daemon(mock_config, source, writer, mock_performance_monitor)
        daemon.add_display_callback(displayed.append)

        task = asyncio.create_task(daemon.start())
        await wait_until(lambda: len(displayed) == 2)
        await shutdown(daemon, task)

        assert len(daemon.timeline) == 1
        assert daemon.latest_reading.temperature_c == 22.4
        assert len(writer.appended) == 1
        stats = daemon.get_statistics()
        assert stats.readings_displayed == 2
        assert stats.readings_accepted == 1

    @pytest.mark.asyncio
    async def test_write_failures_are_surfaced(self, mock_config, data_dir, mock_performance_monitor):
        source = FakeAdvertisementSource(windows=[[live_advertisement(0)]])
        results = []
        daemon = make_daemon(mock_config, source, RecordingWriter(fail=True), mock_performance_monitor)
        daemon.add_write_callback(results.append)

        task = asyncio.create_task(daemon.start())
        await wait_until(lambda: len(results) == 1)
        await shutdown(daemon, task)

        assert results[0].ok is False
        assert daemon.last_write is results[0]
        assert daemon.get_statistics().write_failures == 1

    @pytest.mark.asyncio
    async def test_invalid_configuration_fails_start(self, mock_config, mock_performance_monitor):
        mock_config.validate_configuration.side_effect = ConfigurationError("SCAN_TIMEOUT_SECS must be positive")
        daemon = make_daemon(mock_config, FakeAdvertisementSource(), performance_monitor=mock_performance_monitor)

        with pytest.raises(MonitorDaemonError, match="SCAN_TIMEOUT_SECS"):
            await daemon.start()

        assert not daemon.is_running

    @pytest.mark.asyncio
    async def test_scan_failures_report_degraded(self, mock_config, data_dir, mock_performance_monitor):
        mock_config.scan_degraded_after = 2
        mock_config.scan_pause = 0.01
        statuses = []
        daemon = make_daemon(mock_config, FakeAdvertisementSource(fail_times=100),
                             performance_monitor=mock_performance_monitor)
        daemon.add_status_callback(statuses.append)

        task = asyncio.create_task(daemon.start())
        await wait_until(lambda: daemon.get_status()["degraded"])
        await shutdown(daemon, task)

        assert any(status.degraded for status in statuses)
        assert all(status.state is not ScanState.SCANNING for status in statuses)

    @pytest.mark.asyncio
    async def test_start_twice_is_rejected(self, mock_config, data_dir, mock_performance_monitor):
        daemon = make_daemon(mock_config, FakeAdvertisementSource(), RecordingWriter(), mock_performance_monitor)

        task = asyncio.create_task(daemon.start())
        await wait_until(lambda: daemon.is_running)
        with pytest.raises(MonitorDaemonError, match="already running"):
            await daemon.start()
        await shutdown(daemon, task)


class TestDaemonReload:
    """Test configuration reloads."""

    @pytest.mark.asyncio
    async def test_reload_restarts_with_fresh_duplicate_filter(self, mock_config, data_dir, mock_performance_monitor):
        source = FakeAdvertisementSource(windows=[[live_advertisement(0)], [live_advertisement(5)]])
        writer = RecordingWriter()
        daemon = make_daemon(mock_config, source, writer, mock_performance_monitor)

        task = asyncio.create_task(daemon.start())
        await wait_until(lambda: len(writer.appended) == 1)
        first_controller = daemon.controller

        mock_config.duplicate_threshold = 45.0
        daemon.request_reload()
        await wait_until(lambda: len(writer.appended) == 2)
        await shutdown(daemon, task)

        # Five seconds apart, but the new session starts with an empty filter
        assert daemon.controller is not first_controller
        assert daemon.controller.config.duplicate_threshold == 45.0
        mock_config.reload.assert_called_once()
        stats = daemon.get_statistics()
        assert stats.scan_sessions == 2
        assert stats.config_reloads == 1

    @pytest.mark.asyncio
    async def test_invalid_reload_keeps_previous_settings(self, mock_config, data_dir, mock_performance_monitor):
        source = FakeAdvertisementSource()
        daemon = make_daemon(mock_config, source, RecordingWriter(), mock_performance_monitor)

        task = asyncio.create_task(daemon.start())
        await wait_until(lambda: source.subscribe_count == 1)

        mock_config.validate_configuration.side_effect = ConfigurationError("LOG_TIMEZONE 'Mars' is not a known timezone")
        daemon.request_reload()
        await wait_until(lambda: source.subscribe_count == 2)
        await shutdown(daemon, task)

        assert daemon.controller.config.duplicate_threshold == 30.0
        assert daemon.get_statistics().config_reloads == 0


class TestConfigFileHandler:
    """Test .env change detection."""

    @pytest.mark.asyncio
    async def test_env_change_requests_reload(self, tmp_path):
        daemon = Mock()
        handler = ConfigFileHandler(daemon, asyncio.get_running_loop())

        handler.on_modified(FileModifiedEvent(str(tmp_path / ".env")))
        handler.on_modified(FileModifiedEvent(str(tmp_path / ".env")))
        handler.on_modified(FileModifiedEvent(str(tmp_path / "other.txt")))
        await asyncio.sleep(0.01)

        # Second change falls inside the cooldown
        daemon.request_reload.assert_called_once()
