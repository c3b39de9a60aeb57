"""
Command-line interface for the Temperature Monitor.
Provides the live dashboard and diagnostics using click and rich.
"""

import asyncio
import sys
from typing import Optional

import click
import psutil
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..ble.controller import DisplayEvent, ScanState, ScanStatus, WriteResult
from ..ble.decoder import DecodeError, decode_advertisement, find_manufacturer_data, iter_ad_structures
from ..history.reconciler import HistoryReconciler
from ..history.timeline import Timeline
from ..service.daemon import MonitorDaemon, MonitorDaemonError, run_daemon
from ..utils.config import Config, ConfigurationError
from ..utils.logging import setup_logging


class CLIError(Exception):
    """Base exception for CLI operations."""
    pass


def temperature_style(temperature: float, warn_low: float, warn_high: float) -> str:
    """Rich style for a temperature given the warning thresholds."""
    if temperature >= warn_high:
        return "bold red"
    if temperature <= warn_low:
        return "bold blue"
    return "bold green"


def parse_hex_payload(value: str) -> bytes:
    """Parse a hex string, ignoring spaces, colons and dashes."""
    cleaned = "".join(ch for ch in value if ch not in " :-")
    if cleaned.lower().startswith("0x"):
        cleaned = cleaned[2:]
    try:
        return bytes.fromhex(cleaned)
    except ValueError:
        raise click.BadParameter(f"not a hex string: {value!r}")


class DashboardState:
    """Latest pipeline events, collected through daemon callbacks."""

    def __init__(self):
        self.last_event: Optional[DisplayEvent] = None
        self.last_status: Optional[ScanStatus] = None
        self.last_write: Optional[WriteResult] = None
        self.accepted = 0
        self.suppressed = 0

    def on_display(self, event: DisplayEvent):
        self.last_event = event
        if event.accepted:
            self.accepted += 1
        else:
            self.suppressed += 1

    def on_status(self, status: ScanStatus):
        self.last_status = status

    def on_write(self, result: WriteResult):
        self.last_write = result


def render_dashboard(state: DashboardState, timeline: Optional[Timeline], config: Config) -> Layout:
    """Build the live dashboard layout."""
    layout = Layout()
    layout.split_column(
        Layout(name="header", size=3),
        Layout(name="body"),
        Layout(name="footer", size=3),
    )

    status = state.last_status
    if status is None:
        header = "[dim]Starting...[/dim]"
        border = "blue"
    else:
        color = {
            ScanState.SCANNING: "green",
            ScanState.PAUSED: "yellow",
            ScanState.STOPPED: "red",
        }.get(status.state, "blue")
        header = f"[bold {color}]{status.state.value.capitalize()}[/bold {color}]"
        if status.degraded:
            header += f" [bold red]DEGRADED[/bold red] ({status.consecutive_failures} failures)"
            color = "red"
        if status.message:
            header += f" - {status.message}"
        border = color
    target = config.target_mac or "any sensor"
    layout["header"].update(Panel(f"{header}  [dim]target: {target}[/dim]", border_style=border))

    event = state.last_event
    if event is None:
        layout["body"].update(Panel("[yellow]Waiting for sensor data...[/yellow]"))
    else:
        reading = event.reading
        style = temperature_style(reading.temperature_c, config.temp_warn_low, config.temp_warn_high)
        table = Table(show_header=False, box=None)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("Temperature", f"[{style}]{reading.temperature_c:.1f}°C[/{style}]")
        table.add_row("Humidity", f"{reading.humidity_pct}%")
        table.add_row("Sensor", reading.source_id)
        table.add_row("Time", reading.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC"))
        table.add_row("RSSI", f"{event.rssi} dBm" if event.rssi is not None else "N/A")
        table.add_row("Raw", event.raw_manufacturer_data.hex(" ") or "N/A")
        table.add_row("Accepted / suppressed", f"{state.accepted} / {state.suppressed}")

        if timeline is not None and len(timeline):
            low, high = timeline.temperature_range()
            hum_low, hum_high = timeline.humidity_range()
            table.add_row("Min / max", f"{low:.1f}°C / {high:.1f}°C, {hum_low}% / {hum_high}%")
            table.add_row("History points", str(len(timeline)))

        layout["body"].update(Panel(table, title="Latest reading", border_style="cyan"))

    write = state.last_write
    if write is None:
        footer = "[dim]No CSV writes yet[/dim]"
    elif write.ok:
        footer = f"[green]Saved[/green] {write.reading.timestamp.strftime('%H:%M:%S')} to {write.path.name}"
    else:
        footer = f"[bold red]Write failed:[/bold red] {write.error}"
    layout["footer"].update(Panel(footer, border_style="dim"))

    return layout


class TemperatureMonitorCLI:
    """
    CLI application for the Temperature Monitor.
    """

    def __init__(self):
        """Initialize CLI application."""
        self.console = Console()
        self.config: Optional[Config] = None

    def _initialize_components(self, enable_console_logging: Optional[bool] = None):
        """Load and validate configuration, then set up logging."""
        try:
            self.config = Config()
            self.config.validate_configuration()
            setup_logging(self.config, enable_console=enable_console_logging)
        except ConfigurationError as e:
            self.console.print(f"[red]Configuration Error: {e}[/red]")
            raise CLIError(f"Configuration error: {e}")

    def _print_header(self):
        """Print application header."""
        header = Panel.fit(
            "[bold blue]Temperature Monitor[/bold blue]\n"
            "[dim]BLE temperature/humidity logging[/dim]",
            border_style="blue"
        )
        self.console.print(header)
        self.console.print()

    async def _start_monitoring(self):
        """Run the pipeline with a live dashboard."""
        daemon = MonitorDaemon(self.config)
        state = DashboardState()
        daemon.add_display_callback(state.on_display)
        daemon.add_status_callback(state.on_status)
        daemon.add_write_callback(state.on_write)

        self.console.print("[green]Monitoring started. Press Ctrl+C to stop.[/green]")
        daemon_task = asyncio.create_task(daemon.start())

        with Live(render_dashboard(state, daemon.timeline, self.config),
                  refresh_per_second=2, console=self.console) as live:
            while not daemon_task.done():
                live.update(render_dashboard(state, daemon.timeline, self.config))
                await asyncio.sleep(0.5)
            live.update(render_dashboard(state, daemon.timeline, self.config))

        try:
            await daemon_task
        except MonitorDaemonError as e:
            self.console.print(f"[red]Monitoring failed: {e}[/red]")
            raise CLIError(str(e))

        self.console.print("[yellow]Monitoring stopped[/yellow]")

    def _show_history(self, tail: int, load_all: bool):
        """Reconcile the logs and print a summary."""
        policy = self.config.history_load_policy()
        if load_all:
            policy = policy.full()
        reconciler = HistoryReconciler(self.config.data_dir, self.config.log_timezone)
        timeline = Timeline(reconciler.load(policy))
        report = reconciler.last_report

        table = Table(title="History", show_header=True, header_style="bold magenta")
        table.add_column("Item", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Data directory", str(self.config.data_dir))
        table.add_row("Policy", policy.describe())
        table.add_row("Files read", f"{report.files_read}/{report.files_found}")
        table.add_row("Rows loaded", str(report.rows_loaded))
        for schema, count in sorted(report.rows_by_schema.items()):
            table.add_row(f"  {schema} rows", str(count))
        table.add_row("Rows skipped", str(report.rows_skipped))
        if report.files_skipped:
            table.add_row("Unreadable files", ", ".join(report.files_skipped))
        table.add_row("Readings", str(len(timeline)))
        if len(timeline):
            readings = timeline.sorted_readings()
            low, high = timeline.temperature_range()
            table.add_row("Span", f"{readings[0].timestamp:%Y-%m-%d %H:%M} .. {readings[-1].timestamp:%Y-%m-%d %H:%M} UTC")
            table.add_row("Temperature", f"{low:.1f}°C .. {high:.1f}°C")
        self.console.print(table)

        if tail and len(timeline):
            rows = Table(title=f"Last {tail} readings", show_header=True, header_style="bold blue")
            rows.add_column("Time (UTC)", style="dim")
            rows.add_column("Temperature")
            rows.add_column("Humidity", style="blue")
            for reading in timeline.sorted_readings()[-tail:]:
                style = temperature_style(reading.temperature_c, self.config.temp_warn_low, self.config.temp_warn_high)
                rows.add_row(
                    reading.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                    f"[{style}]{reading.temperature_c:.1f}°C[/{style}]",
                    f"{reading.humidity_pct}%",
                )
            self.console.print(rows)

    def _decode(self, payload: bytes, source_id: str):
        """Decode a raw advertisement and print what was found."""
        structures = Table(title="AD structures", show_header=True, header_style="bold cyan")
        structures.add_column("Type", style="cyan")
        structures.add_column("Data", style="dim")
        for ad_type, data in iter_ad_structures(payload):
            structures.add_row(f"0x{ad_type:02X}", data.hex(" "))
        self.console.print(structures)

        manufacturer_data = find_manufacturer_data(payload)
        if manufacturer_data is not None:
            self.console.print(f"Manufacturer data: {manufacturer_data.hex(' ')}")

        try:
            reading = decode_advertisement(payload, source_id, signature=self.config.sensor_signature)
        except DecodeError as e:
            self.console.print(f"[red]{e.kind.value}[/red]: {e}")
            raise CLIError(str(e))

        style = temperature_style(reading.temperature_c, self.config.temp_warn_low, self.config.temp_warn_high)
        self.console.print(
            f"[{style}]{reading.temperature_c:.1f}°C[/{style}] {reading.humidity_pct}% "
            f"[dim](signature 0x{self.config.sensor_signature:02X})[/dim]"
        )

    def _print_status(self):
        """Print configuration and data directory status."""
        summary = self.config.get_summary()
        table = Table(title="Configuration", show_header=True, header_style="bold cyan")
        table.add_column("Section", style="blue")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        for section, values in summary.items():
            for key, value in values.items():
                table.add_row(section, key, str(value))
        self.console.print(table)

        storage = Table(title="Data Directory", show_header=True, header_style="bold magenta")
        storage.add_column("Item", style="cyan")
        storage.add_column("Value", style="green")
        data_dir = self.config.data_dir
        if data_dir.is_dir():
            log_files = sorted(data_dir.glob("log_*.csv"))
            storage.add_row("Log files", str(len(log_files)))
            if log_files:
                storage.add_row("Latest", log_files[-1].name)
            usage = psutil.disk_usage(str(data_dir))
            storage.add_row("Disk free", f"{usage.free / 1024 / 1024 / 1024:.1f} GB ({100 - usage.percent:.0f}%)")
        else:
            storage.add_row("Status", "[yellow]missing (created on first write)[/yellow]")
        self.console.print(storage)


def _run(action):
    try:
        action()
    except CLIError:
        sys.exit(1)


# Click commands for CLI entry points
@click.group()
@click.version_option(version=__version__, prog_name="tempmonitor")
def cli():
    """Temperature Monitor - BLE temperature/humidity logging."""
    pass


@cli.command()
def monitor():
    """Start monitoring with a live dashboard."""
    def run_monitoring():
        app = TemperatureMonitorCLI()
        app._initialize_components(enable_console_logging=False)
        app._print_header()
        asyncio.run(app._start_monitoring())

    _run(run_monitoring)


@cli.command()
def daemon():
    """Run the monitor headless (for systemd)."""
    def run_headless():
        app = TemperatureMonitorCLI()
        app._initialize_components()
        asyncio.run(run_daemon(app.config))

    _run(run_headless)


@cli.command()
@click.option("--tail", "-n", default=0, type=click.IntRange(min=0), help="Also print the last N readings")
@click.option("--all", "load_all", is_flag=True, help="Load the full history regardless of LOAD_ALL_HISTORY")
def history(tail, load_all):
    """Reconcile the daily logs and summarize them."""
    def show():
        app = TemperatureMonitorCLI()
        app._initialize_components()
        app._show_history(tail, load_all)

    _run(show)


@cli.command()
@click.argument("payload")
@click.option("--source", default="00:00:00:00:00:00", help="Source address to attach to the reading")
def decode(payload, source):
    """Decode a raw advertisement payload given as hex."""
    raw = parse_hex_payload(payload)

    def run_decode():
        app = TemperatureMonitorCLI()
        app._initialize_components(enable_console_logging=False)
        app._decode(raw, source)

    _run(run_decode)


@cli.command()
def status():
    """Show configuration and storage status."""
    def show():
        app = TemperatureMonitorCLI()
        app._initialize_components(enable_console_logging=False)
        app._print_status()

    _run(show)


if __name__ == "__main__":
    cli()
