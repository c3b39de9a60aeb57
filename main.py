#!/usr/bin/env python3
"""
Temperature Monitor - Main Entry Point

Scans for a BLE temperature/humidity sensor, logs accepted readings to daily
CSV files and shows them on a live dashboard.

Usage:
    python main.py --help                 # Show help
    python main.py monitor                # Live dashboard
    python main.py daemon                 # Headless service
    python main.py history --tail 20      # Summarize the logs
    python main.py decode 02010605ffc2ea002d  # Decode a raw advertisement
    python main.py status                 # Show configuration and storage

Environment Setup:
    Copy and configure the environment file:
    cp .env.sample .env
    # Edit .env with your settings

Requirements:
    - Python 3.10+
    - Bluetooth adapter available
    - Proper permissions for BLE access
"""

import sys
from pathlib import Path

from tempmonitor.cli.app import cli


def check_environment():
    """Check if the environment is properly set up."""
    issues = []

    if sys.version_info < (3, 10):
        issues.append(f"Python 3.10+ required, found {sys.version_info.major}.{sys.version_info.minor}")

    env_file = Path(__file__).parent / ".env"
    if not env_file.exists():
        print(f"Note: {env_file.name} not found, using defaults and the process environment")

    return issues


def main():
    """Main entry point with environment validation."""
    issues = check_environment()
    if issues:
        print("Environment Issues Found:")
        for issue in issues:
            print(f"   - {issue}")
        sys.exit(1)

    try:
        cli()
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
