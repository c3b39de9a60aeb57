"""
Temperature Monitor.
BLE advertisement ingestion for a temperature/humidity sensor with daily CSV logs.
"""

__version__ = "1.0.0"
