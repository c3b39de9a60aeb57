"""
Sample sensor data fixtures for testing advertisement decoding and log parsing.
Builds manufacturer fields and full advertisement payloads in the sensor's layout.
"""

import struct
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from tempmonitor.models import Reading


class SensorDataFixtures:
    """Collection of sample sensor data for testing."""

    SIGNATURE = 0xC2
    TARGET_MAC = "B8:59:CE:33:0F:93"
    OTHER_MAC = "AA:BB:CC:DD:EE:FF"

    @staticmethod
    def manufacturer_field(temperature_c: float, humidity_pct: int, signature: int = SIGNATURE) -> bytes:
        """Encode a manufacturer field: signature, int16 LE tenths, humidity byte."""
        return bytes([signature]) + struct.pack('<h', int(round(temperature_c * 10))) + bytes([humidity_pct])

    @staticmethod
    def advertisement(manufacturer_data: Optional[bytes], local_name: Optional[str] = "TH Sensor") -> bytes:
        """Wrap a manufacturer field in a full advertisement payload."""
        payload = bytes([0x02, 0x01, 0x06])  # Flags
        if local_name:
            name = local_name.encode('utf-8')
            payload += bytes([len(name) + 1, 0x09]) + name
        if manufacturer_data is not None:
            payload += bytes([len(manufacturer_data) + 1, 0xFF]) + manufacturer_data
        return payload

    @classmethod
    def sensor_payload(cls, temperature_c: float, humidity_pct: int, signature: int = SIGNATURE) -> bytes:
        return cls.advertisement(cls.manufacturer_field(temperature_c, humidity_pct, signature))

    @staticmethod
    def valid_samples() -> Dict[str, Dict[str, Any]]:
        """
        Valid manufacturer fields with expected decoded values.

        Returns:
            Dict mapping sample names to data and expected values
        """
        return {
            'indoor_normal': {
                'raw_data': bytes([0xC2, 0xEA, 0x00, 45]),   # 234 -> 23.4°C
                'expected': {'temperature': 23.4, 'humidity': 45},
            },
            'freezing_outdoor': {
                'raw_data': bytes([0xC2, 0x9C, 0xFF, 88]),   # -100 -> -10.0°C
                'expected': {'temperature': -10.0, 'humidity': 88},
            },
            'zero': {
                'raw_data': bytes([0xC2, 0x00, 0x00, 0]),
                'expected': {'temperature': 0.0, 'humidity': 0},
            },
            'hot_and_saturated': {
                'raw_data': bytes([0xC2, 0x20, 0x03, 100]),  # 800 -> 80.0°C
                'expected': {'temperature': 80.0, 'humidity': 100},
            },
            'trailing_bytes': {
                'raw_data': bytes([0xC2, 0xD2, 0x00, 50, 0xAA, 0xBB]),  # 210 -> 21.0°C
                'expected': {'temperature': 21.0, 'humidity': 50},
            },
        }

    @staticmethod
    def malformed_samples() -> Dict[str, bytes]:
        """Manufacturer fields that must never produce a reading."""
        return {
            'empty': b'',
            'signature_only': bytes([0xC2]),
            'three_bytes': bytes([0xC2, 0xEA, 0x00]),
        }

    @staticmethod
    def reading(seconds: int = 0,
                temperature_c: float = 21.5,
                humidity_pct: int = 40,
                source_id: str = TARGET_MAC,
                base: datetime = datetime(2025, 11, 26, 14, 0, 0, tzinfo=timezone.utc)) -> Reading:
        """A reading ``seconds`` after a fixed base instant."""
        return Reading(
            timestamp=base + timedelta(seconds=seconds),
            temperature_c=temperature_c,
            humidity_pct=humidity_pct,
            source_id=source_id,
        )

    @staticmethod
    def current_rows() -> List[str]:
        return [
            "DateTime,Temperature,Humidity",
            "2025-11-26T14:23:45,23.4,45",
            "2025-11-26T14:24:20,23.5,45",
            "2025-11-26T14:25:01,-1.5,60",
        ]

    @staticmethod
    def legacy_rows() -> List[str]:
        return [
            "Date;Time;Temperature;Humidity",
            "2024.01.05;14:00:00;23,4;45",
            "2024.01.05;14:05:00;23.6;44",
            "05.01.2024;14:10:00;23,8;43",
        ]
