"""
Advertisement decoder for the temperature/humidity sensor.
Turns a raw BLE advertisement payload into a validated Reading.
"""

import struct
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, Optional, Tuple

from ..models import InvalidReadingError, Reading


# AD structure type for manufacturer specific data
AD_TYPE_MANUFACTURER_DATA = 0xFF

# Manufacturer field layout: signature (1 byte), temperature int16 LE (2 bytes),
# humidity uint8 (1 byte). The signature is the low byte of the ThermoPro
# TP35x company id, which is fixed at 0xC2; the high byte is the low byte of
# the temperature.
SENSOR_SIGNATURE = 0xC2
MIN_PAYLOAD_LENGTH = 4
TEMPERATURE_OFFSET = 1
HUMIDITY_OFFSET = 3
TEMPERATURE_DIVISOR = 10.0


class DecodeFailure(Enum):
    """Decode failure kinds, used as diagnostic counter keys."""
    FIELD_NOT_FOUND = "field_not_found"
    PAYLOAD_TOO_SHORT = "payload_too_short"
    SIGNATURE_MISMATCH = "signature_mismatch"
    VALUE_OUT_OF_RANGE = "value_out_of_range"


class DecodeError(Exception):
    """Base exception for advertisements that do not yield a reading."""
    kind: DecodeFailure = None


class FieldNotFound(DecodeError):
    """No manufacturer specific data field in the advertisement."""
    kind = DecodeFailure.FIELD_NOT_FOUND


class PayloadTooShort(DecodeError):
    """Manufacturer field shorter than the sensor payload layout."""
    kind = DecodeFailure.PAYLOAD_TOO_SHORT


class SignatureMismatch(DecodeError):
    """Manufacturer field from a foreign device."""
    kind = DecodeFailure.SIGNATURE_MISMATCH


class ValueOutOfRange(DecodeError):
    """Decoded values outside physical bounds."""
    kind = DecodeFailure.VALUE_OUT_OF_RANGE


def iter_ad_structures(payload: bytes) -> Iterator[Tuple[int, bytes]]:
    """
    Iterate over the AD structures of an advertisement payload.

    Each structure is ``[length][type][data]`` where length covers type and data.
    A zero length marks the start of padding; a structure running past the end
    of the payload ends iteration.

    Yields:
        Tuple[int, bytes]: AD type and its data
    """
    index = 0
    while index < len(payload):
        length = payload[index]
        if length == 0:
            return
        end = index + 1 + length
        if end > len(payload):
            return
        yield payload[index + 1], bytes(payload[index + 2:end])
        index = end


def find_manufacturer_data(payload: bytes) -> Optional[bytes]:
    """Return the last manufacturer specific data field, or None."""
    found = None
    for ad_type, data in iter_ad_structures(payload):
        if ad_type == AD_TYPE_MANUFACTURER_DATA:
            found = data
    return found


def decode_manufacturer_data(data: bytes, signature: int = SENSOR_SIGNATURE) -> Tuple[float, int]:
    """
    Decode the sensor's manufacturer field into temperature and humidity.

    Args:
        data: Manufacturer field bytes (including the leading signature byte)
        signature: Expected signature byte

    Returns:
        Tuple[float, int]: Temperature in °C and relative humidity in %

    Raises:
        PayloadTooShort: If the field is shorter than the layout
        SignatureMismatch: If the field belongs to another device family
    """
    if len(data) < MIN_PAYLOAD_LENGTH:
        raise PayloadTooShort(f"Manufacturer data is {len(data)} bytes, need {MIN_PAYLOAD_LENGTH}")

    if data[0] != signature:
        raise SignatureMismatch(f"Signature 0x{data[0]:02X} does not match 0x{signature:02X}")

    raw_temperature = struct.unpack_from('<h', data, TEMPERATURE_OFFSET)[0]
    humidity = data[HUMIDITY_OFFSET]
    return raw_temperature / TEMPERATURE_DIVISOR, humidity


def decode_advertisement(payload: bytes,
                         source_id: str,
                         received_at: Optional[datetime] = None,
                         signature: int = SENSOR_SIGNATURE) -> Reading:
    """
    Decode a raw advertisement payload into a Reading.

    Args:
        payload: Raw advertisement bytes (sequence of AD structures)
        source_id: Address of the advertising device
        received_at: Arrival instant; defaults to now
        signature: Expected manufacturer signature byte

    Returns:
        Reading: Validated reading

    Raises:
        DecodeError: One of FieldNotFound, PayloadTooShort, SignatureMismatch,
            ValueOutOfRange
    """
    data = find_manufacturer_data(payload)
    if data is None:
        raise FieldNotFound("Advertisement has no manufacturer specific data")

    temperature, humidity = decode_manufacturer_data(data, signature)

    try:
        return Reading(
            timestamp=received_at or datetime.now(timezone.utc),
            temperature_c=temperature,
            humidity_pct=humidity,
            source_id=source_id.upper(),
        )
    except InvalidReadingError as e:
        raise ValueOutOfRange(str(e)) from e
