"""
Radio collaborator: BLE advertisement subscription backed by bleak.
Exposes advertisements as a cancellable async iterator of raw payloads so the
scan controller can treat arrival as ordinary control flow.
"""

import asyncio
import logging
import struct
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Iterable, Optional

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from .decoder import AD_TYPE_MANUFACTURER_DATA


AD_TYPE_COMPLETE_SERVICE_UUIDS_128 = 0x07
AD_TYPE_COMPLETE_LOCAL_NAME = 0x09
MAX_AD_DATA_LENGTH = 254


class ScanError(Exception):
    """Raised when the BLE adapter fails to start or stop scanning."""
    pass


@dataclass(frozen=True)
class RawAdvertisement:
    """An advertisement event as delivered by the radio."""
    source_id: str
    payload: bytes
    received_at: datetime
    rssi: Optional[int] = None


def _ad_structure(ad_type: int, data: bytes) -> bytes:
    data = data[:MAX_AD_DATA_LENGTH]
    return bytes([len(data) + 1, ad_type]) + data


def build_advertisement_payload(manufacturer_data: Dict[int, bytes],
                                local_name: Optional[str] = None,
                                service_uuids: Iterable[str] = ()) -> bytes:
    """
    Rebuild raw AD structures from bleak's parsed advertisement fields.

    bleak splits the manufacturer field into a 16-bit company identifier and
    the remaining bytes; the identifier is put back in front, little-endian,
    as it appears on air. The sensor's company id changes with the
    temperature and BlueZ keeps every id it has seen, newest last, so only
    the last entry is rebuilt.
    """
    payload = b''
    if local_name:
        payload += _ad_structure(AD_TYPE_COMPLETE_LOCAL_NAME, local_name.encode('utf-8')[:29])
    uuid_bytes = b"".join(uuid.UUID(service_uuid).bytes[::-1] for service_uuid in service_uuids)
    if uuid_bytes:
        payload += _ad_structure(AD_TYPE_COMPLETE_SERVICE_UUIDS_128, uuid_bytes)
    if manufacturer_data:
        company_id, data = list(manufacturer_data.items())[-1]
        payload += _ad_structure(AD_TYPE_MANUFACTURER_DATA, struct.pack('<H', company_id & 0xFFFF) + bytes(data))
    return payload


class AdvertisementSubscription:
    """
    Queue-backed stream of advertisements for one scan window.

    ``publish`` is called from the detection callback on the event loop;
    consumers iterate with ``async for`` until the subscription is closed.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, advertisement: RawAdvertisement):
        if self._closed:
            return
        try:
            self._queue.put_nowait(advertisement)
        except asyncio.QueueFull:
            self.dropped += 1

    def close(self):
        if self._closed:
            return
        self._closed = True
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(self._CLOSED)

    def __aiter__(self) -> AsyncIterator[RawAdvertisement]:
        return self

    async def __anext__(self) -> RawAdvertisement:
        item = await self._queue.get()
        if item is self._CLOSED:
            # Leave the marker for any later reader
            self._queue.put_nowait(self._CLOSED)
            raise StopAsyncIteration
        return item


class BleakAdvertisementSource:
    """
    Advertisement source using bleak's passive scanner.

    Each ``subscribe()`` starts the adapter for the lifetime of the context and
    stops it on exit.
    """

    def __init__(self, adapter: str = "auto", logger=None, queue_size: int = 1000):
        self.adapter = adapter
        self.logger = logger or logging.getLogger("tempmonitor.ble")
        self.queue_size = queue_size

    @asynccontextmanager
    async def subscribe(self):
        """
        Start scanning and yield a subscription of raw advertisements.

        Raises:
            ScanError: If the adapter cannot be started
        """
        subscription = AdvertisementSubscription(self.queue_size)

        def detection_callback(device: BLEDevice, advertisement_data: AdvertisementData):
            subscription.publish(RawAdvertisement(
                source_id=device.address.upper(),
                payload=build_advertisement_payload(
                    advertisement_data.manufacturer_data,
                    advertisement_data.local_name,
                    advertisement_data.service_uuids,
                ),
                received_at=datetime.now(timezone.utc),
                rssi=advertisement_data.rssi,
            ))

        try:
            scanner = BleakScanner(
                detection_callback=detection_callback,
                adapter=self.adapter if self.adapter != "auto" else None
            )
            await scanner.start()
        except Exception as e:
            raise ScanError(f"Failed to start BLE scan: {e}") from e

        self.logger.debug(f"BLE scanner started (adapter: {self.adapter})")
        try:
            yield subscription
        finally:
            subscription.close()
            try:
                await scanner.stop()
                self.logger.debug("BLE scanner stopped")
            except Exception as e:
                self.logger.warning(f"Error stopping scanner: {e}")
            if subscription.dropped:
                self.logger.warning(f"Dropped {subscription.dropped} advertisements (queue full)")
