"""
Shared bleak plumbing for the two BLE backends.

Subclasses decide which devices to list, which characteristic to write to,
how big each write may be and which command set to encode with.
"""

import abc
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from . import escpos
from .config import CONNECT_TIMEOUT, SCAN_TIMEOUT
from .errors import (
    ConnectionTimeoutError,
    DiscoveryError,
    NotConnectedError,
    PermissionDeniedError,
    PrinterConnectionError,
    PrinterError,
)
from .halftone import BitBitmap
from .printer import ConnectionState, PrinterBackend, PrinterDevice, PrinterSession, SessionGuard
from .transport import write_chunked

logger = logging.getLogger(__name__)

WRITE = "write"
WRITE_NO_RESPONSE = "write-without-response"

PERMISSION_PROBE_TIMEOUT = 0.5

_PERMISSION_HINTS = ("not authorized", "unauthorized", "permission", "denied", "notpermitted")


def is_writable(char) -> bool:
    return WRITE in char.properties or WRITE_NO_RESPONSE in char.properties


def _looks_like_permission_error(e: Exception) -> bool:
    text = str(e).lower()
    return any(h in text for h in _PERMISSION_HINTS)


class BleakPrinterBase(PrinterBackend):
    def __init__(
        self,
        client_factory=BleakClient,
        scanner=BleakScanner,
        connect_timeout: float = CONNECT_TIMEOUT,
        scan_timeout: float = SCAN_TIMEOUT,
        write_delay: Optional[float] = None,
    ):
        super().__init__()
        self.client: Optional[Any] = None
        self.connect_timeout = connect_timeout
        self.scan_timeout = scan_timeout
        # None -> adaptive pacing per chunk size
        self.write_delay = write_delay
        self._client_factory = client_factory
        self._scanner = scanner
        self._seen: Dict[str, PrinterDevice] = {}

    # --- hooks ---

    def _accept_device(self, name: Optional[str]) -> bool:
        return True

    @abc.abstractmethod
    def _find_characteristic(self, client) -> Tuple[str, Any]: ...

    @abc.abstractmethod
    async def _negotiate_payload_size(self, client) -> int: ...

    def _on_connected(self, device: PrinterDevice) -> None:
        pass

    def _encode(self, bitmap: BitBitmap) -> bytes:
        return escpos.encode(bitmap)

    # --- permissions / discovery ---

    async def request_permissions(self) -> bool:
        """
        Bleak has no permission API; a short scan is the cheapest way to find
        out whether the OS lets us use the adapter at all.
        """
        try:
            await self._scanner.discover(timeout=PERMISSION_PROBE_TIMEOUT)
        except (BleakError, OSError) as e:
            logger.warning("Bluetooth not available: %s", e)
            return False
        return True

    async def scan_devices(self) -> List[PrinterDevice]:
        idle = not self.is_connected
        if idle:
            self._set_state(ConnectionState.SCANNING)
        logger.info("Scanning for %.1fs...", self.scan_timeout)

        try:
            found = await self._scanner.discover(timeout=self.scan_timeout, return_adv=True)
        except (BleakError, OSError) as e:
            if idle:
                self._set_state(ConnectionState.IDLE)
            if _looks_like_permission_error(e):
                raise PermissionDeniedError(
                    f"Bluetooth permission denied: {e}. Allow Bluetooth access and scan again."
                ) from e
            raise DiscoveryError(f"Bluetooth scan failed: {e}") from e

        devices = []
        for device, adv in found.values():
            name = device.name or getattr(adv, "local_name", None)
            if not self._accept_device(name):
                continue
            devices.append(PrinterDevice(device.address, name or "Unknown Device", adv.rssi))
        devices.sort(key=lambda d: d.rssi if d.rssi is not None else -1000, reverse=True)

        for d in devices:
            self._seen[d.id] = d
        logger.info("Found %d device(s)", len(devices))
        if idle:
            self._set_state(ConnectionState.DEVICE_FOUND if devices else ConnectionState.NO_DEVICES)
        return devices

    # --- connection ---

    async def connect(self, device_id: str) -> PrinterSession:
        if self.is_connected and self.session.device.id == device_id:
            return self.session
        # Same slot as print_bitmap
        async with self.guard.hold(SessionGuard.CONNECT):
            if self.is_connected:
                await self.disconnect()
            return await self._connect(device_id)

    async def _connect(self, device_id: str) -> PrinterSession:
        device = self._seen.get(device_id) or PrinterDevice(device_id, "Printer")
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting to %s (%s)...", device.id, device.name)

        client = self._client_factory(device_id, disconnected_callback=self._handle_disconnect)
        self.client = client
        try:
            try:
                await asyncio.wait_for(client.connect(), self.connect_timeout)
            except asyncio.TimeoutError as e:
                raise ConnectionTimeoutError(
                    f"Connection timeout after {self.connect_timeout:g} seconds"
                ) from e
            except (BleakError, OSError) as e:
                raise PrinterConnectionError(f"Failed to connect to {device_id}: {e}") from e

            self._set_state(ConnectionState.SERVICE_DISCOVERY)
            service_uuid, char = self._find_characteristic(client)
            self._set_state(ConnectionState.CHARACTERISTIC_FOUND)
            without_response = WRITE_NO_RESPONSE in char.properties
            logger.info(
                "Using characteristic %s (%s)",
                char.uuid, WRITE_NO_RESPONSE if without_response else WRITE,
            )

            payload_size = await self._negotiate_payload_size(client)
        except PrinterError:
            await self._abort_connect(client)
            raise
        except Exception as e:
            await self._abort_connect(client)
            raise PrinterConnectionError(f"Failed to set up {device_id}: {e}") from e

        self.session = PrinterSession(
            device=device,
            service_uuid=str(service_uuid),
            characteristic_uuid=str(char.uuid),
            write_without_response=without_response,
            payload_size=payload_size,
            characteristic=char,
        )
        self._on_connected(device)
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected to %s, %d bytes per write", device.id, payload_size)
        return self.session

    async def _abort_connect(self, client) -> None:
        self._set_state(ConnectionState.CONNECT_FAILED)
        self.client = None
        self.session = None
        try:
            await client.disconnect()
        except Exception as e:
            # Cleanup only, the connect error propagates
            logger.debug("Ignoring disconnect error during cleanup: %s", e)
        self._set_state(ConnectionState.IDLE)

    def _handle_disconnect(self, client) -> None:
        if client is not self.client:
            return
        self.client = None
        self._lost_connection()

    async def disconnect(self) -> None:
        client = self.client
        self.client = None
        if self.session is not None:
            self.session.connected = False
            self.session = None
        self._set_state(ConnectionState.IDLE)
        if client is None:
            return
        try:
            await client.disconnect()
        except (BleakError, OSError) as e:
            logger.error("Disconnect error: %s", e)

    # --- printing ---

    async def _write(self, chunk: bytes) -> None:
        session = self.session
        client = self.client
        if session is None or client is None:
            raise NotConnectedError("No printer connected")
        await client.write_gatt_char(
            session.characteristic, chunk, response=not session.write_without_response
        )

    async def print_bitmap(self, bitmap: BitBitmap) -> bool:
        session = self._require_session()
        async with self.guard.hold():
            payload = self._encode(bitmap)
            logger.info(
                "Printing %dx%d bitmap: %d bytes, %d per write",
                bitmap.width, bitmap.height, len(payload), session.payload_size,
            )
            writes = await write_chunked(
                self._write,
                payload,
                session.payload_size,
                delay=self.write_delay,
                on_progress=self._emit_progress,
            )
        logger.info("Print sent (%d writes)", writes)
        return True
