"""
Web-content side of the native-host-mediated printer.

Implements the same PrinterBackend contract as the BLE drivers, but every
operation is a bridge command answered by a host event. Bitmaps go out as
START/CHUNK frames.
"""

import asyncio
import logging
from typing import FrozenSet, List, Optional, Tuple

from ..config import BRIDGE_CHUNK_PAUSE, BRIDGE_CHUNK_SIZE, DEFAULT_PRINT_WIDTH
from ..errors import BridgeProtocolError, PrinterError, RemotePrinterError, TransferError
from ..halftone import BitBitmap
from ..printer import ConnectionState, PrinterBackend, PrinterDevice, PrinterSession, SessionGuard
from .channel import Channel
from .protocol import BridgeMessage, MessageType, build_print_messages, message

logger = logging.getLogger(__name__)


class BridgedPrinter(PrinterBackend):
    def __init__(
        self,
        channel: Channel,
        width: int = DEFAULT_PRINT_WIDTH,
        chunk_size: int = BRIDGE_CHUNK_SIZE,
        chunk_pause: float = BRIDGE_CHUNK_PAUSE,
        response_timeout: Optional[float] = None,
    ):
        super().__init__()
        self.channel = channel
        self.width = width
        self.chunk_size = chunk_size
        self.chunk_pause = chunk_pause
        self.response_timeout = response_timeout
        self.devices: List[PrinterDevice] = []
        self._waiters: List[Tuple[FrozenSet[str], asyncio.Future]] = []
        self._started = False

    @property
    def print_width(self) -> Optional[int]:
        return self.width

    def start(self) -> None:
        # Registering twice would double-handle every event
        if self._started:
            return
        self._started = True
        self.channel.on_message(self.handle_raw)

    async def close(self) -> None:
        await super().close()
        for _, fut in self._waiters:
            if not fut.done():
                fut.cancel()
        self._waiters.clear()

    # --- request / reply ---

    async def _send(self, msg: BridgeMessage) -> None:
        self.start()
        await self.channel.send(msg.encode())

    def _expect(self, *types: MessageType) -> asyncio.Future:
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append((frozenset(t.value for t in types), fut))
        return fut

    def _discard(self, fut: asyncio.Future) -> None:
        self._waiters = [(t, f) for t, f in self._waiters if f is not fut]

    async def _request(
        self, msg: BridgeMessage, *expect: MessageType, timeout: Optional[float] = None
    ) -> BridgeMessage:
        fut = self._expect(*expect, MessageType.ERROR)
        try:
            await self._send(msg)
            if timeout is None:
                reply = await fut
            else:
                reply = await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError as e:
            raise PrinterError(f"No reply to {msg.type} after {timeout:g} seconds") from e
        finally:
            self._discard(fut)
        if reply.type == MessageType.ERROR.value:
            raise RemotePrinterError.from_payload(reply.data)
        return reply

    async def handle_raw(self, raw: str) -> None:
        try:
            msg = BridgeMessage.decode(raw)
        except BridgeProtocolError as e:
            logger.error("Failed to parse native message: %s", e)
            return
        self.handle(msg)

    def handle(self, msg: BridgeMessage) -> None:
        if msg.type == MessageType.DISCONNECTED.value:
            # After a deliberate disconnect the session is already gone
            self._lost_connection()
        elif msg.type == MessageType.PRINT_PROGRESS.value:
            progress = msg.data.get("progress")
            if isinstance(progress, int):
                self._emit_progress(progress, 100)

        for types, fut in self._waiters:
            if msg.type in types and not fut.done():
                fut.set_result(msg)
                self._discard(fut)
                return

        if msg.type == MessageType.ERROR.value:
            logger.error("Native Bluetooth error: %s", msg.data.get("error"))
        elif msg.type == MessageType.CONNECTED.value:
            # Host reconnected a saved printer on its own
            self._adopt_session(msg.data)
        else:
            logger.debug("Unsolicited %s", msg.type)

    def _adopt_session(self, data) -> PrinterSession:
        device = PrinterDevice.from_dict(data.get("device") or {"id": "native"})
        self.session = PrinterSession(
            device=device,
            service_uuid="",
            characteristic_uuid="",
            write_without_response=False,
            payload_size=self.chunk_size,
        )
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Native host connected to %s (%s)", device.id, device.name)
        return self.session

    # --- contract ---

    async def request_permissions(self) -> bool:
        """The host asks for Bluetooth permissions itself as part of a scan."""
        return True

    async def scan_devices(self) -> List[PrinterDevice]:
        idle = not self.is_connected
        if idle:
            self._set_state(ConnectionState.SCANNING)
        try:
            reply = await self._request(
                message(MessageType.SCAN), MessageType.DEVICES_FOUND, timeout=self.response_timeout
            )
        except PrinterError:
            if idle:
                self._set_state(ConnectionState.IDLE)
            raise
        self.devices = [PrinterDevice.from_dict(d) for d in reply.data.get("devices") or []]
        logger.info("Host found %d device(s)", len(self.devices))
        if idle:
            self._set_state(ConnectionState.DEVICE_FOUND if self.devices else ConnectionState.NO_DEVICES)
        return self.devices

    async def connect(self, device_id: str) -> PrinterSession:
        async with self.guard.hold(SessionGuard.CONNECT):
            self._set_state(ConnectionState.CONNECTING)
            try:
                reply = await self._request(
                    message(MessageType.CONNECT, {"deviceId": device_id}),
                    MessageType.CONNECTED,
                    timeout=self.response_timeout,
                )
            except PrinterError:
                self._set_state(ConnectionState.CONNECT_FAILED)
                self.session = None
                self._set_state(ConnectionState.IDLE)
                raise

        data = dict(reply.data)
        if not data.get("device"):
            data["device"] = {"id": device_id}
        return self._adopt_session(data)

    async def disconnect(self) -> None:
        if self.session is not None:
            self.session.connected = False
            self.session = None
        self._set_state(ConnectionState.IDLE)
        await self._request(
            message(MessageType.DISCONNECT), MessageType.DISCONNECTED, timeout=self.response_timeout
        )

    async def print_bitmap(self, bitmap: BitBitmap) -> bool:
        self._require_session()
        async with self.guard.hold():
            messages = build_print_messages(
                bitmap.to_base64(), bitmap.width, bitmap.height, self.chunk_size
            )
            logger.info("Sending %dx%d bitmap in %d message(s)", bitmap.width, bitmap.height, len(messages))

            fut = self._expect(MessageType.PRINT_SUCCESS, MessageType.PRINT_FAILED, MessageType.ERROR)
            try:
                for index, msg in enumerate(messages):
                    if index and self.chunk_pause > 0:
                        await asyncio.sleep(self.chunk_pause)
                    await self._send(msg)
                reply = await fut
            finally:
                self._discard(fut)

        if reply.type == MessageType.ERROR.value:
            raise RemotePrinterError.from_payload(reply.data)
        if reply.type == MessageType.PRINT_FAILED.value or not reply.data.get("success"):
            raise TransferError("Print failed")
        return True
