"""
Native host side of the bridge: receives commands from web content, drives
the BLE printer and reports status, progress and errors back as events.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..errors import (
    BridgeProtocolError,
    DiscoveryError,
    PermissionDeniedError,
    error_payload,
)
from ..halftone import BitBitmap
from ..printer import PrinterBackend, PrinterSession
from .channel import Channel
from .protocol import AssembledBitmap, BridgeMessage, ChunkAssembler, MessageType, message

logger = logging.getLogger(__name__)

PRINT_ERROR = "PRINT_ERROR"
PROGRESS_STARTED = 50


class BridgeHost:
    def __init__(self, printer: PrinterBackend, channel: Channel):
        self.printer = printer
        self.channel = channel
        self.assembler = ChunkAssembler()
        self._tasks: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            MessageType.SCAN.value: self._handle_scan,
            MessageType.CONNECT.value: self._handle_connect,
            MessageType.DISCONNECT.value: self._handle_disconnect,
            MessageType.PRINT.value: self._handle_print,
            MessageType.PRINT_START.value: self._handle_print_start,
            MessageType.PRINT_CHUNK.value: self._handle_print_chunk,
        }

    def start(self) -> None:
        self.channel.on_message(self.handle_raw)
        self.printer.add_disconnect_callback(self._on_printer_lost)

    async def close(self) -> None:
        self.printer.remove_disconnect_callback(self._on_printer_lost)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait for every running print job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def send(self, type_: MessageType, data: Optional[Dict[str, Any]] = None) -> None:
        await self.channel.send(message(type_, data).encode())

    async def send_error(self, exc: BaseException, code: Optional[str] = None) -> None:
        payload = error_payload(exc)
        if code:
            payload["errorCode"] = code
        await self.send(MessageType.ERROR, payload)

    # --- dispatch ---

    async def handle_raw(self, raw: str) -> None:
        try:
            msg = BridgeMessage.decode(raw)
        except BridgeProtocolError as e:
            logger.error("Failed to parse web message: %s", e)
            await self.send_error(e)
            return
        await self.handle(msg)

    async def handle(self, msg: BridgeMessage) -> None:
        handler = self._handlers.get(msg.type)
        if handler is None:
            logger.info("Unknown message: %s", msg.type)
            return
        try:
            await handler(msg.data)
        except Exception as e:
            logger.exception("%s failed", msg.type)
            code = PRINT_ERROR if msg.type.startswith(MessageType.PRINT.value) else None
            await self.send_error(e, code)

    # --- handlers ---

    async def _handle_scan(self, data: Dict[str, Any]) -> None:
        if not await self.printer.request_permissions():
            raise PermissionDeniedError(
                "Bluetooth permission denied. Turn Bluetooth on, allow access and scan again."
            )
        devices = await self.printer.scan_devices()
        await self.send(MessageType.DEVICES_FOUND, {"devices": [d.to_dict() for d in devices]})

    async def _handle_connect(self, data: Dict[str, Any]) -> None:
        device_id = data.get("deviceId")
        if not device_id:
            raise DiscoveryError("No printer selected: scan and pick a device first")
        session = await self.printer.connect(str(device_id))
        await self.send(MessageType.CONNECTED, {
            "connected": True,
            "device": session.device.to_dict(),
        })

    async def _handle_disconnect(self, data: Dict[str, Any]) -> None:
        await self.printer.disconnect()
        await self.send(MessageType.DISCONNECTED, {"connected": False})

    async def _handle_print(self, data: Dict[str, Any]) -> None:
        payload = data.get("bitmapBase64")
        width, height = data.get("width"), data.get("height")
        if not isinstance(payload, str) or not isinstance(width, int) or not isinstance(height, int):
            raise BridgeProtocolError("PRINT_DITHERED_BITMAP needs bitmapBase64, width and height")
        self._spawn_print(AssembledBitmap(payload, width, height))

    async def _handle_print_start(self, data: Dict[str, Any]) -> None:
        assembled = self.assembler.start(data)
        if assembled is not None:
            self._spawn_print(assembled)

    async def _handle_print_chunk(self, data: Dict[str, Any]) -> None:
        try:
            assembled = self.assembler.add(data)
        except BridgeProtocolError:
            self.assembler.reset()
            raise
        if assembled is not None:
            self._spawn_print(assembled)

    # --- printing ---

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _spawn_print(self, assembled: AssembledBitmap) -> None:
        # Runs as its own task so a second print arriving meanwhile is
        # rejected by the printer's guard instead of waiting behind it.
        self._spawn(self._print_job(assembled))

    async def _print_job(self, assembled: AssembledBitmap) -> None:
        progress: "asyncio.Queue[int]" = asyncio.Queue()
        last = [PROGRESS_STARTED]

        def on_progress(sent: int, total: int) -> None:
            value = PROGRESS_STARTED + (49 * sent) // max(total, 1)
            if value - last[0] >= 5:
                last[0] = value
                progress.put_nowait(value)

        async def forward() -> None:
            while True:
                value = await progress.get()
                try:
                    await self.send(MessageType.PRINT_PROGRESS, {"status": "printing", "progress": value})
                finally:
                    progress.task_done()

        forwarder = self._spawn(forward())
        self.printer.add_progress_callback(on_progress)
        try:
            bitmap = BitBitmap.from_base64(assembled.bitmap_base64, assembled.width, assembled.height)
            await self.send(MessageType.PRINT_PROGRESS, {"status": "printing", "progress": PROGRESS_STARTED})
            success = await self.printer.print_bitmap(bitmap)
            await progress.join()
            await self.send(
                MessageType.PRINT_SUCCESS if success else MessageType.PRINT_FAILED,
                {"success": success, "progress": 100},
            )
        except Exception as e:
            logger.error("Print error: %s", e)
            await self.send_error(e, PRINT_ERROR)
            await self.send(MessageType.PRINT_FAILED, {"success": False, "progress": 100})
        finally:
            self.printer.remove_progress_callback(on_progress)
            forwarder.cancel()

    def _on_printer_lost(self, session: PrinterSession) -> None:
        logger.warning("Printer %s dropped, notifying web content", session.device.id)
        self._spawn(self.send(MessageType.DISCONNECTED, {"connected": False}))
