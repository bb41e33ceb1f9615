"""
Printer service: owns exactly one backend and runs the full
image -> grayscale -> halftone -> printer pipeline on top of it.

Construct it once at startup and close it on shutdown::

    async with PrinterService.create(channel=bridge_channel) as printer:
        await printer.connect(device_id)
        await printer.print_image("strip.png")
"""

import asyncio
import logging
from typing import List, Optional

from PIL import Image

from .bridge.channel import Channel
from .bridge.client import BridgedPrinter
from .config import OutputSettings
from .direct import DirectBlePrinter
from .errors import NotConnectedError
from .halftone import BitBitmap, DitherMode, dither
from .imaging import ImageSource, load_image, prepare, render_test_receipt
from .printer import PrinterBackend, PrinterDevice, PrinterSession

logger = logging.getLogger(__name__)


def has_native_bluetooth(channel: Optional[Channel]) -> bool:
    return channel is not None and bool(getattr(channel, "native_bluetooth", False))


class PrinterService:
    def __init__(self, backend: PrinterBackend, settings: Optional[OutputSettings] = None):
        self.backend = backend
        self.settings = settings or OutputSettings()

    @classmethod
    def create(
        cls,
        channel: Optional[Channel] = None,
        settings: Optional[OutputSettings] = None,
        native_bluetooth: Optional[bool] = None,
        **backend_kwargs,
    ) -> "PrinterService":
        """Pick the bridge when a host with Bluetooth is listening, else talk BLE directly."""
        settings = settings or OutputSettings()
        if native_bluetooth is None:
            native_bluetooth = has_native_bluetooth(channel)

        backend: PrinterBackend
        if channel is not None and native_bluetooth:
            logger.info("Native Bluetooth host detected, printing through the bridge")
            backend = BridgedPrinter(channel, width=settings.width, **backend_kwargs)
        else:
            logger.info("Using direct Bluetooth")
            backend = DirectBlePrinter(**backend_kwargs)
        return cls(backend, settings)

    @property
    def is_native(self) -> bool:
        return isinstance(self.backend, BridgedPrinter)

    @property
    def is_connected(self) -> bool:
        return self.backend.is_connected

    async def start(self) -> None:
        if isinstance(self.backend, BridgedPrinter):
            self.backend.start()

    async def close(self) -> None:
        await self.backend.close()

    async def __aenter__(self) -> "PrinterService":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # --- device management ---

    async def scan_printers(self) -> List[PrinterDevice]:
        return await self.backend.scan_devices()

    async def connect(self, device_id: str) -> PrinterSession:
        return await self.backend.connect(device_id)

    async def disconnect(self) -> None:
        await self.backend.disconnect()

    # --- pipeline ---

    @property
    def dither_mode(self) -> DitherMode:
        if not self.settings.dithering:
            return DitherMode.THRESHOLD
        return DitherMode(self.settings.dither_mode)

    @property
    def print_width(self) -> int:
        return self.backend.print_width or self.settings.width

    def render(self, img: Image.Image, width: Optional[int] = None,
               mode: Optional[DitherMode] = None) -> BitBitmap:
        mode = DitherMode(mode or self.dither_mode)
        raster = prepare(img, width or self.print_width, self.settings)
        if mode is DitherMode.FLOYD_STEINBERG:
            threshold = self.settings.composition_threshold
        else:
            threshold = self.settings.threshold
        bitmap = dither(raster, mode, threshold)
        logger.info(
            "Rendered %dx%d bitmap (%s): %d black pixels",
            bitmap.width, bitmap.height, mode.value, bitmap.black_pixels,
        )
        return bitmap

    async def print_image(self, source: ImageSource, width: Optional[int] = None,
                          mode: Optional[DitherMode] = None) -> bool:
        if not self.backend.is_connected:
            raise NotConnectedError("No printer connected")
        img = await load_image(source)
        bitmap = await asyncio.to_thread(self.render, img, width, mode)
        return await self.backend.print_bitmap(bitmap)

    async def print_test_receipt(self) -> bool:
        return await self.print_image(render_test_receipt(self.print_width), mode=DitherMode.THRESHOLD)
