"""
Direct BLE printer driver, the counterpart of the browser's Web Bluetooth
path: only known printer names are listed, only the serial-like candidate
services are probed, and writes use a fixed chunk size instead of a
negotiated MTU. The printer model (width, command set) is picked from the
device name.
"""

import logging
from typing import Any, Optional, Tuple

from bleak.exc import BleakError

from . import escpos
from .ble import BleakPrinterBase, is_writable
from .config import DIRECT_CHUNK_SIZE
from .errors import NoWritableCharacteristicError
from .halftone import BitBitmap
from .models import CANDIDATE_SERVICE_UUIDS, GENERIC_58MM, PrinterModel, detect_model, matches_known_printer
from .printer import PrinterDevice

logger = logging.getLogger(__name__)


class DirectBlePrinter(BleakPrinterBase):
    def __init__(self, *args, chunk_size: int = DIRECT_CHUNK_SIZE, **kwargs):
        super().__init__(*args, **kwargs)
        self.chunk_size = chunk_size
        self.model: Optional[PrinterModel] = None

    @property
    def print_width(self) -> Optional[int]:
        return (self.model or GENERIC_58MM).width

    def _accept_device(self, name: Optional[str]) -> bool:
        return matches_known_printer(name)

    def _find_characteristic(self, client) -> Tuple[str, Any]:
        for uuid in CANDIDATE_SERVICE_UUIDS:
            try:
                service = client.services.get_service(uuid)
            except BleakError as e:
                logger.debug("Service %s unusable: %s", uuid, e)
                continue
            if service is None:
                continue
            for char in service.characteristics:
                if is_writable(char):
                    return uuid, char

        raise NoWritableCharacteristicError("No writable characteristic found")

    async def _negotiate_payload_size(self, client) -> int:
        return self.chunk_size

    def _on_connected(self, device: PrinterDevice) -> None:
        self.model = detect_model(device.name)
        logger.info("Printer model: %s (%dpx, %d dpi)", self.model.name, self.model.width, self.model.dpi)

    async def disconnect(self) -> None:
        await super().disconnect()
        self.model = None

    def _encode(self, bitmap: BitBitmap) -> bytes:
        model = self.model or GENERIC_58MM
        return escpos.encode(bitmap, model.commands)
