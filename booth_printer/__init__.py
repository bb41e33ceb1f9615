"""Photo booth to BLE thermal printer pipeline."""

__version__ = "0.1.0"

from .config import OutputSettings, load_output_settings
from .direct import DirectBlePrinter
from .errors import (
    BridgeProtocolError,
    ConnectInProgressError,
    ConnectionTimeoutError,
    DiscoveryError,
    ImageDecodeError,
    NotConnectedError,
    NoWritableCharacteristicError,
    PermissionDeniedError,
    PrinterConnectionError,
    PrinterError,
    PrintInProgressError,
    RemotePrinterError,
    TransferError,
)
from .escpos import CommandSet, encode
from .halftone import BitBitmap, DitherMode, RasterImage, dither
from .native import NativeBlePrinter
from .printer import ConnectionState, PrinterBackend, PrinterDevice, PrinterSession
from .service import PrinterService

__all__ = [
    "BitBitmap",
    "BridgeProtocolError",
    "CommandSet",
    "ConnectInProgressError",
    "ConnectionState",
    "ConnectionTimeoutError",
    "DirectBlePrinter",
    "DiscoveryError",
    "DitherMode",
    "ImageDecodeError",
    "NativeBlePrinter",
    "NotConnectedError",
    "NoWritableCharacteristicError",
    "OutputSettings",
    "PermissionDeniedError",
    "PrintInProgressError",
    "PrinterBackend",
    "PrinterConnectionError",
    "PrinterDevice",
    "PrinterError",
    "PrinterService",
    "PrinterSession",
    "RasterImage",
    "RemotePrinterError",
    "TransferError",
    "dither",
    "encode",
    "load_output_settings",
]
