"""
Error taxonomy for the printer pipeline.

Every failure that leaves the package is a PrinterError carrying a
human-readable message. The bridge host turns these into BLUETOOTH_ERROR
payloads with the stack attached so the web side can show diagnostics.
"""

import traceback
from typing import Any, Dict, Optional


class PrinterError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


# --- PERMISSIONS / DISCOVERY ---

class PermissionDeniedError(PrinterError):
    """Bluetooth (or location) access was refused; the user has to grant it."""


class DiscoveryError(PrinterError):
    """Scan failed, or the device does not expose what we need."""


class NoWritableCharacteristicError(DiscoveryError):
    pass


# --- CONNECTION ---

class PrinterConnectionError(PrinterError):
    pass


class ConnectionTimeoutError(PrinterConnectionError):
    pass


class NotConnectedError(PrinterError):
    pass


class PrintInProgressError(PrinterError):
    pass


class ConnectInProgressError(PrinterError):
    pass


# --- TRANSFER ---

class TransferError(PrinterError):
    """A write failed mid-job. Bytes already sent are not rolled back."""


class ImageDecodeError(TransferError):
    pass


class BridgeProtocolError(PrinterError):
    pass


class RemotePrinterError(PrinterError):
    """A BLUETOOTH_ERROR reported by the native host, re-raised on the web side."""

    def __init__(self, message: str, stack: Optional[str] = None,
                 full_error: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.stack = stack
        self.full_error = full_error
        self.code = code

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "RemotePrinterError":
        return cls(
            data.get("error") or "Unknown printer error",
            stack=data.get("stack"),
            full_error=data.get("fullError"),
            code=data.get("errorCode"),
        )


def error_payload(exc: BaseException) -> Dict[str, Any]:
    """Build the ``BLUETOOTH_ERROR`` body for an exception."""
    message = str(exc) or exc.__class__.__name__
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return {
        "error": message,
        "stack": stack,
        "fullError": f"{exc.__class__.__name__}: {message}\n\nStack:\n{stack}",
    }
