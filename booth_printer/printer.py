"""
Capability contract shared by every printer backend, plus the session and
state types they track.
"""

import abc
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .errors import ConnectInProgressError, NotConnectedError, PrintInProgressError
from .halftone import BitBitmap

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DEVICE_FOUND = "device_found"
    NO_DEVICES = "no_devices"
    CONNECTING = "connecting"
    SERVICE_DISCOVERY = "service_discovery"
    CHARACTERISTIC_FOUND = "characteristic_found"
    MTU_NEGOTIATING = "mtu_negotiating"
    CONNECTED = "connected"
    CONNECT_FAILED = "connect_failed"


@dataclass
class PrinterDevice:
    id: str
    name: str = "Unknown Device"
    rssi: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"id": self.id, "name": self.name}
        if self.rssi is not None:
            d["rssi"] = self.rssi
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrinterDevice":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "Unknown Device",
            rssi=data.get("rssi"),
        )


@dataclass
class PrinterSession:
    device: PrinterDevice
    service_uuid: str
    characteristic_uuid: str
    write_without_response: bool
    payload_size: int
    connected: bool = True
    characteristic: Any = field(default=None, repr=False, compare=False)


DisconnectCallback = Callable[[PrinterSession], None]
ProgressCallback = Callable[[int, int], None]


class SessionGuard:
    """
    Single-slot guard around anything that uses the session: a print job
    or a connect. Whatever arrives while it is held is rejected, never
    queued.
    """

    PRINT = "print"
    CONNECT = "connect"

    def __init__(self):
        self._lock = asyncio.Lock()
        self.holder: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self, purpose: str = PRINT):
        if self._lock.locked():
            if self.holder == self.CONNECT:
                raise ConnectInProgressError("Connection already in progress")
            raise PrintInProgressError("Print already in progress")
        # Uncontended acquire completes without yielding to the loop
        async with self._lock:
            self.holder = purpose
            try:
                yield
            finally:
                self.holder = None


class PrinterBackend(abc.ABC):
    def __init__(self):
        self.session: Optional[PrinterSession] = None
        self.state = ConnectionState.IDLE
        self.guard = SessionGuard()
        self._disconnect_callbacks: List[DisconnectCallback] = []
        self._progress_callbacks: List[ProgressCallback] = []

    # --- contract ---

    @abc.abstractmethod
    async def request_permissions(self) -> bool: ...

    @abc.abstractmethod
    async def scan_devices(self) -> List[PrinterDevice]: ...

    @abc.abstractmethod
    async def connect(self, device_id: str) -> PrinterSession: ...

    @abc.abstractmethod
    async def disconnect(self) -> None: ...

    @abc.abstractmethod
    async def print_bitmap(self, bitmap: BitBitmap) -> bool: ...

    @property
    def print_width(self) -> Optional[int]:
        """Pixel width the connected printer wants, if the backend knows it."""
        return None

    async def close(self) -> None:
        if self.is_connected:
            await self.disconnect()
        self._disconnect_callbacks.clear()
        self._progress_callbacks.clear()

    # --- state ---

    @property
    def is_connected(self) -> bool:
        return self.session is not None and self.session.connected

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            logger.debug("%s: %s -> %s", self.__class__.__name__, self.state.value, state.value)
        self.state = state

    def _require_session(self) -> PrinterSession:
        if not self.is_connected:
            raise NotConnectedError("No printer connected")
        return self.session

    # --- callbacks ---

    def add_disconnect_callback(self, cb: DisconnectCallback) -> None:
        if cb not in self._disconnect_callbacks:
            self._disconnect_callbacks.append(cb)

    def remove_disconnect_callback(self, cb: DisconnectCallback) -> None:
        if cb in self._disconnect_callbacks:
            self._disconnect_callbacks.remove(cb)

    def add_progress_callback(self, cb: ProgressCallback) -> None:
        if cb not in self._progress_callbacks:
            self._progress_callbacks.append(cb)

    def remove_progress_callback(self, cb: ProgressCallback) -> None:
        if cb in self._progress_callbacks:
            self._progress_callbacks.remove(cb)

    def _emit_progress(self, sent: int, total: int) -> None:
        for cb in list(self._progress_callbacks):
            cb(sent, total)

    def _lost_connection(self) -> None:
        """The link went away without us asking. No reconnect is attempted."""
        session = self.session
        if session is None:
            return
        session.connected = False
        self.session = None
        self._set_state(ConnectionState.IDLE)
        logger.warning("Printer %s disconnected", session.device.id)
        for cb in list(self._disconnect_callbacks):
            cb(session)
