"""
Bridge protocol between the booth's web content and the native host.

Every message is a JSON envelope ``{"type": ..., "data": ...}``. Bitmaps are
too big for a single host message, so a print is framed as:

    PRINT_DITHERED_BITMAP_START  {width, height, totalChunks, chunkIndex: 0,
                                  bitmapBase64, isLast}
    PRINT_DITHERED_BITMAP_CHUNK  {bitmapBase64, chunkIndex, isLast}   (x N-1)

with the base64 string cut into BRIDGE_CHUNK_SIZE-character pieces. The
receiver keys pieces by chunkIndex, so order on the wire does not matter;
the payload is complete once the isLast chunk and every index before it
have arrived.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import BRIDGE_CHUNK_SIZE
from ..errors import BridgeProtocolError

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    # web -> host
    SCAN = "SCAN_BLUETOOTH_PRINTERS"
    CONNECT = "CONNECT_BLUETOOTH_PRINTER"
    DISCONNECT = "DISCONNECT_BLUETOOTH_PRINTER"
    PRINT = "PRINT_DITHERED_BITMAP"
    PRINT_START = "PRINT_DITHERED_BITMAP_START"
    PRINT_CHUNK = "PRINT_DITHERED_BITMAP_CHUNK"
    # host -> web
    DEVICES_FOUND = "BLUETOOTH_DEVICES_FOUND"
    CONNECTED = "BLUETOOTH_CONNECTED"
    DISCONNECTED = "BLUETOOTH_DISCONNECTED"
    ERROR = "BLUETOOTH_ERROR"
    PRINT_PROGRESS = "PRINT_PROGRESS"
    PRINT_SUCCESS = "PRINT_SUCCESS"
    PRINT_FAILED = "PRINT_FAILED"


@dataclass
class BridgeMessage:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def encode(self) -> str:
        envelope: Dict[str, Any] = {"type": self.type}
        if self.data:
            envelope["data"] = self.data
        return json.dumps(envelope, separators=(",", ":"))

    @classmethod
    def decode(cls, raw: str) -> "BridgeMessage":
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise BridgeProtocolError(f"Failed to parse bridge message: {e}") from e
        if not isinstance(envelope, dict) or not isinstance(envelope.get("type"), str):
            raise BridgeProtocolError("Bridge message has no type")
        data = envelope.get("data") or {}
        if not isinstance(data, dict):
            raise BridgeProtocolError(f"{envelope['type']}: data must be an object")
        return cls(envelope["type"], data)


def message(type_: MessageType, data: Optional[Dict[str, Any]] = None) -> BridgeMessage:
    return BridgeMessage(type_.value, data or {})


def split_base64(payload: str, chunk_size: int = BRIDGE_CHUNK_SIZE) -> List[str]:
    if chunk_size <= 0:
        raise ValueError(f"Chunk size must be positive, got {chunk_size}")
    if not payload:
        return [""]
    return [payload[i:i + chunk_size] for i in range(0, len(payload), chunk_size)]


def build_print_messages(
    bitmap_base64: str,
    width: int,
    height: int,
    chunk_size: int = BRIDGE_CHUNK_SIZE,
) -> List[BridgeMessage]:
    chunks = split_base64(bitmap_base64, chunk_size)
    total = len(chunks)
    messages = [
        message(MessageType.PRINT_START, {
            "width": width,
            "height": height,
            "totalChunks": total,
            "chunkIndex": 0,
            "bitmapBase64": chunks[0],
            "isLast": total == 1,
        })
    ]
    for index in range(1, total):
        messages.append(message(MessageType.PRINT_CHUNK, {
            "bitmapBase64": chunks[index],
            "chunkIndex": index,
            "isLast": index == total - 1,
        }))
    return messages


@dataclass
class AssembledBitmap:
    bitmap_base64: str
    width: int
    height: int


def _int_field(data: Dict[str, Any], name: str) -> int:
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise BridgeProtocolError(f"Field {name!r} must be an integer, got {value!r}")
    return value


class ChunkAssembler:
    """Receiver side of START/CHUNK framing for one in-flight bitmap."""

    def __init__(self):
        self._chunks: Dict[int, str] = {}
        self.reset()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def received(self) -> int:
        return len(self._chunks)

    def reset(self) -> None:
        self.total_chunks = 0
        self.width = 0
        self.height = 0
        self._chunks = {}
        self._last_seen = False
        self._active = False

    def start(self, data: Dict[str, Any]) -> Optional[AssembledBitmap]:
        if self._active:
            logger.warning("New bitmap transfer started, dropping %d buffered chunk(s)", self.received)
        self.reset()
        total = _int_field(data, "totalChunks")
        if total < 1:
            raise BridgeProtocolError(f"totalChunks must be >= 1, got {total}")
        self.total_chunks = total
        self.width = _int_field(data, "width")
        self.height = _int_field(data, "height")
        self._active = True
        logger.debug("Bitmap transfer %dx%d in %d chunk(s)", self.width, self.height, total)
        return self.add(data)

    def add(self, data: Dict[str, Any]) -> Optional[AssembledBitmap]:
        if not self._active:
            raise BridgeProtocolError("Bitmap chunk received without a START message")

        index = _int_field(data, "chunkIndex")
        piece = data.get("bitmapBase64")
        if not isinstance(piece, str):
            raise BridgeProtocolError(f"Chunk {index} has no bitmapBase64 string")
        if not 0 <= index < self.total_chunks:
            raise BridgeProtocolError(f"Chunk index {index} outside 0..{self.total_chunks - 1}")

        is_last = bool(data.get("isLast"))
        if is_last and index != self.total_chunks - 1:
            raise BridgeProtocolError(
                f"Chunk {index} flagged isLast but transfer has {self.total_chunks} chunks"
            )

        existing = self._chunks.get(index)
        if existing is not None:
            if existing != piece:
                raise BridgeProtocolError(f"Conflicting data for chunk {index}")
            logger.debug("Duplicate chunk %d ignored", index)
        else:
            self._chunks[index] = piece
        if is_last:
            self._last_seen = True

        if not self._last_seen or len(self._chunks) < self.total_chunks:
            return None

        assembled = AssembledBitmap(
            "".join(self._chunks[i] for i in range(self.total_chunks)),
            self.width,
            self.height,
        )
        self.reset()
        return assembled
