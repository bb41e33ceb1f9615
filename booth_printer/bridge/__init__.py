from .channel import Channel, LocalChannel, channel_pair
from .client import BridgedPrinter
from .host import BridgeHost
from .protocol import (
    AssembledBitmap,
    BridgeMessage,
    ChunkAssembler,
    MessageType,
    build_print_messages,
    split_base64,
)

__all__ = [
    "AssembledBitmap",
    "BridgeHost",
    "BridgeMessage",
    "BridgedPrinter",
    "Channel",
    "ChunkAssembler",
    "LocalChannel",
    "MessageType",
    "build_print_messages",
    "channel_pair",
    "split_base64",
]
