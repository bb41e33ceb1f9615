"""
Message channel between web content and the native host.

The real transport (a WebView postMessage pipe, a websocket, ...) lives
outside this package; anything with an async ``send(str)`` and an
``on_message(handler)`` registration works. ``channel_pair`` wires two
in-process endpoints together, delivering messages in send order.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], Awaitable[None]]


class Channel(Protocol):
    async def send(self, raw: str) -> None: ...

    def on_message(self, handler: MessageHandler) -> None: ...


class LocalChannel:
    def __init__(self, name: str = "local", native_bluetooth: bool = False):
        self.name = name
        # Set by the host when it can drive Bluetooth for us
        self.native_bluetooth = native_bluetooth
        self.peer: Optional["LocalChannel"] = None
        self._handler: Optional[MessageHandler] = None
        self._queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._reader: Optional[asyncio.Task] = None

    def on_message(self, handler: MessageHandler) -> None:
        self._handler = handler
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(self._pump())

    async def send(self, raw: str) -> None:
        if self.peer is None:
            raise RuntimeError(f"Channel {self.name} is not connected")
        await self.peer._queue.put(raw)

    async def _pump(self) -> None:
        while True:
            raw = await self._queue.get()
            try:
                if self._handler is not None:
                    await self._handler(raw)
            except Exception:
                logger.exception("%s: message handler failed", self.name)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued message has been handled."""
        await self._queue.join()

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None


def channel_pair() -> Tuple[LocalChannel, LocalChannel]:
    web, host = LocalChannel("web", native_bluetooth=True), LocalChannel("host")
    web.peer, host.peer = host, web
    return web, host
