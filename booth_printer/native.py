"""
Host-side BLE printer driver.

Lists every advertising device, writes to any writable characteristic the
printer exposes (write-without-response preferred) and negotiates the
largest MTU the link allows. Dropped links are reported, never re-dialed.
"""

import asyncio
import logging
from typing import Any, Optional, Tuple

from bleak.exc import BleakError

from .ble import WRITE_NO_RESPONSE, BleakPrinterBase, is_writable
from .config import ATT_OVERHEAD, DEFAULT_PAYLOAD_SIZE, MTU_TIMEOUT, TARGET_MTU
from .errors import NoWritableCharacteristicError
from .printer import ConnectionState

logger = logging.getLogger(__name__)


class NativeBlePrinter(BleakPrinterBase):
    def __init__(self, *args, mtu_timeout: float = MTU_TIMEOUT, **kwargs):
        super().__init__(*args, **kwargs)
        self.mtu_timeout = mtu_timeout

    def _find_characteristic(self, client) -> Tuple[str, Any]:
        fallback: Optional[Tuple[str, Any]] = None
        for service in client.services:
            for char in service.characteristics:
                if not is_writable(char):
                    continue
                logger.debug("Writable characteristic %s %s", char.uuid, char.properties)
                if WRITE_NO_RESPONSE in char.properties:
                    return service.uuid, char
                if fallback is None:
                    fallback = (service.uuid, char)

        if fallback is None:
            raise NoWritableCharacteristicError("No writable characteristic found")
        return fallback

    async def _request_mtu(self, client) -> int:
        # BlueZ only exchanges MTU on demand; other backends negotiate during
        # connect and just report the result.
        acquire = getattr(getattr(client, "_backend", None), "_acquire_mtu", None)
        if acquire is not None:
            await acquire()
        return int(client.mtu_size)

    async def _negotiate_payload_size(self, client) -> int:
        self._set_state(ConnectionState.MTU_NEGOTIATING)
        logger.info("Requesting MTU %d...", TARGET_MTU)
        try:
            mtu = await asyncio.wait_for(self._request_mtu(client), self.mtu_timeout)
        except (asyncio.TimeoutError, BleakError, AttributeError, TypeError, ValueError) as e:
            logger.info(
                "MTU negotiation failed (%s), using default payload of %d bytes",
                str(e) or e.__class__.__name__, DEFAULT_PAYLOAD_SIZE,
            )
            return DEFAULT_PAYLOAD_SIZE

        payload = min(mtu, TARGET_MTU) - ATT_OVERHEAD
        if payload <= DEFAULT_PAYLOAD_SIZE:
            logger.info("Link MTU is %d, using default payload of %d bytes", mtu, DEFAULT_PAYLOAD_SIZE)
            return DEFAULT_PAYLOAD_SIZE
        logger.info("MTU negotiation succeeded: MTU %d, payload %d bytes", mtu, payload)
        return payload
