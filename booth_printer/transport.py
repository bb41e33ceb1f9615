import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .errors import TransferError

logger = logging.getLogger(__name__)

WriteFunc = Callable[[bytes], Awaitable[None]]
ProgressFunc = Callable[[int, int], None]

SMALL_CHUNK = 100
SMALL_CHUNK_DELAY = 0.05
LARGE_CHUNK_DELAY = 0.02


def split_chunks(payload: bytes, size: int) -> List[bytes]:
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    return [payload[i:i + size] for i in range(0, len(payload), size)]


def pacing_delay(chunk_size: int) -> float:
    # Cheap printers have tiny receive buffers; small writes arrive faster
    # than they drain, so they get the longer pause.
    return SMALL_CHUNK_DELAY if chunk_size < SMALL_CHUNK else LARGE_CHUNK_DELAY


async def write_chunked(
    write: WriteFunc,
    payload: bytes,
    chunk_size: int,
    delay: Optional[float] = None,
    on_progress: Optional[ProgressFunc] = None,
) -> int:
    """
    Write ``payload`` in order, at most ``chunk_size`` bytes per write,
    sleeping between writes. Returns the number of writes issued.

    A failing write raises TransferError; earlier chunks stay sent.
    """
    chunks = split_chunks(payload, chunk_size)
    if delay is None:
        delay = pacing_delay(chunk_size)
    total = len(payload)
    sent = 0

    logger.debug("Writing %d bytes in %d chunks of <= %d", total, len(chunks), chunk_size)

    for index, chunk in enumerate(chunks):
        try:
            await write(chunk)
        except TransferError:
            raise
        except Exception as e:
            raise TransferError(
                f"Write failed at chunk {index + 1}/{len(chunks)} ({sent}/{total} bytes sent): {e}"
            ) from e
        sent += len(chunk)
        if on_progress:
            on_progress(sent, total)
        if index + 1 < len(chunks) and delay > 0:
            await asyncio.sleep(delay)

    return len(chunks)
