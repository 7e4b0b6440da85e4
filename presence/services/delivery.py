# ==============================================================================
# Chunk Delivery
# ==============================================================================
"""
Send output chunks through the transport, in order, each exactly once.
"""

import asyncio
import logging

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from presence.base.transport import Transport
from presence.core.errors import TransientFetchError
from presence.core.models import Chunk
from presence.utils.retry import RETRY_ATTEMPTS_LIGHT, log_retry_attempt

logger = logging.getLogger(__name__)

SEND_RETRY_EXCEPTIONS = (TransientFetchError, ConnectionError, TimeoutError)


async def send_chunks(
    transport: Transport,
    channel_id: str,
    chunks: list[Chunk],
    delay_seconds: float = 0.0,
    retry_wait_min: float = 1.0,
) -> int:
    """
    Deliver chunks in ``chunk_index`` order.

    A chunk is retried on transient errors, then the error propagates and the
    remaining chunks are not sent.

    Returns:
        Number of chunks acknowledged by the transport
    """
    sent = 0
    for chunk in sorted(chunks, key=lambda c: c.chunk_index):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(RETRY_ATTEMPTS_LIGHT),
            wait=wait_exponential(multiplier=retry_wait_min),
            retry=retry_if_exception_type(SEND_RETRY_EXCEPTIONS),
            before_sleep=log_retry_attempt(logger, RETRY_ATTEMPTS_LIGHT),
            reraise=True,
        ):
            with attempt:
                acked = await transport.send_message(channel_id, chunk)
        if acked:
            sent += 1
        else:
            logger.warning(
                "Chunk %d/%d to %s was not acknowledged",
                chunk.chunk_index + 1,
                chunk.total_chunks,
                channel_id,
            )
        if delay_seconds and chunk.chunk_index + 1 < chunk.total_chunks:
            await asyncio.sleep(delay_seconds)
    return sent
