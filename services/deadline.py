import asyncio
import logging
from typing import Awaitable, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_deadline(
    awaitable: Awaitable[T],
    timeout: float,
    error_cls: Type[Exception],
    operation: str,
) -> T:
    """
    Awaits `awaitable` for at most `timeout` seconds.

    On expiry the pending call is abandoned and `error_cls` is raised. Coroutines are
    cancelled by asyncio.wait_for; work running in a thread (asyncio.to_thread) keeps
    running to completion in the background and its result is discarded.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"{operation} exceeded its {timeout}s deadline")
        raise error_cls(f"{operation} timed out after {timeout}s") from e
