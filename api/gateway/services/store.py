"""Store access helpers shared by the ledgers."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from gateway.errors import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_store_failure(exc: BaseException) -> bool:
    """True for infrastructure faults, false for logic errors such as integrity violations."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError):
        return exc.connection_invalidated
    return isinstance(exc, (ConnectionError, TimeoutError, OSError))


async def call_store(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 2,
    base_delay: float = 0.05,
    name: str = "store operation",
) -> T:
    """
    Run one atomic store operation, retrying infrastructure faults a bounded number of times.

    Raises:
        StoreUnavailable: when every attempt failed with an infrastructure fault.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except (DBAPIError, ConnectionError, TimeoutError, OSError) as exc:
            if not is_store_failure(exc):
                raise
            if attempt == attempts:
                logger.error("%s failed after %d attempts: %s", name, attempts, exc)
                raise StoreUnavailable() from exc
            delay = base_delay * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.3fs: %s",
                name,
                attempt,
                attempts,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
    raise StoreUnavailable()
