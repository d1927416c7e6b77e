import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from app.services.errors import StoreUnavailableError

T = TypeVar("T")


async def bounded(operation: str, awaitable: Awaitable[T], timeout_seconds: float) -> T:
    """Await a store or directory call, raising ``StoreUnavailableError`` on expiry."""
    try:
        async with asyncio.timeout(timeout_seconds):
            return await awaitable
    except TimeoutError as exc:
        raise StoreUnavailableError(operation, timeout_seconds) from exc
