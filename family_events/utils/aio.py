"""Small asyncio helpers shared by providers and listeners."""

import asyncio
from typing import Awaitable, TypeVar, Union

T = TypeVar("T")


async def maybe_await(value: Union[T, Awaitable[T]]) -> T:
    """Await if value is awaitable; otherwise return as-is (sync mock providers)."""
    if asyncio.iscoroutine(value) or isinstance(value, asyncio.Future):
        return await value
    return value
