"""Invoking user-supplied callbacks from the event loop.

Health checks, rollback hooks and compatibility checks may be plain
functions or coroutine functions. Plain functions run in a worker thread
so that a blocking call stays bounded by the caller's ``asyncio.wait_for``
and never stalls the loop other features share.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable


def is_coroutine_callable(fn: Callable[..., Any]) -> bool:
    if inspect.iscoroutinefunction(fn):
        return True
    return inspect.iscoroutinefunction(getattr(fn, "__call__", None))


async def call_maybe_async(fn: Callable[..., Any], *args: Any) -> Any:
    """Await ``fn(*args)``, off the loop unless ``fn`` is a coroutine function."""
    if is_coroutine_callable(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    # Plain callables may still hand back an awaitable.
    if inspect.isawaitable(result):
        result = await result
    return result
