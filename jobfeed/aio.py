"""Bridge between the event loop and blocking collaborators."""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable


async def call(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Await *fn* if it is a coroutine function, otherwise run it in a worker thread.

    Source fetchers and scorers built on ``requests`` block; running them off
    the loop keeps every state mutation on the loop thread.
    """
    if inspect.iscoroutinefunction(fn):
        return await fn(*args, **kwargs)
    return await asyncio.to_thread(fn, *args, **kwargs)
