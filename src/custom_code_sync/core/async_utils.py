"""Async utilities for running blocking tracker and HTTP calls from the session."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    The session awaits each call before starting the next, so tracker
    operations never overlap even though they run on worker threads.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        result = await run_sync(tracker.apply, event)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
