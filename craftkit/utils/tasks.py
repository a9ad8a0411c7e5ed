"""
Helpers for running groups of coroutines.
"""

import asyncio
from typing import Any, Awaitable


async def gather_cancelling(*aws: Awaitable[Any]) -> list[Any]:
    """
    Like `asyncio.gather`, but the first failure (or cancellation of the
    caller) cancels every sibling and waits for them to finish unwinding.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
