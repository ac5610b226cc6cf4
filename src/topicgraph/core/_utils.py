"""
Shared async helpers for the ingestion pipeline and background services.
"""

import asyncio
import functools
from typing import Callable, TypeVar, ParamSpec

from loguru import logger

P = ParamSpec('P')
T = TypeVar('T')


# =============================================================================
# Thread Pool Executor Helper
# =============================================================================

async def run_in_thread(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """
    Run a blocking function in a thread pool executor.

    Projection and clustering are CPU-bound; running them here keeps the
    event loop responsive while they work.

    Example:
        positions = await run_in_thread(projector.project, embeddings)
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


# =============================================================================
# Async Task Exception Handling
# =============================================================================

def log_task_exception(task: asyncio.Task) -> None:
    """
    Done-callback logging the failure of a fire-and-forget task.

    Args:
        task: The completed asyncio.Task to check for exceptions.
    """
    if task.cancelled():
        logger.debug(f"Background task {task.get_name()} was cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.opt(exception=exc).error(
            f"Background task {task.get_name()} failed: {exc}"
        )
