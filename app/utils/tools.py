from collections.abc import Callable
from inspect import iscoroutinefunction
from typing import Any


async def execute_async_or_sync_method(
    job_function: Callable[..., Any],
    **kwargs,
):
    """
    Execute the job_function with the provided kwargs, either as a coroutine or a regular function.
    """
    if iscoroutinefunction(job_function):
        return await job_function(**kwargs)
    return job_function(**kwargs)
