"""Bounded-concurrency runner with per-task timeouts."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

TaskFactory = Callable[[], Awaitable[T]]


async def run_bounded(
    tasks: Sequence[TaskFactory[T]],
    *,
    concurrency: int,
    timeout: Union[float, Sequence[float]],
    on_timeout: Callable[[int], T],
    on_error: Callable[[int, Exception], T],
) -> list[T]:
    """Run ``tasks`` with at most ``concurrency`` in flight.

    ``concurrency`` workers pull the next index from a shared iterator until it
    is exhausted, so a slow task only occupies its own worker. Each task is
    raced against its timeout; on expiry it is cancelled and ``on_timeout``
    supplies its result. A task that raises is converted with ``on_error``.

    Returns:
        One result per task, in input order.
    """

    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    timeouts = [float(timeout)] * len(tasks) if isinstance(timeout, (int, float)) else list(timeout)
    if len(timeouts) != len(tasks):
        raise ValueError("one timeout is required per task")

    results: list[T | None] = [None] * len(tasks)
    indices = iter(range(len(tasks)))

    async def worker() -> None:
        for index in indices:
            try:
                results[index] = await asyncio.wait_for(tasks[index](), timeout=timeouts[index])
            except asyncio.TimeoutError:
                logger.warning("Task timed out", extra={"task_index": index, "timeout_seconds": timeouts[index]})
                results[index] = on_timeout(index)
            except Exception as exc:
                logger.exception("Task failed", extra={"task_index": index})
                results[index] = on_error(index, exc)

    workers = [asyncio.create_task(worker()) for _ in range(min(concurrency, len(tasks)))]
    try:
        await asyncio.gather(*workers)
    finally:
        for pending in workers:
            if not pending.done():
                pending.cancel()
    return results  # type: ignore[return-value]
