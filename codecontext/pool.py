"""Bounded fan-out / fan-in for independent async units of work.

A failing unit is returned as a failed :class:`Outcome` instead of raising,
so callers decide per use whether to degrade gracefully (research sources,
per-file indexing) or to propagate (query validation, synthesis).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, TypeVar

from .errors import CodeContextError, TaskTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class NotDispatchedError(CodeContextError):
    """The unit was skipped because the batch was cancelled first."""


@dataclass
class Outcome(Generic[T, R]):
    item: T
    value: Optional[R] = None
    error: Optional[BaseException] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
    timeout: Optional[float] = None,
    cancelled: Optional[asyncio.Event] = None,
) -> List[Outcome[T, R]]:
    """Run ``worker(item)`` for every item with at most *limit* in flight.

    Returns one outcome per item, in input order, after every unit settled.
    ``timeout`` applies per unit. Cancelling the caller cancels all units.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(item: T) -> Outcome[T, R]:
        async with semaphore:
            if cancelled is not None and cancelled.is_set():
                return Outcome(item=item, error=NotDispatchedError("cancelled before dispatch"))
            started = time.perf_counter()
            try:
                if timeout is not None:
                    value = await asyncio.wait_for(worker(item), timeout=timeout)
                else:
                    value = await worker(item)
            except asyncio.TimeoutError as exc:
                error = exc if timeout is None else TaskTimeoutError(f"timed out after {timeout:.2f}s")
                return Outcome(item=item, error=error, elapsed=time.perf_counter() - started)
            except Exception as exc:
                return Outcome(item=item, error=exc, elapsed=time.perf_counter() - started)
            return Outcome(item=item, value=value, elapsed=time.perf_counter() - started)

    return list(await asyncio.gather(*(_run(item) for item in items)))
