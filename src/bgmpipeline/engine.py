"""Bounded-concurrency execution engine.

A fixed pool of worker coroutines drains a queue of task ids. Each worker
picks the next id as soon as its current one finishes, so at most
``concurrency`` resolver calls are outstanding at any time. A failing task
is logged and recorded; it never stops its siblings or the queue.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable


logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 20

Worker = Callable[[str], Awaitable[None]]


@dataclass
class EngineReport:
    completed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ExecutionEngine:
    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.concurrency = concurrency

    async def run(self, task_ids: Iterable[str], worker: Worker) -> EngineReport:
        queue: asyncio.Queue[str] = asyncio.Queue()
        for tid in task_ids:
            queue.put_nowait(tid)

        report = EngineReport()
        if queue.empty():
            return report

        async def _drain() -> None:
            while True:
                try:
                    tid = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    await worker(tid)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("Task %s failed: %s: %s", tid, type(e).__name__, e)
                    logger.debug("Task %s traceback", tid, exc_info=True)
                    report.failed[tid] = f"{type(e).__name__}: {e}"
                else:
                    report.completed.append(tid)
                finally:
                    queue.task_done()

        n_workers = min(self.concurrency, queue.qsize())
        logger.info("Engine: %d tasks, %d workers", queue.qsize(), n_workers)
        await asyncio.gather(*(_drain() for _ in range(n_workers)))
        logger.info("Engine: %d completed, %d failed", len(report.completed), len(report.failed))
        return report
