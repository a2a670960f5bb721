from __future__ import annotations

import asyncio
import logging
from typing import Set

from mrcoverage.correlation.engine import CorrelationEngine
from mrcoverage.errors import CoverageReportError
from mrcoverage.events import Event
from mrcoverage.metric import error_counter

logger = logging.getLogger("mrcoverage")


class EventDispatcher:
    """Runs every event in its own task and never lets a failure escape it."""

    def __init__(self, engine: CorrelationEngine):
        self.engine = engine
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, event: Event) -> asyncio.Task:
        task = asyncio.create_task(self._run(event), name=str(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, event: Event) -> None:
        try:
            await self.engine.handle(event)
        except asyncio.CancelledError:
            raise
        except CoverageReportError as e:
            error_counter.labels(context=e.context).inc()
            logger.error("Processing %s failed: %s", event, e)
        except Exception:
            error_counter.labels(context="event_dispatch").inc()
            logger.error("Exception raised when processing %s", event, exc_info=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        if tasks:
            logger.info("Waiting for %d pending events", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
