"""Periodic task runner.

Each ``PeriodicTask`` ticks on its own interval. A tick starts a run in
the background; if the previous run of the same task is still going,
the tick is skipped rather than stacked. ``TaskRunner`` owns every task
handle so shutdown can stop them all and wait for in-flight runs.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

TaskFunc = Callable[[], Awaitable[object]]


class PeriodicTask:
    """Run an async function every ``interval`` seconds without overlap."""

    def __init__(
        self,
        name: str,
        func: TaskFunc,
        interval: float,
        run_immediately: bool = True,
    ):
        self.name = name
        self.func = func
        self.interval = interval
        self.run_immediately = run_immediately

        self._loop_task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None

        self.runs = 0
        self.failures = 0
        self.skipped = 0
        self.last_run_at: float | None = None
        self.last_duration: float | None = None
        self.last_error: str | None = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")

    def tick(self) -> bool:
        """Start a run unless one is in flight. Returns True if started."""
        if self.busy:
            self.skipped += 1
            logger.warning(f"{self.name}: previous run still active, skipping tick")
            return False
        self._inflight = asyncio.create_task(self._run_once(), name=f"run:{self.name}")
        return True

    async def _loop(self) -> None:
        if not self.run_immediately:
            await asyncio.sleep(self.interval)
        while True:
            self.tick()
            await asyncio.sleep(self.interval)

    async def _run_once(self) -> None:
        start = time.monotonic()
        self.last_run_at = time.time()
        try:
            await self.func()
            self.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            logger.error(f"{self.name} run failed: {e}", exc_info=True)
        finally:
            self.runs += 1
            self.last_duration = time.monotonic() - start

    async def stop(self, grace: float = 10.0) -> None:
        """Stop ticking, wait up to ``grace`` seconds for an in-flight run, then cancel it."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        inflight = self._inflight
        if inflight is None or inflight.done():
            return

        done, _ = await asyncio.wait({inflight}, timeout=grace)
        if not done:
            logger.warning(f"{self.name}: run did not finish within {grace}s, cancelling")
            inflight.cancel()
            await asyncio.gather(inflight, return_exceptions=True)

    def get_status(self) -> dict:
        return {
            "interval": self.interval,
            "running": self.running,
            "busy": self.busy,
            "runs": self.runs,
            "failures": self.failures,
            "skipped": self.skipped,
            "last_run_at": self.last_run_at,
            "last_duration": self.last_duration,
            "last_error": self.last_error,
        }


class TaskRunner:
    """Lifecycle manager for the service's periodic tasks."""

    def __init__(self) -> None:
        self._tasks: dict[str, PeriodicTask] = {}

    def add(
        self,
        name: str,
        func: TaskFunc,
        interval: float,
        run_immediately: bool = True,
    ) -> PeriodicTask:
        if name in self._tasks:
            raise ValueError(f"Task '{name}' is already registered")
        task = PeriodicTask(name, func, interval, run_immediately)
        self._tasks[name] = task
        return task

    @property
    def tasks(self) -> dict[str, PeriodicTask]:
        return dict(self._tasks)

    def start(self) -> None:
        for name, task in self._tasks.items():
            task.start()
            logger.info(f"Started periodic task '{name}' (every {task.interval:g}s)")

    async def stop(self, grace: float = 10.0) -> None:
        """Stop every task; in-flight runs share one grace period."""
        deadline = time.monotonic() + grace
        for name, task in self._tasks.items():
            remaining = max(0.0, deadline - time.monotonic())
            await task.stop(remaining)
            logger.info(f"Stopped periodic task '{name}'")

    def get_status(self) -> dict[str, dict]:
        return {name: task.get_status() for name, task in self._tasks.items()}
