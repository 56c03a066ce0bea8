from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger


logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class _MinuteLimiter:
    max_runs: int
    _starts: deque[float] = field(default_factory=deque)

    def acquire(self, now: float | None = None) -> bool:
        current = time.monotonic() if now is None else now
        while self._starts and current - self._starts[0] >= 60:
            self._starts.popleft()
        if self.max_runs > 0 and len(self._starts) >= self.max_runs:
            return False
        self._starts.append(current)
        return True


@dataclass(slots=True)
class _RegisteredJob:
    name: str
    func: JobFunc
    limiter: _MinuteLimiter


class JobScheduler:
    """Cron-scheduled jobs on APScheduler with retry, backoff and a per-minute cap.

    Every invocation, scheduled or enqueued by hand, goes through ``execute``:
    up to ``attempts`` tries with exponential backoff starting at
    ``backoff_seconds``.
    """

    def __init__(self, *, timezone: str = "UTC", attempts: int = 3, backoff_seconds: float = 2.0) -> None:
        self.timezone = timezone
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds
        self._scheduler = AsyncIOScheduler(timezone=timezone)
        self._jobs: dict[str, _RegisteredJob] = {}

    def register(
        self,
        name: str,
        cron: str,
        func: JobFunc,
        *,
        max_instances: int = 1,
        max_runs_per_minute: int = 0,
    ) -> None:
        self._jobs[name] = _RegisteredJob(name=name, func=func, limiter=_MinuteLimiter(max_runs_per_minute))
        self._scheduler.add_job(
            self.execute,
            CronTrigger.from_crontab(cron, timezone=self.timezone),
            args=[name],
            id=name,
            name=name,
            max_instances=max_instances,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("Scheduled job %s (%s)", name, cron)

    def enqueue(self, name: str) -> None:
        if name not in self._jobs:
            raise KeyError(f"Unknown job: {name}")
        self._scheduler.add_job(self.execute, "date", args=[name], name=f"{name}:manual")

    async def execute(self, name: str) -> Any:
        job = self._jobs[name]
        if not job.limiter.acquire():
            logger.warning("%s: skipped, more than %s runs in the last minute", name, job.limiter.max_runs)
            return None

        delay = self.backoff_seconds
        for attempt in range(1, self.attempts + 1):
            try:
                return await job.func()
            except Exception:
                if attempt == self.attempts:
                    logger.error("%s: giving up after %s attempts", name, attempt)
                    raise
                logger.warning("%s: attempt %s failed, retrying in %.1fs", name, attempt, delay, exc_info=True)
                await asyncio.sleep(delay)
                delay *= 2
        return None

    def start(self) -> None:
        self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)
