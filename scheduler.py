import asyncio
import logging
from datetime import datetime, timezone

UTC = timezone.utc
logger = logging.getLogger("uvicorn")


class Scheduler:
    """
    Minimal in-process scheduler.
    Usage:
        sched = Scheduler()
        sched.every(900, coro, arg1, arg2=...)
        await sched.run_forever()
    """
    def __init__(self, tick: float = 1.0):
        self.tick = tick
        self.jobs = []  # list[(seconds, coro, args, kwargs, last_run)]

    def every(self, seconds: int, coro, *args, **kwargs):
        if seconds <= 0:
            raise ValueError("interval must be positive")
        self.jobs.append([seconds, coro, args, kwargs, None])

    async def _run(self, coro, args, kwargs):
        try:
            await coro(*args, **kwargs)
        except Exception:
            logger.exception("[scheduler] job %s failed", getattr(coro, "__name__", coro))

    async def run_forever(self):
        while True:
            now = datetime.now(tz=UTC)
            for job in self.jobs:
                seconds, coro, args, kwargs, last_run = job
                if last_run is None or (now - last_run).total_seconds() >= seconds:
                    job[4] = now
                    await self._run(coro, args, kwargs)
            await asyncio.sleep(self.tick)
