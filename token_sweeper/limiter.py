"""Bounded fan-out of transfer jobs"""

import asyncio
from typing import Awaitable, Callable, List, TypeVar

from loguru import logger


T = TypeVar('T')


class ConcurrencyLimiter:
    """
    Runs job factories with at most `limit` executing at once

    Every job is started and awaited before run() returns. Results come back
    in job order; completion order is unconstrained.
    """

    def __init__(self, limit: int = 5):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self.in_flight = 0
        self.peak_in_flight = 0

    async def _guarded(self, job: Callable[[], Awaitable[T]]) -> T:
        async with self._semaphore:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                return await job()
            finally:
                self.in_flight -= 1

    async def run(self, jobs: List[Callable[[], Awaitable[T]]]) -> List[T]:
        """
        Execute all jobs under the concurrency bound

        A job that raises does not stop the others; its exception is
        re-raised once every job has finished.
        """
        if not jobs:
            return []

        logger.debug(f"Running {len(jobs)} job(s), max {self.limit} in flight")
        tasks = [asyncio.ensure_future(self._guarded(job)) for job in jobs]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results
