"""
Unit tests for ConcurrencyLimiter.

Tests:
- At most N jobs in flight for any job-set size
- Every job started and awaited
- Results in job order
"""

import asyncio

import pytest

from token_sweeper.limiter import ConcurrencyLimiter


class Probe:
    """Tracks concurrent executions across jobs"""

    def __init__(self):
        self.current = 0
        self.peak = 0
        self.finished = []

    def job(self, index: int, delay: float = 0.01):
        async def run():
            self.current += 1
            self.peak = max(self.peak, self.current)
            try:
                await asyncio.sleep(delay)
                self.finished.append(index)
                return index * 10
            finally:
                self.current -= 1
        return run


class TestConcurrencyLimiter:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("job_count", [0, 1, 3, 5, 17])
    async def test_never_exceeds_limit(self, job_count):
        probe = Probe()
        limiter = ConcurrencyLimiter(limit=3)

        results = await limiter.run([probe.job(i) for i in range(job_count)])

        assert probe.peak <= 3
        assert limiter.peak_in_flight <= 3
        assert len(results) == job_count
        assert sorted(probe.finished) == list(range(job_count))

    @pytest.mark.asyncio
    async def test_reaches_limit_when_enough_jobs(self):
        probe = Probe()
        limiter = ConcurrencyLimiter(limit=4)

        await limiter.run([probe.job(i) for i in range(10)])

        assert probe.peak == 4
        assert limiter.in_flight == 0

    @pytest.mark.asyncio
    async def test_results_follow_job_order(self):
        probe = Probe()
        # later jobs finish first
        jobs = [probe.job(i, delay=0.05 - i * 0.01) for i in range(5)]

        results = await ConcurrencyLimiter(limit=5).run(jobs)

        assert results == [0, 10, 20, 30, 40]
        assert probe.finished != sorted(probe.finished)

    @pytest.mark.asyncio
    async def test_empty_job_list(self):
        assert await ConcurrencyLimiter(limit=2).run([]) == []

    @pytest.mark.asyncio
    async def test_failing_job_does_not_drop_others(self):
        probe = Probe()

        async def boom():
            raise RuntimeError("boom")

        jobs = [probe.job(0), boom, probe.job(2)]
        with pytest.raises(RuntimeError):
            await ConcurrencyLimiter(limit=1).run(jobs)

        assert sorted(probe.finished) == [0, 2]

    def test_rejects_zero_limit(self):
        with pytest.raises(ValueError):
            ConcurrencyLimiter(limit=0)
