"""
Batch Scheduler

Splits the wallet list into fixed-size batches and runs them one after
another. Inside a batch every (wallet, token) job goes through the
ConcurrencyLimiter; the next batch starts only after the whole batch drained.
"""

import asyncio
import gc
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from loguru import logger

from .credentials import Credential, short_address
from .limiter import ConcurrencyLimiter
from .metadata_cache import ResourceDescriptor
from .transfer_worker import JobState, TransferJob, TransferOutcome, TransferWorker


def make_batches(credentials: List[Credential], batch_size: int) -> List[List[Credential]]:
    """Ordered chunks of batch_size; only the last may be shorter"""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [
        credentials[i:i + batch_size]
        for i in range(0, len(credentials), batch_size)
    ]


@dataclass
class RunSummary:
    """Aggregate of a run's outcomes"""
    outcomes: List[TransferOutcome] = field(default_factory=list)
    batches_total: int = 0
    batches_completed: int = 0
    interrupted: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def count(self, state: JobState) -> int:
        return sum(1 for outcome in self.outcomes if outcome.state == state)

    @property
    def by_state(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for outcome in self.outcomes:
            counts[outcome.state.value] = counts.get(outcome.state.value, 0) + 1
        return counts

    @property
    def confirmed(self) -> int:
        return self.count(JobState.CONFIRMED)

    @property
    def failed(self) -> int:
        return self.count(JobState.FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.state.is_skipped)

    def to_dict(self) -> Dict:
        return {
            'batches_total': self.batches_total,
            'batches_completed': self.batches_completed,
            'interrupted': self.interrupted,
            'by_state': self.by_state,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'outcomes': [outcome.to_dict() for outcome in self.outcomes],
        }


class BatchScheduler:
    """
    Sequential batches, bounded concurrency within each

    Args:
        worker: Runs individual jobs
        limiter: Bounds in-flight jobs
        batch_size: Wallets per batch
        gc_between_batches: Issue a gc.collect() hint after each batch
    """

    def __init__(
        self,
        worker: TransferWorker,
        limiter: ConcurrencyLimiter,
        batch_size: int = 50,
        gc_between_batches: bool = True
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.worker = worker
        self.limiter = limiter
        self.batch_size = batch_size
        self.gc_between_batches = gc_between_batches

        if worker.stop_event is None:
            worker.stop_event = asyncio.Event()
        self._stop_event = worker.stop_event

    def request_stop(self):
        """Stop issuing new jobs; in-flight jobs run to completion"""
        if not self._stop_event.is_set():
            logger.warning("Stop requested: no new jobs will be started")
            self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def build_jobs(
        self,
        batch: List[Credential],
        resources: List[ResourceDescriptor]
    ) -> List[TransferJob]:
        return [
            TransferJob(wallet=wallet, resource=resource)
            for wallet in batch
            for resource in resources
        ]

    async def run_batch(
        self,
        batch: List[Credential],
        resources: List[ResourceDescriptor]
    ) -> List[TransferOutcome]:
        """Run every job of one batch and wait for all of them"""
        jobs = self.build_jobs(batch, resources)
        results = await self.limiter.run([
            (lambda job=job: self.worker.process(job))
            for job in jobs
        ])

        # per-wallet completion lines, in input order
        for wallet in batch:
            wallet_outcomes = [r for r in results if r.wallet_address == wallet.address]
            done = sum(1 for r in wallet_outcomes if r.success)
            logger.info(f"✓ Done with wallet {short_address(wallet.address)} ({done}/{len(wallet_outcomes)} sent)")
        return results

    async def run(
        self,
        credentials: List[Credential],
        resources: List[ResourceDescriptor]
    ) -> RunSummary:
        """
        Sweep every token from every wallet

        Returns:
            RunSummary with one outcome per started-or-skipped job
        """
        batches = make_batches(credentials, self.batch_size)
        summary = RunSummary(batches_total=len(batches))

        if not resources:
            logger.warning("No tokens to process")
        logger.info(
            f"🔌 Starting batch transfer: {len(credentials)} wallet(s), "
            f"{len(resources)} token(s), {len(batches)} batch(es)"
        )

        for index, batch in enumerate(batches, start=1):
            if self.stop_requested:
                summary.interrupted = True
                logger.warning(f"Stopping before batch {index}/{len(batches)}")
                break

            logger.info(f"📦 Batch {index}/{len(batches)}: {len(batch)} wallet(s)")
            for wallet in batch:
                logger.info(f"🚀 Processing wallet: {wallet.address}")

            outcomes = await self.run_batch(batch, resources)
            summary.outcomes.extend(outcomes)
            summary.batches_completed += 1

            if self.gc_between_batches:
                gc.collect()

        if self.stop_requested:
            summary.interrupted = True

        summary.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"🎉 Run finished: {summary.confirmed} confirmed, {summary.skipped} skipped, "
            f"{summary.failed} failed ({summary.batches_completed}/{summary.batches_total} batches)"
        )
        return summary
