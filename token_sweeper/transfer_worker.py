"""
Transfer Worker

Per-(wallet, token) state machine:

    PENDING -> BALANCE_CHECKED -> SKIPPED_ZERO
                               -> GAS_ESTIMATED -> AFFORDABILITY_CHECKED
                                    -> SKIPPED_INSUFFICIENT_FUNDS
                                    -> SUBMITTED -> CONFIRMED | FAILED

Any step may end in FAILED. Failures stay inside the job: process() always
returns an outcome and never raises for job-level problems.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from loguru import logger

from .chain_client import ChainClient, FeeQuote, Receipt, TransferCall, TxHandle
from .credentials import Credential, short_address
from .exceptions import BalanceQueryError, ConfirmationTimeout
from .fee_estimator import FeeEstimator
from .metadata_cache import ResourceDescriptor
from .retry import RetryPolicy


class JobState(Enum):
    PENDING = "pending"
    BALANCE_CHECKED = "balance_checked"
    GAS_ESTIMATED = "gas_estimated"
    AFFORDABILITY_CHECKED = "affordability_checked"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    SKIPPED_ZERO = "skipped_zero"
    SKIPPED_INSUFFICIENT_FUNDS = "skipped_insufficient_funds"
    SKIPPED_STOPPED = "skipped_stopped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_skipped(self) -> bool:
        return self.value.startswith("skipped")


TERMINAL_STATES = frozenset({
    JobState.CONFIRMED,
    JobState.SKIPPED_ZERO,
    JobState.SKIPPED_INSUFFICIENT_FUNDS,
    JobState.SKIPPED_STOPPED,
    JobState.FAILED,
})

# allowed forward moves; FAILED is reachable from every non-terminal state
TRANSITIONS: Dict[JobState, frozenset] = {
    JobState.PENDING: frozenset({JobState.BALANCE_CHECKED, JobState.SKIPPED_STOPPED}),
    JobState.BALANCE_CHECKED: frozenset({JobState.SKIPPED_ZERO, JobState.GAS_ESTIMATED}),
    JobState.GAS_ESTIMATED: frozenset({JobState.AFFORDABILITY_CHECKED}),
    JobState.AFFORDABILITY_CHECKED: frozenset({JobState.SKIPPED_INSUFFICIENT_FUNDS, JobState.SUBMITTED}),
    JobState.SUBMITTED: frozenset({JobState.CONFIRMED}),
}


@dataclass
class TransferJob:
    """One (wallet, token) sweep attempt"""
    wallet: Credential
    resource: ResourceDescriptor
    state: JobState = JobState.PENDING
    history: List[JobState] = field(default_factory=lambda: [JobState.PENDING])

    def advance(self, new_state: JobState):
        if self.state.is_terminal:
            raise RuntimeError(f"Job already terminal ({self.state.value})")
        if new_state != JobState.FAILED and new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    @property
    def label(self) -> str:
        return f"{self.resource.symbol}@{short_address(self.wallet.address)}"


@dataclass
class TransferOutcome:
    """Terminal record of a job"""
    wallet_address: str
    resource_id: str
    symbol: str
    state: JobState
    amount: int = 0
    detail: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    fee_quote: Optional[FeeQuote] = None
    submit_attempts: int = 0
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.completed_at is None:
            self.completed_at = datetime.now(timezone.utc)

    @property
    def success(self) -> bool:
        return self.state == JobState.CONFIRMED

    def to_dict(self) -> Dict:
        return {
            'wallet_address': self.wallet_address,
            'resource_id': self.resource_id,
            'symbol': self.symbol,
            'state': self.state.value,
            'amount': self.amount,
            'detail': self.detail,
            'tx_hash': self.tx_hash,
            'block_number': self.block_number,
            'submit_attempts': self.submit_attempts,
            'completed_at': self.completed_at.isoformat(),
        }


class TransferWorker:
    """
    Drives TransferJobs to a terminal state

    Read-only queries (balance, fees, native balance) fail the job at once.
    Only submission is retried, through the RetryPolicy.
    """

    def __init__(
        self,
        client: ChainClient,
        destination: str,
        fee_estimator: Optional[FeeEstimator] = None,
        retry_policy: Optional[RetryPolicy] = None,
        confirmation_timeout: float = 300.0,
        stop_event: Optional[asyncio.Event] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Args:
            client: Chain access
            destination: Address receiving every swept balance
            fee_estimator: Gas/fee quoting
            retry_policy: Backoff applied around submission
            confirmation_timeout: Seconds to wait for a receipt
            stop_event: When set, jobs not yet started end SKIPPED_STOPPED
            sleep: Sleep used between submission retries
        """
        self.client = client
        self.destination = destination
        self.fee_estimator = fee_estimator or FeeEstimator()
        self.retry_policy = retry_policy or RetryPolicy()
        self.confirmation_timeout = confirmation_timeout
        self.stop_event = stop_event
        self._sleep = sleep

    def _finish(
        self,
        job: TransferJob,
        state: JobState,
        amount: int = 0,
        detail: Optional[str] = None,
        **kwargs
    ) -> TransferOutcome:
        job.advance(state)
        outcome = TransferOutcome(
            wallet_address=job.wallet.address,
            resource_id=job.resource.id,
            symbol=job.resource.symbol,
            state=state,
            amount=amount,
            detail=detail,
            **kwargs
        )

        prefix = f"{job.resource.symbol} | {job.wallet.address}"
        if state == JobState.CONFIRMED:
            logger.success(f"✅ {prefix}: sent in block {outcome.block_number} ({outcome.tx_hash})")
        elif state == JobState.SKIPPED_ZERO:
            logger.info(f"⚠️ {prefix}: balance 0, skip")
        elif state == JobState.FAILED:
            logger.error(f"✗ {prefix}: {detail}")
        else:
            logger.warning(f"⚠️ {prefix}: skipped, {detail}")
        return outcome

    async def process(self, job: TransferJob) -> TransferOutcome:
        """Run one job to a terminal state"""
        if self.stop_event is not None and self.stop_event.is_set():
            return self._finish(job, JobState.SKIPPED_STOPPED, detail="stop requested before start")

        resource = job.resource
        address = job.wallet.address

        # 1. token balance
        try:
            balance = await self.client.get_balance(address, resource.id)
        except Exception as e:
            error = BalanceQueryError(f"balance query failed: {e}")
            return self._finish(job, JobState.FAILED, detail=str(error))
        job.advance(JobState.BALANCE_CHECKED)

        # 2. nothing to move
        if balance == 0:
            return self._finish(job, JobState.SKIPPED_ZERO, detail="zero balance")
        logger.info(f"🔹 {resource.symbol} | {short_address(address)}: balance {resource.format_amount(balance)}")

        # 3. fee quote for the full-balance transfer
        call = TransferCall(
            sender=job.wallet,
            resource_id=resource.id,
            recipient=self.destination,
            amount=balance,
        )
        try:
            quote = await self.fee_estimator.quote(self.client, call)
        except Exception as e:
            return self._finish(job, JobState.FAILED, amount=balance, detail=f"fee estimation failed: {e}")
        job.advance(JobState.GAS_ESTIMATED)

        # 4. can the wallet pay for gas
        try:
            native_balance = await self.client.get_native_balance(address)
        except Exception as e:
            return self._finish(
                job, JobState.FAILED, amount=balance, fee_quote=quote,
                detail=f"native balance query failed: {e}"
            )
        job.advance(JobState.AFFORDABILITY_CHECKED)

        gas_cost = quote.max_cost
        if native_balance < gas_cost:
            return self._finish(
                job, JobState.SKIPPED_INSUFFICIENT_FUNDS, amount=balance, fee_quote=quote,
                detail=f"insufficient funds for gas (have {native_balance} wei, need {gas_cost} wei)"
            )

        # 5. submit with backoff
        attempts = 0

        async def submit_once() -> TxHandle:
            nonlocal attempts
            attempts += 1
            return await self.client.submit(call, quote)

        try:
            handle = await self.retry_policy.execute(
                submit_once,
                sleep=self._sleep,
                label=f"submit {job.label}"
            )
        except Exception as e:
            return self._finish(
                job, JobState.FAILED, amount=balance, fee_quote=quote,
                submit_attempts=attempts, detail=f"submission failed: {e}"
            )
        job.advance(JobState.SUBMITTED)
        logger.info(f"📤 {resource.symbol} | {short_address(address)}: tx hash {handle.tx_hash}")

        # 6. one confirmation
        try:
            receipt: Receipt = await asyncio.wait_for(
                self.client.await_confirmation(handle, confirmations=1),
                timeout=self.confirmation_timeout
            )
        except (asyncio.TimeoutError, ConfirmationTimeout):
            error = ConfirmationTimeout(handle.tx_hash, self.confirmation_timeout)
            return self._finish(
                job, JobState.FAILED, amount=balance, fee_quote=quote,
                submit_attempts=attempts, tx_hash=handle.tx_hash, detail=str(error)
            )
        except Exception as e:
            return self._finish(
                job, JobState.FAILED, amount=balance, fee_quote=quote,
                submit_attempts=attempts, tx_hash=handle.tx_hash,
                detail=f"confirmation failed for {handle.tx_hash}: {e}"
            )

        if not receipt.succeeded:
            return self._finish(
                job, JobState.FAILED, amount=balance, fee_quote=quote,
                submit_attempts=attempts, tx_hash=handle.tx_hash, block_number=receipt.block_number,
                detail=f"transaction {handle.tx_hash} reverted in block {receipt.block_number}"
            )

        return self._finish(
            job, JobState.CONFIRMED, amount=balance, fee_quote=quote,
            submit_attempts=attempts, tx_hash=handle.tx_hash, block_number=receipt.block_number,
            detail=f"{resource.format_amount(balance)} {resource.symbol} sent"
        )
