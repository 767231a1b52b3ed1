"""
Token Sweeper

Moves the full ERC-20 balance of many wallets to one destination address,
in bounded batches, with bounded concurrency and retried submission.

Components:
- metadata_cache: Token name/symbol/decimals, fetched once per run
- fee_estimator: EIP-1559 quote with gas safety buffer and fallbacks
- retry: Exponential backoff around submission
- limiter: Bounded fan-out of transfer jobs
- transfer_worker: Per-(wallet, token) transfer state machine
- batch_scheduler: Sequential wallet batches
- web3_client: AsyncWeb3 implementation of the chain interface

Job Flow:
1. Token balance check (zero -> skip)
2. Gas estimate + fee quote
3. Native balance covers gas (otherwise skip)
4. Submission with retry
5. One confirmation
"""

from .batch_scheduler import (
    BatchScheduler,
    RunSummary,
    make_batches,
)
from .chain_client import (
    ChainClient,
    FeeData,
    FeeQuote,
    Receipt,
    TransferCall,
    TxHandle,
)
from .config import (
    SweepConfig,
    load_config,
)
from .credentials import (
    Credential,
    CredentialSource,
    PrivateKeyFileSource,
    StaticCredentialSource,
)
from .exceptions import (
    BalanceQueryError,
    ChainError,
    ConfigError,
    ConfirmationTimeout,
    MetadataError,
    NetworkError,
    TokenSweeperError,
    TransientSubmissionError,
)
from .fee_estimator import (
    FeeEstimator,
    FeeSettings,
    apply_gas_buffer,
)
from .limiter import ConcurrencyLimiter
from .metadata_cache import (
    MetadataCache,
    ResourceDescriptor,
)
from .retry import RetryPolicy
from .transfer_worker import (
    JobState,
    TransferJob,
    TransferOutcome,
    TransferWorker,
)

__all__ = [
    # Scheduling
    'BatchScheduler',
    'RunSummary',
    'make_batches',
    'ConcurrencyLimiter',

    # Jobs
    'TransferWorker',
    'TransferJob',
    'TransferOutcome',
    'JobState',

    # Fees and retry
    'FeeEstimator',
    'FeeSettings',
    'apply_gas_buffer',
    'RetryPolicy',

    # Metadata
    'MetadataCache',
    'ResourceDescriptor',

    # Chain interface
    'ChainClient',
    'FeeData',
    'FeeQuote',
    'Receipt',
    'TransferCall',
    'TxHandle',

    # Credentials and config
    'Credential',
    'CredentialSource',
    'PrivateKeyFileSource',
    'StaticCredentialSource',
    'SweepConfig',
    'load_config',

    # Errors
    'TokenSweeperError',
    'ConfigError',
    'NetworkError',
    'ChainError',
    'MetadataError',
    'BalanceQueryError',
    'TransientSubmissionError',
    'ConfirmationTimeout',
]

__version__ = '1.0.0'
