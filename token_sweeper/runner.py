"""
Sweep Runner

Wires the components together for one run:
1. Load config and credentials (fatal on ConfigError)
2. Route SIGINT/SIGTERM to the scheduler's stop request
3. Populate token metadata once
4. Run all batches
5. Close the chain client
"""

import asyncio
import signal
import sys
from typing import List, Optional

from loguru import logger

from .batch_scheduler import BatchScheduler, RunSummary
from .chain_client import ChainClient
from .config import SweepConfig, load_config
from .credentials import CredentialSource, PrivateKeyFileSource
from .exceptions import ConfigError
from .fee_estimator import FeeEstimator, FeeSettings
from .limiter import ConcurrencyLimiter
from .logging_setup import setup_logging
from .metadata_cache import MetadataCache
from .retry import RetryPolicy
from .transfer_worker import TransferWorker
from .web3_client import Web3ChainClient


async def graceful_shutdown(client: ChainClient, timeout: float = 15.0):
    """Close the client, bounded by timeout"""
    try:
        await asyncio.wait_for(client.close(), timeout=timeout)
        logger.debug("✓ Chain client closed")
    except asyncio.TimeoutError:
        logger.warning(f"Client close timed out after {timeout}s")


def install_signal_handlers(scheduler: BatchScheduler):
    """SIGINT/SIGTERM stop new jobs; submitted transfers finish on their own"""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.request_stop)
        except (NotImplementedError, RuntimeError):
            # no loop signal support (e.g. Windows); KeyboardInterrupt still aborts
            logger.debug(f"Signal handler for {sig.name} not installed")


def build_scheduler(config: SweepConfig, client: ChainClient) -> BatchScheduler:
    worker = TransferWorker(
        client=client,
        destination=config.to_address,
        fee_estimator=FeeEstimator(FeeSettings.from_config(config)),
        retry_policy=RetryPolicy.from_config(config),
        confirmation_timeout=config.confirmation_timeout_seconds,
        stop_event=asyncio.Event(),
    )
    return BatchScheduler(
        worker=worker,
        limiter=ConcurrencyLimiter(config.token_concurrency),
        batch_size=config.wallet_batch_size,
        gc_between_batches=config.gc_between_batches,
    )


async def run_sweep(
    config: SweepConfig,
    source: CredentialSource,
    client: ChainClient,
    handle_signals: bool = False
) -> RunSummary:
    """
    Execute a full sweep with an already-built client

    Raises:
        ConfigError: credential source empty or unreadable
    """
    credentials = source.load()

    scheduler = build_scheduler(config, client)
    if handle_signals:
        install_signal_handlers(scheduler)

    cache = MetadataCache(client)
    await cache.populate(config.tokens)

    return await scheduler.run(credentials, cache.descriptors())


async def async_main(config_path: Optional[str] = None) -> int:
    try:
        config = load_config(config_path or "token_sweeper.yaml")
    except ConfigError as e:
        setup_logging()
        logger.error(f"⚠️ {e}")
        return 1

    setup_logging(config.log_level)

    client = Web3ChainClient(config.rpc_url, receipt_timeout=config.confirmation_timeout_seconds)
    try:
        summary = await run_sweep(
            config,
            PrivateKeyFileSource(config.key_file),
            client,
            handle_signals=True
        )
    except ConfigError as e:
        logger.error(f"⚠️ {e}")
        return 1
    finally:
        await graceful_shutdown(client)

    if summary.interrupted:
        logger.warning("Run was interrupted; submitted transfers may still be pending")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    config_path = args[0] if args else None
    return asyncio.run(async_main(config_path))
