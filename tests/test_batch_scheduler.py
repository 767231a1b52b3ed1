"""
Tests for BatchScheduler and full sweeps.

Tests:
- Batch partitioning
- Strict batch sequencing
- End-to-end scenarios through run_sweep
- Stop requests
"""

import asyncio

import pytest

from conftest import DESTINATION, FakeChainClient, make_descriptor, make_wallet, no_sleep, TOKEN_A, TOKEN_B
from token_sweeper.batch_scheduler import BatchScheduler, make_batches
from token_sweeper.config import SweepConfig
from token_sweeper.credentials import StaticCredentialSource
from token_sweeper.exceptions import ConfigError
from token_sweeper.limiter import ConcurrencyLimiter
from token_sweeper.retry import RetryPolicy
from token_sweeper import runner
from token_sweeper.runner import run_sweep
from token_sweeper.transfer_worker import JobState, TransferWorker


def make_scheduler(client, batch_size=2, concurrency=5, max_attempts=3) -> BatchScheduler:
    worker = TransferWorker(
        client=client,
        destination=DESTINATION,
        retry_policy=RetryPolicy(max_attempts=max_attempts, initial_delay=0),
        sleep=no_sleep,
    )
    return BatchScheduler(
        worker=worker,
        limiter=ConcurrencyLimiter(concurrency),
        batch_size=batch_size,
        gc_between_batches=False,
    )


def sweep_config(**overrides) -> SweepConfig:
    values = dict(
        rpc_url="http://localhost:8545",
        to_address=DESTINATION,
        tokens=[TOKEN_A],
        retry_attempts=3,
        retry_initial_delay=0.0,
        gc_between_batches=False,
    )
    values.update(overrides)
    return SweepConfig(**values)


class TestMakeBatches:

    @pytest.mark.parametrize("length,size,expected", [
        (0, 3, []),
        (1, 3, [1]),
        (6, 3, [3, 3]),
        (7, 3, [3, 3, 1]),
        (5, 1, [1, 1, 1, 1, 1]),
        (4, 10, [4]),
    ])
    def test_partition_sizes(self, length, size, expected):
        credentials = [make_wallet(i) for i in range(length)]

        batches = make_batches(credentials, size)

        assert [len(b) for b in batches] == expected
        assert [c for batch in batches for c in batch] == credentials

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError):
            make_batches([make_wallet(1)], 0)


class TestBatchScheduler:

    @pytest.mark.asyncio
    async def test_builds_wallet_by_token_jobs(self, wallets, token_a, token_b):
        client = FakeChainClient()
        scheduler = make_scheduler(client, batch_size=10)

        summary = await scheduler.run(wallets, [token_a, token_b])

        assert len(summary.outcomes) == len(wallets) * 2
        assert summary.count(JobState.SKIPPED_ZERO) == 6
        assert summary.batches_total == 1
        assert summary.batches_completed == 1

    @pytest.mark.asyncio
    async def test_next_batch_waits_for_previous(self, token_a):
        wallets = [make_wallet(i) for i in range(1, 5)]
        client = FakeChainClient(
            balances={(w.address, TOKEN_A): 100 for w in wallets},
            latency=0.01,
            confirmation_delay=0.02,
        )
        scheduler = make_scheduler(client, batch_size=2, concurrency=4)

        summary = await scheduler.run(wallets, [token_a])

        second_batch = {wallets[2].address, wallets[3].address}
        first_start = next(
            i for i, (kind, who) in enumerate(client.events)
            if kind == "start" and who in second_batch
        )
        confirmed_before = [e for e in client.events[:first_start] if e[0] == "confirmed"]
        assert len(confirmed_before) == 2
        assert summary.confirmed == 4
        assert summary.batches_completed == 2

    @pytest.mark.asyncio
    async def test_concurrency_bound_respected(self, token_a, token_b):
        wallets = [make_wallet(i) for i in range(1, 9)]
        client = FakeChainClient(latency=0.01)
        scheduler = make_scheduler(client, batch_size=8, concurrency=3)

        await scheduler.run(wallets, [token_a, token_b])

        assert client.peak_in_flight <= 3
        assert scheduler.limiter.peak_in_flight <= 3

    @pytest.mark.asyncio
    async def test_failed_job_does_not_stop_batch(self, token_a):
        wallets = [make_wallet(i) for i in range(1, 4)]
        client = FakeChainClient(
            balances={(w.address, TOKEN_A): 5 for w in wallets},
            balance_failures={wallets[0].address},
        )
        scheduler = make_scheduler(client, batch_size=2)

        summary = await scheduler.run(wallets, [token_a])

        assert summary.failed == 1
        assert summary.confirmed == 2

    @pytest.mark.asyncio
    async def test_stop_before_run_processes_nothing(self, wallets, token_a):
        client = FakeChainClient()
        scheduler = make_scheduler(client)
        scheduler.request_stop()

        summary = await scheduler.run(wallets, [token_a])

        assert summary.interrupted
        assert summary.outcomes == []
        assert summary.batches_completed == 0

    @pytest.mark.asyncio
    async def test_stop_mid_run_lets_current_batch_finish(self, token_a):
        wallets = [make_wallet(i) for i in range(1, 5)]
        client = FakeChainClient(
            balances={(w.address, TOKEN_A): 5 for w in wallets},
            confirmation_delay=0.05,
        )
        scheduler = make_scheduler(client, batch_size=2)

        async def stop_soon():
            await asyncio.sleep(0.01)
            scheduler.request_stop()

        summary, _ = await asyncio.gather(scheduler.run(wallets, [token_a]), stop_soon())

        assert summary.interrupted
        assert summary.batches_completed == 1
        assert summary.confirmed == 2

    @pytest.mark.asyncio
    async def test_summary_to_dict(self, wallets, token_a):
        scheduler = make_scheduler(FakeChainClient())

        summary = await scheduler.run(wallets, [token_a])
        data = summary.to_dict()

        assert data["by_state"] == {"skipped_zero": 3}
        assert len(data["outcomes"]) == 3
        assert data["finished_at"] is not None


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_two_wallets_one_token_confirmed(self):
        wallets = [make_wallet(1), make_wallet(2)]
        client = FakeChainClient(balances={(w.address, TOKEN_A): 1_000 for w in wallets})

        summary = await run_sweep(sweep_config(), StaticCredentialSource(wallets), client)

        assert summary.confirmed == 2
        assert client.calls["get_name"] == 1
        assert client.calls["get_symbol"] == 1
        assert client.calls["get_decimals"] == 1

    @pytest.mark.asyncio
    async def test_zero_balance_wallet(self):
        client = FakeChainClient()

        summary = await run_sweep(sweep_config(), StaticCredentialSource([make_wallet(1)]), client)

        assert [o.state for o in summary.outcomes] == [JobState.SKIPPED_ZERO]
        assert "estimate_gas" not in client.calls
        assert "submit" not in client.calls

    @pytest.mark.asyncio
    async def test_submission_succeeds_on_third_attempt(self):
        wallet = make_wallet(1)
        client = FakeChainClient(balances={(wallet.address, TOKEN_A): 9}, submit_failures=2)

        summary = await run_sweep(sweep_config(retry_attempts=3), StaticCredentialSource([wallet]), client)

        assert summary.confirmed == 1
        assert summary.outcomes[0].submit_attempts == 3
        assert client.calls["submit"] == 3

    @pytest.mark.asyncio
    async def test_token_with_failed_metadata_gets_no_jobs(self):
        wallets = [make_wallet(1), make_wallet(2)]
        balances = {}
        for w in wallets:
            balances[(w.address, TOKEN_A)] = 10
            balances[(w.address, TOKEN_B)] = 10
        client = FakeChainClient(balances=balances, metadata_failures={TOKEN_B})

        summary = await run_sweep(
            sweep_config(tokens=[TOKEN_A, TOKEN_B]),
            StaticCredentialSource(wallets),
            client
        )

        assert {o.resource_id for o in summary.outcomes} == {TOKEN_A}
        assert summary.confirmed == 2

    @pytest.mark.asyncio
    async def test_stop_signal_during_metadata_ends_run_without_jobs(self, monkeypatch):
        wallet = make_wallet(1)
        client = FakeChainClient(balances={(wallet.address, TOKEN_A): 5})
        installed = []

        def fake_install(scheduler):
            # handlers must be live before any metadata call
            installed.append(dict(client.calls))
            scheduler.request_stop()

        monkeypatch.setattr(runner, "install_signal_handlers", fake_install)

        summary = await run_sweep(sweep_config(), StaticCredentialSource([wallet]), client, handle_signals=True)

        assert installed == [{}]
        assert summary.interrupted
        assert summary.outcomes == []
        assert "get_balance" not in client.calls

    @pytest.mark.asyncio
    async def test_empty_credentials_abort_before_any_call(self):
        client = FakeChainClient()

        with pytest.raises(ConfigError):
            await run_sweep(sweep_config(), StaticCredentialSource([]), client)

        assert client.calls == {}
