"""
Shared fixtures: an in-memory chain and helpers for building credentials.
"""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

import pytest

from token_sweeper.chain_client import ChainClient, FeeData, FeeQuote, Receipt, TransferCall, TxHandle
from token_sweeper.credentials import Credential
from token_sweeper.exceptions import ChainError, NetworkError
from token_sweeper.metadata_cache import ResourceDescriptor


DESTINATION = "0x" + "d" * 40
TOKEN_A = "0x" + "a" * 40
TOKEN_B = "0x" + "b" * 40


def make_wallet(index: int) -> Credential:
    return Credential(address="0x" + f"{index:040x}", private_key="0x" + f"{index:064x}")


def make_descriptor(resource_id: str, symbol: str = "TKN", decimals: int = 18) -> ResourceDescriptor:
    return ResourceDescriptor(id=resource_id, name=f"{symbol} Token", symbol=symbol, decimals=decimals)


class FakeChainClient(ChainClient):
    """
    In-memory chain with call counting

    Balances default to zero; native balances default to 1 ETH.
    """

    def __init__(
        self,
        balances: Optional[Dict[Tuple[str, str], int]] = None,
        native_balances: Optional[Dict[str, int]] = None,
        fee_data: Optional[FeeData] = None,
        gas_estimate: int = 50_000,
        submit_failures: int = 0,
        metadata_failures: Optional[Set[str]] = None,
        balance_failures: Optional[Set[str]] = None,
        receipt_status: int = 1,
        confirmation_delay: float = 0.0,
        latency: float = 0.0
    ):
        self.balances = balances or {}
        self.native_balances = native_balances or {}
        self.fee_data = fee_data or FeeData(max_priority_fee_per_gas=2 * 10 ** 9, max_fee_per_gas=30 * 10 ** 9)
        self.gas_estimate = gas_estimate
        self.submit_failures = submit_failures
        self.metadata_failures = metadata_failures or set()
        self.balance_failures = balance_failures or set()
        self.receipt_status = receipt_status
        self.confirmation_delay = confirmation_delay
        self.latency = latency

        self.calls: Dict[str, int] = {}
        self.events: List[Tuple[str, str]] = []
        self.submitted: List[Tuple[TransferCall, FeeQuote]] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.block_number = 100

    def _count(self, name: str):
        self.calls[name] = self.calls.get(name, 0) + 1

    async def _metadata(self, name: str, resource_id: str, value):
        self._count(name)
        await asyncio.sleep(0)
        if resource_id in self.metadata_failures:
            raise ChainError(f"{name} reverted")
        return value

    async def get_name(self, resource_id: str) -> str:
        return await self._metadata("get_name", resource_id, f"Token {resource_id[-4:]}")

    async def get_symbol(self, resource_id: str) -> str:
        return await self._metadata("get_symbol", resource_id, f"T{resource_id[-2:].upper()}")

    async def get_decimals(self, resource_id: str) -> int:
        return await self._metadata("get_decimals", resource_id, 6)

    async def get_balance(self, address: str, resource_id: str) -> int:
        self._count("get_balance")
        self.events.append(("start", address))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.latency)
            if address in self.balance_failures:
                raise NetworkError("connection reset")
            return self.balances.get((address, resource_id), 0)
        finally:
            self.in_flight -= 1

    async def get_native_balance(self, address: str) -> int:
        self._count("get_native_balance")
        return self.native_balances.get(address, 10 ** 18)

    async def get_fee_data(self) -> FeeData:
        self._count("get_fee_data")
        return self.fee_data

    async def estimate_gas(self, call: TransferCall) -> int:
        self._count("estimate_gas")
        return self.gas_estimate

    async def submit(self, call: TransferCall, fee_quote: FeeQuote) -> TxHandle:
        self._count("submit")
        if self.submit_failures > 0:
            self.submit_failures -= 1
            raise NetworkError("nonce too low")
        self.submitted.append((call, fee_quote))
        return TxHandle(tx_hash="0x" + f"{len(self.submitted):064x}")

    async def await_confirmation(self, handle: TxHandle, confirmations: int = 1) -> Receipt:
        self._count("await_confirmation")
        await asyncio.sleep(self.confirmation_delay)
        self.block_number += 1
        self.events.append(("confirmed", handle.tx_hash))
        return Receipt(tx_hash=handle.tx_hash, block_number=self.block_number, status=self.receipt_status)


async def no_sleep(delay: float):
    return None


@pytest.fixture
def wallets() -> List[Credential]:
    return [make_wallet(i) for i in range(1, 4)]


@pytest.fixture
def token_a() -> ResourceDescriptor:
    return make_descriptor(TOKEN_A, symbol="AAA")


@pytest.fixture
def token_b() -> ResourceDescriptor:
    return make_descriptor(TOKEN_B, symbol="BBB")
