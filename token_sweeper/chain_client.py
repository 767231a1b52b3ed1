"""
Chain Client Interface

The fixed set of remote operations the sweeper needs from a chain. Anything
encoding- or node-specific lives in an implementation (see web3_client.py).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .credentials import Credential


@dataclass(frozen=True)
class FeeData:
    """Network fee suggestion; either component may be unavailable"""
    max_priority_fee_per_gas: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    base_fee_per_gas: Optional[int] = None


@dataclass(frozen=True)
class FeeQuote:
    """Gas parameters for one submission"""
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    @property
    def max_cost(self) -> int:
        """Worst-case native cost of the transaction in wei"""
        return self.gas_limit * self.max_fee_per_gas


@dataclass(frozen=True)
class TransferCall:
    """ERC-20 transfer of `amount` base units from sender to recipient"""
    sender: Credential
    resource_id: str
    recipient: str
    amount: int


@dataclass(frozen=True)
class TxHandle:
    """A broadcast transaction"""
    tx_hash: str


@dataclass(frozen=True)
class Receipt:
    """Mined transaction"""
    tx_hash: str
    block_number: int
    status: int = 1
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainClient(ABC):
    """
    Asynchronous chain access

    Every method may raise NetworkError or ChainError.
    """

    @abstractmethod
    async def get_name(self, resource_id: str) -> str:
        ...

    @abstractmethod
    async def get_symbol(self, resource_id: str) -> str:
        ...

    @abstractmethod
    async def get_decimals(self, resource_id: str) -> int:
        ...

    @abstractmethod
    async def get_balance(self, address: str, resource_id: str) -> int:
        """Token balance in base units"""

    @abstractmethod
    async def get_native_balance(self, address: str) -> int:
        """Native balance in wei"""

    @abstractmethod
    async def get_fee_data(self) -> FeeData:
        ...

    @abstractmethod
    async def estimate_gas(self, call: TransferCall) -> int:
        ...

    @abstractmethod
    async def submit(self, call: TransferCall, fee_quote: FeeQuote) -> TxHandle:
        """Sign and broadcast the call"""

    @abstractmethod
    async def await_confirmation(self, handle: TxHandle, confirmations: int = 1) -> Receipt:
        ...

    async def close(self):
        """Release connections; no-op by default"""
