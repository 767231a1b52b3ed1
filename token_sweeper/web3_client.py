"""
Web3 Chain Client

ChainClient over an EVM JSON-RPC endpoint using AsyncWeb3. Transactions are
EIP-1559 ERC-20 transfers signed locally with eth_account.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import aiohttp
from eth_account import Account
from loguru import logger
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .chain_client import ChainClient, FeeData, FeeQuote, Receipt, TransferCall, TxHandle
from .exceptions import ChainError, ConfirmationTimeout, NetworkError, TransientSubmissionError


ERC20_ABI = [
    {"constant": True, "inputs": [], "name": "name", "outputs": [{"name": "", "type": "string"}],
     "stateMutability": "view", "type": "function"},
    {"constant": True, "inputs": [], "name": "symbol", "outputs": [{"name": "", "type": "string"}],
     "stateMutability": "view", "type": "function"},
    {"constant": True, "inputs": [], "name": "decimals", "outputs": [{"name": "", "type": "uint8"}],
     "stateMutability": "view", "type": "function"},
    {"constant": True, "inputs": [{"name": "owner", "type": "address"}], "name": "balanceOf",
     "outputs": [{"name": "", "type": "uint256"}], "stateMutability": "view", "type": "function"},
    {"constant": False, "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
     "name": "transfer", "outputs": [{"name": "", "type": "bool"}], "stateMutability": "nonpayable",
     "type": "function"},
]

# node messages that usually clear up on a later attempt
TRANSIENT_SUBMIT_HINTS = (
    "nonce too low", "underpriced", "replacement transaction", "already known",
    "fee cap", "max fee", "base fee", "timeout", "temporarily",
)

TRANSPORT_ERRORS = (aiohttp.ClientError, ConnectionError, OSError, asyncio.TimeoutError)


@dataclass
class SignedTransfer:
    """A signed transfer kept until the node has accepted it"""
    raw_transaction: bytes
    tx_hash: str
    nonce: int
    broadcasts: int = 0


class Web3ChainClient(ChainClient):
    """
    AsyncWeb3-backed chain access

    Args:
        rpc_url: HTTP JSON-RPC endpoint
        receipt_timeout: Seconds wait_for_transaction_receipt polls before giving up
        poll_interval: Seconds between receipt/block polls
    """

    def __init__(
        self,
        rpc_url: str,
        receipt_timeout: float = 300.0,
        poll_interval: float = 2.0
    ):
        self.rpc_url = rpc_url
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))

        self._contracts: Dict[str, object] = {}
        self._nonce_locks: Dict[str, asyncio.Lock] = {}
        self._chain_id: Optional[int] = None
        self._pending: Dict[Tuple[TransferCall, FeeQuote], SignedTransfer] = {}

        logger.info(f"Web3 client initialized for {rpc_url}")

    def _contract(self, resource_id: str):
        checksum = Web3.to_checksum_address(resource_id)
        if checksum not in self._contracts:
            self._contracts[checksum] = self.w3.eth.contract(address=checksum, abi=ERC20_ABI)
        return self._contracts[checksum]

    async def _rpc(self, what: str, awaitable):
        """Await an RPC and translate failures into NetworkError/ChainError"""
        try:
            return await awaitable
        except TRANSPORT_ERRORS as e:
            raise NetworkError(f"{what}: {e}") from e
        except (ContractLogicError, Web3Exception, ValueError) as e:
            raise ChainError(f"{what}: {e}") from e

    async def get_name(self, resource_id: str) -> str:
        return await self._rpc("name()", self._contract(resource_id).functions.name().call())

    async def get_symbol(self, resource_id: str) -> str:
        return await self._rpc("symbol()", self._contract(resource_id).functions.symbol().call())

    async def get_decimals(self, resource_id: str) -> int:
        return await self._rpc("decimals()", self._contract(resource_id).functions.decimals().call())

    async def get_balance(self, address: str, resource_id: str) -> int:
        owner = Web3.to_checksum_address(address)
        return await self._rpc(
            "balanceOf()",
            self._contract(resource_id).functions.balanceOf(owner).call()
        )

    async def get_native_balance(self, address: str) -> int:
        return await self._rpc("eth_getBalance", self.w3.eth.get_balance(Web3.to_checksum_address(address)))

    async def get_fee_data(self) -> FeeData:
        """
        Priority fee from eth_maxPriorityFeePerGas, max fee = 2 * baseFee + priority

        A component the node cannot provide is returned as None.
        """
        priority_fee = None
        try:
            priority_fee = await self.w3.eth.max_priority_fee
        except TRANSPORT_ERRORS as e:
            raise NetworkError(f"eth_maxPriorityFeePerGas: {e}") from e
        except (Web3Exception, ValueError) as e:
            logger.debug(f"Node has no priority fee suggestion: {e}")

        block = await self._rpc("eth_getBlockByNumber", self.w3.eth.get_block('latest'))
        base_fee = block.get('baseFeePerGas')

        max_fee = None
        if base_fee is not None and priority_fee is not None:
            max_fee = base_fee * 2 + priority_fee

        return FeeData(
            max_priority_fee_per_gas=priority_fee,
            max_fee_per_gas=max_fee,
            base_fee_per_gas=base_fee,
        )

    async def estimate_gas(self, call: TransferCall) -> int:
        contract = self._contract(call.resource_id)
        return await self._rpc(
            "estimateGas(transfer)",
            contract.functions.transfer(
                Web3.to_checksum_address(call.recipient), call.amount
            ).estimate_gas({'from': call.sender.address})
        )

    async def _get_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self._rpc("eth_chainId", self.w3.eth.chain_id)
        return self._chain_id

    @staticmethod
    def _submit_error(what: str, error: Exception) -> Exception:
        message = str(error).lower()
        if any(hint in message for hint in TRANSIENT_SUBMIT_HINTS):
            return TransientSubmissionError(f"{what}: {error}")
        return ChainError(f"{what}: {error}")

    async def _sign(self, call: TransferCall, fee_quote: FeeQuote) -> SignedTransfer:
        sender = call.sender.address
        try:
            chain_id = await self._get_chain_id()
            nonce = await self.w3.eth.get_transaction_count(sender, 'pending')
            tx = await self._contract(call.resource_id).functions.transfer(
                Web3.to_checksum_address(call.recipient), call.amount
            ).build_transaction({
                'from': sender,
                'nonce': nonce,
                'chainId': chain_id,
                'gas': fee_quote.gas_limit,
                'maxFeePerGas': fee_quote.max_fee_per_gas,
                'maxPriorityFeePerGas': fee_quote.max_priority_fee_per_gas,
            })
        except (NetworkError, ChainError):
            raise
        except TRANSPORT_ERRORS as e:
            raise TransientSubmissionError(f"build failed: {e}") from e
        except (Web3Exception, ValueError) as e:
            raise self._submit_error("build failed", e) from e

        signed = Account.sign_transaction(tx, call.sender.private_key)
        return SignedTransfer(
            raw_transaction=signed.raw_transaction,
            tx_hash=Web3.to_hex(signed.hash),
            nonce=nonce,
        )

    async def submit(self, call: TransferCall, fee_quote: FeeQuote) -> TxHandle:
        """
        Sign once, broadcast, and rebroadcast the same bytes on retry

        A retry after an ambiguous failure (transport error) resends the
        already-signed transaction, so the node sees at most one transfer per
        call. A definite rejection discards it and the next attempt re-signs
        with a fresh nonce.
        """
        sender = call.sender.address
        lock = self._nonce_locks.setdefault(sender, asyncio.Lock())
        key = (call, fee_quote)

        # one in-flight nonce assignment per sender
        async with lock:
            pending = self._pending.get(key)
            if pending is None:
                pending = await self._sign(call, fee_quote)
                self._pending[key] = pending
            rebroadcast = pending.broadcasts > 0
            pending.broadcasts += 1

            try:
                await self.w3.eth.send_raw_transaction(pending.raw_transaction)
            except TRANSPORT_ERRORS as e:
                raise TransientSubmissionError(f"send failed: {e}") from e
            except (Web3Exception, ValueError) as e:
                message = str(e).lower()
                if "already known" in message or (rebroadcast and "nonce too low" in message):
                    logger.info(f"Transaction {pending.tx_hash} (nonce {pending.nonce}) already with the node")
                else:
                    del self._pending[key]
                    raise self._submit_error("send failed", e) from e

            del self._pending[key]

        return TxHandle(tx_hash=pending.tx_hash)

    async def await_confirmation(self, handle: TxHandle, confirmations: int = 1) -> Receipt:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                handle.tx_hash,
                timeout=self.receipt_timeout,
                poll_latency=self.poll_interval
            )
        except TimeExhausted as e:
            raise ConfirmationTimeout(handle.tx_hash, self.receipt_timeout) from e
        except TRANSPORT_ERRORS as e:
            raise NetworkError(f"receipt for {handle.tx_hash}: {e}") from e
        except (Web3Exception, ValueError) as e:
            raise ChainError(f"receipt for {handle.tx_hash}: {e}") from e

        block_number = receipt['blockNumber']
        while confirmations > 1:
            head = await self._rpc("eth_blockNumber", self.w3.eth.block_number)
            if head - block_number + 1 >= confirmations:
                break
            await asyncio.sleep(self.poll_interval)

        return Receipt(
            tx_hash=handle.tx_hash,
            block_number=block_number,
            status=receipt.get('status', 1),
            gas_used=receipt.get('gasUsed'),
        )

    async def close(self):
        """Close the provider session"""
        provider = self.w3.provider
        if hasattr(provider, 'disconnect'):
            try:
                await provider.disconnect()
            except Exception as e:
                logger.debug(f"Error closing web3 provider: {e}")
