"""
Token Metadata Cache

Resolves name, symbol and decimals once per token before any batch runs.
After populate() finishes the cache is only read, so workers share it
without locking.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional

from loguru import logger

from .chain_client import ChainClient
from .exceptions import MetadataError


@dataclass(frozen=True)
class ResourceDescriptor:
    """Static token metadata"""
    id: str
    name: str
    symbol: str
    decimals: int

    def format_amount(self, amount: int) -> str:
        """Base units -> human readable string"""
        if self.decimals == 0:
            return str(amount)
        whole, frac = divmod(amount, 10 ** self.decimals)
        frac_str = str(frac).rjust(self.decimals, '0').rstrip('0')
        return f"{whole}.{frac_str}" if frac_str else str(whole)


class MetadataCache:
    """
    Write-once descriptor map keyed by token id

    A token whose metadata cannot be fetched is logged and left out; later
    stages simply never see it.
    """

    def __init__(self, client: ChainClient):
        self.client = client
        self._descriptors: Dict[str, ResourceDescriptor] = {}
        self._order: List[str] = []
        self.failed: Dict[str, MetadataError] = {}

    async def _fetch(self, resource_id: str) -> ResourceDescriptor:
        try:
            name, symbol, decimals = await asyncio.gather(
                self.client.get_name(resource_id),
                self.client.get_symbol(resource_id),
                self.client.get_decimals(resource_id),
            )
        except Exception as e:
            raise MetadataError(resource_id, e) from e
        return ResourceDescriptor(
            id=resource_id,
            name=name,
            symbol=symbol,
            decimals=int(decimals),
        )

    async def populate(self, resource_ids: List[str]) -> Dict[str, MetadataError]:
        """
        Fetch metadata for every id not already cached

        Args:
            resource_ids: Token contract addresses

        Returns:
            Failures of this call keyed by id (empty when all succeeded)
        """
        pending = []
        for resource_id in resource_ids:
            if resource_id in self._descriptors or resource_id in pending:
                continue
            pending.append(resource_id)

        results = await asyncio.gather(
            *(self._fetch(resource_id) for resource_id in pending),
            return_exceptions=True
        )

        failures: Dict[str, MetadataError] = {}
        for resource_id, result in zip(pending, results):
            if isinstance(result, MetadataError):
                logger.warning(f"⚠️ Skipping token {resource_id}: {result.cause}")
                failures[resource_id] = result
                continue
            if isinstance(result, BaseException):
                raise result
            self._descriptors[resource_id] = result
            self._order.append(resource_id)
            logger.info(f"✓ {result.symbol} ({result.name}), {result.decimals} decimals")

            self.failed.pop(resource_id, None)

        self.failed.update(failures)
        logger.info(f"Metadata cached for {len(self._descriptors)} token(s), {len(failures)} failed")
        return failures

    def get(self, resource_id: str) -> Optional[ResourceDescriptor]:
        return self._descriptors.get(resource_id)

    def descriptors(self) -> List[ResourceDescriptor]:
        """Cached descriptors in population order"""
        return [self._descriptors[resource_id] for resource_id in self._order]

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)
