"""
Fee Estimator

Builds a FeeQuote for one transfer. Quotes are never cached: the fee market
moves between jobs.
"""

import asyncio
from dataclasses import dataclass

from loguru import logger

from .chain_client import ChainClient, FeeQuote, TransferCall


GWEI = 10 ** 9


def apply_gas_buffer(estimate: int, buffer_percent: int) -> int:
    """ceil(estimate * (100 + buffer_percent) / 100) without floats"""
    numerator = estimate * (100 + buffer_percent)
    return -(-numerator // 100)


def gwei_to_wei(value: float) -> int:
    return int(round(value * GWEI))


@dataclass(frozen=True)
class FeeSettings:
    """Buffer and fallbacks applied to every quote"""
    gas_buffer_percent: int = 20
    priority_fee_floor: int = 2 * GWEI
    max_fee_default: int = 50 * GWEI

    @classmethod
    def from_config(cls, config) -> 'FeeSettings':
        return cls(
            gas_buffer_percent=config.gas_buffer_percent,
            priority_fee_floor=gwei_to_wei(config.priority_fee_floor_gwei),
            max_fee_default=gwei_to_wei(config.max_fee_default_gwei),
        )


class FeeEstimator:
    """
    EIP-1559 fee quote with gas safety buffer

    Missing fee components fall back to the configured floor/default; a
    missing max fee is derived from the base fee when the node reports one.
    Errors from the client propagate unchanged.
    """

    def __init__(self, settings: FeeSettings = None):
        self.settings = settings or FeeSettings()

    async def quote(self, client: ChainClient, call: TransferCall) -> FeeQuote:
        estimate, fee_data = await asyncio.gather(
            client.estimate_gas(call),
            client.get_fee_data(),
        )

        priority_fee = fee_data.max_priority_fee_per_gas
        if priority_fee is None:
            priority_fee = self.settings.priority_fee_floor
            logger.debug(f"No priority fee from node, using floor {priority_fee} wei")

        max_fee = fee_data.max_fee_per_gas
        if max_fee is None and fee_data.base_fee_per_gas is not None:
            max_fee = fee_data.base_fee_per_gas * 2 + priority_fee
            logger.debug(f"No max fee from node, derived {max_fee} wei from base fee")
        elif max_fee is None:
            max_fee = self.settings.max_fee_default
            logger.debug(f"No max fee from node, using default {max_fee} wei")

        # node may report a cap below the tip during fee spikes
        max_fee = max(max_fee, priority_fee)

        gas_limit = apply_gas_buffer(estimate, self.settings.gas_buffer_percent)

        logger.debug(
            f"⛽ estGas: {estimate}, gasLimit: {gas_limit}, "
            f"maxPriorityFee: {priority_fee}, maxFee: {max_fee}"
        )

        return FeeQuote(
            gas_limit=gas_limit,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority_fee,
        )
