"""
Token Sweeper Exceptions

Only ConfigError is allowed to reach the process boundary. Everything else is
job-local and ends up as a FAILED or SKIPPED outcome.
"""

from typing import Optional


class TokenSweeperError(Exception):
    """Base class for all sweeper errors"""


class ConfigError(TokenSweeperError):
    """Missing or invalid configuration, or an empty credential source"""


class NetworkError(TokenSweeperError):
    """Transport-level failure talking to the RPC endpoint"""


class ChainError(TokenSweeperError):
    """The node answered but rejected or could not serve the request"""


class MetadataError(TokenSweeperError):
    """A token's name/symbol/decimals could not be resolved"""

    def __init__(self, resource_id: str, cause: Exception):
        super().__init__(f"Metadata query failed for {resource_id}: {cause}")
        self.resource_id = resource_id
        self.cause = cause


class BalanceQueryError(TokenSweeperError):
    """Token balance lookup failed for one job"""


class TransientSubmissionError(TokenSweeperError):
    """Submission failed in a way worth retrying"""


class ConfirmationTimeout(TokenSweeperError):
    """Transaction was broadcast but no receipt arrived in time"""

    def __init__(self, tx_hash: str, timeout: Optional[float] = None):
        detail = f" after {timeout:.0f}s" if timeout is not None else ""
        super().__init__(f"No confirmation for {tx_hash}{detail}")
        self.tx_hash = tx_hash
        self.timeout = timeout
