"""
Credential Loading

Signing identities for the wallets being swept. Private keys stay inside the
Credential object; only the derived address is ever printed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from eth_account import Account
from loguru import logger

from .exceptions import ConfigError


def short_address(address: str) -> str:
    """0x1234ab...cdef form used in progress lines"""
    if not address or len(address) < 14:
        return address
    return f"{address[:8]}...{address[-4:]}"


@dataclass(frozen=True)
class Credential:
    """Signing identity controlling exactly one address"""
    address: str
    private_key: str = field(repr=False, compare=False)

    @classmethod
    def from_private_key(cls, private_key: str) -> 'Credential':
        key = private_key.strip()
        if not key.startswith('0x'):
            key = '0x' + key
        account = Account.from_key(key)
        return cls(address=account.address, private_key=key)

    def __str__(self):
        return self.address


class CredentialSource(ABC):
    """Yields the ordered list of credentials for a run"""

    @abstractmethod
    def load(self) -> List[Credential]:
        """
        Raises:
            ConfigError: source is unreadable or holds no credentials
        """


class PrivateKeyFileSource(CredentialSource):
    """
    One hex private key per line

    Blank lines are ignored. The 0x prefix is optional.
    """

    def __init__(self, path: str = "privatekey.txt"):
        self.path = Path(path)

    def load(self) -> List[Credential]:
        try:
            text = self.path.read_text(encoding='utf-8')
        except OSError as e:
            raise ConfigError(f"Cannot read key file {self.path}: {e}") from e

        credentials = []
        for line_no, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if not line:
                continue
            try:
                credentials.append(Credential.from_private_key(line))
            except Exception as e:
                # never echo the line itself
                raise ConfigError(f"Invalid private key on line {line_no} of {self.path}") from e

        if not credentials:
            raise ConfigError(f"Key file {self.path} is empty")

        logger.info(f"Loaded {len(credentials)} wallet(s) from {self.path}")
        return credentials


class StaticCredentialSource(CredentialSource):
    """Credentials already held in memory"""

    def __init__(self, credentials: List[Credential]):
        self._credentials = list(credentials)

    def load(self) -> List[Credential]:
        if not self._credentials:
            raise ConfigError("No credentials provided")
        return list(self._credentials)
