"""
Sweeper Configuration

Settings come from three layers, later ones winning:
1. Defaults below
2. Optional YAML file (token_sweeper.yaml)
3. Environment variables (a .env file is loaded first)
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

from .exceptions import ConfigError


DEFAULT_TOKENS = [
    '0x2d5a4f5634041f50180A25F26b2A8364452E3152',
    '0x1428444Eacdc0Fd115dd4318FcE65B61Cd1ef399',
    '0xf4BE938070f59764C85fAcE374F92A4670ff3877',
    '0x8802b7bcF8EedCc9E1bA6C20E139bEe89dd98E83',
    '0xBEbF4E25652e7F23CCdCCcaaCB32004501c4BfF8',
    '0xFF27D611ab162d7827bbbA59F140C1E7aE56e95C',
]

# env var -> (field, type)
ENV_OVERRIDES = {
    'RPC_URL': ('rpc_url', str),
    'TO_ADDRESS': ('to_address', str),
    'KEY_FILE': ('key_file', str),
    'WALLET_BATCH_SIZE': ('wallet_batch_size', int),
    'TOKEN_CONCURRENCY': ('token_concurrency', int),
    'RETRY_ATTEMPTS': ('retry_attempts', int),
    'GAS_BUFFER_PERCENT': ('gas_buffer_percent', int),
    'LOG_LEVEL': ('log_level', str),
}


@dataclass
class SweepConfig:
    """Run settings"""
    rpc_url: str = ""
    to_address: str = ""
    tokens: List[str] = field(default_factory=lambda: list(DEFAULT_TOKENS))
    key_file: str = "privatekey.txt"

    # Scheduling
    wallet_batch_size: int = 50
    token_concurrency: int = 5

    # Submission retry
    retry_attempts: int = 3
    retry_backoff_factor: float = 2.0
    retry_initial_delay: float = 1.0

    # Fees
    gas_buffer_percent: int = 20
    priority_fee_floor_gwei: float = 2.0
    max_fee_default_gwei: float = 50.0

    confirmation_timeout_seconds: float = 300.0
    gc_between_batches: bool = True
    log_level: str = "INFO"

    def validate(self):
        """
        Raises:
            ConfigError: on the first invalid setting
        """
        if not self.rpc_url:
            raise ConfigError("RPC_URL is not set")
        if not self.to_address:
            raise ConfigError("TO_ADDRESS is not set")
        if not self.to_address.startswith('0x') or len(self.to_address) != 42:
            raise ConfigError(f"TO_ADDRESS is not a valid EVM address: {self.to_address}")
        if not self.tokens:
            raise ConfigError("Token list is empty")
        if self.wallet_batch_size < 1:
            raise ConfigError("wallet_batch_size must be at least 1")
        if self.token_concurrency < 1:
            raise ConfigError("token_concurrency must be at least 1")
        if self.retry_attempts < 1:
            raise ConfigError("retry_attempts must be at least 1")
        if self.retry_initial_delay < 0 or self.retry_backoff_factor < 1:
            raise ConfigError("retry delay must be >= 0 and backoff factor >= 1")
        if self.gas_buffer_percent < 0:
            raise ConfigError("gas_buffer_percent must not be negative")
        if self.confirmation_timeout_seconds <= 0:
            raise ConfigError("confirmation_timeout_seconds must be positive")


def _coerce(key: str, value, default):
    """Cast a YAML value to the type of the field's default"""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise ConfigError(f"{key} must be true or false, got {value!r}")

    if isinstance(default, list):
        if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
            raise ConfigError(f"{key} must be a list of token addresses")
        return [v.strip() for v in value]

    if isinstance(default, str):
        if not isinstance(value, str):
            raise ConfigError(f"{key} must be a string, got {value!r}")
        return value

    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    try:
        return type(default)(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} has invalid value {value!r}") from e


def _load_yaml(config_path: Path) -> Dict:
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return data


def load_config(
    config_path: Optional[str] = "token_sweeper.yaml",
    environ: Optional[Dict[str, str]] = None,
    load_env_file: bool = True
) -> SweepConfig:
    """
    Build and validate the run configuration

    Args:
        config_path: YAML file; silently skipped when it does not exist
        environ: Environment mapping (defaults to os.environ)
        load_env_file: Load .env into os.environ first

    Returns:
        Validated SweepConfig

    Raises:
        ConfigError: unreadable file, bad value or missing required setting
    """
    if load_env_file and environ is None:
        load_dotenv()
    env = os.environ if environ is None else environ

    config = SweepConfig()
    known = {f.name for f in fields(SweepConfig)}

    if config_path and Path(config_path).exists():
        file_values = _load_yaml(Path(config_path))
        unknown = set(file_values) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")
        for key, value in file_values.items():
            if key in known:
                setattr(config, key, _coerce(key, value, getattr(config, key)))
        logger.info(f"Loaded config from {config_path}")

    for env_name, (attr, cast) in ENV_OVERRIDES.items():
        raw = env.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            setattr(config, attr, cast(raw.strip()))
        except ValueError as e:
            raise ConfigError(f"{env_name} has invalid value {raw!r}") from e

    config.validate()
    return config
