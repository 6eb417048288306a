"""
Configuration management and loading.

Handles application settings and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_RECONCILE_INTERVAL = 3 * 60 * 60
DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024


@dataclass(frozen=True)
class LedgerConfig:
    """Connection settings for the vault contract."""
    rpc_url: str
    vault_address: str
    confirmation_timeout_seconds: float = 180.0
    read_retries: int = 2
    retry_backoff_seconds: float = 0.5

    def __post_init__(self):
        """Validate ledger settings."""
        if not self.rpc_url:
            raise ValueError("ledger.rpc_url is required")
        if not self.vault_address:
            raise ValueError("ledger.vault_address is required")
        if self.confirmation_timeout_seconds <= 0:
            raise ValueError("confirmation_timeout_seconds must be > 0")
        if self.read_retries < 0:
            raise ValueError("read_retries must be >= 0")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must be >= 0")


@dataclass(frozen=True)
class ReconciliationConfig:
    """Schedule for the settlement and remediation sweep."""
    interval_seconds: float = DEFAULT_RECONCILE_INTERVAL

    def __post_init__(self):
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")


@dataclass(frozen=True)
class ContentStoreConfig:
    """IPFS HTTP API endpoint."""
    api_url: str = "http://127.0.0.1:5001"
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("content_store.timeout_seconds must be > 0")


@dataclass(frozen=True)
class StorageConfig:
    db_path: str = "vault_guard.db"


@dataclass(frozen=True)
class UploadConfig:
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES

    def __post_init__(self):
        if self.max_upload_bytes <= 0:
            raise ValueError("max_upload_bytes must be > 0")


@dataclass(frozen=True)
class NotifierConfig:
    history_size: int = 20

    def __post_init__(self):
        if self.history_size <= 0:
            raise ValueError("history_size must be > 0")


@dataclass(frozen=True)
class VaultGuardConfig:
    """Complete application configuration."""
    ledger: LedgerConfig
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    content_store: ContentStoreConfig = field(default_factory=ContentStoreConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    uploads: UploadConfig = field(default_factory=UploadConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)


# Allowed keys per section and the expected type of each value
_SECTION_SCHEMA: Dict[str, Dict[str, tuple]] = {
    'ledger': {
        'rpc_url': (str,),
        'vault_address': (str,),
        'confirmation_timeout_seconds': (int, float),
        'read_retries': (int,),
        'retry_backoff_seconds': (int, float),
    },
    'reconciliation': {
        'interval_seconds': (int, float),
    },
    'content_store': {
        'api_url': (str,),
        'timeout_seconds': (int, float),
    },
    'storage': {
        'db_path': (str,),
    },
    'uploads': {
        'max_upload_bytes': (int,),
    },
    'notifier': {
        'history_size': (int,),
    },
}

# Environment variables that take precedence over file values
_ENV_OVERRIDES = {
    ('ledger', 'rpc_url'): 'RPC_URL',
    ('content_store', 'api_url'): 'IPFS_API_URL',
}


def load_config(path: str, environ: Optional[Dict[str, str]] = None) -> VaultGuardConfig:
    """Load and validate application configuration from a YAML file.

    Strict validation ensures no silent misconfigurations, e.g. a typo in a
    section name that would leave the reconciliation interval at its default.

    Args:
        path: Path to YAML configuration file
        environ: Environment mapping used for overrides (defaults to os.environ)

    Returns:
        Validated VaultGuardConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    return parse_config(raw_config, environ)


def parse_config(raw_config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> VaultGuardConfig:
    """Validate an already-decoded configuration mapping."""
    env = os.environ if environ is None else environ

    unknown_keys = set(raw_config.keys()) - set(_SECTION_SCHEMA)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for name in _SECTION_SCHEMA:
        data = raw_config.get(name, {})
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"'{name}' must be a dictionary")
        sections[name] = _parse_section(name, dict(data))

    for (section, key), var in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            sections[section][key] = value

    if 'vault_address' not in sections['ledger']:
        raise ValueError("Missing required 'vault_address' in ledger")
    if 'rpc_url' not in sections['ledger']:
        raise ValueError("Missing required 'rpc_url' in ledger (or RPC_URL env)")

    return VaultGuardConfig(
        ledger=LedgerConfig(**sections['ledger']),
        reconciliation=ReconciliationConfig(**sections['reconciliation']),
        content_store=ContentStoreConfig(**sections['content_store']),
        storage=StorageConfig(**sections['storage']),
        uploads=UploadConfig(**sections['uploads']),
        notifier=NotifierConfig(**sections['notifier']),
    )


def _parse_section(name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Check keys and value types of one configuration section.

    Args:
        name: Section name, used in error messages
        data: Raw section mapping

    Returns:
        The section mapping with float fields coerced to float

    Raises:
        ValueError: If the section has unknown keys or badly typed values
    """
    schema = _SECTION_SCHEMA[name]
    unknown_keys = set(data.keys()) - set(schema)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    for key, value in data.items():
        expected = schema[key]
        # bool is an int subclass; never accept it for numeric settings
        if isinstance(value, bool) or not isinstance(value, expected):
            names = " or ".join(t.__name__ for t in expected)
            raise ValueError(f"'{key}' in {name} must be {names}")
        if float in expected:
            data[key] = float(value)

    return data
