"""
Configuration management and loading.

Loads service settings from YAML with strict validation: unknown keys
are rejected at every level so a typo never silently falls back to a
default.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from usage_reconciler.core.identifiers import IdentityPolicy
from usage_reconciler.core.reconciliation import DEFAULT_SCAN_LIMIT, DEFAULT_WINDOW_DAYS
from usage_reconciler.core.synthesis import SynthesisConfig
from usage_reconciler.storage.db import DEFAULT_DB_PATH


@dataclass(frozen=True)
class StorageConfig:
    """Record store location."""
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        if not self.db_path:
            raise ValueError("db_path cannot be empty")


@dataclass(frozen=True)
class QueryConfig:
    """Time window and scan budget for dashboard reads."""
    window_days: int = DEFAULT_WINDOW_DAYS
    scan_limit: int = DEFAULT_SCAN_LIMIT

    def __post_init__(self):
        if self.window_days <= 0:
            raise ValueError("window_days must be > 0")
        if self.scan_limit <= 0:
            raise ValueError("scan_limit must be > 0")


@dataclass(frozen=True)
class ServiceConfig:
    """Complete service configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    identity: IdentityPolicy = field(default_factory=IdentityPolicy)
    query: QueryConfig = field(default_factory=QueryConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)


def default_config() -> ServiceConfig:
    """Configuration used when no file is given."""
    return ServiceConfig()


def load_service_config(path: str) -> ServiceConfig:
    """Load and validate service configuration from a YAML file.

    Every section is optional; omitted values keep their defaults.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ServiceConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Service config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    allowed_top_keys = {'storage', 'identity', 'query', 'synthesis'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    storage = _section(raw_config, 'storage', {'db_path'})
    identity = _section(raw_config, 'identity', {'alias_prefix', 'reserved_prefixes', 'unknown_identifier'})
    query = _section(raw_config, 'query', {'window_days', 'scan_limit'})
    synthesis = _section(
        raw_config,
        'synthesis',
        {'on_identity_miss', 'today_range', 'yesterday_range', 'forced_models', 'forced_days'},
    )

    storage_kwargs: Dict[str, Any] = {}
    if 'db_path' in storage:
        storage_kwargs['db_path'] = _string(storage['db_path'], 'storage.db_path')

    identity_kwargs: Dict[str, Any] = {}
    for key in ('alias_prefix', 'unknown_identifier'):
        if key in identity:
            identity_kwargs[key] = _string(identity[key], f"identity.{key}")
    if 'reserved_prefixes' in identity:
        identity_kwargs['reserved_prefixes'] = tuple(
            _string_list(identity['reserved_prefixes'], 'identity.reserved_prefixes', allow_empty=True)
        )

    query_kwargs: Dict[str, Any] = {}
    for key in ('window_days', 'scan_limit'):
        if key in query:
            query_kwargs[key] = _positive_int(query[key], f"query.{key}")

    synthesis_kwargs: Dict[str, Any] = {}
    if 'on_identity_miss' in synthesis:
        value = synthesis['on_identity_miss']
        if not isinstance(value, bool):
            raise ValueError("'synthesis.on_identity_miss' must be true or false")
        synthesis_kwargs['on_identity_miss'] = value
    for key in ('today_range', 'yesterday_range'):
        if key in synthesis:
            synthesis_kwargs[key] = _range(synthesis[key], f"synthesis.{key}")
    if 'forced_models' in synthesis:
        synthesis_kwargs['forced_models'] = tuple(
            _string_list(synthesis['forced_models'], 'synthesis.forced_models')
        )
    if 'forced_days' in synthesis:
        synthesis_kwargs['forced_days'] = _positive_int(synthesis['forced_days'], 'synthesis.forced_days')

    return ServiceConfig(
        storage=StorageConfig(**storage_kwargs),
        identity=IdentityPolicy(**identity_kwargs),
        query=QueryConfig(**query_kwargs),
        synthesis=SynthesisConfig(**synthesis_kwargs),
    )


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict:
    """Return a validated section dictionary, empty if absent."""
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _string(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{path}' must be a non-empty string")
    return value


def _string_list(value: Any, path: str, allow_empty: bool = False) -> List[str]:
    if not isinstance(value, list):
        raise ValueError(f"'{path}' must be a list")
    if not value and not allow_empty:
        raise ValueError(f"'{path}' cannot be empty")
    return [_string(item, path) for item in value]


def _positive_int(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"'{path}' must be a positive integer")
    return value


def _range(value: Any, path: str) -> Tuple[int, int]:
    if not isinstance(value, list) or len(value) != 2:
        raise ValueError(f"'{path}' must be a [low, high] pair")
    low, high = (_positive_int(v, path) for v in value)
    if high < low:
        raise ValueError(f"'{path}' low must not exceed high")
    return low, high
