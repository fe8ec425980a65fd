"""
Configuration management and loading.

Loads tier limits, routing, model and storage settings from YAML. Every
section is optional and falls back to built-in defaults, but whatever is
present is strictly validated.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ai_quota_router.core.errors import UnknownTier
from ai_quota_router.core.periods import resolve_timezone
from ai_quota_router.core.pricing import PRICING_TABLE
from ai_quota_router.core.router import SHORT_QUERY_THRESHOLD, ModelCatalog
from ai_quota_router.core.tiers import Tier, TierCatalog, TierLimits
from ai_quota_router.storage.db import DEFAULT_DB_PATH

ROUTING_STRATEGIES = ("length", "cost", "remote")


@dataclass(frozen=True)
class RoutingConfig:
    """Router strategy selection."""
    strategy: str = "cost"
    short_query_threshold: int = SHORT_QUERY_THRESHOLD

    def __post_init__(self):
        if self.strategy not in ROUTING_STRATEGIES:
            raise ValueError(f"routing.strategy must be one of: {list(ROUTING_STRATEGIES)}")
        if self.short_query_threshold < 0:
            raise ValueError("routing.short_query_threshold must be >= 0")


@dataclass(frozen=True)
class ModelsConfig:
    """Provider model names behind each model tier."""
    cheapest: str = ModelCatalog.cheapest
    basic: str = ModelCatalog.basic
    advanced: str = ModelCatalog.advanced
    timeout_seconds: float = 30.0

    def __post_init__(self):
        for name in (self.cheapest, self.basic, self.advanced):
            PRICING_TABLE.get_pricing(name)
        if self.timeout_seconds <= 0:
            raise ValueError("models.timeout_seconds must be > 0")


@dataclass(frozen=True)
class StorageConfig:
    """Usage store location and counter reference timezone."""
    db_path: str = DEFAULT_DB_PATH
    timezone: str = "UTC"

    def __post_init__(self):
        resolve_timezone(self.timezone)


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    tiers: Dict[Tier, TierLimits] = field(default_factory=dict)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    def tier_catalog(self) -> TierCatalog:
        """Build the tier catalog with configured overrides applied."""
        return TierCatalog(self.tiers)

    def model_catalog(self) -> ModelCatalog:
        """Build the model catalog from configured model names."""
        return ModelCatalog(
            cheapest=self.models.cheapest,
            basic=self.models.basic,
            advanced=self.models.advanced
        )


def default_config() -> AppConfig:
    """Configuration used when no file is given."""
    return AppConfig()


def load_config(path: Optional[str]) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Strict validation ensures no silent misconfigurations that could
    hand out more quota than intended.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return default_config()

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
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'tiers', 'routing', 'models', 'storage'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    tiers = _parse_tiers(raw_config.get('tiers', {}))

    routing_data = _section(raw_config, 'routing', {'strategy', 'short_query_threshold'})
    routing = RoutingConfig(
        strategy=str(routing_data.get('strategy', RoutingConfig.strategy)).lower(),
        short_query_threshold=_parse_int(
            routing_data.get('short_query_threshold', SHORT_QUERY_THRESHOLD),
            "routing.short_query_threshold"
        )
    )

    models_data = _section(raw_config, 'models', {'cheapest', 'basic', 'advanced', 'timeout_seconds'})
    timeout = models_data.get('timeout_seconds', ModelsConfig.timeout_seconds)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise ValueError("'models.timeout_seconds' must be a number")
    try:
        models = ModelsConfig(
            cheapest=str(models_data.get('cheapest', ModelsConfig.cheapest)),
            basic=str(models_data.get('basic', ModelsConfig.basic)),
            advanced=str(models_data.get('advanced', ModelsConfig.advanced)),
            timeout_seconds=float(timeout)
        )
    except ValueError as e:
        raise ValueError(f"Invalid 'models' section: {e}")

    storage_data = _section(raw_config, 'storage', {'db_path', 'timezone'})
    storage = StorageConfig(
        db_path=str(storage_data.get('db_path', StorageConfig.db_path)),
        timezone=str(storage_data.get('timezone', StorageConfig.timezone))
    )

    return AppConfig(tiers=tiers, routing=routing, models=models, storage=storage)


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict[str, Any]:
    """Fetch an optional section and reject unknown keys."""
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _parse_int(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    if value < 0:
        raise ValueError(f"'{path}' must be >= 0")
    return value


def _parse_tiers(data: Any) -> Dict[Tier, TierLimits]:
    """Parse and validate per-tier limit overrides.

    Args:
        data: Mapping of tier name to limits

    Returns:
        Validated limits keyed by tier

    Raises:
        ValueError: If a tier or its limits are invalid
    """
    if not isinstance(data, dict):
        raise ValueError("'tiers' must be a dictionary")

    required_keys = {'daily_query_limit', 'daily_advanced_limit', 'monthly_cost_cap'}
    tiers = {}
    for tier_name, limits_data in data.items():
        try:
            tier = Tier.parse(str(tier_name))
        except UnknownTier:
            valid_tiers = [t.value for t in Tier]
            raise ValueError(f"Unknown tier '{tier_name}', must be one of: {valid_tiers}")

        path = f"tiers.{tier.value}"
        if not isinstance(limits_data, dict):
            raise ValueError(f"'{path}' must be a dictionary")
        unknown_keys = set(limits_data.keys()) - required_keys
        if unknown_keys:
            raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
        missing_keys = required_keys - set(limits_data.keys())
        if missing_keys:
            raise ValueError(f"Missing required keys in {path}: {sorted(missing_keys)}")

        cap = limits_data['monthly_cost_cap']
        if isinstance(cap, bool) or not isinstance(cap, (int, float, str)):
            raise ValueError(f"'{path}.monthly_cost_cap' must be a number")
        try:
            cap_value = Decimal(str(cap))
        except InvalidOperation:
            raise ValueError(f"'{path}.monthly_cost_cap' must be a number")
        if not cap_value.is_finite() or cap_value < 0:
            raise ValueError(f"'{path}.monthly_cost_cap' must be >= 0")

        tiers[tier] = TierLimits(
            daily_query_limit=_parse_int(limits_data['daily_query_limit'], f"{path}.daily_query_limit"),
            daily_advanced_limit=_parse_int(limits_data['daily_advanced_limit'], f"{path}.daily_advanced_limit"),
            monthly_cost_cap=cap_value
        )

    return tiers
