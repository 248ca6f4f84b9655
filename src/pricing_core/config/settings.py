"""
Centralized settings and per-tenant pricing configuration.

Configuration is typed and validated when it is loaded: an unknown price
source, a duplicated source or an out-of-range margin is rejected here,
never discovered halfway through a calculation.
"""
import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from ..enums import ExchangeRateType, PriceSource, QuantityBreakMethod, RoundingRule
from ..errors import ValidationError


DEFAULT_RESOLUTION_ORDER: tuple[PriceSource, ...] = (
    PriceSource.OVERRIDE,
    PriceSource.CONTRACT,
    PriceSource.CUSTOMER_SPECIFIC,
    PriceSource.VOLUME,
    PriceSource.PROMOTIONAL,
    PriceSource.STANDARD,
)


def _enum_value(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{field_name}: invalid value {value!r}, must be one of: {allowed}")


def parse_resolution_order(values) -> tuple[PriceSource, ...]:
    """Parse and validate a configured price resolution order."""
    if not values:
        raise ValidationError("price_resolution_order must name at least one source")
    order = tuple(_enum_value(PriceSource, v, 'price_resolution_order') for v in values)
    duplicates = {s.value for s in order if order.count(s) > 1}
    if duplicates:
        raise ValidationError(f"price_resolution_order has duplicate sources: {sorted(duplicates)}")
    return order


@dataclass(frozen=True)
class PriceCalculationSettings:
    """How a price is resolved once the candidate sources are known."""
    price_resolution_order: tuple[PriceSource, ...] = DEFAULT_RESOLUTION_ORDER
    allow_below_cost_pricing: bool = False
    minimum_margin_percent: Optional[float] = None
    quantity_break_method: QuantityBreakMethod = QuantityBreakMethod.ALL_UNITS

    def __post_init__(self):
        margin = self.minimum_margin_percent
        if margin is not None and not 0 <= margin < 100:
            raise ValidationError(f"minimum_margin_percent must be in [0, 100), got {margin}")

    @classmethod
    def from_dict(cls, data: dict) -> 'PriceCalculationSettings':
        margin = data.get('minimum_margin_percent')
        return cls(
            price_resolution_order=parse_resolution_order(
                data.get('price_resolution_order', [s.value for s in DEFAULT_RESOLUTION_ORDER])
            ),
            allow_below_cost_pricing=bool(data.get('allow_below_cost_pricing', False)),
            minimum_margin_percent=float(margin) if margin is not None else None,
            quantity_break_method=_enum_value(
                QuantityBreakMethod, data.get('quantity_break_method', 'all_units'), 'quantity_break_method'
            ),
        )


@dataclass(frozen=True)
class CurrencySettings:
    base_currency: str = "USD"
    supported_currencies: tuple[str, ...] = ()
    default_rate_type: ExchangeRateType = ExchangeRateType.SPOT
    cache_ttl_seconds: int = 15 * 60
    cache_capacity: int = 1024

    def __post_init__(self):
        if self.cache_ttl_seconds <= 0:
            raise ValidationError("cache_ttl_seconds must be positive")
        if self.cache_capacity <= 0:
            raise ValidationError("cache_capacity must be positive")

    @classmethod
    def from_dict(cls, data: dict) -> 'CurrencySettings':
        return cls(
            base_currency=str(data.get('base_currency', 'USD')).upper(),
            supported_currencies=tuple(str(c).upper() for c in data.get('supported_currencies', ())),
            default_rate_type=_enum_value(ExchangeRateType, data.get('default_rate_type', 'spot'), 'default_rate_type'),
            cache_ttl_seconds=int(data.get('cache_ttl_seconds', 15 * 60)),
            cache_capacity=int(data.get('cache_capacity', 1024)),
        )


@dataclass(frozen=True)
class SyncSettings:
    batch_size: int = 100
    max_concurrent_syncs: int = 4
    retry_attempts: int = 3

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ValidationError("batch_size must be positive")
        if self.max_concurrent_syncs <= 0:
            raise ValidationError("max_concurrent_syncs must be positive")

    @classmethod
    def from_dict(cls, data: dict) -> 'SyncSettings':
        return cls(
            batch_size=int(data.get('batch_size', 100)),
            max_concurrent_syncs=int(data.get('max_concurrent_syncs', 4)),
            retry_attempts=int(data.get('retry_attempts', 3)),
        )


@dataclass(frozen=True)
class PricingFeatures:
    enable_contract_pricing: bool = True
    enable_customer_specific_pricing: bool = True
    enable_volume_pricing: bool = True
    enable_promotional_pricing: bool = True
    enable_price_overrides: bool = True
    enable_multi_currency: bool = True

    def source_enabled(self, source: PriceSource) -> bool:
        toggles = {
            PriceSource.OVERRIDE: self.enable_price_overrides,
            PriceSource.CONTRACT: self.enable_contract_pricing,
            PriceSource.CUSTOMER_SPECIFIC: self.enable_customer_specific_pricing,
            PriceSource.VOLUME: self.enable_volume_pricing,
            PriceSource.PROMOTIONAL: self.enable_promotional_pricing,
        }
        return toggles.get(source, True)

    @classmethod
    def from_dict(cls, data: dict) -> 'PricingFeatures':
        known = {f for f in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(f"unknown feature toggles: {sorted(unknown)}")
        return cls(**{k: bool(v) for k, v in data.items()})


@dataclass(frozen=True)
class PricingConfig:
    """Pricing configuration for one tenant."""
    tenant_id: str = "default"
    enabled: bool = True
    default_currency: str = "USD"
    default_rounding_rule: RoundingRule = RoundingRule.NEAREST
    default_rounding_precision: int = 2
    calculation: PriceCalculationSettings = field(default_factory=PriceCalculationSettings)
    currency: CurrencySettings = field(default_factory=CurrencySettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    features: PricingFeatures = field(default_factory=PricingFeatures)

    @classmethod
    def from_dict(cls, data: dict, tenant_id: Optional[str] = None) -> 'PricingConfig':
        return cls(
            tenant_id=tenant_id or data.get('tenant_id', 'default'),
            enabled=bool(data.get('enabled', True)),
            default_currency=str(data.get('default_currency', 'USD')).upper(),
            default_rounding_rule=_enum_value(
                RoundingRule, data.get('default_rounding_rule', 'nearest'), 'default_rounding_rule'
            ),
            default_rounding_precision=int(data.get('default_rounding_precision', 2)),
            calculation=PriceCalculationSettings.from_dict(data.get('calculation', {})),
            currency=CurrencySettings.from_dict(data.get('currency', {})),
            sync=SyncSettings.from_dict(data.get('sync', {})),
            features=PricingFeatures.from_dict(data.get('features', {})),
        )


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    data_dir: Path
    config_path: Optional[Path] = None
    log_level: str = "INFO"
    log_json: bool = True

    default_config: PricingConfig = field(default_factory=PricingConfig)
    tenant_configs: dict[str, PricingConfig] = field(default_factory=dict)

    def config_for(self, tenant_id: str) -> PricingConfig:
        """Tenant-specific config, else the default config stamped with the tenant id."""
        if tenant_id in self.tenant_configs:
            return self.tenant_configs[tenant_id]
        return replace(self.default_config, tenant_id=tenant_id)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Settings':
        """Load settings from the environment and an optional JSON config file."""
        env_path = os.environ.get('PRICING_CONFIG_PATH')
        path = config_path or (Path(env_path) if env_path else None)

        default_config = PricingConfig()
        tenant_configs = {}
        if path is not None:
            if not path.exists():
                raise FileNotFoundError(f"Pricing config not found at {path}")
            with open(path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            default_config = PricingConfig.from_dict(raw.get('default', {}))
            tenant_configs = {
                tenant_id: PricingConfig.from_dict(cfg, tenant_id=tenant_id)
                for tenant_id, cfg in raw.get('tenants', {}).items()
            }

        return cls(
            data_dir=Path(os.environ.get('PRICING_DATA_DIR', Path.cwd() / 'data')),
            config_path=path,
            log_level=os.environ.get('PRICING_LOG_LEVEL', 'INFO').upper(),
            log_json=os.environ.get('PRICING_LOG_JSON', 'true').lower() in ('true', '1', 'yes', 'on'),
            default_config=default_config,
            tenant_configs=tenant_configs,
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
