"""
Enumerations shared by the engine, the sync engine and configuration.

``str`` enums so values round-trip through JSON and config files unchanged.
"""
from enum import Enum


class PriceSource(str, Enum):
    OVERRIDE = "override"
    CONTRACT = "contract"
    CUSTOMER_SPECIFIC = "customer_specific"
    VOLUME = "volume"
    PROMOTIONAL = "promotional"
    STANDARD = "standard"


class PriceListType(str, Enum):
    STANDARD = "standard"
    CONTRACT = "contract"
    PROMOTIONAL = "promotional"
    VOLUME = "volume"
    CUSTOMER_SPECIFIC = "customer_specific"
    CHANNEL = "channel"
    REGIONAL = "regional"


class PriceListStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    ARCHIVED = "archived"


class RoundingRule(str, Enum):
    NONE = "none"
    UP = "up"
    DOWN = "down"
    NEAREST = "nearest"
    NEAREST_05 = "nearest_05"
    NEAREST_09 = "nearest_09"
    NEAREST_99 = "nearest_99"


class AssignmentType(str, Enum):
    CUSTOMER = "customer"
    ORGANIZATION = "organization"
    CONTRACT = "contract"
    CHANNEL = "channel"


class OverrideType(str, Enum):
    FIXED_PRICE = "fixed_price"
    PERCENTAGE_DISCOUNT = "percentage_discount"
    FIXED_DISCOUNT = "fixed_discount"
    MARKUP_PERCENTAGE = "markup_percentage"
    MARKUP_FIXED = "markup_fixed"


class OverrideScopeType(str, Enum):
    CUSTOMER = "customer"
    CONTRACT = "contract"
    ORGANIZATION = "organization"


class OverrideStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ExchangeRateType(str, Enum):
    SPOT = "spot"
    FORWARD = "forward"
    AVERAGE = "average"
    BUDGETED = "budgeted"



class QuantityBreakMethod(str, Enum):
    ALL_UNITS = "all_units"
    INCREMENTAL = "incremental"
