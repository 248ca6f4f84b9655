"""
Data models for the pricing engine.

Uses dataclasses for structured, type-safe data representation.
Enumerated fields are ``str`` enums so they serialize cleanly to JSON.
"""
import uuid
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Optional

from ..enums import (
    AssignmentType,
    ExchangeRateType,
    OverrideScopeType,
    OverrideStatus,
    OverrideType,
    PriceListStatus,
    PriceListType,
    PriceSource,
    RoundingRule,
)


def new_id() -> str:
    """Generate an opaque entity id."""
    return uuid.uuid4().hex


def is_effective(as_of: date, effective_from: Optional[date], effective_to: Optional[date]) -> bool:
    """True when ``as_of`` falls inside the closed window [from, to]; open ends are unbounded."""
    if effective_from is not None and as_of < effective_from:
        return False
    if effective_to is not None and as_of > effective_to:
        return False
    return True


# Which price list types feed which price source.
SOURCE_LIST_TYPES: dict[PriceSource, tuple[PriceListType, ...]] = {
    PriceSource.CONTRACT: (PriceListType.CONTRACT,),
    PriceSource.CUSTOMER_SPECIFIC: (PriceListType.CUSTOMER_SPECIFIC,),
    PriceSource.VOLUME: (PriceListType.VOLUME,),
    PriceSource.PROMOTIONAL: (PriceListType.PROMOTIONAL,),
    PriceSource.STANDARD: (PriceListType.STANDARD, PriceListType.CHANNEL, PriceListType.REGIONAL),
}


@dataclass
class QuantityBreak:
    """A quantity tier: ``price`` wins when set, else ``discount_percent`` off list."""
    min_quantity: int
    max_quantity: Optional[int] = None
    price: Optional[float] = None
    discount_percent: Optional[float] = None

    def covers(self, quantity: float) -> bool:
        if quantity < self.min_quantity:
            return False
        return self.max_quantity is None or quantity <= self.max_quantity

    def tier_price(self, list_price: float) -> float:
        if self.price is not None:
            return float(self.price)
        return list_price * (1 - (self.discount_percent or 0.0) / 100.0)

    def scaled(self, factor: float) -> 'QuantityBreak':
        """Copy with the explicit tier price multiplied by ``factor``."""
        return QuantityBreak(
            min_quantity=self.min_quantity,
            max_quantity=self.max_quantity,
            price=self.price * factor if self.price is not None else None,
            discount_percent=self.discount_percent,
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'QuantityBreak':
        max_qty = data.get('max_quantity')
        price = data.get('price')
        discount = data.get('discount_percent')
        return cls(
            min_quantity=int(data['min_quantity']),
            max_quantity=int(max_qty) if max_qty is not None else None,
            price=float(price) if price is not None else None,
            discount_percent=float(discount) if discount is not None else None,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PriceList:
    """A named, time-boxed set of item prices in one currency."""
    tenant_id: str
    code: str
    name: str
    currency: str
    effective_from: date
    type: PriceListType = PriceListType.STANDARD
    status: PriceListStatus = PriceListStatus.ACTIVE
    priority: int = 100
    effective_to: Optional[date] = None
    description: Optional[str] = None

    # Derived list: items missing here fall back to the base list, adjusted
    base_price_list_id: Optional[str] = None
    price_modifier: Optional[float] = None  # percent, e.g. -10 for 10% below base

    rounding_rule: RoundingRule = RoundingRule.NEAREST
    rounding_precision: int = 2

    is_default: bool = False
    is_customer_specific: bool = False

    external_id: Optional[str] = None
    external_system: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    sync_status: Optional[str] = None

    metadata: dict = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: Optional[datetime] = None

    def is_effective_on(self, as_of: date) -> bool:
        return self.status == PriceListStatus.ACTIVE and is_effective(
            as_of, self.effective_from, self.effective_to
        )

    def requires_assignment(self) -> bool:
        """Customer-scoped lists are only visible through an assignment."""
        return self.is_customer_specific or self.type in (
            PriceListType.CONTRACT, PriceListType.CUSTOMER_SPECIFIC
        )

    def rank_key(self) -> tuple:
        """Ordering among competing lists: priority asc, newest first, id asc."""
        return (self.priority, -self.effective_from.toordinal(), self.id)


@dataclass
class PriceListItem:
    """Price of one SKU within one price list."""
    price_list_id: str
    sku: str
    base_price: float
    list_price: float
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    cost: Optional[float] = None
    currency: Optional[str] = None
    quantity_breaks: list[QuantityBreak] = field(default_factory=list)

    max_discount_percent: Optional[float] = None
    is_discountable: bool = True

    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    is_active: bool = True
    uom: str = "EA"

    external_id: Optional[str] = None
    last_sync_at: Optional[datetime] = None

    metadata: dict = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def is_effective_on(self, as_of: date) -> bool:
        return self.is_active and is_effective(as_of, self.effective_from, self.effective_to)

    def pricing_state(self) -> tuple:
        """The fields a sync compares to decide whether an upsert changes anything."""
        return (
            self.base_price,
            self.list_price,
            self.min_price,
            self.max_price,
            self.cost,
            self.currency,
            tuple((b.min_quantity, b.max_quantity, b.price, b.discount_percent) for b in self.quantity_breaks),
            self.effective_from,
            self.effective_to,
            self.is_active,
            self.uom,
            self.external_id,
        )


@dataclass
class CustomerPriceAssignment:
    """Makes a price list a candidate for a customer, organization, contract or channel."""
    tenant_id: str
    price_list_id: str
    assignment_type: AssignmentType
    assignment_id: str
    effective_from: date
    priority: int = 100
    effective_to: Optional[date] = None
    is_active: bool = True
    metadata: dict = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def is_effective_on(self, as_of: date) -> bool:
        return self.is_active and is_effective(as_of, self.effective_from, self.effective_to)


@dataclass
class RequestScope:
    """Who is asking: used for assignment visibility and override scope matching."""
    customer_id: Optional[str] = None
    organization_id: Optional[str] = None
    contract_id: Optional[str] = None
    channel: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.customer_id or self.organization_id or self.contract_id)

    def matches_assignment(self, assignment: CustomerPriceAssignment) -> bool:
        target = {
            AssignmentType.CUSTOMER: self.customer_id,
            AssignmentType.ORGANIZATION: self.organization_id,
            AssignmentType.CONTRACT: self.contract_id,
            AssignmentType.CHANNEL: self.channel,
        }.get(assignment.assignment_type)
        return target is not None and target == assignment.assignment_id


@dataclass
class PriceOverride:
    """A negotiated price for one item, scoped to a customer, contract or organization."""
    tenant_id: str
    price_list_item_id: str
    override_type: OverrideType
    override_value: float
    scope_type: OverrideScopeType
    scope_id: str
    effective_from: date
    effective_to: Optional[date] = None
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    status: OverrideStatus = OverrideStatus.PENDING_APPROVAL
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    reason: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def unit_price(self, item: PriceListItem) -> float:
        """Price this override produces for ``item``."""
        value = float(self.override_value)
        cost_basis = item.cost if item.cost is not None else item.base_price
        if self.override_type == OverrideType.FIXED_PRICE:
            return value
        if self.override_type == OverrideType.PERCENTAGE_DISCOUNT:
            return item.list_price * (1 - value / 100.0)
        if self.override_type == OverrideType.FIXED_DISCOUNT:
            return max(0.0, item.list_price - value)
        if self.override_type == OverrideType.MARKUP_PERCENTAGE:
            return cost_basis * (1 + value / 100.0)
        if self.override_type == OverrideType.MARKUP_FIXED:
            return cost_basis + value
        return item.list_price


@dataclass
class CurrencyExchangeRate:
    """Directional rate: 1 unit of ``source_currency`` = ``rate`` units of ``target_currency``."""
    tenant_id: str
    source_currency: str
    target_currency: str
    rate: float
    effective_from: date
    rate_type: ExchangeRateType = ExchangeRateType.SPOT
    effective_to: Optional[date] = None
    rate_source: Optional[str] = None
    is_active: bool = True
    metadata: dict = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def is_effective_on(self, as_of: date) -> bool:
        return self.is_active and is_effective(as_of, self.effective_from, self.effective_to)


@dataclass
class ResolutionStep:
    """A single step in the price resolution trace."""
    source: PriceSource
    selected: bool
    reason: str
    price_list_id: Optional[str] = None
    price: Optional[float] = None


@dataclass
class PriceCalculationRequest:
    """A request to price one SKU for one requester."""
    tenant_id: str
    sku: str
    quantity: int
    customer_id: Optional[str] = None
    organization_id: Optional[str] = None
    contract_id: Optional[str] = None
    currency: Optional[str] = None
    price_date: Optional[date] = None
    warehouse_id: Optional[str] = None
    channel: Optional[str] = None

    @property
    def scope(self) -> RequestScope:
        return RequestScope(
            customer_id=self.customer_id,
            organization_id=self.organization_id,
            contract_id=self.contract_id,
            channel=self.channel,
        )


@dataclass
class PriceCalculationResult:
    """Complete result of a price calculation."""
    sku: str
    quantity: int
    unit_price: float
    extended_price: float
    currency: str
    price_source: PriceSource
    base_price: float
    discount_amount: float
    discount_percent: float
    effective_from: date

    price_list_id: Optional[str] = None
    price_list_code: Optional[str] = None
    quantity_break_applied: Optional[QuantityBreak] = None

    override_applied: bool = False
    override_id: Optional[str] = None

    min_price: Optional[float] = None
    max_price: Optional[float] = None
    is_at_min_price: bool = False
    is_at_max_price: bool = False

    cost: Optional[float] = None
    margin: Optional[float] = None
    margin_percent: Optional[float] = None
    margin_violation: bool = False

    effective_to: Optional[date] = None
    original_currency: Optional[str] = None
    exchange_rate: Optional[float] = None

    resolution_path: list[ResolutionStep] = field(default_factory=list)

    def selected_step(self) -> Optional[ResolutionStep]:
        for step in self.resolution_path:
            if step.selected:
                return step
        return None

    def get_trace_text(self) -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for step in self.resolution_path:
            marker = "✓" if step.selected else "•"
            price = f" = {step.price:.2f}" if step.price is not None else ""
            lines.append(f"{marker} {step.source.value}: {step.reason}{price}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return asdict(self)
