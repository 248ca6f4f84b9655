"""
Data models for price list sync: jobs, import payloads, delta entries and
the statistics a reconciliation run reports.
"""
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from ..engine.models import QuantityBreak, new_id
from ..enums import PriceListType
from ..errors import ValidationError


class SyncJobType(str, Enum):
    FULL = "full"
    DELTA = "delta"


class SyncJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({SyncJobStatus.COMPLETED, SyncJobStatus.FAILED, SyncJobStatus.CANCELLED})
IN_FLIGHT_STATUSES = frozenset({SyncJobStatus.PENDING, SyncJobStatus.RUNNING})


class DeltaAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class SyncError:
    """A per-item (soft) or per-batch (hard) sync failure."""
    error_code: str
    error_message: str
    sku: Optional[str] = None
    item_index: Optional[int] = None
    details: dict = field(default_factory=dict)


@dataclass
class PriceChange:
    sku: str
    old_price: float
    new_price: float
    change_percent: float


@dataclass
class PriceChangeStats:
    increased: int = 0
    decreased: int = 0
    unchanged: int = 0
    new: int = 0
    average_change_percent: float = 0.0
    max_increase: Optional[PriceChange] = None
    max_decrease: Optional[PriceChange] = None


@dataclass
class SyncSummary:
    items_created: int = 0
    items_updated: int = 0
    items_deleted: int = 0
    items_unchanged: int = 0
    price_changes: PriceChangeStats = field(default_factory=PriceChangeStats)


@dataclass
class SyncJob:
    """One reconciliation attempt for one price list."""
    tenant_id: str
    price_list_id: str
    job_type: SyncJobType
    status: SyncJobStatus = SyncJobStatus.PENDING
    total_items: int = 0
    processed_items: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    delta_token: Optional[str] = None
    errors: list[SyncError] = field(default_factory=list)
    summary: Optional[SyncSummary] = None
    connector_id: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SyncResult:
    """Outcome of a full import, as reported to the caller."""
    job_id: str
    price_list_id: str
    price_list_code: str
    status: SyncJobStatus
    total_items: int
    processed_items: int
    success_count: int
    error_count: int
    skipped_count: int
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    duration_ms: Optional[int] = None
    delta_token: Optional[str] = None
    errors: list[SyncError] = field(default_factory=list)
    summary: Optional[SyncSummary] = None


@dataclass
class DeltaResult:
    """Outcome of applying one delta batch."""
    processed: int
    skipped: int
    errors: list[SyncError]
    new_delta_token: str
    job_id: Optional[str] = None


def _parse_date(value: Any, field_name: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"{field_name} must be YYYY-MM-DD, got {value!r}")


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class ImportPriceListHeader:
    code: str
    name: str
    currency: str
    effective_from: date
    type: PriceListType = PriceListType.STANDARD
    description: Optional[str] = None
    effective_to: Optional[date] = None
    external_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'ImportPriceListHeader':
        for required in ('code', 'name', 'currency', 'effective_from'):
            if not data.get(required):
                raise ValidationError(f"price_list.{required} is required")
        return cls(
            code=str(data['code']).strip(),
            name=str(data['name']).strip(),
            currency=str(data['currency']).strip().upper(),
            effective_from=_parse_date(data['effective_from'], 'effective_from'),
            type=map_list_type(data.get('type')),
            description=data.get('description'),
            effective_to=_parse_date(data.get('effective_to'), 'effective_to'),
            external_id=data.get('external_id'),
        )


@dataclass
class ImportItem:
    """One item row of an external price list."""
    sku: str
    base_price: float
    list_price: Optional[float] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    cost: Optional[float] = None
    currency: Optional[str] = None
    uom: Optional[str] = None
    quantity_breaks: list[QuantityBreak] = field(default_factory=list)
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    external_id: Optional[str] = None

    @property
    def effective_list_price(self) -> float:
        return self.list_price if self.list_price is not None else self.base_price

    @classmethod
    def from_dict(cls, data: dict) -> 'ImportItem':
        sku = str(data.get('sku') or '').strip()
        if not sku:
            raise ValidationError("sku is required")
        if data.get('base_price') is None:
            raise ValidationError(f"base_price is required for {sku}", {"sku": sku})
        breaks = [
            b if isinstance(b, QuantityBreak) else QuantityBreak.from_dict(b)
            for b in data.get('quantity_breaks') or []
        ]
        return cls(
            sku=sku,
            base_price=float(data['base_price']),
            list_price=_optional_float(data.get('list_price')),
            min_price=_optional_float(data.get('min_price')),
            max_price=_optional_float(data.get('max_price')),
            cost=_optional_float(data.get('cost')),
            currency=data.get('currency') or None,
            uom=data.get('uom') or None,
            quantity_breaks=breaks,
            effective_from=_parse_date(data.get('effective_from'), 'effective_from'),
            effective_to=_parse_date(data.get('effective_to'), 'effective_to'),
            external_id=data.get('external_id'),
        )


@dataclass
class ImportPayload:
    price_list: ImportPriceListHeader
    items: list[dict]

    @classmethod
    def from_dict(cls, data: dict) -> 'ImportPayload':
        """Parse the header eagerly; item rows stay raw so bad rows fail one at a time."""
        if 'price_list' not in data:
            raise ValidationError("price_list header is required")
        header = data['price_list']
        if not isinstance(header, ImportPriceListHeader):
            header = ImportPriceListHeader.from_dict(header)
        return cls(price_list=header, items=list(data.get('items') or []))


@dataclass
class DeltaEntry:
    action: DeltaAction
    sku: str
    data: Optional[dict] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'DeltaEntry':
        try:
            action = DeltaAction(str(data.get('action', '')).lower())
        except ValueError:
            raise ValidationError(f"invalid delta action {data.get('action')!r}")
        sku = str(data.get('sku') or '').strip()
        if not sku:
            raise ValidationError("sku is required")
        return cls(action=action, sku=sku, data=data.get('data'))

    def ledger_key(self) -> str:
        """Identity of this entry within one delta token."""
        payload = sorted((self.data or {}).items())
        return f"{self.action.value}:{self.sku}:{payload!r}"


def map_list_type(value: Optional[str]) -> PriceListType:
    """Map an ERP price list type name onto ``PriceListType``; unknown → standard."""
    if not value:
        return PriceListType.STANDARD
    if isinstance(value, PriceListType):
        return value
    aliases = {
        'customer': PriceListType.CUSTOMER_SPECIFIC,
        'customer_specific': PriceListType.CUSTOMER_SPECIFIC,
    }
    key = str(value).strip().lower()
    if key in aliases:
        return aliases[key]
    try:
        return PriceListType(key)
    except ValueError:
        return PriceListType.STANDARD
