"""
Price Lists API - FastAPI router for price lists, items, assignments and overrides.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from ..engine.models import (
    CustomerPriceAssignment,
    PriceList,
    PriceListItem,
    PriceOverride,
    QuantityBreak,
)
from ..enums import (
    AssignmentType,
    OverrideScopeType,
    OverrideType,
    PriceListStatus,
    PriceListType,
    RoundingRule,
)
from ..errors import PricingError
from .deps import http_error, tenant_id
from .state import AppState, get_state

router = APIRouter(tags=["price-lists"])


class PriceListCreate(BaseModel):
    code: str
    name: str
    currency: str
    effective_from: date
    type: PriceListType = PriceListType.STANDARD
    status: PriceListStatus = PriceListStatus.ACTIVE
    priority: int = 100
    effective_to: Optional[date] = None
    description: Optional[str] = None
    base_price_list_id: Optional[str] = None
    price_modifier: Optional[float] = None
    rounding_rule: RoundingRule = RoundingRule.NEAREST
    rounding_precision: int = 2
    is_default: bool = False
    is_customer_specific: bool = False


class QuantityBreakModel(BaseModel):
    min_quantity: int
    max_quantity: Optional[int] = None
    price: Optional[float] = None
    discount_percent: Optional[float] = None


class ItemUpsert(BaseModel):
    sku: str
    base_price: float
    list_price: Optional[float] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    cost: Optional[float] = None
    currency: Optional[str] = None
    quantity_breaks: List[QuantityBreakModel] = []
    max_discount_percent: Optional[float] = None
    is_discountable: bool = True
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    uom: str = "EA"

    def to_item(self, price_list_id: str) -> PriceListItem:
        data = self.model_dump(exclude={'quantity_breaks'})
        if data['list_price'] is None:
            data['list_price'] = data['base_price']
        return PriceListItem(
            price_list_id=price_list_id,
            quantity_breaks=[QuantityBreak(**b.model_dump()) for b in self.quantity_breaks],
            **data,
        )


class AssignmentCreate(BaseModel):
    price_list_id: str
    assignment_type: AssignmentType
    assignment_id: str
    effective_from: date
    effective_to: Optional[date] = None
    priority: int = 100


class OverrideCreate(BaseModel):
    price_list_item_id: str
    override_type: OverrideType
    override_value: float
    scope_type: OverrideScopeType
    scope_id: str
    effective_from: date
    effective_to: Optional[date] = None
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    reason: Optional[str] = None


class OverrideApproval(BaseModel):
    approver_id: str


class OverrideRevocation(BaseModel):
    reason: Optional[str] = None


@router.post("/price-lists")
def create_price_list(req: PriceListCreate, tenant: str = Depends(tenant_id), state: AppState = Depends(get_state)):
    try:
        created = state.price_lists.create_price_list(PriceList(tenant_id=tenant, **req.model_dump()))
        return jsonable_encoder(created)
    except PricingError as e:
        raise http_error(e)


@router.get("/price-lists/{price_list_id}")
def get_price_list(price_list_id: str, tenant: str = Depends(tenant_id), state: AppState = Depends(get_state)):
    try:
        price_list = state.price_lists.get_price_list(tenant, price_list_id)
    except PricingError as e:
        raise http_error(e)
    return {
        "price_list": jsonable_encoder(price_list),
        "items": jsonable_encoder(state.store.list_items(price_list_id)),
    }


@router.post("/price-lists/{price_list_id}/items")
def upsert_items(
    price_list_id: str,
    items: List[ItemUpsert],
    tenant: str = Depends(tenant_id),
    state: AppState = Depends(get_state),
):
    try:
        return state.price_lists.bulk_upsert_items(
            tenant, price_list_id, [i.to_item(price_list_id) for i in items],
            batch_size=state.settings.config_for(tenant).sync.batch_size,
        )
    except PricingError as e:
        raise http_error(e)


@router.post("/assignments")
def create_assignment(req: AssignmentCreate, tenant: str = Depends(tenant_id), state: AppState = Depends(get_state)):
    try:
        assignment = CustomerPriceAssignment(tenant_id=tenant, **req.model_dump())
        return jsonable_encoder(state.price_lists.assign_price_list(assignment))
    except PricingError as e:
        raise http_error(e)


@router.post("/overrides")
def create_override(req: OverrideCreate, tenant: str = Depends(tenant_id), state: AppState = Depends(get_state)):
    try:
        override = PriceOverride(tenant_id=tenant, **req.model_dump())
        return jsonable_encoder(state.price_lists.create_override(override))
    except PricingError as e:
        raise http_error(e)


@router.post("/overrides/{override_id}/approve")
def approve_override(
    override_id: str,
    req: OverrideApproval,
    tenant: str = Depends(tenant_id),
    state: AppState = Depends(get_state),
):
    try:
        return jsonable_encoder(state.price_lists.approve_override(tenant, override_id, req.approver_id))
    except PricingError as e:
        raise http_error(e)


@router.post("/overrides/{override_id}/revoke")
def revoke_override(
    override_id: str,
    req: OverrideRevocation,
    tenant: str = Depends(tenant_id),
    state: AppState = Depends(get_state),
):
    try:
        return jsonable_encoder(state.price_lists.revoke_override(tenant, override_id, req.reason))
    except PricingError as e:
        raise http_error(e)
