"""
Sync API - FastAPI router for price list imports and sync jobs.
"""
from datetime import date
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from ..errors import PricingError
from ..sync.models import ImportPayload
from .deps import http_error, tenant_id
from .state import AppState, get_state

router = APIRouter(prefix="/sync", tags=["sync"])


class PriceListHeader(BaseModel):
    code: str
    name: str
    currency: str
    effective_from: date
    type: Optional[str] = None
    description: Optional[str] = None
    effective_to: Optional[date] = None
    external_id: Optional[str] = None


class ImportRequest(BaseModel):
    """Full price list export. Items stay loosely typed so bad rows fail one at a time."""
    price_list: PriceListHeader
    items: List[dict[str, Any]] = []
    job_id: Optional[str] = None


class DeltaEntryModel(BaseModel):
    action: str
    sku: str
    data: Optional[dict[str, Any]] = None


class DeltaRequest(BaseModel):
    entries: List[DeltaEntryModel]
    delta_token: Optional[str] = None
    job_id: Optional[str] = None


@router.post("/import")
def import_price_list(req: ImportRequest, tenant: str = Depends(tenant_id), state: AppState = Depends(get_state)):
    try:
        payload = ImportPayload.from_dict({
            "price_list": req.price_list.model_dump(),
            "items": req.items,
        })
        result = state.sync.import_price_list(tenant, payload, job_id=req.job_id)
        return jsonable_encoder(result)
    except PricingError as e:
        raise http_error(e)


@router.post("/schedule")
def schedule_batch_sync(
    connector_id: Optional[str] = None,
    tenant: str = Depends(tenant_id),
    state: AppState = Depends(get_state),
):
    jobs = state.sync.schedule_batch_sync(tenant, connector_id)
    return {"job_ids": [job.id for job in jobs], "count": len(jobs)}


@router.get("/jobs/{job_id}")
def get_job(job_id: str, tenant: str = Depends(tenant_id), state: AppState = Depends(get_state)):
    try:
        return jsonable_encoder(state.sync.get_job(tenant, job_id))
    except PricingError as e:
        raise http_error(e)


@router.post("/jobs/{job_id}/cancel")
def cancel_job(job_id: str, tenant: str = Depends(tenant_id), state: AppState = Depends(get_state)):
    try:
        return jsonable_encoder(state.sync.cancel_job(tenant, job_id))
    except PricingError as e:
        raise http_error(e)


@router.post("/{price_list_id}/delta")
def process_delta(
    price_list_id: str,
    req: DeltaRequest,
    tenant: str = Depends(tenant_id),
    state: AppState = Depends(get_state),
):
    try:
        result = state.sync.process_delta(
            tenant,
            price_list_id,
            [entry.model_dump() for entry in req.entries],
            req.delta_token,
            job_id=req.job_id,
        )
        return jsonable_encoder(result)
    except PricingError as e:
        raise http_error(e)


@router.get("/{price_list_id}/history")
def sync_history(
    price_list_id: str,
    limit: int = 20,
    tenant: str = Depends(tenant_id),
    state: AppState = Depends(get_state),
):
    jobs = state.sync.sync_history(tenant, price_list_id, limit)
    return {
        "price_list_id": price_list_id,
        "last_delta_token": state.sync.last_delta_token(tenant, price_list_id),
        "jobs": jsonable_encoder(jobs),
    }
