from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .. import __version__
from ..engine.models import CurrencyExchangeRate, PriceCalculationRequest
from ..enums import ExchangeRateType
from ..errors import PricingError
from .deps import http_error, tenant_id
from .price_lists_api import router as price_lists_router
from .state import AppState, get_state
from .sync_api import router as sync_router

app = FastAPI(
    title="Pricing Core API",
    description="Price resolution, currency conversion and price list sync",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync_router)
app.include_router(price_lists_router)


class CalcRequest(BaseModel):
    sku: str
    quantity: int = 1
    customer_id: Optional[str] = None
    organization_id: Optional[str] = None
    contract_id: Optional[str] = None
    currency: Optional[str] = None
    price_date: Optional[date] = None
    warehouse_id: Optional[str] = None
    channel: Optional[str] = None


class BatchCalcRequest(BaseModel):
    skus: List[str] = Field(..., min_length=1)
    customer_id: Optional[str] = None
    organization_id: Optional[str] = None
    contract_id: Optional[str] = None
    currency: Optional[str] = None
    price_date: Optional[date] = None
    channel: Optional[str] = None


class RateCreate(BaseModel):
    source_currency: str
    target_currency: str
    rate: float
    effective_from: date
    effective_to: Optional[date] = None
    rate_type: ExchangeRateType = ExchangeRateType.SPOT
    rate_source: Optional[str] = None


@app.get("/")
async def root():
    return {"status": "online", "message": "Pricing Core API Active"}


@app.post("/calculate")
def calculate_price(req: CalcRequest, tenant: str = Depends(tenant_id), state: AppState = Depends(get_state)):
    try:
        request = PriceCalculationRequest(tenant_id=tenant, **req.model_dump())
        return jsonable_encoder(state.engine.calculate(request))
    except PricingError as e:
        raise http_error(e)


@app.post("/calculate/batch")
def calculate_batch(req: BatchCalcRequest, tenant: str = Depends(tenant_id), state: AppState = Depends(get_state)):
    try:
        results = state.engine.calculate_many(tenant, **req.model_dump())
        return {"results": jsonable_encoder(results)}
    except PricingError as e:
        raise http_error(e)


@app.get("/rates/{source}/{target}")
def get_rate(
    source: str,
    target: str,
    rate_type: Optional[ExchangeRateType] = None,
    as_of: Optional[date] = None,
    amount: float = 1.0,
    tenant: str = Depends(tenant_id),
    state: AppState = Depends(get_state),
):
    try:
        conversion = state.converter.convert(tenant, amount, source, target, rate_type, as_of)
    except PricingError as e:
        raise http_error(e)
    return {
        "source": source.upper(),
        "target": target.upper(),
        "rate": conversion.rate,
        "amount": amount,
        "converted_amount": conversion.amount,
    }


@app.post("/rates")
def upsert_rates(rates: List[RateCreate], tenant: str = Depends(tenant_id), state: AppState = Depends(get_state)):
    if not rates:
        raise HTTPException(status_code=400, detail={"code": "VALIDATION", "message": "No rates supplied"})
    try:
        return state.converter.bulk_upsert_rates(
            tenant, [CurrencyExchangeRate(tenant_id=tenant, **r.model_dump()) for r in rates]
        )
    except PricingError as e:
        raise http_error(e)


@app.get("/system/status")
def get_status(tenant: str = Depends(tenant_id), state: AppState = Depends(get_state)):
    config = state.settings.config_for(tenant)
    return {
        "engine_active": config.enabled,
        "version": __version__,
        "resolution_order": [s.value for s in config.calculation.price_resolution_order],
        "supported_currencies": state.converter.supported_currencies(tenant),
        "rate_cache_entries": len(state.converter.cache),
        "pending_sync_jobs": len(state.sync.pending_jobs(tenant)),
    }
