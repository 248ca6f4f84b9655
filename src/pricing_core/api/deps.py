"""
Request dependencies and error mapping shared by the API routers.
"""
from fastapi import Header, HTTPException

from ..errors import ConflictError, NotFoundError, PricingError, ValidationError

DEFAULT_TENANT = "default"


def tenant_id(x_tenant_id: str = Header(DEFAULT_TENANT)) -> str:
    """Tenant from the ``X-Tenant-ID`` header."""
    return x_tenant_id


def http_error(e: PricingError) -> HTTPException:
    """Map a pricing error onto an HTTP status; the body carries the error code."""
    if isinstance(e, NotFoundError):
        status = 404
    elif isinstance(e, ValidationError):
        status = 400
    elif isinstance(e, ConflictError):
        status = 409
    else:
        status = 422
    return HTTPException(status_code=status, detail=e.to_dict())
