"""
Error taxonomy for pricing resolution and price list sync.

Every error carries a stable ``code`` so callers (and the HTTP layer)
can branch on the failure class without parsing messages.
"""
from typing import Optional


class PricingError(Exception):
    """Base class for all pricing errors."""

    code = "PRICING_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(PricingError):
    """A price list, item, override, job or rate row does not exist."""

    code = "NOT_FOUND"


class ValidationError(PricingError):
    """Malformed input (request, payload, delta entry, configuration)."""

    code = "VALIDATION"


class ConflictError(PricingError):
    """Duplicate code, overlapping override, or an illegal state transition."""

    code = "CONFLICT"


class RateNotFoundError(NotFoundError):
    """No direct, inverse or triangulated exchange rate could be resolved."""

    code = "RATE_NOT_FOUND"


class PriceNotFoundError(NotFoundError):
    """No override and no price source produced a candidate for the SKU."""

    code = "PRICE_NOT_FOUND"


class BatchError(PricingError):
    """An unexpected exception aborted a whole sync attempt."""

    code = "BATCH_ERROR"
