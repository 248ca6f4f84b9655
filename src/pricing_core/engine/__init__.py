"""Engine subpackage - core pricing logic and resolution."""
from .pricing_engine import PricingEngine
from .models import PriceCalculationRequest, PriceCalculationResult, ResolutionStep

__all__ = ['PricingEngine', 'PriceCalculationRequest', 'PriceCalculationResult', 'ResolutionStep']
