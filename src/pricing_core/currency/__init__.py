"""Currency subpackage - exchange rate resolution and caching."""
from .exchange_rates import Conversion, CurrencyConverter
from .rate_cache import RateCache

__all__ = ['Conversion', 'CurrencyConverter', 'RateCache']
