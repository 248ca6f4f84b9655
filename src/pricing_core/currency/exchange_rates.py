"""
Exchange Rate Store & Converter.

Resolves a directional rate for a tenant, date and rate type:

1. Same currency → 1
2. Direct row (source → target)
3. Inverse of the reverse row (target → source)
4. Triangulation through the tenant's base currency, each leg resolved
   direct-then-inverse on its own

Among several rows for one pair, the active row whose window covers the
date and whose ``effective_from`` is latest wins. Resolved rates are cached;
every write path invalidates the tenant's cache entries.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from ..config.settings import CurrencySettings
from ..engine.models import CurrencyExchangeRate
from ..enums import ExchangeRateType
from ..errors import NotFoundError, RateNotFoundError, ValidationError
from ..store.clock import Clock, SystemClock
from .rate_cache import RateCache

logger = logging.getLogger(__name__)


@dataclass
class Conversion:
    amount: float
    rate: float


class CurrencyConverter:
    """
    Currency conversion over the exchange rates held in a pricing store.

    ``settings_for`` maps a tenant id to its ``CurrencySettings`` (base
    currency, default rate type); when omitted every tenant uses ``settings``.
    """

    def __init__(
        self,
        store,
        settings: Optional[CurrencySettings] = None,
        clock: Optional[Clock] = None,
        cache: Optional[RateCache] = None,
        settings_for=None,
    ):
        self.store = store
        self.settings = settings or CurrencySettings()
        self.clock = clock or SystemClock()
        self.cache = cache or RateCache(
            ttl_seconds=self.settings.cache_ttl_seconds,
            capacity=self.settings.cache_capacity,
            clock=self.clock,
        )
        self._settings_for = settings_for

    def _tenant_settings(self, tenant_id: str) -> CurrencySettings:
        if self._settings_for is not None:
            return self._settings_for(tenant_id)
        return self.settings

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def rate(
        self,
        tenant_id: str,
        source: str,
        target: str,
        rate_type: Optional[ExchangeRateType] = None,
        as_of: Optional[date] = None,
    ) -> float:
        """Resolve the rate converting 1 unit of ``source`` into ``target``."""
        source, target = source.upper(), target.upper()
        if source == target:
            return 1.0

        settings = self._tenant_settings(tenant_id)
        rate_type = rate_type or settings.default_rate_type
        as_of = as_of or self.clock.today()
        key = (tenant_id, source, target, rate_type, as_of)

        cached = self.cache.get(key)
        if cached is not None:
            return cached

        rate = self._resolve_leg(tenant_id, source, target, rate_type, as_of)
        path = "direct"
        if rate is None:
            rate = self._triangulate(tenant_id, source, target, rate_type, as_of, settings.base_currency)
            path = "triangulated"
        if rate is None:
            raise RateNotFoundError(
                f"Exchange rate not found: {source} to {target}",
                {"source": source, "target": target, "rate_type": rate_type.value, "as_of": as_of.isoformat()},
            )

        logger.debug("Resolved %s→%s (%s) for tenant %s via %s: %s", source, target, rate_type.value, tenant_id, path, rate)
        self.cache.put(key, rate)
        return rate

    def convert(
        self,
        tenant_id: str,
        amount: float,
        source: str,
        target: str,
        rate_type: Optional[ExchangeRateType] = None,
        as_of: Optional[date] = None,
    ) -> Conversion:
        """Convert ``amount`` from ``source`` to ``target``."""
        if source.upper() == target.upper():
            return Conversion(amount=amount, rate=1.0)
        rate = self.rate(tenant_id, source, target, rate_type, as_of)
        return Conversion(amount=amount * rate, rate=rate)

    def _find_rate(
        self, tenant_id: str, source: str, target: str, rate_type: ExchangeRateType, as_of: date
    ) -> Optional[float]:
        """Most recent active row for the pair whose window covers ``as_of``."""
        rows = [
            r for r in self.store.get_exchange_rates(tenant_id, source, target, rate_type)
            if r.is_effective_on(as_of)
        ]
        if not rows:
            return None
        best = max(rows, key=lambda r: (r.effective_from, r.id))
        return best.rate

    def _resolve_leg(
        self, tenant_id: str, source: str, target: str, rate_type: ExchangeRateType, as_of: date
    ) -> Optional[float]:
        direct = self._find_rate(tenant_id, source, target, rate_type, as_of)
        if direct:
            return direct
        inverse = self._find_rate(tenant_id, target, source, rate_type, as_of)
        if inverse:
            return 1.0 / inverse
        return None

    def _triangulate(
        self,
        tenant_id: str,
        source: str,
        target: str,
        rate_type: ExchangeRateType,
        as_of: date,
        base: str,
    ) -> Optional[float]:
        if base in (source, target):
            return None
        source_to_base = self._resolve_leg(tenant_id, source, base, rate_type, as_of)
        if source_to_base is None:
            return None
        base_to_target = self._resolve_leg(tenant_id, base, target, rate_type, as_of)
        if base_to_target is None:
            return None
        return source_to_base * base_to_target

    # ------------------------------------------------------------------
    # Writes (every write invalidates the tenant cache)
    # ------------------------------------------------------------------

    def _invalidate(self, tenant_id: str):
        dropped = self.cache.invalidate_tenant(tenant_id)
        logger.info("Exchange rates changed for tenant %s; dropped %d cached rates", tenant_id, dropped)

    def _validate(self, rate: CurrencyExchangeRate):
        if rate.rate is None or rate.rate <= 0:
            raise ValidationError(
                f"Exchange rate must be positive: {rate.source_currency}→{rate.target_currency} = {rate.rate}"
            )
        if rate.source_currency.upper() == rate.target_currency.upper():
            raise ValidationError(f"Source and target currency are both {rate.source_currency}")
        if rate.effective_to is not None and rate.effective_to < rate.effective_from:
            raise ValidationError("effective_to must not be before effective_from")

    def _upsert(self, rate: CurrencyExchangeRate) -> tuple[CurrencyExchangeRate, bool]:
        self._validate(rate)
        rate.source_currency = rate.source_currency.upper()
        rate.target_currency = rate.target_currency.upper()
        existing = next(
            (
                r for r in self.store.get_exchange_rates(
                    rate.tenant_id, rate.source_currency, rate.target_currency, rate.rate_type
                )
                if r.effective_from == rate.effective_from
            ),
            None,
        )
        if existing is not None:
            rate.id = existing.id
        return self.store.save_exchange_rate(rate), existing is None

    def upsert_rate(self, rate: CurrencyExchangeRate) -> CurrencyExchangeRate:
        """Create or replace the row keyed by (pair, rate type, effective_from)."""
        saved, _ = self._upsert(rate)
        self._invalidate(rate.tenant_id)
        return saved

    def bulk_upsert_rates(self, tenant_id: str, rates: Iterable[CurrencyExchangeRate]) -> dict:
        """Validate every row, then write them all. Nothing is stored if any row is invalid."""
        rates = list(rates)
        for rate in rates:
            rate.tenant_id = tenant_id
            self._validate(rate)

        created = updated = 0
        try:
            for rate in rates:
                _, was_created = self._upsert(rate)
                if was_created:
                    created += 1
                else:
                    updated += 1
        finally:
            self._invalidate(tenant_id)
        return {"created": created, "updated": updated}

    def delete_rate(self, tenant_id: str, rate_id: str):
        if not self.store.delete_exchange_rate(tenant_id, rate_id):
            raise NotFoundError(f"Exchange rate not found: {rate_id}")
        self._invalidate(tenant_id)

    def deactivate_expired_rates(self, tenant_id: str) -> int:
        """Flag rows whose window ended before today as inactive."""
        today = self.clock.today()
        count = 0
        for rate in self.store.list_exchange_rates(tenant_id):
            if rate.is_active and rate.effective_to is not None and rate.effective_to < today:
                rate.is_active = False
                self.store.save_exchange_rate(rate)
                count += 1
        if count:
            self._invalidate(tenant_id)
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def active_rates(self, tenant_id: str, rate_type: Optional[ExchangeRateType] = None) -> list[CurrencyExchangeRate]:
        today = self.clock.today()
        rates = [
            r for r in self.store.list_exchange_rates(tenant_id)
            if r.is_effective_on(today) and (rate_type is None or r.rate_type == rate_type)
        ]
        rates.sort(key=lambda r: (r.source_currency, r.target_currency, -r.effective_from.toordinal()))
        return rates

    def supported_currencies(self, tenant_id: str) -> list[str]:
        currencies = set()
        for rate in self.store.list_exchange_rates(tenant_id):
            if rate.is_active:
                currencies.add(rate.source_currency)
                currencies.add(rate.target_currency)
        return sorted(currencies)
