"""
Pricing Engine - core price resolution with traceability.

Resolution pipeline for one SKU:
1. Approved override for the requester (short-circuits list pricing)
2. Best candidate from the price source waterfall
3. Quantity break tier
4. Clamp to the item's min/max price
5. Minimum margin floor
6. Rounding per the winning price list
7. Conversion into the requested currency

Every step is recorded in the result's ``resolution_path``.
"""
import logging
from datetime import date
from typing import Callable, Iterable, Optional

from ..config.settings import PricingConfig, get_settings
from ..enums import PriceSource, QuantityBreakMethod, RoundingRule
from ..errors import PriceNotFoundError, RateNotFoundError, ValidationError
from ..store.clock import Clock, SystemClock
from .models import (
    PriceCalculationRequest,
    PriceCalculationResult,
    PriceList,
    PriceListItem,
    ResolutionStep,
)
from .override_evaluator import OverrideEvaluator
from .quantity_breaks import BreakResolution, QuantityBreakResolver
from .rounding import apply_rounding
from .source_aggregator import SourceAggregator

logger = logging.getLogger(__name__)


class PricingEngine:
    """
    Resolves the unit price for a request from competing price sources.

    ``converter`` is a ``CurrencyConverter`` (or anything with its ``convert``
    signature); without one, requests for another currency are priced in the
    list currency.
    """

    def __init__(
        self,
        store,
        config: Optional[PricingConfig] = None,
        converter=None,
        clock: Optional[Clock] = None,
        config_for: Optional[Callable[[str], PricingConfig]] = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.converter = converter
        if config is None and config_for is None:
            config_for = get_settings().config_for
        self.config = config or PricingConfig()
        self._config_for = config_for

        self.overrides = OverrideEvaluator(store)
        self.aggregator = SourceAggregator(store, self.config, self.clock, config_for=self._config_for)
        self.breaks = QuantityBreakResolver()

    def config_for(self, tenant_id: str) -> PricingConfig:
        if self._config_for is not None:
            return self._config_for(tenant_id)
        return self.config

    def _validate(self, request: PriceCalculationRequest):
        if not request.sku or not str(request.sku).strip():
            raise ValidationError("sku is required")
        if request.quantity is None or request.quantity <= 0:
            raise ValidationError(
                f"quantity must be positive, got {request.quantity}", {"sku": request.sku}
            )

    def calculate(self, request: PriceCalculationRequest) -> PriceCalculationResult:
        """
        Calculate the price for one SKU with full traceability.

        Raises:
            ValidationError: empty SKU or non-positive quantity
            PriceNotFoundError: no override and no price list prices the SKU
            RateNotFoundError: the requested currency cannot be reached
        """
        self._validate(request)
        config = self.config_for(request.tenant_id)
        if not config.enabled:
            raise ValidationError(f"Pricing is disabled for tenant {request.tenant_id}")
        as_of = request.price_date or self.clock.today()
        scope = request.scope
        trace: list[ResolutionStep] = []

        override = None
        override_item = None
        if config.features.enable_price_overrides and not scope.is_empty():
            found = self.overrides.applicable_for_sku(
                request.tenant_id, request.sku, scope, request.quantity, as_of
            )
            if found is not None:
                override, override_item = found
                trace.append(ResolutionStep(
                    PriceSource.OVERRIDE, True,
                    f"{override.override_type.value} {override.override_value:g} for "
                    f"{override.scope_type.value} {override.scope_id}",
                    override_item.price_list_id, override.unit_price(override_item),
                ))
            else:
                trace.append(ResolutionStep(PriceSource.OVERRIDE, False, "no applicable override"))
        elif not config.features.enable_price_overrides:
            trace.append(ResolutionStep(PriceSource.OVERRIDE, False, "disabled"))
        else:
            trace.append(ResolutionStep(PriceSource.OVERRIDE, False, "no customer scope"))

        aggregation = self.aggregator.resolve(request.tenant_id, request.sku, scope, as_of)
        if override is not None:
            # The waterfall still runs for the trace; none of it is selected
            for step in aggregation.trace:
                if step.selected:
                    step.selected = False
                    step.reason = "lower precedence source"
        trace.extend(aggregation.trace)

        if override is not None:
            item = override_item
            price_list = self.store.get_price_list(request.tenant_id, item.price_list_id)
            source = PriceSource.OVERRIDE
            resolution = BreakResolution(override.unit_price(item), override.unit_price(item) * request.quantity)
            effective_from = override.effective_from
            effective_to = override.effective_to
        else:
            if aggregation.selected is None:
                raise PriceNotFoundError(
                    f"No price found for SKU {request.sku}",
                    {"sku": request.sku, "tenant_id": request.tenant_id, "as_of": as_of.isoformat()},
                )
            candidate = aggregation.selected
            item = candidate.item
            price_list = candidate.price_list
            source = candidate.source
            resolution = self.breaks.resolve(
                item.quantity_breaks, request.quantity, item.list_price,
                config.calculation.quantity_break_method,
            )
            effective_from = item.effective_from or price_list.effective_from
            effective_to = item.effective_to or price_list.effective_to

        result = self._finish(request, config, source, item, price_list, resolution, trace)
        result.effective_from = effective_from
        result.effective_to = effective_to
        if override is not None:
            result.override_applied = True
            result.override_id = override.id
        return result

    def _finish(
        self,
        request: PriceCalculationRequest,
        config: PricingConfig,
        source: PriceSource,
        item: PriceListItem,
        price_list: Optional[PriceList],
        resolution: BreakResolution,
        trace: list[ResolutionStep],
    ) -> PriceCalculationResult:
        """Clamp, margin floor, rounding, conversion and discount math."""
        unit_price = resolution.unit_price
        extended_price = resolution.extended_price
        adjusted = False

        if resolution.applied_break is not None:
            trace.append(ResolutionStep(
                source, False,
                f"quantity break min {resolution.applied_break.min_quantity} "
                f"({config.calculation.quantity_break_method.value})",
                item.price_list_id, unit_price,
            ))

        is_at_min = is_at_max = False
        if item.min_price is not None and unit_price < item.min_price:
            trace.append(ResolutionStep(source, False, f"raised to min price {item.min_price:.2f}", item.price_list_id, item.min_price))
            unit_price = item.min_price
            is_at_min = adjusted = True
        if item.max_price is not None and unit_price > item.max_price:
            trace.append(ResolutionStep(source, False, f"lowered to max price {item.max_price:.2f}", item.price_list_id, item.max_price))
            unit_price = item.max_price
            is_at_max = adjusted = True

        margin_violation = False
        minimum_margin = config.calculation.minimum_margin_percent
        if minimum_margin is not None and item.cost is not None and unit_price > 0:
            margin_pct = (unit_price - item.cost) / unit_price * 100
            if margin_pct < minimum_margin:
                floor = item.cost / (1 - minimum_margin / 100.0)
                if config.calculation.allow_below_cost_pricing:
                    margin_violation = True
                    trace.append(ResolutionStep(
                        source, False,
                        f"margin {margin_pct:.1f}% below minimum {minimum_margin:g}% (allowed)",
                        item.price_list_id, unit_price,
                    ))
                else:
                    trace.append(ResolutionStep(
                        source, False,
                        f"raised to minimum margin {minimum_margin:g}% floor",
                        item.price_list_id, floor,
                    ))
                    unit_price = floor
                    adjusted = True

        rounding_rule = price_list.rounding_rule if price_list else config.default_rounding_rule
        precision = price_list.rounding_precision if price_list else config.default_rounding_precision
        rounded = apply_rounding(unit_price, rounding_rule, precision)
        if rounded != unit_price:
            adjusted = True
        unit_price = rounded

        if adjusted or config.calculation.quantity_break_method == QuantityBreakMethod.ALL_UNITS:
            extended_price = unit_price * request.quantity
        else:
            extended_price = apply_rounding(extended_price, rounding_rule, precision)

        list_price = item.list_price
        price_currency = (item.currency or (price_list.currency if price_list else None) or config.default_currency).upper()
        target_currency = (request.currency or price_currency).upper()

        original_currency = None
        exchange_rate = None
        min_price, max_price, cost = item.min_price, item.max_price, item.cost
        if target_currency != price_currency:
            if not config.features.enable_multi_currency:
                raise ValidationError(
                    f"Multi-currency pricing is disabled; cannot price {request.sku} in {target_currency}",
                    {"sku": request.sku, "currency": target_currency, "price_currency": price_currency},
                )
            if self.converter is None:
                raise RateNotFoundError(
                    f"No currency converter configured: {price_currency} to {target_currency}",
                    {"source": price_currency, "target": target_currency},
                )
            conversion = self.converter.convert(
                request.tenant_id, 1.0, price_currency, target_currency,
                as_of=request.price_date or self.clock.today(),
            )
            exchange_rate = conversion.rate
            original_currency = price_currency
            unit_price = apply_rounding(unit_price * exchange_rate, rounding_rule, precision)
            extended_price = apply_rounding(extended_price * exchange_rate, RoundingRule.NEAREST, precision)
            list_price = list_price * exchange_rate

            def convert(value):
                return value * exchange_rate if value is not None else None

            min_price, max_price, cost = convert(min_price), convert(max_price), convert(cost)
            trace.append(ResolutionStep(
                source, False, f"converted {price_currency}→{target_currency} at {exchange_rate:g}",
                item.price_list_id, unit_price,
            ))

        discount_amount = max(0.0, list_price - unit_price)
        discount_percent = discount_amount / list_price * 100 if list_price else 0.0

        margin = margin_percent = None
        if cost is not None:
            margin = unit_price - cost
            margin_percent = margin / unit_price * 100 if unit_price else None

        return PriceCalculationResult(
            sku=request.sku,
            quantity=request.quantity,
            unit_price=unit_price,
            extended_price=extended_price,
            currency=target_currency,
            price_source=source,
            base_price=item.base_price,
            discount_amount=discount_amount,
            discount_percent=discount_percent,
            effective_from=item.effective_from or (price_list.effective_from if price_list else request.price_date),
            price_list_id=price_list.id if price_list else item.price_list_id,
            price_list_code=price_list.code if price_list else None,
            quantity_break_applied=resolution.applied_break,
            min_price=min_price,
            max_price=max_price,
            is_at_min_price=is_at_min,
            is_at_max_price=is_at_max,
            cost=cost,
            margin=margin,
            margin_percent=margin_percent,
            margin_violation=margin_violation,
            original_currency=original_currency,
            exchange_rate=exchange_rate,
            resolution_path=trace,
        )

    def calculate_many(
        self,
        tenant_id: str,
        skus: Iterable[str],
        customer_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        contract_id: Optional[str] = None,
        currency: Optional[str] = None,
        price_date: Optional[date] = None,
        channel: Optional[str] = None,
    ) -> dict[str, Optional[PriceCalculationResult]]:
        """
        Price a batch of SKUs at quantity 1.

        A SKU without any price maps to None; every other error propagates.
        """
        results = {}
        for sku in skus:
            request = PriceCalculationRequest(
                tenant_id=tenant_id,
                sku=sku,
                quantity=1,
                customer_id=customer_id,
                organization_id=organization_id,
                contract_id=contract_id,
                currency=currency,
                price_date=price_date,
                channel=channel,
            )
            try:
                results[sku] = self.calculate(request)
            except PriceNotFoundError:
                results[sku] = None
        return results
