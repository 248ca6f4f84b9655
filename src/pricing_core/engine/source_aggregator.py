"""
Price Source Aggregator - collects candidate prices for a SKU from every source.

Waterfall precedence follows the tenant's configured resolution order
(default):

1. Contract price lists (assigned)
2. Customer-specific price lists (assigned)
3. Volume price lists
4. Promotional price lists
5. Standard price lists (standard, channel and regional types)

Overrides come first in the configured order but are evaluated by the
``OverrideEvaluator``; they are skipped here.

Within one source the best list wins by (priority asc, effective_from desc,
id asc). Every source, matched or not, leaves a step in the trace.
"""
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from ..config.settings import PricingConfig
from ..enums import PriceListStatus, PriceSource
from ..store.clock import Clock, SystemClock
from .models import (
    SOURCE_LIST_TYPES,
    PriceList,
    PriceListItem,
    RequestScope,
    ResolutionStep,
)

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """A price list item that could price the request, and where it came from."""
    source: PriceSource
    item: PriceListItem
    price_list: PriceList
    via_base_list: bool = False


@dataclass
class Aggregation:
    selected: Optional[Candidate]
    candidates: list[Candidate] = field(default_factory=list)
    trace: list[ResolutionStep] = field(default_factory=list)


def apply_price_modifier(item: PriceListItem, modifier: Optional[float], currency: str) -> PriceListItem:
    """Copy of a base-list item adjusted by a derived list's percent modifier."""
    factor = 1 + (modifier or 0.0) / 100.0

    def scale(value):
        return value * factor if value is not None else None

    return dataclasses.replace(
        item,
        base_price=item.base_price * factor,
        list_price=item.list_price * factor,
        min_price=scale(item.min_price),
        max_price=scale(item.max_price),
        currency=item.currency or currency,
        quantity_breaks=[b.scaled(factor) for b in item.quantity_breaks],
        metadata=dict(item.metadata),
    )


class SourceAggregator:
    """Ranks the price lists that can price a SKU, source by source."""

    def __init__(
        self,
        store,
        config: Optional[PricingConfig] = None,
        clock: Optional[Clock] = None,
        config_for: Optional[Callable[[str], PricingConfig]] = None,
    ):
        self.store = store
        self.config = config or PricingConfig()
        self.clock = clock or SystemClock()
        self._config_for = config_for

    def _tenant_config(self, tenant_id: str) -> PricingConfig:
        if self._config_for is not None:
            return self._config_for(tenant_id)
        return self.config

    def visible_lists(self, tenant_id: str, scope: RequestScope, as_of: date) -> list[PriceList]:
        """
        Effective lists the requester may see.

        Contract and customer-specific lists need an effective assignment
        matching the requester; everything else is visible to everyone.
        """
        assigned = {
            a.price_list_id
            for a in self.store.get_assignments_for(tenant_id, scope)
            if a.is_effective_on(as_of)
        }
        visible = []
        for price_list in self.store.list_price_lists(tenant_id, status=PriceListStatus.ACTIVE):
            if not price_list.is_effective_on(as_of):
                continue
            if price_list.requires_assignment() and price_list.id not in assigned:
                continue
            visible.append(price_list)
        return visible

    def item_for(self, price_list: PriceList, sku: str, as_of: date) -> Optional[tuple[PriceListItem, bool]]:
        """
        The list's qualifying item for ``sku``, as (item, via_base_list).

        A derived list without its own item falls back to its base list,
        adjusted by ``price_modifier``.
        """
        item = self.store.find_item(price_list.id, sku)
        if item is not None:
            if not item.is_effective_on(as_of):
                return None
            if item.currency is None:
                item = dataclasses.replace(item, currency=price_list.currency)
            return item, False

        if not price_list.base_price_list_id:
            return None
        base_list = self.store.get_price_list(price_list.tenant_id, price_list.base_price_list_id)
        if base_list is None or base_list.status != PriceListStatus.ACTIVE:
            return None
        base_item = self.store.find_item(base_list.id, sku)
        if base_item is None or not base_item.is_effective_on(as_of):
            return None
        return apply_price_modifier(base_item, price_list.price_modifier, base_list.currency), True

    def resolve(
        self,
        tenant_id: str,
        sku: str,
        scope: RequestScope,
        as_of: Optional[date] = None,
    ) -> Aggregation:
        """Rank every source and select the first one, in configured order, with a match."""
        config = self._tenant_config(tenant_id)
        as_of = as_of or self.clock.today()
        visible = self.visible_lists(tenant_id, scope, as_of)

        aggregation = Aggregation(selected=None)
        for source in config.calculation.price_resolution_order:
            if source == PriceSource.OVERRIDE:
                continue
            if not config.features.source_enabled(source):
                aggregation.trace.append(ResolutionStep(source, False, "disabled"))
                continue

            list_types = SOURCE_LIST_TYPES.get(source, ())
            matches = []
            for price_list in visible:
                if price_list.type not in list_types:
                    continue
                found = self.item_for(price_list, sku, as_of)
                if found is not None:
                    item, via_base = found
                    matches.append(Candidate(source, item, price_list, via_base))

            if not matches:
                aggregation.trace.append(ResolutionStep(source, False, "no effective price list"))
                continue

            matches.sort(key=lambda c: c.price_list.rank_key())
            best = matches[0]
            aggregation.candidates.append(best)

            if aggregation.selected is None:
                aggregation.selected = best
                reason = f"price list {best.price_list.code} (priority {best.price_list.priority})"
                if best.via_base_list:
                    reason += f", from base list with {best.price_list.price_modifier or 0:+g}%"
                aggregation.trace.append(
                    ResolutionStep(source, True, reason, best.price_list.id, best.item.list_price)
                )
            else:
                aggregation.trace.append(
                    ResolutionStep(source, False, "lower precedence source", best.price_list.id, best.item.list_price)
                )

            for loser in matches[1:]:
                aggregation.trace.append(
                    ResolutionStep(source, False, "outranked", loser.price_list.id, loser.item.list_price)
                )

        if aggregation.selected is None:
            logger.debug("No price source matched %s for tenant %s", sku, tenant_id)
        return aggregation

    def candidates(
        self,
        tenant_id: str,
        sku: str,
        customer_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        contract_id: Optional[str] = None,
        as_of: Optional[date] = None,
        channel: Optional[str] = None,
    ) -> list[Candidate]:
        """Best candidate per source, in configured order."""
        scope = RequestScope(
            customer_id=customer_id,
            organization_id=organization_id,
            contract_id=contract_id,
            channel=channel,
        )
        return self.resolve(tenant_id, sku, scope, as_of).candidates
