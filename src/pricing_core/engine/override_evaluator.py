"""
Override Evaluator - finds the approved price override that applies to a request.

An override always beats list pricing. When several match, the most
specific scope wins (customer, then contract, then organization), then the
most recent ``effective_from``, then the lowest id.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from ..enums import OverrideScopeType, OverrideStatus, PriceListStatus
from .models import PriceListItem, PriceOverride, RequestScope, is_effective

logger = logging.getLogger(__name__)


SCOPE_SPECIFICITY = {
    OverrideScopeType.CUSTOMER: 0,
    OverrideScopeType.CONTRACT: 1,
    OverrideScopeType.ORGANIZATION: 2,
}


@dataclass
class MatchedOverride:
    """An override that matched, with the item it prices and why it matched."""
    override: PriceOverride
    item: PriceListItem
    match_reason: str


def _scope_id_for(scope: RequestScope, scope_type: OverrideScopeType) -> Optional[str]:
    return {
        OverrideScopeType.CUSTOMER: scope.customer_id,
        OverrideScopeType.CONTRACT: scope.contract_id,
        OverrideScopeType.ORGANIZATION: scope.organization_id,
    }.get(scope_type)


class OverrideEvaluator:
    """Matches approved overrides against requester scope, quantity and date."""

    def __init__(self, store):
        self.store = store

    def match_reason(
        self, override: PriceOverride, scope: RequestScope, quantity: int, as_of: date
    ) -> Optional[str]:
        """
        Why ``override`` applies, or None when it does not.

        Checks status, effective window, quantity range and scope in turn.
        """
        if override.status != OverrideStatus.APPROVED:
            return None
        if not is_effective(as_of, override.effective_from, override.effective_to):
            return None

        reasons = []
        min_qty = override.min_quantity or 0
        if quantity < min_qty:
            return None
        if override.max_quantity is not None and quantity > override.max_quantity:
            return None
        if override.min_quantity:
            reasons.append(f"qty>={override.min_quantity}")
        if override.max_quantity is not None:
            reasons.append(f"qty<={override.max_quantity}")

        requester_id = _scope_id_for(scope, override.scope_type)
        if requester_id is None or requester_id != override.scope_id:
            return None
        reasons.insert(0, f"{override.scope_type.value}={override.scope_id}")
        return ", ".join(reasons)

    @staticmethod
    def _rank(match: MatchedOverride) -> tuple:
        o = match.override
        return (SCOPE_SPECIFICITY.get(o.scope_type, 99), -o.effective_from.toordinal(), o.id)

    def applicable(
        self,
        tenant_id: str,
        price_list_item_id: str,
        scope: RequestScope,
        quantity: int,
        as_of: date,
    ) -> Optional[PriceOverride]:
        """Best override for one price list item, or None."""
        item = self.store.get_price_list_item(price_list_item_id)
        if item is None:
            return None
        matched = []
        for override in self.store.get_overrides_for(tenant_id, price_list_item_id):
            reason = self.match_reason(override, scope, quantity, as_of)
            if reason is not None:
                matched.append(MatchedOverride(override, item, reason))
        if not matched:
            return None
        matched.sort(key=self._rank)
        return matched[0].override

    def find_for_sku(
        self,
        tenant_id: str,
        sku: str,
        scope: RequestScope,
        quantity: int,
        as_of: date,
    ) -> list[MatchedOverride]:
        """Every applicable override for ``sku``, best first."""
        if scope.is_empty():
            return []

        matched = []
        list_status = {}
        for override, item in self.store.get_overrides_for_sku(tenant_id, sku):
            if not item.is_effective_on(as_of):
                continue
            if item.price_list_id not in list_status:
                price_list = self.store.get_price_list(tenant_id, item.price_list_id)
                list_status[item.price_list_id] = price_list is not None and price_list.status == PriceListStatus.ACTIVE
            if not list_status[item.price_list_id]:
                continue
            reason = self.match_reason(override, scope, quantity, as_of)
            if reason is not None:
                matched.append(MatchedOverride(override, item, reason))

        matched.sort(key=self._rank)
        if len(matched) > 1:
            logger.debug(
                "%d overrides match %s; selected %s", len(matched), sku, matched[0].override.id
            )
        return matched

    def applicable_for_sku(
        self,
        tenant_id: str,
        sku: str,
        scope: RequestScope,
        quantity: int,
        as_of: date,
    ) -> Optional[tuple[PriceOverride, PriceListItem]]:
        """Best override for ``sku`` together with the item it prices, or None."""
        matched = self.find_for_sku(tenant_id, sku, scope, quantity, as_of)
        if not matched:
            return None
        return matched[0].override, matched[0].item
