"""
Price List Service - management operations for price lists, items,
assignments and price overrides.

Everything written through here is validated first, so the engine can
trust what it reads: break tables are sorted and non-overlapping, codes
are unique per tenant, and two live overrides never cover the same
item, scope, dates and quantities.
"""
import dataclasses
import logging
from datetime import date
from typing import Iterable, Optional

from ..engine.models import (
    CustomerPriceAssignment,
    PriceList,
    PriceListItem,
    PriceOverride,
)
from ..engine.quantity_breaks import validate_breaks
from ..enums import OverrideStatus, PriceListStatus
from ..errors import ConflictError, NotFoundError, ValidationError
from ..store.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


LIVE_OVERRIDE_STATUSES = (OverrideStatus.APPROVED, OverrideStatus.PENDING_APPROVAL)


def _windows_overlap(a_from: date, a_to: Optional[date], b_from: date, b_to: Optional[date]) -> bool:
    if a_to is not None and a_to < b_from:
        return False
    if b_to is not None and b_to < a_from:
        return False
    return True


def _ranges_overlap(a_min: Optional[int], a_max: Optional[int], b_min: Optional[int], b_max: Optional[int]) -> bool:
    a_min, b_min = a_min or 0, b_min or 0
    if a_max is not None and a_max < b_min:
        return False
    if b_max is not None and b_max < a_min:
        return False
    return True


class PriceListService:
    """Service for managing price lists and what hangs off them."""

    def __init__(self, store, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Price lists
    # ------------------------------------------------------------------

    def get_price_list(self, tenant_id: str, price_list_id: str) -> PriceList:
        price_list = self.store.get_price_list(tenant_id, price_list_id)
        if price_list is None:
            raise NotFoundError(f"Price list not found: {price_list_id}")
        return price_list

    def _validate_price_list(self, price_list: PriceList):
        if not price_list.code or not price_list.name:
            raise ValidationError("Price list code and name are required")
        if not price_list.currency or len(price_list.currency) != 3:
            raise ValidationError(f"Currency must be a 3-letter code, got {price_list.currency!r}")
        if price_list.effective_to is not None and price_list.effective_to < price_list.effective_from:
            raise ValidationError("effective_to must not be before effective_from")
        if price_list.base_price_list_id:
            if price_list.base_price_list_id == price_list.id:
                raise ValidationError("A price list cannot be its own base list")
            self.get_price_list(price_list.tenant_id, price_list.base_price_list_id)

    def create_price_list(self, price_list: PriceList) -> PriceList:
        """Create a price list. Raises ``ConflictError`` if the code is taken."""
        price_list.currency = (price_list.currency or "").upper()
        self._validate_price_list(price_list)
        if self.store.find_price_list_by_code(price_list.tenant_id, price_list.code) is not None:
            raise ConflictError(
                f"Price list code already exists: {price_list.code}", {"code": price_list.code}
            )
        saved = self.store.save_price_list(price_list)
        logger.info("Created price list %s (%s) for tenant %s", saved.code, saved.id, saved.tenant_id)
        return saved

    def update_price_list(self, tenant_id: str, price_list_id: str, updates: dict) -> PriceList:
        """Apply field updates to a price list."""
        price_list = self.get_price_list(tenant_id, price_list_id)
        unknown = [key for key in updates if key in ('id', 'tenant_id') or not hasattr(price_list, key)]
        if unknown:
            raise ValidationError(f"Cannot update fields: {unknown}")

        new_code = updates.get('code')
        if new_code and new_code != price_list.code:
            taken = self.store.find_price_list_by_code(tenant_id, new_code)
            if taken is not None:
                raise ConflictError(f"Price list code already exists: {new_code}", {"code": new_code})

        updated = dataclasses.replace(price_list, **updates)
        self._validate_price_list(updated)
        return self.store.save_price_list(updated)

    def set_status(self, tenant_id: str, price_list_id: str, status: PriceListStatus) -> PriceList:
        return self.update_price_list(tenant_id, price_list_id, {'status': PriceListStatus(status)})

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def _validate_item(self, item: PriceListItem):
        if not item.sku:
            raise ValidationError("sku is required")
        for name in ('base_price', 'list_price', 'min_price', 'max_price', 'cost'):
            value = getattr(item, name)
            if value is not None and value < 0:
                raise ValidationError(f"{name} must not be negative", {"sku": item.sku})
        if item.min_price is not None and item.max_price is not None and item.min_price > item.max_price:
            raise ValidationError("min_price must not exceed max_price", {"sku": item.sku})
        validate_breaks(item.quantity_breaks)

    def upsert_item(self, tenant_id: str, price_list_id: str, item: PriceListItem) -> PriceListItem:
        """Create or replace the item for ``item.sku`` in the list."""
        self.get_price_list(tenant_id, price_list_id)
        item.price_list_id = price_list_id
        self._validate_item(item)
        saved, _ = self.store.upsert_price_list_item(item)
        return saved

    def bulk_upsert_items(
        self,
        tenant_id: str,
        price_list_id: str,
        items: Iterable[PriceListItem],
        batch_size: int = 100,
    ) -> dict:
        """
        Upsert many items; invalid items are reported and skipped.

        Returns counts of created/updated items and the per-SKU errors.
        """
        self.get_price_list(tenant_id, price_list_id)
        items = list(items)
        created = updated = 0
        errors = []
        for start in range(0, len(items), batch_size):
            for item in items[start:start + batch_size]:
                item.price_list_id = price_list_id
                try:
                    self._validate_item(item)
                except ValidationError as e:
                    errors.append({"sku": item.sku, "error": e.message})
                    continue
                _, was_created = self.store.upsert_price_list_item(item)
                if was_created:
                    created += 1
                else:
                    updated += 1
        logger.info(
            "Bulk upsert into %s: %d created, %d updated, %d rejected",
            price_list_id, created, updated, len(errors),
        )
        return {"created": created, "updated": updated, "errors": errors}

    def remove_item(self, tenant_id: str, price_list_id: str, sku: str):
        self.get_price_list(tenant_id, price_list_id)
        item = self.store.find_item(price_list_id, sku)
        if item is None:
            raise NotFoundError(f"Item {sku} not found in price list {price_list_id}")
        self.store.delete_price_list_item(item.id)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def assign_price_list(self, assignment: CustomerPriceAssignment) -> CustomerPriceAssignment:
        """Make a price list visible to a customer, organization, contract or channel."""
        self.get_price_list(assignment.tenant_id, assignment.price_list_id)
        if not assignment.assignment_id:
            raise ValidationError("assignment_id is required")
        if assignment.effective_to is not None and assignment.effective_to < assignment.effective_from:
            raise ValidationError("effective_to must not be before effective_from")
        return self.store.save_assignment(assignment)

    def remove_assignment(self, tenant_id: str, assignment_id: str):
        if not self.store.delete_assignment(tenant_id, assignment_id):
            raise NotFoundError(f"Assignment not found: {assignment_id}")

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    def get_override(self, tenant_id: str, override_id: str) -> PriceOverride:
        override = self.store.get_override(tenant_id, override_id)
        if override is None:
            raise NotFoundError(f"Price override not found: {override_id}")
        return override

    def find_conflicting_override(self, override: PriceOverride) -> Optional[PriceOverride]:
        """A live override on the same item and scope whose dates and quantities overlap."""
        for existing in self.store.get_overrides_for(override.tenant_id, override.price_list_item_id):
            if existing.id == override.id or existing.status not in LIVE_OVERRIDE_STATUSES:
                continue
            if existing.scope_type != override.scope_type or existing.scope_id != override.scope_id:
                continue
            if not _windows_overlap(
                existing.effective_from, existing.effective_to, override.effective_from, override.effective_to
            ):
                continue
            if not _ranges_overlap(
                existing.min_quantity, existing.max_quantity, override.min_quantity, override.max_quantity
            ):
                continue
            return existing
        return None

    def create_override(self, override: PriceOverride) -> PriceOverride:
        """Create an override awaiting approval."""
        item = self.store.get_price_list_item(override.price_list_item_id)
        if item is None or self.store.get_price_list(override.tenant_id, item.price_list_id) is None:
            raise NotFoundError(f"Price list item not found: {override.price_list_item_id}")
        if override.override_value is None or override.override_value < 0:
            raise ValidationError("override_value must not be negative")
        if override.effective_to is not None and override.effective_to < override.effective_from:
            raise ValidationError("effective_to must not be before effective_from")
        if (
            override.min_quantity is not None
            and override.max_quantity is not None
            and override.max_quantity < override.min_quantity
        ):
            raise ValidationError("max_quantity must not be below min_quantity")

        conflict = self.find_conflicting_override(override)
        if conflict is not None:
            raise ConflictError(
                f"Conflicting override exists for this scope and date range: {conflict.id}",
                {"conflicting_override_id": conflict.id},
            )
        saved = self.store.save_override(override)
        logger.info(
            "Created %s override %s on item %s for %s %s",
            saved.override_type.value, saved.id, item.sku, saved.scope_type.value, saved.scope_id,
        )
        return saved

    def approve_override(self, tenant_id: str, override_id: str, approver_id: str) -> PriceOverride:
        override = self.get_override(tenant_id, override_id)
        if override.status != OverrideStatus.PENDING_APPROVAL:
            raise ConflictError(f"Override is not pending approval: {override.status.value}")
        override.status = OverrideStatus.APPROVED
        override.approved_by = approver_id
        override.approved_at = self.clock.now()
        logger.info("Override %s approved by %s", override_id, approver_id)
        return self.store.save_override(override)

    def revoke_override(self, tenant_id: str, override_id: str, reason: Optional[str] = None) -> PriceOverride:
        override = self.get_override(tenant_id, override_id)
        if override.status == OverrideStatus.REVOKED:
            raise ConflictError(f"Override already revoked: {override_id}")
        override.status = OverrideStatus.REVOKED
        if reason:
            override.metadata = {**override.metadata, 'revocation_reason': reason}
        logger.info("Override %s revoked", override_id)
        return self.store.save_override(override)
