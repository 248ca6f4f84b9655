from datetime import date

import pytest

from pricing_core.engine.models import (
    CustomerPriceAssignment,
    PriceCalculationRequest,
    PriceList,
    PriceListItem,
    PriceOverride,
    QuantityBreak,
)
from pricing_core.enums import (
    AssignmentType,
    OverrideScopeType,
    OverrideStatus,
    OverrideType,
    PriceListStatus,
)
from pricing_core.errors import ConflictError, NotFoundError, ValidationError

from conftest import TENANT, make_item, make_list


def new_list(code="STD", **kwargs):
    kwargs.setdefault('currency', "usd")
    kwargs.setdefault('effective_from', date(2024, 1, 1))
    return PriceList(tenant_id=TENANT, code=code, name=code.title(), **kwargs)


def new_override(item, scope_id="C1", **kwargs):
    kwargs.setdefault('effective_from', date(2024, 1, 1))
    kwargs.setdefault('override_type', OverrideType.FIXED_PRICE)
    kwargs.setdefault('override_value', 90.0)
    return PriceOverride(
        tenant_id=TENANT,
        price_list_item_id=item.id,
        scope_type=kwargs.pop('scope_type', OverrideScopeType.CUSTOMER),
        scope_id=scope_id,
        **kwargs,
    )


class TestPriceLists:
    def test_create_normalizes_currency(self, service):
        saved = service.create_price_list(new_list())
        assert saved.currency == "USD"
        assert saved.created_at is not None
        assert service.get_price_list(TENANT, saved.id).code == "STD"

    def test_duplicate_code_conflicts(self, service):
        service.create_price_list(new_list())
        with pytest.raises(ConflictError):
            service.create_price_list(new_list())

    def test_same_code_in_another_tenant_is_fine(self, service):
        service.create_price_list(new_list())
        other = PriceList(tenant_id="globex", code="STD", name="Std", currency="USD", effective_from=date(2024, 1, 1))
        assert service.create_price_list(other).tenant_id == "globex"

    @pytest.mark.parametrize("kwargs", [
        {"currency": "DOLLARS"},
        {"effective_to": date(2023, 12, 31)},
        {"base_price_list_id": "missing"},
    ])
    def test_invalid_lists_rejected(self, service, kwargs):
        with pytest.raises((ValidationError, NotFoundError)):
            service.create_price_list(new_list(**kwargs))

    def test_update_and_status(self, service):
        saved = service.create_price_list(new_list())
        updated = service.update_price_list(TENANT, saved.id, {"priority": 5, "name": "Renamed"})
        assert (updated.priority, updated.name) == (5, "Renamed")

        archived = service.set_status(TENANT, saved.id, "archived")
        assert archived.status == PriceListStatus.ARCHIVED

    def test_update_rejects_unknown_fields_and_taken_codes(self, service):
        first = service.create_price_list(new_list("A"))
        service.create_price_list(new_list("B"))
        with pytest.raises(ValidationError):
            service.update_price_list(TENANT, first.id, {"colour": "red"})
        with pytest.raises(ConflictError):
            service.update_price_list(TENANT, first.id, {"code": "B"})

    def test_unknown_list(self, service):
        with pytest.raises(NotFoundError):
            service.get_price_list(TENANT, "missing")


class TestItems:
    def test_upsert_item(self, service, store):
        price_list = make_list(store, "STD")
        item = service.upsert_item(TENANT, price_list.id, PriceListItem(
            price_list_id="", sku="SKU-1", base_price=10.0, list_price=12.0,
        ))
        assert store.find_item(price_list.id, "SKU-1").id == item.id

    @pytest.mark.parametrize("kwargs", [
        {"sku": ""},
        {"list_price": -1.0},
        {"min_price": 20.0, "max_price": 10.0},
        {"quantity_breaks": [QuantityBreak(min_quantity=10, price=9.0), QuantityBreak(min_quantity=5, price=8.0)]},
    ])
    def test_invalid_items_rejected(self, service, store, kwargs):
        price_list = make_list(store, "STD")
        fields = {"price_list_id": price_list.id, "sku": "SKU-1", "base_price": 10.0, "list_price": 12.0}
        fields.update(kwargs)
        with pytest.raises(ValidationError):
            service.upsert_item(TENANT, price_list.id, PriceListItem(**fields))

    def test_bulk_upsert_reports_rejects(self, service, store):
        price_list = make_list(store, "STD")
        make_item(store, price_list, "EXISTING", 5.0)
        items = [
            PriceListItem(price_list_id="", sku="EXISTING", base_price=6.0, list_price=6.0),
            PriceListItem(price_list_id="", sku="NEW", base_price=7.0, list_price=7.0),
            PriceListItem(price_list_id="", sku="BAD", base_price=-1.0, list_price=7.0),
        ]
        result = service.bulk_upsert_items(TENANT, price_list.id, items, batch_size=2)
        assert result["created"] == 1
        assert result["updated"] == 1
        assert [e["sku"] for e in result["errors"]] == ["BAD"]

    def test_remove_item(self, service, store):
        price_list = make_list(store, "STD")
        make_item(store, price_list, "SKU-1", 5.0)
        service.remove_item(TENANT, price_list.id, "SKU-1")
        assert store.find_item(price_list.id, "SKU-1") is None
        with pytest.raises(NotFoundError):
            service.remove_item(TENANT, price_list.id, "SKU-1")


class TestAssignments:
    def test_assign_and_remove(self, service, store):
        price_list = make_list(store, "STD")
        assignment = service.assign_price_list(CustomerPriceAssignment(
            tenant_id=TENANT, price_list_id=price_list.id,
            assignment_type=AssignmentType.CUSTOMER, assignment_id="C1",
            effective_from=date(2024, 1, 1),
        ))
        service.remove_assignment(TENANT, assignment.id)
        with pytest.raises(NotFoundError):
            service.remove_assignment(TENANT, assignment.id)

    def test_assignment_needs_existing_list(self, service):
        with pytest.raises(NotFoundError):
            service.assign_price_list(CustomerPriceAssignment(
                tenant_id=TENANT, price_list_id="missing",
                assignment_type=AssignmentType.CUSTOMER, assignment_id="C1",
                effective_from=date(2024, 1, 1),
            ))


class TestOverrides:
    @pytest.fixture
    def item(self, store):
        return make_item(store, make_list(store, "STD"), "SKU", 100.0)

    def test_created_pending_then_approved(self, service, item, engine, clock):
        override = service.create_override(new_override(item))
        assert override.status == OverrideStatus.PENDING_APPROVAL

        request = PriceCalculationRequest(tenant_id=TENANT, sku="SKU", quantity=1, customer_id="C1")
        assert engine.calculate(request).unit_price == 100.0

        approved = service.approve_override(TENANT, override.id, "manager-7")
        assert approved.approved_by == "manager-7"
        assert approved.approved_at == clock.now()
        assert engine.calculate(request).unit_price == 90.0

    def test_approve_twice_conflicts(self, service, item):
        override = service.create_override(new_override(item))
        service.approve_override(TENANT, override.id, "manager-7")
        with pytest.raises(ConflictError):
            service.approve_override(TENANT, override.id, "manager-7")

    def test_revoke(self, service, item, engine):
        override = service.create_override(new_override(item))
        service.approve_override(TENANT, override.id, "manager-7")
        revoked = service.revoke_override(TENANT, override.id, "contract ended")
        assert revoked.status == OverrideStatus.REVOKED
        assert revoked.metadata["revocation_reason"] == "contract ended"

        request = PriceCalculationRequest(tenant_id=TENANT, sku="SKU", quantity=1, customer_id="C1")
        assert engine.calculate(request).override_applied is False
        with pytest.raises(ConflictError):
            service.revoke_override(TENANT, override.id)

    def test_overlapping_override_conflicts(self, service, item):
        service.create_override(new_override(item, effective_to=date(2024, 12, 31)))
        with pytest.raises(ConflictError) as exc_info:
            service.create_override(new_override(item, effective_from=date(2024, 6, 1)))
        assert "conflicting_override_id" in exc_info.value.details

    def test_disjoint_overrides_are_allowed(self, service, item):
        service.create_override(new_override(item, effective_to=date(2024, 12, 31)))
        service.create_override(new_override(item, effective_from=date(2025, 1, 1)))
        service.create_override(new_override(item, scope_id="C2"))
        service.create_override(new_override(item, scope_id="ORG-1", scope_type=OverrideScopeType.ORGANIZATION))

    def test_quantity_ranges_overlap(self, service, item):
        service.create_override(new_override(item, min_quantity=1, max_quantity=49))
        service.create_override(new_override(item, min_quantity=50))
        with pytest.raises(ConflictError):
            service.create_override(new_override(item, min_quantity=40, max_quantity=60))

    def test_revoked_override_does_not_conflict(self, service, item):
        first = service.create_override(new_override(item))
        service.revoke_override(TENANT, first.id)
        service.create_override(new_override(item))

    @pytest.mark.parametrize("kwargs", [
        {"override_value": -5.0},
        {"effective_to": date(2023, 1, 1)},
        {"min_quantity": 10, "max_quantity": 5},
    ])
    def test_invalid_overrides(self, service, item, kwargs):
        with pytest.raises(ValidationError):
            service.create_override(new_override(item, **kwargs))

    def test_override_for_unknown_item(self, service, item):
        override = new_override(item)
        override.price_list_item_id = "missing"
        with pytest.raises(NotFoundError):
            service.create_override(override)
