import pytest

from pricing_core.config.settings import SyncSettings
from pricing_core.enums import PriceListType
from pricing_core.errors import ConflictError, NotFoundError, ValidationError
from pricing_core.store.memory import InMemoryPricingStore
from pricing_core.sync.models import SyncJobStatus, SyncJobType, map_list_type
from pricing_core.sync.sync_engine import SyncEngine

from conftest import TENANT, make_list


def payload(items, code="ERP-STD", **header):
    header.setdefault('name', "ERP Standard")
    header.setdefault('currency', "usd")
    header.setdefault('effective_from', "2024-01-01")
    return {"price_list": {"code": code, **header}, "items": items}


ITEMS = [
    {"sku": "A-1", "base_price": 10.0},
    {"sku": "A-2", "base_price": 20.0, "list_price": 22.0, "cost": 12.0},
    {"sku": "A-3", "base_price": 30.0, "quantity_breaks": [{"min_quantity": 10, "price": 27.0}]},
]


class TestFullImport:
    def test_creates_list_and_items(self, sync_engine, store):
        result = sync_engine.import_price_list(TENANT, payload(ITEMS))
        assert result.status == SyncJobStatus.COMPLETED
        assert (result.total_items, result.processed_items, result.success_count) == (3, 3, 3)
        assert result.summary.items_created == 3
        assert result.summary.price_changes.new == 3

        price_list = store.find_price_list_by_code(TENANT, "ERP-STD")
        assert price_list.currency == "USD"
        assert price_list.sync_status == "completed"
        item = store.find_item(price_list.id, "A-2")
        assert item.list_price == 22.0
        assert item.cost == 12.0
        assert store.find_item(price_list.id, "A-1").list_price == 10.0
        assert store.find_item(price_list.id, "A-3").quantity_breaks[0].price == 27.0

    def test_reimport_is_a_no_op(self, sync_engine, store):
        sync_engine.import_price_list(TENANT, payload(ITEMS))
        writes = store.item_writes

        result = sync_engine.import_price_list(TENANT, payload(ITEMS))
        assert result.status == SyncJobStatus.COMPLETED
        assert result.summary.items_unchanged == 3
        assert result.summary.items_created == result.summary.items_updated == 0
        assert store.item_writes == writes
        stats = result.summary.price_changes
        assert stats.unchanged == len(ITEMS)
        assert (stats.increased, stats.decreased, stats.new) == (0, 0, 0)

    def test_changed_prices_are_updated_and_counted(self, sync_engine, store):
        sync_engine.import_price_list(TENANT, payload(ITEMS))
        changed = [dict(ITEMS[0], base_price=12.0), ITEMS[1], dict(ITEMS[2], base_price=27.0)]
        result = sync_engine.import_price_list(TENANT, payload(changed))

        assert result.summary.items_updated == 2
        assert result.summary.items_unchanged == 1
        stats = result.summary.price_changes
        assert (stats.increased, stats.decreased, stats.unchanged) == (1, 1, 1)
        assert stats.max_increase.sku == "A-1"
        assert stats.max_increase.change_percent == pytest.approx(20.0)
        assert stats.max_decrease.sku == "A-3"

    def test_bad_rows_are_recorded_and_skipped(self, sync_engine, store):
        items = [
            {"sku": "OK-1", "base_price": 5.0},
            {"sku": "", "base_price": 5.0},
            {"sku": "NO-PRICE"},
            {"sku": "BAD-BREAKS", "base_price": 5.0, "quantity_breaks": [
                {"min_quantity": 1, "max_quantity": 10, "price": 5.0},
                {"min_quantity": 5, "price": 4.0},
            ]},
        ]
        result = sync_engine.import_price_list(TENANT, payload(items))
        assert result.status == SyncJobStatus.COMPLETED
        assert result.success_count == 1
        assert result.error_count == 3
        assert result.processed_items == 4
        assert {e.error_code for e in result.errors} == {"VALIDATION"}
        assert [e.item_index for e in result.errors] == [1, 2, 3]

    def test_invalid_header_raises(self, sync_engine):
        with pytest.raises(ValidationError):
            sync_engine.import_price_list(TENANT, {"price_list": {"code": "X"}, "items": []})

    def test_list_type_mapping(self, sync_engine, store):
        sync_engine.import_price_list(TENANT, payload(ITEMS, code="C-1", type="Customer"))
        assert store.find_price_list_by_code(TENANT, "C-1").type == PriceListType.CUSTOMER_SPECIFIC
        assert map_list_type("something-else") == PriceListType.STANDARD

    def test_unexpected_failure_fails_the_job(self, store, clock):
        class BrokenStore(InMemoryPricingStore):
            def save_price_list(self, price_list):
                if price_list.last_sync_at is not None:
                    raise RuntimeError("database went away")
                return super().save_price_list(price_list)

        broken = BrokenStore()
        engine = SyncEngine(broken, clock=clock)
        result = engine.import_price_list(TENANT, payload(ITEMS))
        assert result.status == SyncJobStatus.FAILED
        assert result.errors[-1].error_code == "BATCH_ERROR"
        assert "database went away" in result.errors[-1].error_message

    def test_cancellation_is_observed_between_batches(self, clock):
        class CancellingStore(InMemoryPricingStore):
            on_write = None

            def upsert_price_list_item(self, item):
                saved = super().upsert_price_list_item(item)
                if self.on_write is not None:
                    callback, self.on_write = self.on_write, None
                    callback()
                return saved

        store = CancellingStore()
        engine = SyncEngine(store, SyncSettings(batch_size=2), clock=clock)
        price_list = make_list(store, "ERP-STD")
        job = engine.create_job(TENANT, price_list.id, SyncJobType.FULL)
        store.on_write = lambda: engine.cancel_job(TENANT, job.id)

        items = [{"sku": f"S-{i}", "base_price": float(i + 1)} for i in range(5)]
        result = engine.import_price_list(TENANT, payload(items), job_id=job.id)

        assert result.status == SyncJobStatus.CANCELLED
        assert store.item_writes == 2
        assert engine.get_job(TENANT, job.id).status == SyncJobStatus.CANCELLED

    def test_job_for_another_list_is_rejected(self, sync_engine, store):
        other = make_list(store, "OTHER")
        job = sync_engine.create_job(TENANT, other.id, SyncJobType.FULL)
        with pytest.raises(ValidationError):
            sync_engine.import_price_list(TENANT, payload(ITEMS), job_id=job.id)


class TestJobLifecycle:
    def test_cancel_completed_job_conflicts_and_leaves_it_unchanged(self, sync_engine):
        result = sync_engine.import_price_list(TENANT, payload(ITEMS))
        before = sync_engine.get_job(TENANT, result.job_id)

        with pytest.raises(ConflictError):
            sync_engine.cancel_job(TENANT, result.job_id)
        assert sync_engine.get_job(TENANT, result.job_id) == before

    def test_cancel_pending_job(self, sync_engine, store):
        price_list = make_list(store, "STD")
        job = sync_engine.create_job(TENANT, price_list.id, SyncJobType.FULL)
        cancelled = sync_engine.cancel_job(TENANT, job.id)
        assert cancelled.status == SyncJobStatus.CANCELLED
        assert cancelled.completed_at is not None
        with pytest.raises(ConflictError):
            sync_engine.start_job(TENANT, job.id)

    def test_second_import_while_job_running_conflicts(self, sync_engine, store):
        first = sync_engine.import_price_list(TENANT, payload(ITEMS))
        running = sync_engine.create_job(TENANT, first.price_list_id, SyncJobType.FULL)
        sync_engine.start_job(TENANT, running.id)
        writes = store.item_writes

        changed = [dict(item, base_price=item["base_price"] + 1) for item in ITEMS]
        with pytest.raises(ConflictError):
            sync_engine.import_price_list(TENANT, payload(changed))
        assert store.item_writes == writes
        history = sync_engine.sync_history(TENANT, first.price_list_id)
        assert [job.id for job in history] == [running.id, first.job_id]

    def test_delta_while_job_pending_conflicts(self, sync_engine, store):
        first = sync_engine.import_price_list(TENANT, payload(ITEMS))
        pending = sync_engine.create_job(TENANT, first.price_list_id, SyncJobType.DELTA)
        entry = [{"action": "update", "sku": "A-1", "data": {"base_price": 11.0}}]

        with pytest.raises(ConflictError):
            sync_engine.process_delta(TENANT, first.price_list_id, entry)
        assert store.find_item(first.price_list_id, "A-1").list_price == 10.0

        result = sync_engine.process_delta(TENANT, first.price_list_id, entry, job_id=pending.id)
        assert result.processed == 1

    def test_unknown_job(self, sync_engine):
        with pytest.raises(NotFoundError):
            sync_engine.get_job(TENANT, "missing")

    def test_jobs_are_tenant_scoped(self, sync_engine, store):
        price_list = make_list(store, "STD")
        job = sync_engine.create_job(TENANT, price_list.id, SyncJobType.FULL)
        with pytest.raises(NotFoundError):
            sync_engine.get_job("someone-else", job.id)

    def test_history_newest_first(self, sync_engine, store):
        first = sync_engine.import_price_list(TENANT, payload(ITEMS))
        second = sync_engine.import_price_list(TENANT, payload(ITEMS))
        history = sync_engine.sync_history(TENANT, first.price_list_id)
        assert [job.id for job in history] == [second.job_id, first.job_id]
        assert sync_engine.sync_history(TENANT, first.price_list_id, limit=1)[0].id == second.job_id


class TestDelta:
    @pytest.fixture
    def imported(self, sync_engine, store):
        result = sync_engine.import_price_list(TENANT, payload(ITEMS))
        return store.get_price_list(TENANT, result.price_list_id)

    def test_apply_create_update_delete(self, sync_engine, store, imported):
        entries = [
            {"action": "create", "sku": "A-4", "data": {"base_price": 40.0}},
            {"action": "update", "sku": "A-1", "data": {"base_price": 11.0}},
            {"action": "delete", "sku": "A-2"},
        ]
        result = sync_engine.process_delta(TENANT, imported.id, entries)
        assert result.processed == 3
        assert result.skipped == 0
        assert result.errors == []
        assert result.new_delta_token.startswith("0-")

        assert store.find_item(imported.id, "A-4").list_price == 40.0
        assert store.find_item(imported.id, "A-1").list_price == 11.0
        assert store.find_item(imported.id, "A-2").is_active is False
        assert sync_engine.last_delta_token(TENANT, imported.id) == result.new_delta_token

    def test_replay_under_same_token_is_skipped(self, sync_engine, store, imported):
        entries = [
            {"action": "update", "sku": "A-1", "data": {"base_price": 11.0}},
            {"action": "create", "sku": "A-9", "data": {"base_price": 9.0}},
        ]
        first = sync_engine.process_delta(TENANT, imported.id, entries, delta_token="0")
        writes = store.item_writes

        replay = sync_engine.process_delta(TENANT, imported.id, entries, delta_token="0")
        assert replay.processed == 0
        assert replay.skipped == 2
        assert store.item_writes == writes
        assert first.processed == 2

    def test_tokens_strictly_increase(self, sync_engine, imported):
        entry = [{"action": "update", "sku": "A-1", "data": {"base_price": 11.0}}]
        first = sync_engine.process_delta(TENANT, imported.id, entry)
        second = sync_engine.process_delta(TENANT, imported.id, entry)
        assert second.new_delta_token.startswith(first.new_delta_token + "-")
        first_marker = int(first.new_delta_token.rsplit("-", 1)[1])
        second_marker = int(second.new_delta_token.rsplit("-", 1)[1])
        assert second_marker > first_marker

    def test_only_the_latest_ledger_is_kept(self, sync_engine, store, imported):
        entry = [{"action": "update", "sku": "A-1", "data": {"base_price": 11.0}}]
        first = sync_engine.process_delta(TENANT, imported.id, entry)
        assert store.delta_ledger_tokens(imported.id) == ["0"]

        second = sync_engine.process_delta(TENANT, imported.id, entry)
        assert store.delta_ledger_tokens(imported.id) == [first.new_delta_token]

        replay = sync_engine.process_delta(TENANT, imported.id, entry, delta_token=first.new_delta_token)
        assert (replay.processed, replay.skipped) == (0, 1)
        assert second.processed == 1

    def test_invalid_entries_are_errors_not_processed(self, sync_engine, imported):
        entries = [
            {"action": "upsert", "sku": "A-1"},
            {"action": "update", "sku": "A-1"},
            {"action": "update", "sku": "A-1", "data": {"base_price": 13.0}},
        ]
        result = sync_engine.process_delta(TENANT, imported.id, entries)
        assert result.processed == 1
        assert len(result.errors) == 2
        assert all(e.error_code == "VALIDATION" for e in result.errors)

    def test_delete_of_unknown_sku_is_harmless(self, sync_engine, imported):
        result = sync_engine.process_delta(TENANT, imported.id, [{"action": "delete", "sku": "GHOST"}])
        assert result.processed == 1
        assert result.errors == []

    def test_unknown_price_list(self, sync_engine):
        with pytest.raises(NotFoundError):
            sync_engine.process_delta(TENANT, "missing", [])


class TestScheduling:
    def test_full_then_delta_jobs(self, sync_engine, store):
        fresh = make_list(store, "FRESH")
        result = sync_engine.import_price_list(TENANT, payload(ITEMS))
        sync_engine.process_delta(TENANT, result.price_list_id, [
            {"action": "update", "sku": "A-1", "data": {"base_price": 11.0}},
        ])

        jobs = sync_engine.schedule_batch_sync(TENANT, connector_id="erp")
        by_list = {job.price_list_id: job for job in jobs}
        assert by_list[fresh.id].job_type == SyncJobType.FULL
        assert by_list[result.price_list_id].job_type == SyncJobType.DELTA
        assert all(job.connector_id == "erp" for job in jobs)

    def test_lists_with_job_in_flight_are_skipped(self, sync_engine, store):
        make_list(store, "STD")
        assert len(sync_engine.schedule_batch_sync(TENANT)) == 1
        assert sync_engine.schedule_batch_sync(TENANT) == []
        assert len(sync_engine.pending_jobs(TENANT)) == 1

    def test_inactive_lists_are_not_scheduled(self, sync_engine, store):
        from pricing_core.enums import PriceListStatus

        make_list(store, "OLD", status=PriceListStatus.ARCHIVED)
        assert sync_engine.schedule_batch_sync(TENANT) == []
