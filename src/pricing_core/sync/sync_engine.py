"""
Sync Engine - reconciles external price lists into live pricing state.

Full imports diff every item against what is stored and only write what
changed, so re-importing the same file is a no-op. Delta imports apply
create/update/delete entries and are idempotent per delta token: replaying
a batch under the same token skips entries that were already applied.

Job lifecycle:
    pending → running → completed | failed
    pending | running → cancelled
Terminal jobs never change again. Cancellation is observed between batches.
"""
import dataclasses
import logging
import threading
from typing import Callable, Iterable, Optional, Union

from ..config.settings import PricingConfig, SyncSettings
from ..engine.models import PriceList, PriceListItem
from ..engine.quantity_breaks import validate_breaks
from ..enums import PriceListStatus
from ..errors import ConflictError, NotFoundError, ValidationError
from ..store.clock import Clock, SystemClock
from .models import (
    IN_FLIGHT_STATUSES,
    DeltaAction,
    DeltaEntry,
    DeltaResult,
    ImportItem,
    ImportPayload,
    SyncError,
    SyncJob,
    SyncJobStatus,
    SyncJobType,
    SyncResult,
    SyncSummary,
)
from .stats import PriceChangeAggregator

logger = logging.getLogger(__name__)


class SyncEngine:
    """Full and delta price list imports, tracked as sync jobs."""

    def __init__(
        self,
        store,
        settings: Optional[SyncSettings] = None,
        clock: Optional[Clock] = None,
        config_for: Optional[Callable[[str], PricingConfig]] = None,
    ):
        self.store = store
        self.settings = settings or SyncSettings()
        self.clock = clock or SystemClock()
        self._config_for = config_for
        self._job_lock = threading.RLock()
        self._marker_lock = threading.Lock()
        self._last_marker = 0

    def _sync_settings(self, tenant_id: str) -> SyncSettings:
        if self._config_for is not None:
            return self._config_for(tenant_id).sync
        return self.settings

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def create_job(
        self,
        tenant_id: str,
        price_list_id: str,
        job_type: SyncJobType,
        connector_id: Optional[str] = None,
    ) -> SyncJob:
        job = SyncJob(
            tenant_id=tenant_id,
            price_list_id=price_list_id,
            job_type=job_type,
            connector_id=connector_id,
            created_at=self.clock.now(),
        )
        logger.info("Created %s sync job %s for price list %s", job_type.value, job.id, price_list_id)
        return self.store.save_sync_job(job)

    def get_job(self, tenant_id: str, job_id: str) -> SyncJob:
        job = self.store.get_sync_job(tenant_id, job_id)
        if job is None:
            raise NotFoundError(f"Sync job not found: {job_id}")
        return job

    def _update_job(
        self,
        tenant_id: str,
        job_id: str,
        change: Callable[[SyncJob], None],
        allowed: Optional[Iterable[SyncJobStatus]] = None,
        action: str = "update",
    ) -> SyncJob:
        """Re-read, check and mutate a job atomically with respect to other writers."""
        with self._job_lock:
            job = self.get_job(tenant_id, job_id)
            if allowed is not None and job.status not in set(allowed):
                raise ConflictError(
                    f"Cannot {action} sync job {job_id} in status {job.status.value}",
                    {"job_id": job_id, "status": job.status.value},
                )
            change(job)
            return self.store.save_sync_job(job)

    def start_job(self, tenant_id: str, job_id: str, total_items: Optional[int] = None) -> SyncJob:
        def change(job: SyncJob):
            job.status = SyncJobStatus.RUNNING
            job.started_at = self.clock.now()
            if total_items is not None:
                job.total_items = total_items

        job = self._update_job(tenant_id, job_id, change, {SyncJobStatus.PENDING}, "start")
        logger.info("Sync job %s running (%d items)", job_id, job.total_items)
        return job

    def complete_job(
        self,
        tenant_id: str,
        job_id: str,
        summary: Optional[SyncSummary] = None,
        delta_token: Optional[str] = None,
    ) -> SyncJob:
        def change(job: SyncJob):
            job.status = SyncJobStatus.COMPLETED
            job.completed_at = self.clock.now()
            if summary is not None:
                job.summary = summary
            if delta_token is not None:
                job.delta_token = delta_token

        job = self._update_job(tenant_id, job_id, change, {SyncJobStatus.RUNNING}, "complete")
        logger.info(
            "Sync job %s completed: %d succeeded, %d failed, %d skipped",
            job_id, job.success_count, job.error_count, job.skipped_count,
        )
        return job

    def fail_job(self, tenant_id: str, job_id: str, message: str, details: Optional[dict] = None) -> SyncJob:
        def change(job: SyncJob):
            job.status = SyncJobStatus.FAILED
            job.completed_at = self.clock.now()
            job.errors.append(SyncError("BATCH_ERROR", message, details=details or {}))

        job = self._update_job(tenant_id, job_id, change, IN_FLIGHT_STATUSES, "fail")
        logger.error("Sync job %s failed: %s", job_id, message)
        return job

    def cancel_job(self, tenant_id: str, job_id: str) -> SyncJob:
        """Cancel a pending or running job. Terminal jobs raise ``ConflictError``."""
        def change(job: SyncJob):
            job.status = SyncJobStatus.CANCELLED
            job.completed_at = self.clock.now()

        job = self._update_job(tenant_id, job_id, change, IN_FLIGHT_STATUSES, "cancel")
        logger.info("Sync job %s cancelled", job_id)
        return job

    def _record_progress(self, tenant_id: str, job: SyncJob) -> SyncJob:
        """Persist counters; returns the stored job, whose status may have moved on."""
        def change(stored: SyncJob):
            if stored.is_terminal:
                return
            stored.processed_items = job.processed_items
            stored.success_count = job.success_count
            stored.error_count = job.error_count
            stored.skipped_count = job.skipped_count
            stored.errors = list(job.errors)

        return self._update_job(tenant_id, job.id, change)

    def sync_history(self, tenant_id: str, price_list_id: str, limit: int = 20) -> list[SyncJob]:
        """Most recent jobs for a list, newest first."""
        jobs = self.store.list_sync_jobs(tenant_id, price_list_id=price_list_id)
        return list(reversed(jobs))[:limit]

    def last_delta_token(self, tenant_id: str, price_list_id: str) -> Optional[str]:
        """Token of the latest completed job for the list that recorded one."""
        jobs = self.store.list_sync_jobs(
            tenant_id, price_list_id=price_list_id, statuses=[SyncJobStatus.COMPLETED]
        )
        for job in reversed(jobs):
            if job.delta_token:
                return job.delta_token
        return None

    def pending_jobs(self, tenant_id: Optional[str] = None, limit: Optional[int] = None) -> list[SyncJob]:
        """Pending jobs in creation order."""
        jobs = self.store.list_sync_jobs(tenant_id, statuses=[SyncJobStatus.PENDING])
        return jobs[:limit] if limit is not None else jobs

    def has_job_in_flight(self, tenant_id: str, price_list_id: str) -> bool:
        return bool(self.store.list_sync_jobs(tenant_id, price_list_id=price_list_id, statuses=IN_FLIGHT_STATUSES))

    def _next_marker(self) -> int:
        """Strictly increasing millisecond marker for delta tokens."""
        with self._marker_lock:
            marker = max(int(self.clock.now().timestamp() * 1000), self._last_marker + 1)
            self._last_marker = marker
            return marker

    def _begin(
        self, tenant_id: str, price_list_id: str, job_type: SyncJobType, job_id: Optional[str], total: int
    ) -> SyncJob:
        if job_id is None:
            with self._job_lock:
                if self.has_job_in_flight(tenant_id, price_list_id):
                    raise ConflictError(
                        f"Price list {price_list_id} already has a sync job in flight",
                        {"price_list_id": price_list_id},
                    )
                job = self.create_job(tenant_id, price_list_id, job_type)
        else:
            job = self.get_job(tenant_id, job_id)
            if job.price_list_id != price_list_id:
                raise ValidationError(f"Sync job {job_id} belongs to another price list")
        return self.start_job(tenant_id, job.id, total)

    # ------------------------------------------------------------------
    # Item upserts
    # ------------------------------------------------------------------

    def _build_item(self, price_list: PriceList, data: ImportItem, existing: Optional[PriceListItem]) -> PriceListItem:
        validate_breaks(data.quantity_breaks)
        fields = dict(
            base_price=data.base_price,
            list_price=data.effective_list_price,
            min_price=data.min_price,
            max_price=data.max_price,
            cost=data.cost,
            currency=data.currency.upper() if data.currency else None,
            quantity_breaks=list(data.quantity_breaks),
            effective_from=data.effective_from,
            effective_to=data.effective_to,
            is_active=True,
            uom=data.uom or (existing.uom if existing else "EA"),
            external_id=data.external_id,
        )
        if existing is not None:
            return dataclasses.replace(existing, **fields)
        return PriceListItem(price_list_id=price_list.id, sku=data.sku, **fields)

    def _apply_item(
        self, price_list: PriceList, data: ImportItem, stats: Optional[PriceChangeAggregator] = None
    ) -> str:
        """
        Upsert one item unless nothing would change.

        Returns "created", "updated" or "unchanged".
        """
        existing = self.store.find_item(price_list.id, data.sku)
        item = self._build_item(price_list, data, existing)
        if stats is not None:
            stats.record(data.sku, existing.list_price if existing else None, item.list_price)
        if existing is not None and existing.pricing_state() == item.pricing_state():
            return "unchanged"
        item.last_sync_at = self.clock.now()
        _, created = self.store.upsert_price_list_item(item)
        return "created" if created else "updated"

    # ------------------------------------------------------------------
    # Full import
    # ------------------------------------------------------------------

    def _find_or_create_list(self, tenant_id: str, payload: ImportPayload) -> PriceList:
        header = payload.price_list
        price_list = self.store.find_price_list_by_code(tenant_id, header.code)
        if price_list is not None:
            return price_list
        price_list = PriceList(
            tenant_id=tenant_id,
            code=header.code,
            name=header.name,
            currency=header.currency,
            effective_from=header.effective_from,
            effective_to=header.effective_to,
            type=header.type,
            description=header.description,
            external_id=header.external_id,
            status=PriceListStatus.ACTIVE,
        )
        logger.info("Created price list %s (%s) for tenant %s from import", header.code, price_list.id, tenant_id)
        return self.store.save_price_list(price_list)

    def import_price_list(
        self,
        tenant_id: str,
        payload: Union[ImportPayload, dict],
        job_id: Optional[str] = None,
    ) -> SyncResult:
        """
        Reconcile a full price list export into the store.

        Per-item failures are recorded on the job and do not stop the import.
        Anything else fails the job with a single BATCH_ERROR.
        """
        if not isinstance(payload, ImportPayload):
            payload = ImportPayload.from_dict(payload)
        price_list = self._find_or_create_list(tenant_id, payload)
        job = self._begin(tenant_id, price_list.id, SyncJobType.FULL, job_id, len(payload.items))
        batch_size = self._sync_settings(tenant_id).batch_size

        summary = SyncSummary()
        stats = PriceChangeAggregator()
        logger.info("Importing %d items into price list %s (job %s)", len(payload.items), price_list.code, job.id)

        try:
            for batch_start in range(0, len(payload.items), batch_size):
                if batch_start:
                    job = self._record_progress(tenant_id, job)
                    if job.status == SyncJobStatus.CANCELLED:
                        logger.info("Sync job %s cancelled after %d items", job.id, job.processed_items)
                        break

                for offset, raw in enumerate(payload.items[batch_start:batch_start + batch_size]):
                    index = batch_start + offset
                    sku = raw.get('sku') if isinstance(raw, dict) else getattr(raw, 'sku', None)
                    try:
                        data = raw if isinstance(raw, ImportItem) else ImportItem.from_dict(raw)
                        outcome = self._apply_item(price_list, data, stats)
                    except ValidationError as e:
                        job.errors.append(SyncError("VALIDATION", e.message, sku, index, e.details))
                        job.error_count += 1
                        logger.warning("Item %s (row %d) rejected: %s", sku, index, e.message)
                    except Exception as e:
                        job.errors.append(SyncError("UPSERT_ERROR", str(e), sku, index))
                        job.error_count += 1
                        logger.warning("Item %s (row %d) failed to upsert: %s", sku, index, e)
                    else:
                        job.success_count += 1
                        if outcome == "created":
                            summary.items_created += 1
                        elif outcome == "updated":
                            summary.items_updated += 1
                        else:
                            summary.items_unchanged += 1
                    job.processed_items += 1

            job = self._record_progress(tenant_id, job)
            summary.price_changes = stats.snapshot()
            finished = job.status == SyncJobStatus.RUNNING

            price_list.last_sync_at = self.clock.now()
            price_list.sync_status = SyncJobStatus.COMPLETED.value if finished else job.status.value
            self.store.save_price_list(price_list)
            if finished:
                job = self.complete_job(tenant_id, job.id, summary)
        except Exception as e:
            logger.exception("Import into price list %s failed", price_list.code)
            job = self.fail_job(tenant_id, job.id, str(e))

        return self._result(job, price_list)

    def _result(self, job: SyncJob, price_list: PriceList) -> SyncResult:
        duration_ms = None
        if job.started_at and job.completed_at:
            duration_ms = int((job.completed_at - job.started_at).total_seconds() * 1000)
        return SyncResult(
            job_id=job.id,
            price_list_id=price_list.id,
            price_list_code=price_list.code,
            status=job.status,
            total_items=job.total_items,
            processed_items=job.processed_items,
            success_count=job.success_count,
            error_count=job.error_count,
            skipped_count=job.skipped_count,
            started_at=job.started_at,
            completed_at=job.completed_at,
            duration_ms=duration_ms,
            delta_token=job.delta_token,
            errors=list(job.errors),
            summary=job.summary,
        )

    # ------------------------------------------------------------------
    # Delta import
    # ------------------------------------------------------------------

    def process_delta(
        self,
        tenant_id: str,
        price_list_id: str,
        entries: Iterable[Union[DeltaEntry, dict]],
        delta_token: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> DeltaResult:
        """
        Apply create/update/delete entries to one price list.

        ``delta_token`` is the token the batch was fetched against (defaults to
        the list's last token). Entries already applied under that token are
        skipped, so replaying a batch never counts twice.
        """
        price_list = self.store.get_price_list(tenant_id, price_list_id)
        if price_list is None:
            raise NotFoundError(f"Price list not found: {price_list_id}")

        entries = list(entries)
        prior = delta_token or self.last_delta_token(tenant_id, price_list_id) or "0"
        job = self._begin(tenant_id, price_list_id, SyncJobType.DELTA, job_id, len(entries))
        batch_size = self._sync_settings(tenant_id).batch_size
        applied = self.store.applied_delta_entries(price_list_id, prior)
        summary = SyncSummary()
        stats = PriceChangeAggregator()

        try:
            for batch_start in range(0, len(entries), batch_size):
                if batch_start:
                    job = self._record_progress(tenant_id, job)
                    if job.status == SyncJobStatus.CANCELLED:
                        logger.info("Delta job %s cancelled after %d entries", job.id, job.processed_items)
                        break

                for offset, raw in enumerate(entries[batch_start:batch_start + batch_size]):
                    index = batch_start + offset
                    sku = raw.get('sku') if isinstance(raw, dict) else getattr(raw, 'sku', None)
                    try:
                        entry = raw if isinstance(raw, DeltaEntry) else DeltaEntry.from_dict(raw)
                        key = entry.ledger_key()
                        if key in applied:
                            job.skipped_count += 1
                            continue
                        self._apply_delta_entry(price_list, entry, summary, stats)
                    except ValidationError as e:
                        job.errors.append(SyncError("VALIDATION", e.message, sku, index, e.details))
                        job.error_count += 1
                        logger.warning("Delta entry %s (row %d) rejected: %s", sku, index, e.message)
                        continue
                    except Exception as e:
                        job.errors.append(SyncError("UPSERT_ERROR", str(e), sku, index))
                        job.error_count += 1
                        logger.warning("Delta entry %s (row %d) failed: %s", sku, index, e)
                        continue
                    self.store.record_delta_entry(price_list_id, prior, key)
                    applied.add(key)
                    job.success_count += 1
                    job.processed_items += 1

            new_token = f"{prior}-{self._next_marker()}"
            job = self._record_progress(tenant_id, job)
            summary.price_changes = stats.snapshot()
            if job.status == SyncJobStatus.RUNNING:
                job = self.complete_job(tenant_id, job.id, summary, delta_token=new_token)
        except Exception as e:
            logger.exception("Delta sync of price list %s failed", price_list.code)
            job = self.fail_job(tenant_id, job.id, str(e))
            new_token = prior

        if job.status == SyncJobStatus.COMPLETED:
            dropped = self.store.prune_delta_ledger(price_list_id, prior)
            if dropped:
                logger.debug("Pruned %d stale delta ledgers for price list %s", dropped, price_list.code)

        return DeltaResult(
            processed=job.processed_items,
            skipped=job.skipped_count,
            errors=list(job.errors),
            new_delta_token=new_token,
            job_id=job.id,
        )

    def _apply_delta_entry(
        self,
        price_list: PriceList,
        entry: DeltaEntry,
        summary: SyncSummary,
        stats: PriceChangeAggregator,
    ):
        if entry.action == DeltaAction.DELETE:
            existing = self.store.find_item(price_list.id, entry.sku)
            if existing is not None and existing.is_active:
                existing.is_active = False
                existing.last_sync_at = self.clock.now()
                self.store.upsert_price_list_item(existing)
                summary.items_deleted += 1
            return

        if not entry.data:
            raise ValidationError(f"{entry.action.value} entry for {entry.sku} has no data", {"sku": entry.sku})
        data = ImportItem.from_dict({**entry.data, 'sku': entry.sku})
        outcome = self._apply_item(price_list, data, stats)
        if outcome == "created":
            summary.items_created += 1
        elif outcome == "updated":
            summary.items_updated += 1
        else:
            summary.items_unchanged += 1

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule_batch_sync(self, tenant_id: str, connector_id: Optional[str] = None) -> list[SyncJob]:
        """
        Queue one pending job per active price list.

        Lists that already have a pending or running job are skipped. Lists
        with a delta token get a delta job, the rest a full one.
        """
        jobs = []
        for price_list in self.store.list_price_lists(tenant_id, status=PriceListStatus.ACTIVE):
            with self._job_lock:
                if self.has_job_in_flight(tenant_id, price_list.id):
                    logger.debug("Skipping %s: sync already in flight", price_list.code)
                    continue
                job_type = SyncJobType.DELTA if self.last_delta_token(tenant_id, price_list.id) else SyncJobType.FULL
                jobs.append(self.create_job(tenant_id, price_list.id, job_type, connector_id))
        logger.info("Scheduled %d sync jobs for tenant %s", len(jobs), tenant_id)
        return jobs
