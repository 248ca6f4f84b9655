"""
Sync worker pool - runs pending sync jobs against external price list sources.

Jobs are claimed in creation order. Two jobs for the same price list never
run at the same time; at most ``max_concurrent_syncs`` jobs run at once.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Protocol, Union

from ..config.logging_config import log_context
from ..config.settings import SyncSettings
from ..errors import ConflictError, PricingError
from .models import DeltaResult, SyncJob, SyncJobType, SyncResult
from .sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class PriceListConnector(Protocol):
    """Fetches price list data from an external system (ERP, PIM, file drop)."""

    def fetch_full(self, tenant_id: str, price_list_code: str) -> dict:
        """Full export as an import payload dict."""
        ...

    def fetch_delta(self, tenant_id: str, price_list_code: str, since_token: str) -> list[dict]:
        """Delta entries changed since ``since_token``."""
        ...


class SyncWorkerPool:
    """
    Bounded thread pool in front of a ``SyncEngine``.

    ``connectors`` maps connector id to connector; jobs without a connector
    id use ``default_connector``.
    """

    def __init__(
        self,
        engine: SyncEngine,
        connectors: Optional[dict[str, PriceListConnector]] = None,
        default_connector: Optional[PriceListConnector] = None,
        settings: Optional[SyncSettings] = None,
    ):
        self.engine = engine
        self.connectors = dict(connectors or {})
        self.default_connector = default_connector
        self.settings = settings or engine.settings
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_concurrent_syncs,
            thread_name_prefix="price-sync",
        )
        self._lock = threading.Lock()
        self._running: dict[str, str] = {}  # price_list_id -> job_id

    def _connector_for(self, job: SyncJob) -> PriceListConnector:
        if job.connector_id:
            if job.connector_id not in self.connectors:
                raise PricingError(f"Unknown connector: {job.connector_id}")
            return self.connectors[job.connector_id]
        if self.default_connector is None:
            raise PricingError("No connector configured for sync job")
        return self.default_connector

    def claim_pending(self, tenant_id: Optional[str] = None, limit: Optional[int] = None) -> list[SyncJob]:
        """
        Reserve pending jobs whose price list has nothing running.

        At most one job per list is claimed per call, oldest first.
        """
        claimed = []
        with self._lock:
            for job in self.engine.pending_jobs(tenant_id):
                if limit is not None and len(claimed) >= limit:
                    break
                if job.price_list_id in self._running:
                    continue
                self._running[job.price_list_id] = job.id
                claimed.append(job)
        return claimed

    def _release(self, job: SyncJob):
        with self._lock:
            if self._running.get(job.price_list_id) == job.id:
                del self._running[job.price_list_id]

    def run_job(self, job: SyncJob) -> Optional[Union[SyncResult, DeltaResult]]:
        """Fetch and apply one claimed job. Returns None if the job could not start."""
        with log_context(tenant_id=job.tenant_id, job_id=job.id):
            return self._run(job)

    def _run(self, job: SyncJob) -> Optional[Union[SyncResult, DeltaResult]]:
        try:
            price_list = self.engine.store.get_price_list(job.tenant_id, job.price_list_id)
            if price_list is None:
                self.engine.fail_job(job.tenant_id, job.id, f"Price list not found: {job.price_list_id}")
                return None
            connector = self._connector_for(job)
            token = self.engine.last_delta_token(job.tenant_id, job.price_list_id)

            if job.job_type == SyncJobType.DELTA and token:
                entries = connector.fetch_delta(job.tenant_id, price_list.code, token)
                return self.engine.process_delta(job.tenant_id, job.price_list_id, entries, token, job_id=job.id)

            payload = connector.fetch_full(job.tenant_id, price_list.code)
            return self.engine.import_price_list(job.tenant_id, payload, job_id=job.id)
        except ConflictError as e:
            # Cancelled (or otherwise moved on) before it could start
            logger.info("Sync job %s not run: %s", job.id, e.message)
            return None
        except Exception as e:
            logger.exception("Sync job %s failed before import", job.id)
            current = self.engine.store.get_sync_job(job.tenant_id, job.id)
            if current is not None and not current.is_terminal:
                self.engine.fail_job(job.tenant_id, job.id, str(e))
            return None
        finally:
            self._release(job)

    def submit_pending(self, tenant_id: Optional[str] = None) -> list[Future]:
        """Claim what can run now and hand it to the pool."""
        jobs = self.claim_pending(tenant_id)
        if jobs:
            logger.info("Dispatching %d sync jobs", len(jobs))
        return [self._executor.submit(self.run_job, job) for job in jobs]

    def run_pending(self, tenant_id: Optional[str] = None) -> list:
        """Run every pending job to completion; returns the results in dispatch order."""
        results = []
        while True:
            futures = self.submit_pending(tenant_id)
            if not futures:
                break
            results.extend(f.result() for f in futures)
        return results

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()
