"""
Keyed pricing store.

``PricingStore`` is the narrow interface the engine and the sync engine
call through; ``InMemoryPricingStore`` is the process-local implementation
used by the API, the scripts and the tests. Entities are copied on the way
in and on the way out, so callers never share mutable state with the store.
"""
import copy
import threading
from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol

from ..engine.models import (
    CurrencyExchangeRate,
    CustomerPriceAssignment,
    ExchangeRateType,
    PriceList,
    PriceListItem,
    PriceListStatus,
    PriceListType,
    PriceOverride,
    RequestScope,
)
from ..sync.models import SyncJob, SyncJobStatus


class PricingStore(Protocol):
    def save_price_list(self, price_list: PriceList) -> PriceList: ...

    def get_price_list(self, tenant_id: str, price_list_id: str) -> Optional[PriceList]: ...

    def find_price_list_by_code(self, tenant_id: str, code: str) -> Optional[PriceList]: ...

    def list_price_lists(
        self,
        tenant_id: str,
        status: Optional[PriceListStatus] = None,
        types: Optional[Iterable[PriceListType]] = None,
    ) -> list[PriceList]: ...

    def get_price_list_item(self, item_id: str) -> Optional[PriceListItem]: ...

    def find_item(self, price_list_id: str, sku: str) -> Optional[PriceListItem]: ...

    def list_items(self, price_list_id: str) -> list[PriceListItem]: ...

    def upsert_price_list_item(self, item: PriceListItem) -> tuple[PriceListItem, bool]: ...

    def get_exchange_rates(
        self, tenant_id: str, source: str, target: str, rate_type: ExchangeRateType
    ) -> list[CurrencyExchangeRate]: ...

    def save_exchange_rate(self, rate: CurrencyExchangeRate) -> CurrencyExchangeRate: ...

    def get_overrides_for(self, tenant_id: str, price_list_item_id: str) -> list[PriceOverride]: ...

    def get_overrides_for_sku(self, tenant_id: str, sku: str) -> list[tuple[PriceOverride, PriceListItem]]: ...

    def get_assignments_for(self, tenant_id: str, scope: RequestScope) -> list[CustomerPriceAssignment]: ...

    def save_sync_job(self, job: SyncJob) -> SyncJob: ...

    def get_sync_job(self, tenant_id: str, job_id: str) -> Optional[SyncJob]: ...


class InMemoryPricingStore:
    """Thread-safe, dictionary-backed implementation of ``PricingStore``."""

    def __init__(self):
        self._lock = threading.RLock()
        self._price_lists: dict[str, PriceList] = {}
        self._items: dict[str, PriceListItem] = {}
        self._item_keys: dict[tuple[str, str], str] = {}  # (price_list_id, sku) → item id
        self._rates: dict[str, CurrencyExchangeRate] = {}
        self._overrides: dict[str, PriceOverride] = {}
        self._assignments: dict[str, CustomerPriceAssignment] = {}
        self._jobs: dict[str, SyncJob] = {}
        self._delta_ledger: dict[tuple[str, str], set[str]] = {}
        self.item_writes = 0

    # ------------------------------------------------------------------
    # Price lists
    # ------------------------------------------------------------------

    def save_price_list(self, price_list: PriceList) -> PriceList:
        with self._lock:
            if price_list.created_at is None:
                price_list.created_at = datetime.now(timezone.utc)
            self._price_lists[price_list.id] = copy.deepcopy(price_list)
            return copy.deepcopy(price_list)

    def get_price_list(self, tenant_id: str, price_list_id: str) -> Optional[PriceList]:
        with self._lock:
            found = self._price_lists.get(price_list_id)
            if found is None or found.tenant_id != tenant_id:
                return None
            return copy.deepcopy(found)

    def find_price_list_by_code(self, tenant_id: str, code: str) -> Optional[PriceList]:
        with self._lock:
            for price_list in self._price_lists.values():
                if price_list.tenant_id == tenant_id and price_list.code == code:
                    return copy.deepcopy(price_list)
            return None

    def list_price_lists(
        self,
        tenant_id: str,
        status: Optional[PriceListStatus] = None,
        types: Optional[Iterable[PriceListType]] = None,
    ) -> list[PriceList]:
        wanted_types = set(types) if types is not None else None
        with self._lock:
            return [
                copy.deepcopy(pl)
                for pl in self._price_lists.values()
                if pl.tenant_id == tenant_id
                and (status is None or pl.status == status)
                and (wanted_types is None or pl.type in wanted_types)
            ]

    def delete_price_list(self, tenant_id: str, price_list_id: str) -> bool:
        """Remove a list and, with it, every item it owns."""
        with self._lock:
            found = self._price_lists.get(price_list_id)
            if found is None or found.tenant_id != tenant_id:
                return False
            del self._price_lists[price_list_id]
            for key, item_id in list(self._item_keys.items()):
                if key[0] == price_list_id:
                    del self._item_keys[key]
                    self._items.pop(item_id, None)
            return True

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_price_list_item(self, item_id: str) -> Optional[PriceListItem]:
        with self._lock:
            found = self._items.get(item_id)
            return copy.deepcopy(found) if found else None

    def find_item(self, price_list_id: str, sku: str) -> Optional[PriceListItem]:
        with self._lock:
            item_id = self._item_keys.get((price_list_id, sku))
            return copy.deepcopy(self._items[item_id]) if item_id else None

    def list_items(self, price_list_id: str) -> list[PriceListItem]:
        with self._lock:
            return [
                copy.deepcopy(self._items[item_id])
                for (pl_id, _), item_id in self._item_keys.items()
                if pl_id == price_list_id
            ]

    def upsert_price_list_item(self, item: PriceListItem) -> tuple[PriceListItem, bool]:
        """Insert or replace the item keyed by (price_list_id, sku). Returns (item, created)."""
        with self._lock:
            key = (item.price_list_id, item.sku)
            existing_id = self._item_keys.get(key)
            created = existing_id is None
            if not created:
                item.id = existing_id
            self._items[item.id] = copy.deepcopy(item)
            self._item_keys[key] = item.id
            self.item_writes += 1
            return copy.deepcopy(item), created

    def delete_price_list_item(self, item_id: str) -> bool:
        with self._lock:
            found = self._items.pop(item_id, None)
            if found is None:
                return False
            self._item_keys.pop((found.price_list_id, found.sku), None)
            return True

    # ------------------------------------------------------------------
    # Exchange rates
    # ------------------------------------------------------------------

    def get_exchange_rates(
        self, tenant_id: str, source: str, target: str, rate_type: ExchangeRateType
    ) -> list[CurrencyExchangeRate]:
        with self._lock:
            return [
                copy.deepcopy(r)
                for r in self._rates.values()
                if r.tenant_id == tenant_id
                and r.source_currency == source
                and r.target_currency == target
                and r.rate_type == rate_type
            ]

    def list_exchange_rates(self, tenant_id: str) -> list[CurrencyExchangeRate]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._rates.values() if r.tenant_id == tenant_id]

    def save_exchange_rate(self, rate: CurrencyExchangeRate) -> CurrencyExchangeRate:
        with self._lock:
            self._rates[rate.id] = copy.deepcopy(rate)
            return copy.deepcopy(rate)

    def delete_exchange_rate(self, tenant_id: str, rate_id: str) -> bool:
        with self._lock:
            found = self._rates.get(rate_id)
            if found is None or found.tenant_id != tenant_id:
                return False
            del self._rates[rate_id]
            return True

    # ------------------------------------------------------------------
    # Overrides and assignments
    # ------------------------------------------------------------------

    def save_override(self, override: PriceOverride) -> PriceOverride:
        with self._lock:
            self._overrides[override.id] = copy.deepcopy(override)
            return copy.deepcopy(override)

    def get_override(self, tenant_id: str, override_id: str) -> Optional[PriceOverride]:
        with self._lock:
            found = self._overrides.get(override_id)
            if found is None or found.tenant_id != tenant_id:
                return None
            return copy.deepcopy(found)

    def get_overrides_for(self, tenant_id: str, price_list_item_id: str) -> list[PriceOverride]:
        with self._lock:
            return [
                copy.deepcopy(o)
                for o in self._overrides.values()
                if o.tenant_id == tenant_id and o.price_list_item_id == price_list_item_id
            ]

    def get_overrides_for_sku(self, tenant_id: str, sku: str) -> list[tuple[PriceOverride, PriceListItem]]:
        with self._lock:
            pairs = []
            for override in self._overrides.values():
                if override.tenant_id != tenant_id:
                    continue
                item = self._items.get(override.price_list_item_id)
                if item is not None and item.sku == sku:
                    pairs.append((copy.deepcopy(override), copy.deepcopy(item)))
            return pairs

    def save_assignment(self, assignment: CustomerPriceAssignment) -> CustomerPriceAssignment:
        with self._lock:
            self._assignments[assignment.id] = copy.deepcopy(assignment)
            return copy.deepcopy(assignment)

    def delete_assignment(self, tenant_id: str, assignment_id: str) -> bool:
        with self._lock:
            found = self._assignments.get(assignment_id)
            if found is None or found.tenant_id != tenant_id:
                return False
            del self._assignments[assignment_id]
            return True

    def get_assignments_for(self, tenant_id: str, scope: RequestScope) -> list[CustomerPriceAssignment]:
        with self._lock:
            return [
                copy.deepcopy(a)
                for a in self._assignments.values()
                if a.tenant_id == tenant_id and scope.matches_assignment(a)
            ]

    # ------------------------------------------------------------------
    # Sync jobs
    # ------------------------------------------------------------------

    def save_sync_job(self, job: SyncJob) -> SyncJob:
        with self._lock:
            self._jobs[job.id] = copy.deepcopy(job)
            return copy.deepcopy(job)

    def get_sync_job(self, tenant_id: str, job_id: str) -> Optional[SyncJob]:
        with self._lock:
            found = self._jobs.get(job_id)
            if found is None or found.tenant_id != tenant_id:
                return None
            return copy.deepcopy(found)

    def list_sync_jobs(
        self,
        tenant_id: Optional[str] = None,
        price_list_id: Optional[str] = None,
        statuses: Optional[Iterable[SyncJobStatus]] = None,
    ) -> list[SyncJob]:
        """Jobs in creation order."""
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            return [
                copy.deepcopy(job)
                for job in self._jobs.values()
                if (tenant_id is None or job.tenant_id == tenant_id)
                and (price_list_id is None or job.price_list_id == price_list_id)
                and (wanted is None or job.status in wanted)
            ]

    # ------------------------------------------------------------------
    # Delta ledger
    # ------------------------------------------------------------------

    def applied_delta_entries(self, price_list_id: str, delta_token: str) -> set[str]:
        with self._lock:
            return set(self._delta_ledger.get((price_list_id, delta_token), set()))

    def record_delta_entry(self, price_list_id: str, delta_token: str, entry_key: str):
        with self._lock:
            self._delta_ledger.setdefault((price_list_id, delta_token), set()).add(entry_key)

    def prune_delta_ledger(self, price_list_id: str, keep_token: str) -> int:
        """Drop every ledger of the list except the one recorded under ``keep_token``."""
        with self._lock:
            stale = [key for key in self._delta_ledger if key[0] == price_list_id and key[1] != keep_token]
            for key in stale:
                del self._delta_ledger[key]
            return len(stale)

    def delta_ledger_tokens(self, price_list_id: str) -> list[str]:
        with self._lock:
            return sorted(token for list_id, token in self._delta_ledger if list_id == price_list_id)
