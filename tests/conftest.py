import sys
import os
from datetime import date, datetime, timezone

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from pricing_core.config.settings import PricingConfig
from pricing_core.currency.exchange_rates import CurrencyConverter
from pricing_core.engine.models import PriceList, PriceListItem, QuantityBreak
from pricing_core.engine.pricing_engine import PricingEngine
from pricing_core.enums import PriceListType
from pricing_core.services.price_list_service import PriceListService
from pricing_core.store.clock import FixedClock
from pricing_core.store.memory import InMemoryPricingStore
from pricing_core.sync.sync_engine import SyncEngine

TENANT = "acme"
TODAY = date(2025, 1, 1)


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryPricingStore()


@pytest.fixture
def config():
    return PricingConfig(tenant_id=TENANT)


@pytest.fixture
def converter(store, config, clock):
    return CurrencyConverter(store, config.currency, clock=clock)


@pytest.fixture
def engine(store, config, converter, clock):
    return PricingEngine(store, config=config, converter=converter, clock=clock)


@pytest.fixture
def service(store, clock):
    return PriceListService(store, clock=clock)


@pytest.fixture
def sync_engine(store, config, clock):
    return SyncEngine(store, config.sync, clock=clock)


def make_list(store, code, list_type=PriceListType.STANDARD, priority=100, currency="USD",
              effective_from=date(2024, 1, 1), **kwargs) -> PriceList:
    """Save a price list straight to the store."""
    return store.save_price_list(PriceList(
        tenant_id=TENANT,
        code=code,
        name=code.title(),
        currency=currency,
        effective_from=effective_from,
        type=list_type,
        priority=priority,
        **kwargs,
    ))


def make_item(store, price_list, sku, list_price, **kwargs) -> PriceListItem:
    """Upsert an item straight into the store."""
    kwargs.setdefault('base_price', list_price)
    item, _ = store.upsert_price_list_item(PriceListItem(
        price_list_id=price_list.id,
        sku=sku,
        list_price=list_price,
        **kwargs,
    ))
    return item


@pytest.fixture
def standard_list(store):
    """STD (priority 10) with WIDGET-1 at 50, 45 from 10 units."""
    price_list = make_list(store, "STD", priority=10)
    make_item(
        store, price_list, "WIDGET-1", 50.0,
        quantity_breaks=[QuantityBreak(min_quantity=10, price=45.0)],
    )
    return price_list
