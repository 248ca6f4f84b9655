"""
Shared application state for the API: one store, engine, converter and
sync engine per process.
"""
from dataclasses import dataclass
from typing import Optional

from ..config.settings import Settings, get_settings
from ..currency.exchange_rates import CurrencyConverter
from ..engine.pricing_engine import PricingEngine
from ..services.price_list_service import PriceListService
from ..store.clock import Clock, SystemClock
from ..store.memory import InMemoryPricingStore
from ..sync.sync_engine import SyncEngine


@dataclass
class AppState:
    settings: Settings
    clock: Clock
    store: InMemoryPricingStore
    converter: CurrencyConverter
    engine: PricingEngine
    sync: SyncEngine
    price_lists: PriceListService


def build_state(settings: Optional[Settings] = None, clock: Optional[Clock] = None,
                store: Optional[InMemoryPricingStore] = None) -> AppState:
    """Wire every component against one store and one clock."""
    settings = settings or get_settings()
    clock = clock or SystemClock()
    store = store or InMemoryPricingStore()

    def currency_settings(tenant_id: str):
        return settings.config_for(tenant_id).currency

    converter = CurrencyConverter(
        store,
        settings.default_config.currency,
        clock=clock,
        settings_for=currency_settings,
    )
    return AppState(
        settings=settings,
        clock=clock,
        store=store,
        converter=converter,
        engine=PricingEngine(store, converter=converter, clock=clock, config_for=settings.config_for),
        sync=SyncEngine(store, settings.default_config.sync, clock=clock, config_for=settings.config_for),
        price_lists=PriceListService(store, clock=clock),
    )


_state: Optional[AppState] = None


def get_state() -> AppState:
    """Process-wide state, built on first use."""
    global _state
    if _state is None:
        _state = build_state()
    return _state


def set_state(state: Optional[AppState]):
    """Replace the process-wide state (tests, scripts)."""
    global _state
    _state = state
