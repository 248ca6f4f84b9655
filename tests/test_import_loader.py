from datetime import date

import pandas as pd
import pytest

from pricing_core.data.import_loader import (
    frame_to_items,
    get_file_hash,
    load_exchange_rates_file,
    load_price_list_file,
)
from pricing_core.enums import ExchangeRateType, PriceListType
from pricing_core.errors import ValidationError
from pricing_core.sync.models import SyncJobStatus

from conftest import TENANT

PRICE_CSV = """SKU,Base Price,List Price,Cost,Break 1 Min,Break 1 Price,Break 2 Min,Break 2 Price
W-1,50,55,30,10,45,100,40
W-2,20,,12,,,,
,99,,,,,,
W-1,52,57,31,10,47,,
"""


@pytest.fixture
def price_file(tmp_path):
    path = tmp_path / "erp_export.csv"
    path.write_text(PRICE_CSV)
    return path


def test_load_price_list_file(price_file):
    payload, report = load_price_list_file(price_file, "ERP-STD", "ERP Standard", "usd", date(2024, 1, 1))

    assert payload.price_list.code == "ERP-STD"
    assert payload.price_list.currency == "USD"
    assert payload.price_list.type == PriceListType.STANDARD
    assert report["rows"] == 4
    assert report["dropped_missing_sku"] == 1
    assert report["duplicates_removed"] == 1
    assert report["items"] == 2
    assert report["hash"] == get_file_hash(price_file)

    by_sku = {item["sku"]: item for item in payload.items}
    # last duplicate row wins
    assert by_sku["W-1"]["base_price"] == 52
    assert by_sku["W-1"]["quantity_breaks"] == [{"min_quantity": 10, "price": 47}]
    assert "list_price" not in by_sku["W-2"]
    assert "quantity_breaks" not in by_sku["W-2"]


def test_loaded_file_imports_cleanly(price_file, sync_engine, store):
    payload, _ = load_price_list_file(price_file, "ERP-STD", "ERP Standard", "USD", date(2024, 1, 1), "volume")
    result = sync_engine.import_price_list(TENANT, payload)
    assert result.status == SyncJobStatus.COMPLETED
    assert result.success_count == 2

    price_list = store.find_price_list_by_code(TENANT, "ERP-STD")
    assert price_list.type == PriceListType.VOLUME
    w2 = store.find_item(price_list.id, "W-2")
    assert w2.list_price == 20.0
    assert w2.cost == 12.0


def test_break_tiers_in_order():
    df = pd.DataFrame({
        'sku': ['A'],
        'base_price': [10.0],
        'break_2_min': [20],
        'break_2_price': [8.0],
        'break_1_min': [5],
        'break_1_discount': [5.0],
    })
    items, _ = frame_to_items(df)
    assert items[0]["quantity_breaks"] == [
        {"min_quantity": 5, "discount_percent": 5.0},
        {"min_quantity": 20, "price": 8.0},
    ]


def test_missing_sku_column():
    with pytest.raises(ValidationError):
        frame_to_items(pd.DataFrame({'part': ['A'], 'base_price': [1.0]}))


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_price_list_file(tmp_path / "nope.csv", "X", "X", "USD", date(2024, 1, 1))


def test_excel_export(tmp_path):
    path = tmp_path / "export.xlsx"
    pd.DataFrame({'SKU': ['X-1'], 'Base Price': [9.5]}).to_excel(path, index=False, engine='openpyxl')
    payload, report = load_price_list_file(path, "XL", "Excel", "EUR", date(2024, 1, 1))
    assert payload.items == [{"sku": "X-1", "base_price": 9.5}]
    assert report["items"] == 1


def test_load_exchange_rates_file(tmp_path, converter):
    path = tmp_path / "rates.csv"
    path.write_text(
        "source_currency,target_currency,rate,effective_from,effective_to,rate_type\n"
        "eur,usd,1.1,2024-01-01,,\n"
        "GBP,USD,1.2,2024-01-01,2024-12-31,budgeted\n"
    )
    rates = load_exchange_rates_file(path, TENANT)
    assert [(r.source_currency, r.target_currency) for r in rates] == [("EUR", "USD"), ("GBP", "USD")]
    assert rates[0].rate_type == ExchangeRateType.SPOT
    assert rates[0].effective_to is None
    assert rates[1].effective_to == date(2024, 12, 31)
    assert rates[1].rate_type == ExchangeRateType.BUDGETED

    assert converter.bulk_upsert_rates(TENANT, rates) == {"created": 2, "updated": 0}
    assert converter.rate(TENANT, "EUR", "USD") == 1.1


def test_exchange_rate_file_missing_columns(tmp_path):
    path = tmp_path / "rates.csv"
    path.write_text("source_currency,rate\nEUR,1.1\n")
    with pytest.raises(ValidationError):
        load_exchange_rates_file(path, TENANT)
