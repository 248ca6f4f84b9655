"""
Import Loader - reads price list and exchange rate exports (CSV or Excel)
into the structures the sync engine and the converter accept.

Price list files have one row per SKU. Recognised columns (case and
spacing are normalised): sku, base_price, list_price, min_price, max_price,
cost, currency, uom, effective_from, effective_to, external_id, plus
quantity break pairs ``break_<n>_min`` / ``break_<n>_price`` and optional
``break_<n>_max`` / ``break_<n>_discount``.
"""
import hashlib
import logging
import re
from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd

from ..engine.models import CurrencyExchangeRate
from ..enums import ExchangeRateType
from ..errors import ValidationError
from ..sync.models import ImportPayload, ImportPriceListHeader, map_list_type

logger = logging.getLogger(__name__)

BREAK_COLUMN = re.compile(r'^break_(\d+)_(min|max|price|discount)$')
ITEM_COLUMNS = (
    'base_price', 'list_price', 'min_price', 'max_price', 'cost',
    'currency', 'uom', 'effective_from', 'effective_to', 'external_id',
)


def get_file_hash(path: Path) -> str:
    """Short SHA256 of a file, recorded in load reports."""
    with open(path, 'rb') as f:
        return hashlib.sha256(f.read()).hexdigest()[:12]


def read_table(path: Path) -> pd.DataFrame:
    """Read a CSV or Excel export with normalised column names."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Import file not found: {path}")
    if path.suffix.lower() in ('.xlsx', '.xlsm', '.xls'):
        df = pd.read_excel(path, dtype={'sku': str, 'SKU': str}, engine='openpyxl')
    else:
        df = pd.read_csv(path, dtype={'sku': str, 'SKU': str})
    df.columns = [re.sub(r'\s+', '_', str(c).strip().lower()) for c in df.columns]
    return df


def _cell(value):
    """pandas NaN/NaT → None, numpy scalars → Python scalars."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, pd.Timestamp):
        return value.date()
    if hasattr(value, 'item'):
        return value.item()
    return value


def _break_columns(columns) -> dict[int, dict[str, str]]:
    tiers: dict[int, dict[str, str]] = {}
    for column in columns:
        match = BREAK_COLUMN.match(column)
        if match:
            tiers.setdefault(int(match.group(1)), {})[match.group(2)] = column
    return dict(sorted(tiers.items()))


def frame_to_items(df: pd.DataFrame) -> tuple[list[dict], dict]:
    """
    Convert a price list frame into raw item dicts.

    Rows without a SKU are dropped; for duplicate SKUs the last row wins.
    Returns (items, report).
    """
    report = {"rows": int(len(df)), "dropped_missing_sku": 0, "duplicates_removed": 0}
    if 'sku' not in df.columns:
        raise ValidationError("Import file has no 'sku' column")

    df = df.copy()
    df['sku'] = df['sku'].astype('string').str.strip()
    missing = df['sku'].fillna('') == ''
    report["dropped_missing_sku"] = int(missing.sum())
    df = df[~missing]

    duplicates = int(df['sku'].duplicated(keep='last').sum())
    report["duplicates_removed"] = duplicates
    df = df.drop_duplicates('sku', keep='last')

    tiers = _break_columns(df.columns)
    items = []
    for row in df.to_dict(orient='records'):
        item = {'sku': str(row['sku'])}
        for column in ITEM_COLUMNS:
            if column in row:
                value = _cell(row[column])
                if value is not None:
                    item[column] = value

        breaks = []
        for columns in tiers.values():
            min_qty = _cell(row.get(columns.get('min')))
            if min_qty is None:
                continue
            tier = {'min_quantity': int(min_qty)}
            for key, field_name in (('max', 'max_quantity'), ('price', 'price'), ('discount', 'discount_percent')):
                if key in columns:
                    value = _cell(row.get(columns[key]))
                    if value is not None:
                        tier[field_name] = value
            breaks.append(tier)
        if breaks:
            item['quantity_breaks'] = breaks
        items.append(item)

    report["items"] = len(items)
    return items, report


def load_price_list_file(
    path: Path,
    code: str,
    name: str,
    currency: str,
    effective_from: date,
    list_type: Optional[str] = None,
    effective_to: Optional[date] = None,
    description: Optional[str] = None,
) -> tuple[ImportPayload, dict]:
    """
    Build an ``ImportPayload`` from an export file.

    The header comes from the arguments; the items from the file.
    Returns (payload, report).
    """
    df = read_table(path)
    items, report = frame_to_items(df)
    report["path"] = str(path)
    report["hash"] = get_file_hash(Path(path))

    header = ImportPriceListHeader(
        code=code,
        name=name,
        currency=currency.upper(),
        effective_from=effective_from,
        effective_to=effective_to,
        type=map_list_type(list_type),
        description=description,
    )
    if report["dropped_missing_sku"] or report["duplicates_removed"]:
        logger.warning(
            "%s: dropped %d rows without SKU, %d duplicate SKUs",
            path, report["dropped_missing_sku"], report["duplicates_removed"],
        )
    logger.info("Loaded %d items for price list %s from %s", len(items), code, path)
    return ImportPayload(price_list=header, items=items), report


def load_exchange_rates_file(path: Path, tenant_id: str) -> list[CurrencyExchangeRate]:
    """
    Read an exchange rate export.

    Columns: source_currency, target_currency, rate, effective_from and
    optionally effective_to, rate_type, rate_source.
    """
    df = read_table(path)
    required = {'source_currency', 'target_currency', 'rate', 'effective_from'}
    missing = required - set(df.columns)
    if missing:
        raise ValidationError(f"Exchange rate file is missing columns: {sorted(missing)}")

    rates = []
    for index, row in enumerate(df.to_dict(orient='records')):
        effective_from = pd.to_datetime(row['effective_from']).date()
        effective_to = _cell(row.get('effective_to'))
        rate_type = _cell(row.get('rate_type')) or 'spot'
        try:
            rate_type = ExchangeRateType(str(rate_type).lower())
        except ValueError:
            raise ValidationError(f"row {index}: unknown rate_type {rate_type!r}")
        rates.append(CurrencyExchangeRate(
            tenant_id=tenant_id,
            source_currency=str(row['source_currency']).strip().upper(),
            target_currency=str(row['target_currency']).strip().upper(),
            rate=float(row['rate']),
            effective_from=effective_from,
            effective_to=pd.to_datetime(effective_to).date() if effective_to is not None else None,
            rate_type=rate_type,
            rate_source=_cell(row.get('rate_source')),
        ))
    logger.info("Loaded %d exchange rates from %s", len(rates), path)
    return rates
