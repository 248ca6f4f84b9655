#!/usr/bin/env python
"""
Import a price list export (CSV or Excel) and report the sync summary.

Usage:
    python scripts/import_price_list.py prices.csv --code STD-2025 --name "Standard 2025" \
        --currency USD --effective-from 2025-01-01 [--type standard] [--json-logs]

The file is reconciled into an in-memory store, so running it is a dry run:
it validates the file and shows what a sync would create or change.
"""
import argparse
import sys
from datetime import date
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from pricing_core.config.logging_config import log_context, setup_logging
from pricing_core.data.import_loader import load_price_list_file
from pricing_core.errors import PricingError
from pricing_core.store.memory import InMemoryPricingStore
from pricing_core.sync.sync_engine import SyncEngine


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Import a price list export")
    parser.add_argument('path', type=Path)
    parser.add_argument('--code', required=True)
    parser.add_argument('--name', required=True)
    parser.add_argument('--currency', required=True)
    parser.add_argument('--effective-from', type=date.fromisoformat, default=date.today())
    parser.add_argument('--effective-to', type=date.fromisoformat, default=None)
    parser.add_argument('--type', dest='list_type', default='standard')
    parser.add_argument('--tenant', default='default')
    parser.add_argument('--json-logs', action='store_true')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    setup_logging('INFO', format_as_json=args.json_logs)

    print("=" * 60)
    print("PRICE LIST IMPORT")
    print("=" * 60)
    print()

    try:
        payload, report = load_price_list_file(
            args.path,
            code=args.code,
            name=args.name,
            currency=args.currency,
            effective_from=args.effective_from,
            effective_to=args.effective_to,
            list_type=args.list_type,
        )
    except (FileNotFoundError, PricingError) as e:
        print(f"\n❌ LOAD FAILED: {e}")
        sys.exit(1)

    print(f"[1/2] Loaded {report['items']} items from {args.path} (hash {report['hash']})")
    if report['dropped_missing_sku']:
        print(f"  Dropped rows without SKU: {report['dropped_missing_sku']}")
    if report['duplicates_removed']:
        print(f"  Duplicate SKUs (last row kept): {report['duplicates_removed']}")

    print("[2/2] Reconciling...")
    engine = SyncEngine(InMemoryPricingStore())
    with log_context(tenant_id=args.tenant):
        result = engine.import_price_list(args.tenant, payload)

    print()
    print("=" * 60)
    print(f"{'✅' if result.error_count == 0 else '⚠️'} IMPORT {result.status.value.upper()}")
    print("=" * 60)
    print()
    print("Summary:")
    print(f"  Processed: {result.processed_items}/{result.total_items}")
    print(f"  Succeeded: {result.success_count}")
    print(f"  Errors: {result.error_count}")
    if result.summary:
        summary = result.summary
        print(f"  Created: {summary.items_created}")
        print(f"  Updated: {summary.items_updated}")
        print(f"  Unchanged: {summary.items_unchanged}")
    for error in result.errors[:20]:
        print(f"  {error.error_code} row {error.item_index} ({error.sku}): {error.error_message}")

    if result.error_count:
        sys.exit(2)


if __name__ == "__main__":
    main()
