"""
CLI main entry point.
"""

import argparse
import asyncio
import csv
import json
import logging
import sys
from datetime import date
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..errors import StoreError
from ..matching.currency import ExchangeRateCache
from ..rates_client import ExchangeRateClient, foreign_currency_dates, prefetch_exchange_rates
from ..schemas.documents import DocumentKind
from ..schemas.pairs import MatchPair, get_pair, standard_pairs
from ..services.reconciliation import MatchingResult, ReconciliationService
from ..state_store import SQLiteDocumentStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledgermatch",
        description="Reconcile invoices and receipts against bank payments",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init command
    init_parser = subparsers.add_parser("init", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    # load command
    load_parser = subparsers.add_parser("load", help="Append CSV rows to a sheet of the store")
    load_parser.add_argument("csv_file", type=Path, help="CSV file with a header row")
    load_parser.add_argument("--sheet", required=True, help="Target sheet name")
    load_parser.add_argument(
        "--kind",
        required=True,
        choices=[kind.value for kind in DocumentKind],
        help="Document kind of the rows",
    )
    load_parser.add_argument("--book", help="Book ID (default: from config)")

    # match command
    match_parser = subparsers.add_parser("match", help="Run cascading matching")
    match_parser.add_argument(
        "--pair",
        default="all",
        choices=["all"] + [pair.name for pair in standard_pairs()],
        help="Pair to reconcile (default: all)",
    )
    match_parser.add_argument("--book", help="Book ID (default: from config)")
    match_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute matches without writing to the store",
    )
    match_parser.add_argument(
        "--no-rates",
        action="store_true",
        help="Skip exchange-rate prefetch (foreign-currency documents will not match)",
    )
    match_parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON",
    )

    # credit-notes command
    notes_parser = subparsers.add_parser(
        "credit-notes",
        help="Mark received invoices cancelled by a credit note as paid",
    )
    notes_parser.add_argument("--book", help="Book ID (default: from config)")
    notes_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Find cancellations without writing to the store",
    )
    notes_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON",
    )

    # prefetch-rates command
    rates_parser = subparsers.add_parser(
        "prefetch-rates",
        help=(
            "Preview exchange rates for foreign-currency documents (or given dates); "
            "rates are not persisted, match fetches its own"
        ),
    )
    rates_parser.add_argument(
        "dates",
        nargs="*",
        type=date.fromisoformat,
        help="ISO dates to fetch (default: all foreign-currency target dates)",
    )
    rates_parser.add_argument("--book", help="Book ID (default: from config)")

    # status command
    status_parser = subparsers.add_parser("status", help="Show row and match counts per sheet")
    status_parser.add_argument("--book", help="Book ID (default: from config)")

    return parser


def cmd_init(config_path: Path, force: bool = False) -> int:
    """Write the default config file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_load(config: Config, csv_file: Path, sheet: str, kind: str, book_id: str) -> int:
    """Append CSV rows to a sheet."""
    if not csv_file.exists():
        print(f"❌ File not found: {csv_file}")
        return 1

    store = SQLiteDocumentStore(config.store_path)
    with open(csv_file, newline="", encoding="utf-8") as f:
        count = store.load_rows(sheet, DocumentKind(kind), csv.DictReader(f), book_id=book_id)

    print(f"✓ Loaded {count} row(s) into {sheet}")
    return 0


async def _prefetch_for_pairs(
    store: SQLiteDocumentStore,
    config: Config,
    pairs: list[MatchPair],
    cache: ExchangeRateCache,
    explicit_dates: list[date] | None = None,
):
    """Prefetch rates for explicit dates or for every foreign-currency target."""
    if explicit_dates:
        dates = explicit_dates
    else:
        dates = []
        for pair in pairs:
            snapshot = await store.read_documents(pair)
            dates.extend(foreign_currency_dates(snapshot.targets, config.matching.base_currency))

    client = ExchangeRateClient(
        base_url=config.rates.base_url,
        timeout=config.rates.timeout_seconds,
        max_retries=config.rates.max_retries,
    )
    return await asyncio.to_thread(prefetch_exchange_rates, client, cache, dates)


def _print_result(result: MatchingResult) -> None:
    print()
    print(f"📊 {result.pair}")
    print("=" * 40)
    print(f"  Status:            {result.state.value}")
    print(f"  Matches found:     {result.matches_found}")
    print(f"  Displaced:         {result.displaced_count}")
    print(f"  Cleared:           {result.clears}")
    print(f"  Max depth reached: {result.max_depth_reached}")
    print(f"  Cycle detected:    {'yes' if result.cycle_detected else 'no'}")
    if result.depth_limit_reached:
        print("  ⚠️  Depth limit reached")
    if result.timed_out:
        print("  ⚠️  Cascade timed out")
    if result.rate_cache_misses:
        print(f"  ⚠️  Dates without exchange rate: {result.rate_cache_misses}")
    print(f"  Row writes:        {result.writes}{' (dry run)' if result.dry_run else ''}")
    print(f"  Duration:          {result.duration_ms}ms")

    if result.errors:
        print("  ❌ Errors:")
        for error in result.errors:
            print(f"   - {error}")


def cmd_match(
    config: Config,
    pair_name: str,
    book_id: str,
    dry_run: bool = False,
    fetch_rates: bool = True,
    as_json: bool = False,
) -> int:
    """Run cascading matching for one pair or all pairs.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    store = SQLiteDocumentStore(config.store_path)
    cache = ExchangeRateCache(ttl_seconds=config.rates.cache_ttl_hours * 3600)
    service = ReconciliationService(store, config, cache)
    pairs = standard_pairs(book_id) if pair_name == "all" else [get_pair(pair_name, book_id)]

    async def run() -> list[MatchingResult]:
        if fetch_rates:
            await _prefetch_for_pairs(store, config, pairs, cache)
        if pair_name == "all":
            return await service.run_all(book_id, dry_run=dry_run)
        return [await service.run_matching(pairs[0], dry_run=dry_run)]

    if not as_json:
        print(f"🔄 Matching {pair_name} in book {book_id}...")
        if dry_run:
            print("  ℹ️  DRY RUN mode - no changes will be made")

    try:
        results = asyncio.run(run())
    except StoreError as e:
        print(f"❌ Failed to read documents: {e}")
        return 1

    if as_json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        for result in results:
            _print_result(result)
        print()

    if all(r.success for r in results):
        if not as_json:
            print("✓ Matching completed successfully")
        return 0
    if not as_json:
        print("❌ Matching failed")
    return 1


def cmd_credit_notes(
    config: Config, book_id: str, dry_run: bool = False, as_json: bool = False
) -> int:
    """Offset credit notes against the received invoices they cancel."""
    store = SQLiteDocumentStore(config.store_path)
    service = ReconciliationService(store, config)

    result = asyncio.run(service.run_credit_notes(book_id, dry_run=dry_run))

    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.success else 1

    print(f"\n🧾 Credit notes in book {book_id}")
    print("=" * 40)
    print(f"  Status:     {result.state.value}")
    for match in result.matches:
        note, invoice = match.credit_note, match.invoice
        print(f"  {note.document_id} cancels {invoice.document_id} ({invoice.amount})")
    if result.success and not result.matches:
        print("  No invoice cancelled by a credit note")
    print(f"  Row writes: {result.writes}{' (dry run)' if result.dry_run else ''}")
    for error in result.errors:
        print(f"  ❌ {error}")
    print()

    return 0 if result.success else 1


def cmd_prefetch_rates(config: Config, dates: list[date], book_id: str) -> int:
    """Fetch exchange rates and print them.

    Preview only: the fetched rates live in this process and are not
    persisted for later match runs.
    """
    store = SQLiteDocumentStore(config.store_path)
    cache = ExchangeRateCache(ttl_seconds=config.rates.cache_ttl_hours * 3600)

    try:
        result = asyncio.run(
            _prefetch_for_pairs(store, config, standard_pairs(book_id), cache, explicit_dates=dates)
        )
    except StoreError as e:
        print(f"❌ Failed to read documents: {e}")
        return 1

    print("\n💱 Exchange Rates")
    print("=" * 40)
    for rate_date in result.fetched:
        rate = cache.get(rate_date)
        if rate is not None:
            print(f"  {rate_date.isoformat()}  buy {rate.buy}  sell {rate.sell}")
    for rate_date, error in result.failed.items():
        print(f"  {rate_date.isoformat()}  ❌ {error}")
    if not result.fetched and not result.failed:
        print("  No foreign-currency dates to fetch")
    print()

    return 0 if result.success else 1


def cmd_status(config: Config, book_id: str) -> int:
    """Show row and match counts per sheet."""
    store = SQLiteDocumentStore(config.store_path)
    stats = store.get_stats(book_id)

    print(f"\n📊 Book {book_id}")
    print("=" * 40)
    if not stats:
        print("  No rows loaded")
    for sheet, counts in stats.items():
        print(f"  {sheet:<22} {counts['matched']:>5} / {counts['total']:<5} matched")
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init":
        return cmd_init(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
        config.ensure_valid()
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    book_id = getattr(parsed, "book", None) or config.book_id

    # Route to command
    if parsed.command == "load":
        return cmd_load(config, parsed.csv_file, parsed.sheet, parsed.kind, book_id)
    elif parsed.command == "match":
        return cmd_match(
            config,
            parsed.pair,
            book_id,
            dry_run=parsed.dry_run,
            fetch_rates=not parsed.no_rates,
            as_json=parsed.json,
        )
    elif parsed.command == "credit-notes":
        return cmd_credit_notes(config, book_id, dry_run=parsed.dry_run, as_json=parsed.json)
    elif parsed.command == "prefetch-rates":
        return cmd_prefetch_rates(config, parsed.dates, book_id)
    elif parsed.command == "status":
        return cmd_status(config, book_id)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
