"""Command-line interface for the catalog importer."""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Set

from catalog_import.config import (
    DATA_DIR,
    DB_PATH,
    IMAGE_CACHE_DIR,
    IMAGE_CONCURRENCY,
    REPORT_PATH,
    ConfigurationError,
    load_code_mapping,
    load_excluded_types,
    load_type_category_mapping,
)
from catalog_import.db import get_product_count, init_db
from catalog_import.images import ImageNormalizer
from catalog_import.logging_config import get_logger, setup_logging
from catalog_import.models import RunStats
from catalog_import.pipeline import ImportRun, import_feed
from catalog_import.readers import FeedError
from catalog_import.reports import format_summary, write_errors_csv, write_report
from catalog_import.shutdown import get_shutdown_handler
from catalog_import.sink import CatalogSink, DryRunSink, SqliteCatalogSink

__all__ = ["main", "parse_args", "show_stats", "load_barcodes"]

logger = get_logger("cli")

DEFAULT_MAPPINGS_DIR = str(Path(DATA_DIR) / "mappings")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Import supplier product feeds into the catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Import an XML feed (new products only)
  python -m catalog_import.cli feeds/products.xml

  # Re-import everything, refreshing prices and stock
  python -m catalog_import.cli feeds/products.xml --update-existing

  # Preview an import without writing or downloading anything
  python -m catalog_import.cli feeds/stc.csv --dry-run --skip-images

  # Import only selected barcodes
  python -m catalog_import.cli feeds/products.xml --barcodes 0123456789012 0987654321098

  # Show database statistics
  python -m catalog_import.cli --stats
        """,
    )

    parser.add_argument("feeds", nargs="*", help="XML or CSV feed files to import")

    parser.add_argument(
        "--db",
        default=DB_PATH,
        help=f"SQLite database path (default: {DB_PATH})",
    )
    parser.add_argument(
        "--mappings-dir",
        default=DEFAULT_MAPPINGS_DIR,
        help=f"Directory with category/manufacturer/type mapping JSON files (default: {DEFAULT_MAPPINGS_DIR})",
    )
    parser.add_argument(
        "--image-cache",
        default=IMAGE_CACHE_DIR,
        help=f"Processed image cache directory (default: {IMAGE_CACHE_DIR})",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=IMAGE_CONCURRENCY,
        help=f"Maximum concurrent image downloads (default: {IMAGE_CONCURRENCY})",
    )

    # Run behaviour
    parser.add_argument(
        "--barcodes",
        nargs="+",
        metavar="BARCODE",
        help="Only import these barcodes (a single @file argument reads one barcode per line)",
    )
    parser.add_argument("--skip-images", action="store_true", help="Import without images")
    parser.add_argument(
        "--no-variations",
        action="store_true",
        help="Import every record as a simple product",
    )
    parser.add_argument(
        "--update-existing",
        action="store_true",
        help="Rewrite products already in the catalog (default: skip them)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run the full pipeline but write nothing to the database",
    )

    # Output
    parser.add_argument(
        "--report",
        default=REPORT_PATH,
        help=f"JSON report path (default: {REPORT_PATH})",
    )
    parser.add_argument("--errors-csv", metavar="PATH", help="Also write errors and warnings to CSV")
    parser.add_argument("--stats", action="store_true", help="Show database statistics and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on the console")
    parser.add_argument("--no-log-file", action="store_true", help="Don't write JSONL log files")

    return parser.parse_args(argv)


def load_barcodes(values: Optional[List[str]]) -> Optional[Set[str]]:
    """Barcode filter from the command line (``@path`` reads a file)."""
    if not values:
        return None
    if len(values) == 1 and values[0].startswith("@"):
        path = Path(values[0][1:])
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise ConfigurationError(f"Cannot read barcode file {path}: {e}") from e
        return {line.strip() for line in lines if line.strip()}
    return {v.strip() for v in values if v.strip()}


def show_stats(db_path: str) -> None:
    """Display database statistics."""
    init_db(db_path)

    print(f"\n{'='*50}")
    print(f"Database: {db_path}")
    print(f"{'='*50}")
    print(f"\nProducts (simple + variations): {get_product_count(db_path)}")
    print(f"Variable products:              {get_product_count(db_path, variable=True)}")
    print()


def build_run(args: argparse.Namespace) -> ImportRun:
    mappings = Path(args.mappings_dir)
    category_mapping = load_code_mapping(mappings / "category-mapping.json")
    manufacturer_mapping = load_code_mapping(mappings / "manufacturer-mapping.json")
    type_mapping = load_type_category_mapping(mappings / "product-type-category-mapping.json")
    excluded = load_excluded_types(mappings / "excluded-product-types.json")
    logger.info(
        f"Loaded {len(category_mapping)} categories, {len(manufacturer_mapping)} manufacturers, "
        f"{len(type_mapping)} type fallbacks, {len(excluded)} excluded types"
    )

    sink: CatalogSink
    if args.dry_run:
        sink = DryRunSink()
    else:
        sink = SqliteCatalogSink(args.db, category_mapping, manufacturer_mapping)

    normalizer = None
    if not args.skip_images:
        normalizer = ImageNormalizer(cache_dir=args.image_cache, concurrency=args.concurrency)

    return ImportRun(
        sink=sink,
        normalizer=normalizer,
        category_mapping=category_mapping,
        type_category_mapping=type_mapping,
        excluded_types=excluded,
        barcodes=load_barcodes(args.barcodes),
        skip_images=args.skip_images,
        detect_variations=not args.no_variations,
        update_existing=args.update_existing,
    )


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for CLI."""
    args = parse_args(argv)
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        log_to_file=not args.no_log_file,
    )

    if args.stats:
        show_stats(args.db)
        return

    if not args.feeds:
        print("No feed files given. See --help for usage.")
        sys.exit(2)

    handler = get_shutdown_handler().install()
    stats: Optional[RunStats] = None
    started = datetime.now()
    try:
        run = build_run(args)
        handler.register_cleanup(run.sink.close)
        for feed in args.feeds:
            stats = import_feed(feed, run)
            if handler.shutdown_requested:
                break
    except (FeedError, ConfigurationError) as e:
        logger.error(f"Import aborted: {e}")
        sys.exit(1)
    finally:
        handler.cleanup()
        handler.uninstall()

    duration = (datetime.now() - started).total_seconds()
    write_report(stats, args.report, extra={
        "feeds": args.feeds,
        "dry_run": args.dry_run,
        "duration_seconds": round(duration, 1),
    })
    if args.errors_csv:
        write_errors_csv(stats, args.errors_csv)
    print(format_summary(stats))
    print(f"\nReport written to {args.report}")


if __name__ == "__main__":
    main()
