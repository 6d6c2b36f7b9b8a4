#!/usr/bin/env python
"""
Command-line interface for plot enrichment

Usage:
    plot-enrich enrich --lat 38.7223 --lon -9.1393 --output result.json
    plot-enrich layers --lat 40.4168 --lon -3.7038 --country ES
    plot-enrich batch --concurrency 2 --dry-run
"""

import sys
import json
import argparse
from pathlib import Path

from loguru import logger

from plot_enrich.batch import BatchRunner
from plot_enrich.config import clamp_concurrency, load_config_from_env, set_config, validate_config
from plot_enrich.exceptions import EnrichmentValidationError
from plot_enrich.layers import query_all_layers
from plot_enrich.persistence import connect_store
from plot_enrich.pipeline import enrich_location


def setup_logging(verbose: bool = False):
    """Configure logging"""
    logger.remove()
    level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>",
        level=level
    )


def _emit(payload, output=None):
    text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        logger.info(f"✓ Written: {output}")
    else:
        print(text)


def cmd_enrich(args):
    """Enrich a single location"""
    logger.info(f"Enriching location ({args.lat}, {args.lon})")

    try:
        response = enrich_location(
            args.lat,
            args.lon,
            plot_id=args.plot_id,
            store_results=args.store,
            translate=args.translate,
            target_language=args.target_language,
        )
    except EnrichmentValidationError as e:
        logger.error(f"Invalid request: {e}")
        return 2

    _emit(response.model_dump(), args.output)
    logger.info(f"  Run: {', '.join(response.enrichments_run) or '-'}")
    logger.info(f"  Skipped: {', '.join(response.enrichments_skipped) or '-'}")
    logger.info(f"  Failed: {', '.join(response.enrichments_failed) or '-'}")
    return 1 if response.error else 0


def cmd_layers(args):
    """Query the layer catalogue for a location"""
    country = args.country.upper()
    logger.info(f"Querying {country} layers for ({args.lat}, {args.lon})")

    try:
        result = query_all_layers(args.lat, args.lon, country, area_m2=args.area)
    except ValueError as e:
        logger.error(str(e))
        return 2

    _emit(result.model_dump(exclude_none=True), args.output)
    found = sum(1 for layer in result.layers if layer.found)
    logger.info(f"✓ {found}/{len(result.layers)} layers found")
    return 0


def cmd_batch(args):
    """Enrich every plot in the source table"""
    cfg = args.config
    if args.concurrency is not None:
        cfg.batch.concurrency = clamp_concurrency(args.concurrency)
    if args.batch_size is not None:
        cfg.batch.batch_size = args.batch_size
    if args.dry_run:
        cfg.batch.dry_run = True
    if args.limit is not None:
        cfg.batch.dry_run_limit = args.limit
    if args.force:
        cfg.batch.force_refresh = True

    try:
        validate_config(cfg, require_database=True)
    except ValueError as e:
        logger.error(str(e))
        return 2

    store = connect_store(cfg.database)
    try:
        stats = BatchRunner(cfg, store).run()
    except Exception as e:
        logger.error(f"Batch failed: {e}")
        return 1
    finally:
        if store is not None:
            store.close()

    return 1 if stats.failed else 0


def main():
    parser = argparse.ArgumentParser(
        description="Plot enrichment CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Enrich a single location (no database write):
    plot-enrich enrich --lat 38.7223 --lon -9.1393 --no-store

  Enrich and store, translating the zoning label:
    plot-enrich enrich --lat 38.7223 --lon -9.1393 --plot-id abc --translate

  Query Spanish layers for a 500 m2 plot:
    plot-enrich layers --lat 40.4168 --lon -3.7038 --country ES --area 500

  Batch-enrich plots from the database:
    plot-enrich batch --concurrency 2 --dry-run --limit 10
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--env-file", help="Path to a .env file")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Enrich command
    enrich_parser = subparsers.add_parser("enrich", help="Enrich a single location")
    enrich_parser.add_argument("--lat", type=float, required=True, help="Latitude")
    enrich_parser.add_argument("--lon", type=float, required=True, help="Longitude")
    enrich_parser.add_argument("--plot-id", help="Plot id (required when storing)")
    enrich_parser.add_argument("--store", dest="store", action="store_true", default=True, help="Store results (default)")
    enrich_parser.add_argument("--no-store", dest="store", action="store_false", help="Do not write to the database")
    enrich_parser.add_argument("--translate", action="store_true", help="Translate zoning labels")
    enrich_parser.add_argument("--target-language", default="en", help="Translation target language")
    enrich_parser.add_argument("--output", "-o", help="Output JSON file (stdout if omitted)")
    enrich_parser.set_defaults(func=cmd_enrich)

    # Layers command
    layers_parser = subparsers.add_parser("layers", help="Query the PT/ES layer catalogue")
    layers_parser.add_argument("--lat", type=float, required=True, help="Latitude")
    layers_parser.add_argument("--lon", type=float, required=True, help="Longitude")
    layers_parser.add_argument("--country", required=True, help="PT or ES")
    layers_parser.add_argument("--area", type=float, help="Plot area in m2")
    layers_parser.add_argument("--output", "-o", help="Output JSON file (stdout if omitted)")
    layers_parser.set_defaults(func=cmd_layers)

    # Batch command
    batch_parser = subparsers.add_parser("batch", help="Batch-enrich plots from the database")
    batch_parser.add_argument("--concurrency", type=int, help="Workers (clamped to 1..3)")
    batch_parser.add_argument("--batch-size", type=int, help="Plots per page")
    batch_parser.add_argument("--dry-run", action="store_true", help="Do not write to the database")
    batch_parser.add_argument("--limit", type=int, help="Stop after this many plots")
    batch_parser.add_argument("--force", action="store_true", help="Re-enrich plots that already have data")
    batch_parser.set_defaults(func=cmd_batch)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)
    args.config = load_config_from_env(Path(args.env_file) if args.env_file else None)
    set_config(args.config)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
