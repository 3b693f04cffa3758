"""
GTFS-RT Rater command line.

Usage:
    gtfs-rater analyze https://example.com/vehicle_positions.pb -o data.csv
    gtfs-rater list-feeds
    gtfs-rater consume-all-feeds -o feeds -c 5 -r 60 -n 0 --destination gs://BUCKET --gzip
    gtfs-rater aggregate -d feeds --destination gs://BUCKET
"""

import argparse
import logging
import signal
import sys
from datetime import date
from typing import List, Optional

from rater.analysis import aggregate_directory, publish_aggregates
from rater.archive import ArchiveWriter, RotationPipeline, append_row, build_uploader
from rater.catalog import (
    JsonFileCatalog,
    MobilityDataCatalog,
    eligible_feeds,
    load_key_config,
    resolve_keys,
)
from rater.config import Config, get_config
from rater.exceptions import ArchiveWriteError, CatalogError, ConfigError, UploadError
from rater.models import FeedDescriptor, LifecycleStatus
from rater.poller import BoundedDispatcher, FeedFetcher, SamplingScheduler

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gtfs-rater", description="Analyze GTFS-RT feeds")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Sample one feed from a file or URL")
    analyze.add_argument("source", metavar="FILE_OR_URL", help="Path to file or URL to fetch")
    analyze.add_argument("-o", "--output", default="data.csv", help="CSV file to append results to")

    subparsers.add_parser("list-feeds", help="List vehicle position feeds from MobilityData")

    consume = subparsers.add_parser(
        "consume-all-feeds", help="Sample every eligible feed on a fixed cadence"
    )
    consume.add_argument("-o", "--output-dir", default=None, help="Directory for per-feed CSVs")
    consume.add_argument("-c", "--concurrency", type=int, default=None, help="Max concurrent fetches")
    consume.add_argument(
        "-r", "--sample-rate", type=float, default=None, help="Seconds between sampling rounds"
    )
    consume.add_argument(
        "-n", "--num-samples", type=int, default=None, help="Number of rounds (0 = until stopped)"
    )
    consume.add_argument(
        "--destination", default=None, help="gs://bucket[/prefix] or directory for finished days"
    )
    consume.add_argument("--gzip", action="store_true", default=None, help="Gzip files before upload")
    consume.add_argument("--key-config", default=None, help="JSON mapping feed IDs to API key env vars")
    consume.add_argument("--feeds-file", default=None, help="Read feeds from a JSON file instead of the API")

    aggregate = subparsers.add_parser("aggregate", help="Aggregate archived CSVs and upload the results")
    aggregate.add_argument("-d", "--output-dir", default=None, help="Directory containing feed CSVs")
    aggregate.add_argument("--destination", default=None, help="gs://bucket[/prefix] or directory")
    aggregate.add_argument("--date", type=date.fromisoformat, default=None, help="Only this day (YYYY-MM-DD)")

    return parser


def get_catalog(config: Config):
    if config.feeds_file:
        return JsonFileCatalog(config.feeds_file)
    return MobilityDataCatalog(config.refresh_token, config.catalog_url)


def cmd_analyze(config: Config, args: argparse.Namespace) -> int:
    fetcher = FeedFetcher(config)
    feed = FeedDescriptor(feed_id=args.source, display_name="", endpoint=args.source)
    outcome = fetcher.sample(feed)
    append_row(args.output, outcome)
    logger.info(f"Appended {outcome.error_type or 'success'} row to {args.output}")
    return 0 if not outcome.is_error else 1


def cmd_list_feeds(config: Config, args: argparse.Namespace) -> int:
    feeds = get_catalog(config).list_feeds()
    logger.info(f"Total feeds: {len(feeds)}")
    for feed in feeds:
        lock = "🔒" if feed.requires_auth else "🔓"
        has_url = "✓" if feed.endpoint else "✗"
        logger.info(f"{lock} {has_url} [{feed.lifecycle_status.value}] {feed.feed_id} - {feed.display_name}")

    logger.info("Summary:")
    logger.info(f"  Total feeds: {len(feeds)}")
    logger.info(f"  Deprecated: {sum(f.lifecycle_status == LifecycleStatus.DEPRECATED for f in feeds)}")
    logger.info(f"  Auth required: {sum(f.requires_auth for f in feeds)}")
    logger.info(f"  No URL: {sum(not f.endpoint for f in feeds)}")
    logger.info(f"  Processable by consume-all-feeds: {len(eligible_feeds(feeds))}")
    return 0


def cmd_consume_all_feeds(config: Config, args: argparse.Namespace) -> int:
    api_keys = resolve_keys(load_key_config(config.key_config)) if config.key_config else {}

    logger.info("Fetching feed list...")
    feeds = eligible_feeds(get_catalog(config).list_feeds(), api_keys)
    logger.info(
        f"Found {len(feeds)} feeds to process "
        f"({sum(f.requires_auth for f in feeds)} authenticated, excluding deprecated)"
    )

    writer = ArchiveWriter(config.output_dir)
    writer.recover()
    rotation = RotationPipeline(
        writer,
        uploader=build_uploader(config.destination),
        gzip=config.gzip,
        upload_workers=config.upload_workers,
        aggregate_on_upload=config.aggregate_on_upload,
        delete_after_upload=config.delete_after_upload,
    )
    fetcher = FeedFetcher(config, api_keys=api_keys)
    scheduler = SamplingScheduler(
        feeds,
        BoundedDispatcher(fetcher.sample, config.concurrency),
        writer,
        rotation,
        interval=config.sample_interval_seconds,
        sample_count=config.sample_count,
    )

    def _handle_shutdown(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current round")
        scheduler.cancel()

    previous = {sig: signal.signal(sig, _handle_shutdown) for sig in (signal.SIGTERM, signal.SIGINT)}

    try:
        scheduler.run()
    finally:
        rotation.close()
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    logger.info(f"Finished processing all feeds. Results saved to {config.output_dir}/")
    return 0


def cmd_aggregate(config: Config, args: argparse.Namespace) -> int:
    uploader = build_uploader(config.destination)
    if uploader is None:
        logger.info("No destination configured, skipping upload")
        return 0
    aggregates = aggregate_directory(config.output_dir, day=args.date)
    publish_aggregates(uploader, aggregates)
    logger.info(f"Published {len(aggregates)} aggregates")
    return 0


COMMANDS = {
    "analyze": cmd_analyze,
    "list-feeds": cmd_list_feeds,
    "consume-all-feeds": cmd_consume_all_feeds,
    "aggregate": cmd_aggregate,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = get_config(args.env_file).with_overrides(
            output_dir=getattr(args, "output_dir", None),
            concurrency=getattr(args, "concurrency", None),
            sample_interval_seconds=getattr(args, "sample_rate", None),
            sample_count=getattr(args, "num_samples", None),
            destination=getattr(args, "destination", None),
            gzip=getattr(args, "gzip", None),
            key_config=getattr(args, "key_config", None),
            feeds_file=getattr(args, "feeds_file", None),
        )
        return COMMANDS[args.command](config, args)
    except (ConfigError, CatalogError, UploadError, ArchiveWriteError) as e:
        logger.error(f"{e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
