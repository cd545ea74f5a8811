"""CLI entrypoint for checkpointed crawl execution."""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
import sys
from typing import Any

if __package__ in {None, ""}:
    repo_root = Path(__file__).resolve().parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

from pagecrawl import (
    ApifyKeyValueStore,
    CheckpointStore,
    CrawlConfig,
    CrawlScheduler,
    FatalCrawlError,
    FileKeyValueStore,
    KeyValueStore,
    StorageCapacityError,
    StorageError,
    apply_input_aliases,
    read_config_payload,
)
from pagecrawl.constants import (
    DEFAULT_MAX_RECORD_BYTES,
    EXIT_FATAL,
    EXIT_INTERRUPTED,
    EXIT_INVALID_CONFIG,
    EXIT_OK,
    EXIT_STORAGE_CAPACITY,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a resumable crawl that checkpoints pages in batches.",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to JSON/YAML crawl config. Falls back to the store's INPUT record.",
    )
    parser.add_argument(
        "--output_dir",
        type=Path,
        default=Path("crawl_output"),
        help="Root directory for the file key-value store and logs.",
    )
    parser.add_argument(
        "--apify_store_id",
        type=str,
        default=os.environ.get("APIFY_DEFAULT_KEY_VALUE_STORE_ID"),
        help="Use this Apify key-value store instead of the local file store.",
    )
    parser.add_argument(
        "--apify_token",
        type=str,
        default=os.environ.get("APIFY_TOKEN"),
        help="Apify API token (default: $APIFY_TOKEN).",
    )

    parser.add_argument(
        "--seed",
        action="append",
        default=[],
        help="Seed URL (repeatable). Overrides config seeds if provided.",
    )
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument(
        "--store_pages_interval",
        type=int,
        default=None,
        help="Number of finished pages buffered before a batch is stored.",
    )
    parser.add_argument("--page_timeout_seconds", type=float, default=None)
    parser.add_argument("--sleep_seconds", type=float, default=None)

    parser.add_argument(
        "--proxy_url",
        action="append",
        default=[],
        help="Proxy URL pattern (repeatable). May contain <randomSessionId>.",
    )
    parser.add_argument(
        "--user_agent",
        action="append",
        default=[],
        help="User agent (repeatable); one is picked at random per page.",
    )
    parser.add_argument(
        "--avoid_cache",
        action="store_true",
        help="Do not use a shared browser disk cache.",
    )
    parser.add_argument("--cache_size_megabytes", type=int, default=None)
    parser.add_argument(
        "--no_headless",
        action="store_true",
        help="Show the browser window.",
    )

    parser.add_argument("--link_pattern", type=str, default=None)
    parser.add_argument("--title_selector", type=str, default=None)
    parser.add_argument("--attachment_selector", type=str, default=None)
    parser.add_argument(
        "--dedupe_urls",
        action="store_true",
        help="Skip URLs already present in the frontier.",
    )
    parser.add_argument(
        "--max_record_bytes",
        type=int,
        default=None,
        help="Largest batch record the store accepts. Use 0 or negative to disable.",
    )

    parser.add_argument(
        "--print_stats_json",
        action="store_true",
        help="Print full stats JSON in stdout after run.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )

    return parser.parse_args(argv)


def build_store(args: argparse.Namespace) -> KeyValueStore:
    if args.apify_store_id:
        return ApifyKeyValueStore(
            args.apify_store_id,
            token=args.apify_token,
            max_record_bytes=DEFAULT_MAX_RECORD_BYTES,
        )
    return FileKeyValueStore(
        args.output_dir / "key_value_store",
        max_record_bytes=DEFAULT_MAX_RECORD_BYTES,
    )


def build_config(args: argparse.Namespace, checkpoint: CheckpointStore | None = None) -> CrawlConfig:
    payload: dict[str, Any]
    if args.config is not None:
        # Raw mapping, so domains derived from the file's seeds are not frozen in.
        payload = apply_input_aliases(read_config_payload(args.config))
    else:
        stored_input = checkpoint.read_input() if checkpoint is not None and not args.seed else None
        payload = apply_input_aliases(stored_input or {})

    if args.seed:
        payload["seeds"] = list(args.seed)

    if not payload.get("seeds"):
        raise ValueError("No seeds provided. Use --config, an INPUT record, or at least one --seed.")

    if args.concurrency is not None:
        payload["concurrency"] = args.concurrency
    if args.store_pages_interval is not None:
        payload["store_pages_interval"] = args.store_pages_interval
    if args.page_timeout_seconds is not None:
        payload["page_timeout_seconds"] = args.page_timeout_seconds
    if args.sleep_seconds is not None:
        payload["sleep_seconds"] = args.sleep_seconds

    if args.proxy_url:
        payload["proxy_urls"] = list(args.proxy_url)
    if args.user_agent:
        payload["user_agents"] = list(args.user_agent)
    if args.avoid_cache:
        payload["avoid_cache"] = True
    if args.cache_size_megabytes is not None:
        payload["cache_size_megabytes"] = args.cache_size_megabytes
    if args.no_headless:
        payload["headless"] = False

    if args.link_pattern is not None:
        payload["link_pattern"] = args.link_pattern
    if args.title_selector is not None:
        payload["title_selector"] = args.title_selector
    if args.attachment_selector is not None:
        payload["attachment_selector"] = args.attachment_selector
    if args.dedupe_urls:
        payload["dedupe_urls"] = True
    if args.max_record_bytes is not None:
        payload["max_record_bytes"] = None if args.max_record_bytes <= 0 else args.max_record_bytes

    return CrawlConfig.from_dict(payload)


def setup_logging(output_dir: Path, verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir = output_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "crawl.log"

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    # Selenium and urllib3 log every wire call at DEBUG.
    logging.getLogger("selenium").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def print_summary(result: dict[str, Any], *, print_stats_json: bool) -> None:
    state = result.get("state", {})
    stats = result.get("stats", {})

    print("\n=== Crawl Complete ===")
    print(f"processed_count: {state.get('processedCount')}")
    print(f"batch_count: {state.get('batchCount')}")
    print(f"frontier_size: {result.get('frontier_size')}")
    print(f"skipped_on_resume: {result.get('skipped_on_resume')}")

    print("\n--- Core Stats ---")
    for key in [
        "pages_ok",
        "pages_failed",
        "attachments_downloaded",
        "links_discovered",
        "flushes_written",
        "flushes_skipped",
        "flushes_failed",
        "records_stored",
        "duration_seconds",
    ]:
        if key in stats:
            print(f"{key}: {stats[key]}")

    if print_stats_json:
        print("\n--- Full Stats JSON ---")
        print(json.dumps(stats, indent=2, sort_keys=True))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.output_dir, verbose=args.verbose)

    try:
        kv = build_store(args)
        checkpoint = CheckpointStore(kv)
        config = build_config(args, checkpoint)
    except Exception as exc:
        logging.error("Failed to build config: %s", exc)
        return EXIT_INVALID_CONFIG

    kv.max_record_bytes = config.max_record_bytes

    logging.info(
        "Starting crawl: seeds=%d, concurrency=%d, store_pages_interval=%d",
        len(config.seeds),
        config.concurrency,
        config.store_pages_interval,
    )

    try:
        scheduler = CrawlScheduler(config, store=checkpoint)
        outcome = scheduler.run()
    except KeyboardInterrupt:
        logging.error("Interrupted by user")
        return EXIT_INTERRUPTED
    except FatalCrawlError as exc:
        logging.error("Crawl aborted: %s", exc)
        if isinstance(exc.__cause__, StorageCapacityError):
            return EXIT_STORAGE_CAPACITY
        return EXIT_FATAL
    except StorageError as exc:
        logging.error("Checkpoint store unavailable: %s", exc)
        return EXIT_FATAL
    except Exception:
        logging.exception("Crawl execution failed")
        return EXIT_FATAL

    print_summary(outcome.to_json(), print_stats_json=args.print_stats_json)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
