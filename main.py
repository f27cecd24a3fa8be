#!/usr/bin/env python3
"""
Feed Sync command line.

    python main.py add URL [URL ...]       fetch and store new feeds
    python main.py remove URL [URL ...]    delete feeds and their articles
    python main.py import                  add every feed listed in feeds.yaml
    python main.py update                  run one update pass over all feeds
    python main.py prune [--days N]        delete articles saved more than N days ago
    python main.py search KEYWORD ...      keyword search (--from/--to ISO dates, --limit)
    python main.py run                     update on a fixed interval until interrupted
"""

import argparse
import asyncio
import json
import signal
import sys
from datetime import datetime
from typing import List, Optional

from config import config, get_logger
from entities import Article
from errors import StorageConnectionError
from feedstore import FeedStore
from telemetry import init_telemetry, trace_span

# Module-specific logger
logger = get_logger("main")
init_telemetry("feed-sync")


def _iso_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an ISO date/time: {value!r}")


def _format_timestamp(value: Optional[float]) -> Optional[str]:
    return datetime.fromtimestamp(value).isoformat(timespec='seconds') if value else None


def article_summary(article: Article) -> dict:
    return {
        'title': article.title,
        'link': article.link,
        'author': article.author,
        'feed': article.feed,
        'feed_title': article.feed_title,
        'saved_at': _format_timestamp(article.saved_at),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Feed Sync: RSS/Atom ingestion and keyword search')
    parser.add_argument('--database', type=str, help=f'SQLite database path (default: {config.DATABASE_PATH})')
    subparsers = parser.add_subparsers(dest='command', required=True)

    add = subparsers.add_parser('add', help='Fetch and store new feeds')
    add.add_argument('urls', nargs='+', metavar='URL')

    remove = subparsers.add_parser('remove', help='Delete feeds and all of their articles')
    remove.add_argument('urls', nargs='+', metavar='URL')

    imp = subparsers.add_parser('import', help='Add every feed listed in feeds.yaml')
    imp.add_argument('--feeds', type=str, help=f'Feeds file (default: {config.FEEDS_CONFIG_PATH})')

    subparsers.add_parser('update', help='Run one update pass over all stored feeds')

    prune = subparsers.add_parser('prune', help='Delete articles saved more than N days ago')
    prune.add_argument('--days', type=float, default=config.RETENTION_DAYS)

    search = subparsers.add_parser('search', help='Search stored articles by keyword')
    search.add_argument('keywords', nargs='+', metavar='KEYWORD')
    search.add_argument('--from', dest='date_from', type=_iso_datetime)
    search.add_argument('--to', dest='date_to', type=_iso_datetime)
    search.add_argument('--limit', type=int)

    run = subparsers.add_parser('run', help='Update all feeds on a fixed interval until interrupted')
    run.add_argument('--interval-minutes', type=int, default=config.UPDATE_INTERVAL_MINUTES)
    run.add_argument('--now', action='store_true', default=config.SCHEDULER_RUN_IMMEDIATELY,
                     help='Run a pass immediately instead of waiting one interval')

    return parser


async def run_scheduled_mode(store: FeedStore, interval_minutes: int, run_immediately: bool) -> None:
    """Keep the scheduler running until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms
            pass

    store.start_scheduled_updates(interval_minutes * 60 * 1000, run_immediately=run_immediately)
    logger.info(f"Updating feeds every {interval_minutes} minutes. Press Ctrl+C to stop.")
    await stop_event.wait()
    logger.info("Shutting down scheduled updates")


@trace_span("cli.command", tracer_name="main", attr_from_args=lambda args: {"cli.command": args.command})
async def run_command(args: argparse.Namespace) -> int:
    store = FeedStore()
    await store.connect(args.database)
    try:
        if args.command == 'add':
            for url in args.urls:
                report = await store.add_feed(url)
                if report is not None:
                    print(json.dumps(report.as_dict()))

        elif args.command == 'remove':
            for url in args.urls:
                await store.remove_feed(url)

        elif args.command == 'import':
            urls = config.load_feed_urls(args.feeds)
            for url in urls:
                await store.add_feed(url)

        elif args.command == 'update':
            reports = await store.update_all_now()
            for report in reports:
                print(json.dumps(report.as_dict()))

        elif args.command == 'prune':
            deleted = await store.remove_articles_older_than(args.days)
            print(f"Removed {deleted} articles")

        elif args.command == 'search':
            keywords: List[str] = args.keywords
            if len(keywords) == 1:
                articles = await store.get_articles_by_keyword(keywords[0], args.date_from, args.date_to, args.limit)
            else:
                articles = await store.get_articles_by_keyword_array(keywords, args.date_from, args.date_to, args.limit)
            for article in articles:
                print(json.dumps(article_summary(article), ensure_ascii=False))

        elif args.command == 'run':
            await run_scheduled_mode(store, args.interval_minutes, args.now)

        return 0
    finally:
        await store.close()


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    logger.debug(f"Configuration: {config.get_config_summary()}")

    try:
        sys.exit(asyncio.run(run_command(args)))
    except StorageConnectionError as e:
        logger.error(f"Could not connect to storage: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Feed Sync shutting down")


if __name__ == "__main__":
    main()
