#!/usr/bin/env python
"""
threadlens CLI - run the ingestion, labeling and staff tracking jobs.

Usage:
    threadlens init-db                              # Create tables
    threadlens ingest --start 2025-01-01            # Ingest month by month up to now
    threadlens refresh --days 7                     # Refresh recent posts
    threadlens refetch-replies --days 30            # Retry posts stored without replies
    threadlens classify --limit 200                 # Label unanalyzed items
    threadlens reanalyze                            # Retry items with default labels
    threadlens track-staff --sync-flags             # Rebuild staff responses and stats
    threadlens staff-stats                          # Print staff response stats
"""

import argparse
import logging
import sys
from datetime import datetime, timezone
from typing import List, Optional

from .classification_pipeline import ITEM_KINDS, ClassificationPipeline
from .classifier import ContentClassifier
from .config import Settings
from .content_filter import KeywordFilter
from .db import ContentStore, Database, LabelStore, StaffStore
from .errors import ConfigurationError
from .ingestion import IngestionCoordinator, SchedulingPolicy
from .llm_client import LabelingModelClient
from .logging_utils import configure_safe_logging
from .reddit_client import RedditClient
from .retry import RetryPolicy
from .staff_roster import StaffRoster
from .staff_tracker import StaffResponseTracker, format_duration

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got {value!r}")


def _kinds(args) -> List[str]:
    return [args.kind] if args.kind else list(ITEM_KINDS)


def build_roster(settings: Settings, reddit: Optional[RedditClient]) -> StaffRoster:
    return StaffRoster(
        known_staff=settings.staff_usernames,
        fetch_moderators=reddit.fetch_moderators if reddit else None,
        ttl_seconds=settings.staff_roster_ttl_seconds,
        failure_backoff_seconds=settings.staff_roster_retry_seconds,
    )


def build_coordinator(settings: Settings, db: Database) -> IngestionCoordinator:
    reddit = RedditClient.from_settings(settings)
    return IngestionCoordinator(
        source=reddit,
        content_store=ContentStore(db),
        roster=build_roster(settings, reddit),
        keyword_filter=KeywordFilter(settings.include_keywords, settings.exclude_keywords),
        schedule=SchedulingPolicy(
            item_delay=settings.item_delay_seconds,
            window_delay=settings.window_delay_seconds,
        ),
        posts_per_window=settings.posts_per_window,
        reply_fetch_limit=settings.reply_fetch_limit,
        replies_per_post=settings.replies_per_post,
    )


def build_pipeline(settings: Settings, db: Database) -> ClassificationPipeline:
    classifier = ContentClassifier(
        model_client=LabelingModelClient.from_settings(settings),
        retry_policy=RetryPolicy(
            max_retries=settings.llm_max_retries,
            base_delay=settings.llm_retry_base_delay,
            max_delay=settings.llm_retry_max_delay,
        ),
        subreddit=settings.subreddit,
        post_content_limit=settings.post_content_limit,
        reply_content_limit=settings.reply_content_limit,
    )
    return ClassificationPipeline(
        content_store=ContentStore(db),
        label_store=LabelStore(db),
        classifier=classifier,
        batch_size=settings.analysis_batch_size,
        item_delay=settings.analysis_delay_seconds,
    )


def cmd_init_db(args, settings: Settings, db: Database) -> int:
    """Create tables and indexes."""
    db.init_db()
    print("Database schema initialized.")
    return 0


def cmd_ingest(args, settings: Settings, db: Database) -> int:
    """Ingest posts and replies month by month."""
    end = args.end or datetime.now(timezone.utc)
    start = args.start or end.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    coordinator = build_coordinator(settings, db)
    stats = coordinator.ingest_range(start, end)
    # Posts stored on an earlier run whose reply fetch failed
    stats.merge(coordinator.refetch_missing_replies(
        since_utc=int(start.timestamp()), until_utc=int(end.timestamp()),
    ))
    return 1 if stats.errors else 0


def cmd_refetch_replies(args, settings: Settings, db: Database) -> int:
    """Fetch replies for stored posts that have comments but no stored replies."""
    since_utc = None
    if args.days:
        since_utc = int(datetime.now(timezone.utc).timestamp()) - args.days * 86400
    stats = build_coordinator(settings, db).refetch_missing_replies(since_utc=since_utc, limit=args.limit)
    return 1 if stats.errors else 0


def cmd_refresh(args, settings: Settings, db: Database) -> int:
    """Refresh volatile counters for recent posts."""
    stats = build_coordinator(settings, db).refresh_recent_posts(days=args.days)
    return 1 if stats.errors else 0


def cmd_classify(args, settings: Settings, db: Database) -> int:
    """Label unanalyzed items."""
    pipeline = build_pipeline(settings, db)
    stats = pipeline.run(
        kinds=_kinds(args),
        limit=args.limit,
        correction_passes=not args.no_corrections,
    )
    counts = LabelStore(db).label_counts_by_model()
    print("\nLabels by model:")
    for model_name, count in sorted(counts.items()):
        print(f"  {model_name:<30} {count}")
    return 1 if stats.persist_failures or stats.errors else 0


def cmd_reanalyze(args, settings: Settings, db: Database) -> int:
    """Re-label items whose label is the default fallback."""
    stats = build_pipeline(settings, db).reanalyze_defaults(kinds=_kinds(args), limit=args.limit)
    return 1 if stats.persist_failures or stats.errors else 0


def cmd_track_staff(args, settings: Settings, db: Database) -> int:
    """Rebuild staff responses and stats."""
    content_store = ContentStore(db)
    tracker = StaffResponseTracker(content_store, StaffStore(db))

    sync_failed = False
    if args.sync_flags:
        reddit = RedditClient.from_settings(settings) if settings.reddit_client_id else None
        sync_failed = tracker.sync_staff_flags(build_roster(settings, reddit)) is None

    since_utc = None
    if args.since_days:
        since_utc = int(datetime.now(timezone.utc).timestamp()) - args.since_days * 86400
    summary = tracker.process_posts(since_utc=since_utc)
    return 1 if summary["errors"] or sync_failed else 0


def cmd_staff_stats(args, settings: Settings, db: Database) -> int:
    """Print per-staff response stats."""
    staff_store = StaffStore(db)
    tracker = StaffResponseTracker(ContentStore(db), staff_store)
    stats = staff_store.list_stats()

    if not stats:
        print("No staff responses recorded.")
        return 0

    print(f"\n{'Staff':<25} {'Responses':<10} {'First':<6} {'Avg':<10} {'Fastest':<10} {'Slowest':<10}")
    print("-" * 75)
    for s in stats:
        print(
            f"{s.username:<25} {s.total_responses:<10} {s.first_responses:<6} "
            f"{format_duration(s.avg_response_time_seconds):<10} "
            f"{format_duration(s.fastest_response_seconds):<10} "
            f"{format_duration(s.slowest_response_seconds):<10}"
        )

    overall = tracker.overall_metrics()
    print(
        f"\n{overall.total_responses} responses from {overall.unique_staff} staff on "
        f"{overall.posts_with_responses} posts, average "
        f"{format_duration(overall.avg_response_time_seconds)}\n"
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="threadlens",
        description="threadlens - subreddit ingestion, labeling and staff response tracking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    p_init = subparsers.add_parser("init-db", help="Create tables and indexes")
    p_init.set_defaults(func=cmd_init_db)

    p_ingest = subparsers.add_parser("ingest", help="Ingest posts month by month")
    p_ingest.add_argument("--start", type=_parse_date, help="First day (YYYY-MM-DD), default start of this month")
    p_ingest.add_argument("--end", type=_parse_date, help="End day, exclusive (YYYY-MM-DD), default now")
    p_ingest.set_defaults(func=cmd_ingest, requires=("reddit",))

    p_refresh = subparsers.add_parser("refresh", help="Refresh recent posts and their replies")
    p_refresh.add_argument("-d", "--days", type=int, default=7, help="Look-back in days")
    p_refresh.set_defaults(func=cmd_refresh, requires=("reddit",))

    p_refetch = subparsers.add_parser("refetch-replies", help="Fetch replies for posts stored without any")
    p_refetch.add_argument("-d", "--days", type=int, help="Only posts from the last N days")
    p_refetch.add_argument("-l", "--limit", type=int, help="Maximum posts to retry")
    p_refetch.set_defaults(func=cmd_refetch_replies, requires=("reddit",))

    p_classify = subparsers.add_parser("classify", help="Label unanalyzed items")
    p_classify.add_argument("-l", "--limit", type=int, help="Batch size per kind")
    p_classify.add_argument("-k", "--kind", choices=ITEM_KINDS, help="Only this item kind")
    p_classify.add_argument("--no-corrections", action="store_true", help="Skip the correction passes")
    p_classify.set_defaults(func=cmd_classify, requires=("openai",))

    p_reanalyze = subparsers.add_parser("reanalyze", help="Re-label items with default labels")
    p_reanalyze.add_argument("-l", "--limit", type=int, help="Batch size per kind")
    p_reanalyze.add_argument("-k", "--kind", choices=ITEM_KINDS, help="Only this item kind")
    p_reanalyze.set_defaults(func=cmd_reanalyze, requires=("openai",))

    p_track = subparsers.add_parser("track-staff", help="Rebuild staff responses and stats")
    p_track.add_argument("--since-days", type=int, help="Only posts from the last N days")
    p_track.add_argument("--sync-flags", action="store_true", help="Re-flag stored items from the roster first")
    p_track.set_defaults(func=cmd_track_staff)

    p_stats = subparsers.add_parser("staff-stats", help="Print staff response stats")
    p_stats.set_defaults(func=cmd_staff_stats)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_safe_logging(logging.DEBUG if args.verbose else logging.INFO)
    settings = Settings.from_env()

    try:
        # Missing credentials abort before any connection is opened
        for requirement in getattr(args, "requires", ()):
            getattr(settings, f"require_{requirement}")()

        with Database(settings.database_url, settings.db_pool_min, settings.db_pool_max) as db:
            return args.func(args, settings, db)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
