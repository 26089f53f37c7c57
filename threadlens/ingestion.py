"""
Ingestion coordinator: subreddit listing -> content_items.

Per window:
    FETCH_PAGE -> for each post {FILTER -> STORE_POST -> FETCH_REPLIES -> STORE_REPLIES}
    -> SLEEP -> NEXT_WINDOW

Windows are calendar months processed one at a time. A post-level failure
is logged and counted and the window continues. A failure fetching a
listing page aborts the window and propagates; whatever was already
stored stays stored.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from .content_filter import KeywordFilter, TimeWindow, should_admit
from .db.content_storage import ContentStore
from .db.models import ContentItem
from .logging_utils import log_summary
from .reddit_client import RedditClient, RedditPost, RedditReply, is_removed_body
from .staff_roster import StaffRoster

logger = logging.getLogger(__name__)

# Raised by parse_post / parse_reply on malformed payloads
PARSE_ERRORS = (KeyError, TypeError, ValueError, ValidationError)


def calculate_votes(score: int, upvote_ratio: Optional[float]) -> Tuple[Optional[int], Optional[int]]:
    """Approximate (upvotes, downvotes) from score and upvote ratio.

    With ratio r and total votes t, score = r*t - (1-r)*t, so t = score / (2r - 1).
    Undetermined (None, None) when r is missing, at either bound, or at
    or below 0.5, and when the implied total is negative.
    """
    if not upvote_ratio or upvote_ratio <= 0 or upvote_ratio >= 1:
        return None, None
    denominator = 2 * upvote_ratio - 1
    if denominator <= 0:
        return None, None
    total = score / denominator
    if total < 0:
        return None, None
    return round(upvote_ratio * total), round((1 - upvote_ratio) * total)


def month_windows(start: datetime, end: datetime) -> List[TimeWindow]:
    """Split [start, end) into calendar-month windows (UTC).

    The first and last windows are clipped to start and end.
    """
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    if end <= start:
        return []

    windows = []
    cursor = start
    while cursor < end:
        if cursor.month == 12:
            next_month = cursor.replace(year=cursor.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
        else:
            next_month = cursor.replace(month=cursor.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)
        window_end = min(next_month, end)
        windows.append(TimeWindow(int(cursor.timestamp()), int(window_end.timestamp())))
        cursor = window_end
    return windows


def select_top_replies(replies: Iterable[RedditReply], limit: int) -> List[RedditReply]:
    """Drop removed/deleted replies, then keep the `limit` highest-scoring ones.

    Ties keep the source order.
    """
    kept = [r for r in replies if not is_removed_body(r.body)]
    kept.sort(key=lambda r: r.score, reverse=True)
    return kept[:limit]


@dataclass(frozen=True)
class SchedulingPolicy:
    """Fixed pauses between stored items and between windows."""

    item_delay: float = 2.0
    window_delay: float = 60.0
    sleep: Callable[[float], None] = time.sleep

    def after_item(self) -> None:
        if self.item_delay > 0:
            self.sleep(self.item_delay)

    def between_windows(self) -> None:
        if self.window_delay > 0:
            logger.info(f"Waiting {self.window_delay:.0f}s before next window")
            self.sleep(self.window_delay)


@dataclass
class IngestionStats:
    posts_stored: int = 0
    replies_stored: int = 0
    posts_skipped: int = 0
    replies_skipped: int = 0
    posts_refreshed: int = 0
    errors: int = 0
    windows: int = 0
    skip_reasons: Counter = field(default_factory=Counter)

    def merge(self, other: "IngestionStats") -> None:
        self.posts_stored += other.posts_stored
        self.replies_stored += other.replies_stored
        self.posts_skipped += other.posts_skipped
        self.replies_skipped += other.replies_skipped
        self.posts_refreshed += other.posts_refreshed
        self.errors += other.errors
        self.windows += other.windows
        self.skip_reasons.update(other.skip_reasons)

    def as_dict(self) -> dict:
        return {
            "windows": self.windows,
            "posts stored": self.posts_stored,
            "posts skipped": self.posts_skipped,
            "posts refreshed": self.posts_refreshed,
            "replies stored": self.replies_stored,
            "replies skipped": self.replies_skipped,
            "errors": self.errors,
        }


class IngestionCoordinator:
    """Walks the subreddit listing window by window and stores new content."""

    def __init__(
        self,
        source: RedditClient,
        content_store: ContentStore,
        roster: StaffRoster,
        keyword_filter: Optional[KeywordFilter] = None,
        schedule: Optional[SchedulingPolicy] = None,
        posts_per_window: int = 1000,
        reply_fetch_limit: int = 200,
        replies_per_post: int = 50,
    ):
        self.source = source
        self.content_store = content_store
        self.roster = roster
        self.keyword_filter = keyword_filter or KeywordFilter()
        self.schedule = schedule or SchedulingPolicy()
        self.posts_per_window = posts_per_window
        self.reply_fetch_limit = reply_fetch_limit
        self.replies_per_post = replies_per_post

    # ==================== NORMALIZATION ====================

    def normalize_post(self, post: RedditPost) -> ContentItem:
        approx_up, approx_down = calculate_votes(post.score, post.upvote_ratio)
        return ContentItem(
            kind="post",
            id=post.id,
            created_utc=post.created_utc,
            author=post.author,
            title=post.title,
            body=post.body,
            link_flair_text=post.link_flair_text,
            permalink=post.permalink,
            score=post.score,
            upvote_ratio=post.upvote_ratio,
            approx_upvotes=approx_up,
            approx_downvotes=approx_down,
            num_comments=post.num_comments,
            is_staff=self.roster.is_staff(post.author),
        )

    def normalize_reply(self, reply: RedditReply) -> ContentItem:
        is_staff = self.roster.is_staff(reply.author)
        if reply.distinguished == "moderator" and not is_staff:
            logger.debug(f"Reply {reply.id} is distinguished but {reply.author} is not on the staff roster")
        return ContentItem(
            kind="reply",
            id=reply.id,
            parent_id=reply.post_id,
            created_utc=reply.created_utc,
            author=reply.author,
            body=reply.body,
            permalink=reply.permalink,
            score=reply.score,
            is_staff=is_staff,
        )

    # ==================== INGESTION ====================

    def ingest(self, window: TimeWindow) -> IngestionStats:
        """Store every new admissible post in the window, with its top replies."""
        stats = IngestionStats(windows=1)
        start = datetime.fromtimestamp(window.start_utc, tz=timezone.utc)
        end = datetime.fromtimestamp(window.end_utc, tz=timezone.utc)
        logger.info(f"Ingesting window {start:%Y-%m-%d} -> {end:%Y-%m-%d}")

        candidates = 0
        # Listing errors raised here abort the window
        for raw in self.source.iter_new_posts(stop_before_utc=window.start_utc):
            # /new is newest first; posts after this window belong to a later one
            if raw.get("created_utc", 0) >= window.end_utc:
                continue

            candidates += 1
            try:
                stored = self._ingest_post(raw, window, stats)
            except Exception as e:
                stats.errors += 1
                logger.error(f"Failed to ingest post {raw.get('id', '?')}: {e}")
                stored = True  # an external call was made

            if stored:
                self.schedule.after_item()

            if candidates >= self.posts_per_window:
                logger.info(f"Reached {self.posts_per_window} posts for this window")
                break

        log_summary(logger, f"WINDOW {start:%Y-%m} COMPLETE", stats.as_dict())
        return stats

    def ingest_range(self, start: datetime, end: datetime) -> IngestionStats:
        """Ingest [start, end) one calendar month at a time."""
        windows = month_windows(start, end)
        total = IngestionStats()
        logger.info(f"Ingesting {len(windows)} monthly windows")

        for index, window in enumerate(windows):
            total.merge(self.ingest(window))
            if index < len(windows) - 1:
                self.schedule.between_windows()

        log_summary(logger, "INGESTION COMPLETE", total.as_dict())
        return total

    def _ingest_post(self, raw: dict, window: TimeWindow, stats: IngestionStats) -> bool:
        post = self.source.parse_post(raw)
        decision = should_admit(
            post,
            window,
            lambda post_id: self.content_store.item_exists("post", post_id),
            self.keyword_filter,
        )
        if not decision.admit:
            stats.posts_skipped += 1
            stats.skip_reasons[decision.reason] += 1
            logger.debug(f"Skipped post {post.id}: {decision.reason}")
            return False

        self.content_store.upsert_item(self.normalize_post(post))
        stats.posts_stored += 1
        logger.info(f"Stored post {post.id}: {post.title[:60]!r}")

        self._ingest_replies(post.id, stats)
        return True

    def _ingest_replies(self, post_id: str, stats: IngestionStats) -> None:
        raw_replies = self.source.fetch_replies(post_id, limit=self.reply_fetch_limit)

        replies = []
        for raw in raw_replies:
            try:
                replies.append(self.source.parse_reply(raw, post_id=post_id))
            except PARSE_ERRORS as e:
                stats.errors += 1
                logger.warning(f"Malformed reply on post {post_id}: {e}")

        top = select_top_replies(replies, self.replies_per_post)
        existing = self.content_store.existing_ids("reply", [r.id for r in top])

        stored = 0
        for reply in top:
            decision = should_admit(reply, None, existing.__contains__, check_keywords=False)
            if not decision.admit:
                stats.replies_skipped += 1
                stats.skip_reasons[f"reply {decision.reason}"] += 1
                continue
            try:
                self.content_store.upsert_item(self.normalize_reply(reply))
            except Exception as e:
                stats.errors += 1
                logger.error(f"Failed to store reply {reply.id} on post {post_id}: {e}")
                continue
            existing.add(reply.id)
            stored += 1

        stats.replies_stored += stored
        logger.info(
            f"Post {post_id}: stored {stored} of {len(top)} top replies "
            f"({len(raw_replies)} fetched)"
        )

    def refetch_missing_replies(
        self,
        since_utc: Optional[int] = None,
        until_utc: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> IngestionStats:
        """Fetch replies again for stored posts that have comments but no stored replies.

        A post is stored before its replies are fetched, so a failed reply
        fetch leaves a post that later runs skip as already stored. This pass
        picks those posts back up.
        """
        posts = self.content_store.posts_missing_replies(since_utc, until_utc, limit)
        stats = IngestionStats()
        logger.info(f"Refetching replies for {len(posts)} posts with none stored")

        for index, item in enumerate(posts):
            try:
                self._ingest_replies(item.id, stats)
            except Exception as e:
                stats.errors += 1
                logger.error(f"Failed to refetch replies for post {item.id}: {e}")
            if index < len(posts) - 1:
                self.schedule.after_item()

        log_summary(logger, "REPLY RECOVERY COMPLETE", stats.as_dict())
        return stats

    def refresh_recent_posts(self, days: int = 7, now: Optional[datetime] = None) -> IngestionStats:
        """Refresh counters for posts stored in the last `days` days and pick up new top replies."""
        now = now or datetime.now(timezone.utc)
        since = int((now - timedelta(days=days)).timestamp())
        posts = self.content_store.list_posts_since(since)
        stats = IngestionStats()
        logger.info(f"Refreshing {len(posts)} posts from the last {days} days")

        for item in posts:
            try:
                raw = self.source.fetch_post(item.id)
                if raw is None or raw.get("removed_by_category"):
                    stats.posts_skipped += 1
                    stats.skip_reasons["removed or missing upstream"] += 1
                    logger.info(f"Post {item.id} no longer available, skipping refresh")
                    continue
                post = self.source.parse_post(raw)
                self.content_store.upsert_item(self.normalize_post(post))
                stats.posts_refreshed += 1
                self._ingest_replies(post.id, stats)
            except Exception as e:
                stats.errors += 1
                logger.error(f"Failed to refresh post {item.id}: {e}")
            self.schedule.after_item()

        log_summary(logger, "REFRESH COMPLETE", stats.as_dict())
        return stats
