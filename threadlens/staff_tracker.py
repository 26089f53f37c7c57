"""
Staff response tracking.

For each post, stored replies are scanned oldest first. Every staff-authored
reply becomes a StaffResponse with its latency from the post's creation; the
earliest one is the post's first response. Per-staff stats are then
rebuilt from scratch over all stored responses.

First response is decided by reply timestamp only, never by the order
replies were fetched or inserted.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel

from .db.content_storage import ContentStore
from .db.models import ContentItem, StaffResponse, StaffStats, utc_now
from .db.staff_storage import StaffStore
from .logging_utils import log_summary
from .staff_roster import StaffRoster

logger = logging.getLogger(__name__)


class OverallMetrics(BaseModel):
    """Totals across every staff member."""

    total_responses: int = 0
    avg_response_time_seconds: int = 0
    fastest_response_seconds: int = 0
    slowest_response_seconds: int = 0
    unique_staff: int = 0
    posts_with_responses: int = 0
    first_responses: int = 0


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def compute_staff_responses(post: ContentItem, replies: Iterable[ContentItem]) -> List[StaffResponse]:
    """Staff responses for one post, oldest first.

    Replies created before the post are a data anomaly: they are logged and
    left out rather than clamped to zero.
    """
    ordered = sorted(replies, key=lambda r: (r.created_utc, r.id))
    responses: List[StaffResponse] = []

    for reply in ordered:
        if not reply.is_staff:
            continue
        response_time = reply.created_utc - post.created_utc
        if response_time < 0:
            logger.warning(
                f"Reply {reply.id} by {reply.author} predates post {post.id} "
                f"by {-response_time}s, not recording"
            )
            continue
        responses.append(StaffResponse(
            post_id=post.id,
            reply_id=reply.id,
            staff_username=reply.author,
            response_time_seconds=response_time,
            post_created_utc=post.created_utc,
            reply_created_utc=reply.created_utc,
            is_first_response=not responses,
        ))

    return responses


def compute_staff_stats(
    responses: Iterable[StaffResponse],
    now: Optional[datetime] = None,
) -> List[StaffStats]:
    """Aggregate responses per username. Averages round half up to whole seconds."""
    now = now or utc_now()
    by_user: Dict[str, List[StaffResponse]] = defaultdict(list)
    for response in responses:
        by_user[response.staff_username].append(response)

    stats = []
    for username in sorted(by_user):
        rows = by_user[username]
        times = [r.response_time_seconds for r in rows]
        stats.append(StaffStats(
            username=username,
            total_responses=len(rows),
            avg_response_time_seconds=_round_half_up(sum(times) / len(times)),
            fastest_response_seconds=min(times),
            slowest_response_seconds=max(times),
            first_responses=sum(1 for r in rows if r.is_first_response),
            last_updated=now,
        ))
    return stats


def compute_overall_metrics(responses: Sequence[StaffResponse]) -> OverallMetrics:
    if not responses:
        return OverallMetrics()
    times = [r.response_time_seconds for r in responses]
    return OverallMetrics(
        total_responses=len(responses),
        avg_response_time_seconds=_round_half_up(sum(times) / len(times)),
        fastest_response_seconds=min(times),
        slowest_response_seconds=max(times),
        unique_staff=len({r.staff_username for r in responses}),
        posts_with_responses=len({r.post_id for r in responses}),
        first_responses=sum(1 for r in responses if r.is_first_response),
    )


def format_duration(seconds: int) -> str:
    """Compact human duration: 45s, 5m 3s, 2h 15m, 3d 4h."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    if seconds < 86400:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
    return f"{seconds // 86400}d {(seconds % 86400) // 3600}h"


class StaffResponseTracker:
    """Derives staff_responses and staff_stats from stored content."""

    def __init__(self, content_store: ContentStore, staff_store: StaffStore):
        self.content_store = content_store
        self.staff_store = staff_store

    def detect_for_post(self, post_id: str) -> int:
        """Rebuild the staff responses for one post. Returns how many were stored."""
        post = self.content_store.get_item("post", post_id)
        if post is None:
            logger.warning(f"Post {post_id} not found, skipping staff detection")
            return 0

        replies = self.content_store.get_replies(post_id)
        responses = compute_staff_responses(post, replies)
        self.staff_store.replace_for_post(post_id, responses)

        if responses:
            first = responses[0]
            logger.info(
                f"Post {post_id}: {len(responses)} staff responses, first by "
                f"{first.staff_username} after {format_duration(first.response_time_seconds)}"
            )
        return len(responses)

    def recompute_stats(self, now: Optional[datetime] = None) -> int:
        """Rebuild every staff_stats row from staff_responses. Returns the staff count."""
        stats = compute_staff_stats(self.staff_store.list_responses(), now)
        self.staff_store.replace_stats(stats)
        logger.info(f"Recomputed stats for {len(stats)} staff members")
        return len(stats)

    def process_posts(self, since_utc: Optional[int] = None) -> dict:
        """Detect responses for every post with staff replies, then rebuild stats.

        Posts that already have stored responses are reprocessed too, so rows
        left behind by roster changes are cleared.
        """
        post_ids = list(dict.fromkeys(
            self.content_store.post_ids_with_staff_replies(since_utc) + self.staff_store.post_ids()
        ))
        logger.info(f"Detecting staff responses for {len(post_ids)} posts")

        processed = responses = errors = 0
        for post_id in post_ids:
            try:
                responses += self.detect_for_post(post_id)
                processed += 1
            except Exception as e:
                errors += 1
                logger.error(f"Failed to detect staff responses for post {post_id}: {e}")

        staff_count = self.recompute_stats()
        summary = {
            "posts processed": processed,
            "responses stored": responses,
            "staff members": staff_count,
            "errors": errors,
        }
        log_summary(logger, "STAFF TRACKING COMPLETE", summary)
        return summary

    def sync_staff_flags(self, roster: StaffRoster) -> Optional[int]:
        """Re-flag stored items against the current roster.

        Returns rows changed, or None when the sync was skipped because the
        moderator list could not be loaded or the roster is empty.
        """
        loaded = roster.refresh(force=True)
        if not loaded or not roster.loaded:
            logger.error("Moderator list did not load, leaving stored staff flags unchanged")
            return None
        usernames = roster.usernames()
        if not usernames:
            logger.error("Staff roster is empty, leaving stored staff flags unchanged")
            return None

        changed = self.content_store.sync_staff_flags(usernames)
        logger.info(f"Updated staff flag on {changed} stored items")
        return changed

    def overall_metrics(self) -> OverallMetrics:
        return compute_overall_metrics(self.staff_store.list_responses())
