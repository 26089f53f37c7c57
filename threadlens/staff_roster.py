"""Staff roster: who counts as staff when scanning replies.

The roster is the configured known staff plus, when a fetcher is supplied,
the subreddit's current moderator list. The fetched part is cached for a
TTL. A failed refresh keeps whatever roster was loaded before and is
retried after a short backoff rather than a full TTL.
"""

import logging
import time
from typing import Callable, Iterable, List, Optional, Set

from .db.models import DELETED_AUTHOR

logger = logging.getLogger(__name__)


class StaffRoster:
    """Case-insensitive staff lookup with a cached moderator list."""

    def __init__(
        self,
        known_staff: Iterable[str] = (),
        fetch_moderators: Optional[Callable[[], List[str]]] = None,
        ttl_seconds: int = 86400,
        failure_backoff_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self._known = {name.casefold() for name in known_staff if name}
        self._fetch_moderators = fetch_moderators
        self.ttl_seconds = ttl_seconds
        self.failure_backoff_seconds = failure_backoff_seconds
        self._clock = clock
        self._fetched: Set[str] = set()
        self._fetched_at: Optional[float] = None
        self._failed_at: Optional[float] = None

    @property
    def loaded(self) -> bool:
        """False while a moderator fetcher is configured but has never succeeded."""
        return self._fetch_moderators is None or self._fetched_at is not None

    def _is_stale(self) -> bool:
        now = self._clock()
        if self._failed_at is not None and now - self._failed_at < self.failure_backoff_seconds:
            return False
        if self._fetched_at is None:
            return True
        return now - self._fetched_at >= self.ttl_seconds

    def refresh(self, force: bool = False) -> bool:
        """Reload the moderator list if the cache has expired (or when forced).

        Returns False when a fetch was attempted and failed.
        """
        if self._fetch_moderators is None or not (force or self._is_stale()):
            return True
        try:
            moderators = self._fetch_moderators()
        except Exception as e:
            logger.error(f"Failed to refresh moderator list, keeping {len(self._fetched)} cached: {e}")
            self._failed_at = self._clock()
            return False

        self._fetched = {name.casefold() for name in moderators if name}
        self._fetched_at = self._clock()
        self._failed_at = None
        logger.info(f"Loaded {len(self._fetched)} moderators ({len(self.usernames())} staff total)")
        return True

    def usernames(self) -> Set[str]:
        """All staff usernames, case-folded."""
        self.refresh()
        return self._known | self._fetched

    def is_staff(self, username: Optional[str]) -> bool:
        if not username or username == DELETED_AUTHOR:
            return False
        return username.casefold() in self.usernames()
