"""
Reddit API client.

Read-only access to one subreddit through the OAuth API: the /new listing,
a post's comment tree, single posts by id and the moderator list. Raw
listing entries are returned as dicts; parse_post / parse_reply turn them
into typed models before anything downstream trusts a field.
"""

import logging
import random
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Generator, List, Optional

import requests
from pydantic import BaseModel

from .config import Settings
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

REMOVED_BODIES = {"[deleted]", "[removed]"}


class RedditPost(BaseModel):
    """Fields kept from a Reddit submission."""

    id: str
    created_utc: int
    title: str = ""
    body: str = ""
    author: Optional[str] = None
    score: int = 0
    upvote_ratio: Optional[float] = None
    link_flair_text: Optional[str] = None
    num_comments: int = 0
    permalink: Optional[str] = None


class RedditReply(BaseModel):
    """Fields kept from a Reddit comment."""

    id: str
    post_id: str
    created_utc: int
    body: str = ""
    author: Optional[str] = None
    score: int = 0
    permalink: Optional[str] = None
    # Reddit's own moderator marker; recorded for logging only, the staff roster decides
    distinguished: Optional[str] = None


def is_removed_body(body: Optional[str]) -> bool:
    return not body or body.strip() in REMOVED_BODIES


def _strip_prefix(fullname: Optional[str]) -> Optional[str]:
    """'t3_abc' -> 'abc'."""
    if not fullname:
        return None
    return fullname.split("_", 1)[1] if "_" in fullname else fullname


class RedditClient:
    """Client for the Reddit OAuth API, scoped to one subreddit."""

    BASE_URL = "https://oauth.reddit.com"
    TOKEN_URL = "https://www.reddit.com/api/v1/access_token"

    # (connect, read) seconds
    DEFAULT_TIMEOUT = (10, 30)

    MAX_RETRIES = 3
    RETRY_DELAY_BASE = 2  # seconds; 2s, 4s, 8s
    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    # Reddit listings cap page size at 100
    MAX_PAGE_SIZE = 100

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        refresh_token: Optional[str],
        user_agent: str,
        subreddit: str,
        timeout: tuple = None,
        max_retries: int = None,
    ):
        if not (client_id and client_secret and refresh_token):
            raise ConfigurationError("REDDIT_CLIENT_ID, REDDIT_CLIENT_SECRET and REDDIT_REFRESH_TOKEN must be set")

        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.subreddit = subreddit
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.max_retries = max_retries if max_retries is not None else self.MAX_RETRIES

        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

        self.session = requests.Session()
        self.session.headers.update({
            "User-Agent": user_agent,
            "Accept": "application/json",
        })

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedditClient":
        settings.require_reddit()
        return cls(
            client_id=settings.reddit_client_id,
            client_secret=settings.reddit_client_secret,
            refresh_token=settings.reddit_refresh_token,
            user_agent=settings.reddit_user_agent,
            subreddit=settings.subreddit,
        )

    # ==================== AUTH ====================

    def _authenticate(self) -> None:
        """Exchange the refresh token for a bearer token."""
        response = self.session.post(
            self.TOKEN_URL,
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "refresh_token", "refresh_token": self.refresh_token},
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        if "access_token" not in data:
            raise ConfigurationError(f"Reddit token exchange failed: {data.get('error', 'no access_token')}")

        self._access_token = data["access_token"]
        # Refresh a minute early
        self._token_expires_at = time.time() + int(data.get("expires_in", 3600)) - 60
        self.session.headers["Authorization"] = f"Bearer {self._access_token}"
        logger.debug("Obtained Reddit access token")

    def _ensure_token(self) -> None:
        if self._access_token is None or time.time() >= self._token_expires_at:
            self._authenticate()

    # ==================== HTTP ====================

    @staticmethod
    def _parse_retry_after(header_value: str) -> int:
        """Seconds to wait from a Retry-After header (integer or HTTP-date), minimum 1."""
        try:
            return max(1, int(header_value))
        except ValueError:
            try:
                retry_at = parsedate_to_datetime(header_value)
                if retry_at.tzinfo is None:
                    retry_at = retry_at.replace(tzinfo=timezone.utc)
                delta = (retry_at - datetime.now(timezone.utc)).total_seconds()
                return max(1, int(delta))
            except (ValueError, TypeError):
                return 10

    @staticmethod
    def _add_jitter(base_delay: float) -> float:
        """Add 0-50% random jitter to a delay."""
        return base_delay + random.uniform(0, 0.5 * base_delay)

    def _log_rate_limit(self, response, endpoint: str) -> None:
        remaining = response.headers.get("X-Ratelimit-Remaining")
        if remaining is None:
            return
        try:
            remaining_float = float(remaining)
        except (ValueError, TypeError):
            return
        if remaining_float < 10:
            reset = response.headers.get("X-Ratelimit-Reset")
            logger.warning(
                f"Rate limit low: {remaining_float:.0f} requests remaining on {endpoint} "
                f"(reset in {reset}s)"
            )

    def _request_with_retry(self, endpoint: str, params: Optional[dict] = None):
        """GET an endpoint, retrying transient errors.

        Retries 429 (honouring Retry-After), 5xx and connection errors with
        exponential backoff plus jitter. A 401 refreshes the token once.
        Other 4xx responses raise immediately.
        """
        url = f"{self.BASE_URL}{endpoint}"
        reauthenticated = False
        attempt = 0

        while True:
            self._ensure_token()
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
                self._log_rate_limit(response, endpoint)

                if response.status_code == 401 and not reauthenticated:
                    logger.info(f"401 on {endpoint}, refreshing access token")
                    self._access_token = None
                    reauthenticated = True
                    continue

                if response.status_code in self.RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                    retry_after = response.headers.get("Retry-After") if response.status_code == 429 else None
                    if retry_after:
                        base_delay = self._parse_retry_after(retry_after)
                    else:
                        base_delay = self.RETRY_DELAY_BASE * (2 ** attempt)
                    delay = self._add_jitter(base_delay)
                    logger.warning(
                        f"Reddit API {response.status_code} on {endpoint}, retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self.max_retries + 1})"
                    )
                    time.sleep(delay)
                    attempt += 1
                    continue

                response.raise_for_status()
                return response.json()

            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                if attempt >= self.max_retries:
                    raise
                delay = self._add_jitter(self.RETRY_DELAY_BASE * (2 ** attempt))
                logger.warning(
                    f"Reddit API connection error: {e}, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries + 1})"
                )
                time.sleep(delay)
                attempt += 1

    def _get(self, endpoint: str, params: Optional[dict] = None):
        return self._request_with_retry(endpoint, params=params)

    # ==================== LISTINGS ====================

    def iter_new_posts(
        self,
        stop_before_utc: Optional[int] = None,
        max_posts: Optional[int] = None,
        per_page: int = MAX_PAGE_SIZE,
    ) -> Generator[dict, None, None]:
        """Yield raw post data from /new, newest first.

        Stops at the first post created before stop_before_utc, after
        max_posts posts, or when the listing runs out.
        """
        params = {"limit": min(per_page, self.MAX_PAGE_SIZE), "raw_json": 1}
        endpoint = f"/r/{self.subreddit}/new"
        yielded = 0

        while True:
            data = self._get(endpoint, params=params)
            listing = data.get("data", {})
            children = listing.get("children", [])

            for child in children:
                post = child.get("data", {})
                if stop_before_utc is not None and post.get("created_utc", 0) < stop_before_utc:
                    return
                yield post
                yielded += 1
                if max_posts and yielded >= max_posts:
                    return

            after = listing.get("after")
            if not after or not children:
                return
            params["after"] = after

    def fetch_post(self, post_id: str) -> Optional[dict]:
        """Raw data for one post, or None when Reddit no longer returns it."""
        data = self._get(f"/by_id/t3_{post_id}", params={"raw_json": 1})
        children = data.get("data", {}).get("children", [])
        return children[0].get("data") if children else None

    def fetch_replies(self, post_id: str, limit: int = 200) -> List[dict]:
        """Raw data for up to `limit` comments on a post, flattened from the tree.

        "Load more" stubs are not expanded.
        """
        data = self._get(
            f"/comments/{post_id}",
            params={"limit": limit, "sort": "top", "raw_json": 1},
        )
        if not isinstance(data, list) or len(data) < 2:
            return []

        replies: List[dict] = []
        stack = list(reversed(data[1].get("data", {}).get("children", [])))
        while stack and len(replies) < limit:
            child = stack.pop()
            if child.get("kind") != "t1":
                continue
            comment = child.get("data", {})
            replies.append(comment)
            nested = comment.get("replies")
            if isinstance(nested, dict):
                stack.extend(reversed(nested.get("data", {}).get("children", [])))
        return replies

    def fetch_moderators(self) -> List[str]:
        """Usernames on the subreddit's moderator list."""
        data = self._get(f"/r/{self.subreddit}/about/moderators")
        return [
            child["name"]
            for child in data.get("data", {}).get("children", [])
            if child.get("name")
        ]

    # ==================== PARSING ====================

    @staticmethod
    def parse_post(post: dict) -> RedditPost:
        """Parse raw post data to our model."""
        return RedditPost(
            id=post["id"],
            created_utc=int(post["created_utc"]),
            title=post.get("title") or "",
            body=post.get("selftext") or "",
            author=post.get("author"),
            score=post.get("score") or 0,
            upvote_ratio=post.get("upvote_ratio"),
            link_flair_text=post.get("link_flair_text"),
            num_comments=post.get("num_comments") or 0,
            permalink=post.get("permalink"),
        )

    @staticmethod
    def parse_reply(comment: dict, post_id: Optional[str] = None) -> RedditReply:
        """Parse raw comment data to our model."""
        return RedditReply(
            id=comment["id"],
            post_id=post_id or _strip_prefix(comment.get("link_id")),
            created_utc=int(comment["created_utc"]),
            body=comment.get("body") or "",
            author=comment.get("author"),
            score=comment.get("score") or 0,
            permalink=comment.get("permalink"),
            distinguished=comment.get("distinguished"),
        )
