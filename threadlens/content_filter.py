"""
Admission checks for fetched content.

Decides whether a fetched post or reply is in range, not yet stored, and
keyword-admissible before any expensive work is done. Everything here is a
pure decision; callers log and count the outcomes.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class FilterDecision(BaseModel):
    """Result of an admission check."""

    admit: bool
    reason: Optional[str] = None
    matched_keywords: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start_utc, end_utc) in epoch seconds."""

    start_utc: int
    end_utc: int

    def __post_init__(self):
        if self.end_utc <= self.start_utc:
            raise ValueError(f"Empty window: {self.start_utc} >= {self.end_utc}")

    def contains(self, created_utc: int) -> bool:
        return self.start_utc <= created_utc < self.end_utc


class KeywordFilter:
    """Include/exclude keyword gate over title, body and flair.

    When include keywords are configured at least one must appear. No exclude
    keyword may appear, and an exclude match wins over an include match.
    Matching is case-insensitive substring matching.
    """

    def __init__(self, include: Sequence[str] = (), exclude: Sequence[str] = ()):
        self.include_keywords = [kw.strip().casefold() for kw in include if kw.strip()]
        self.exclude_keywords = [kw.strip().casefold() for kw in exclude if kw.strip()]

    @property
    def is_active(self) -> bool:
        return bool(self.include_keywords or self.exclude_keywords)

    @staticmethod
    def combined_text(title: Optional[str], body: Optional[str], flair: Optional[str]) -> str:
        return " ".join(part for part in (title, body, flair) if part).casefold().strip()

    def check(self, title: Optional[str], body: Optional[str], flair: Optional[str]) -> FilterDecision:
        text = self.combined_text(title, body, flair)
        if not text:
            return FilterDecision(admit=False, reason="empty content")

        excluded = [kw for kw in self.exclude_keywords if kw in text]
        if excluded:
            return FilterDecision(
                admit=False,
                reason=f"excluded keywords: {', '.join(excluded)}",
                matched_keywords=excluded,
            )

        included = [kw for kw in self.include_keywords if kw in text]
        if self.include_keywords and not included:
            return FilterDecision(admit=False, reason="no required keywords found")

        return FilterDecision(admit=True, matched_keywords=included)


def should_admit(
    item,
    window: Optional[TimeWindow],
    exists: Callable[[str], bool],
    keyword_filter: Optional[KeywordFilter] = None,
    check_keywords: bool = True,
) -> FilterDecision:
    """Decide whether a fetched item should be stored.

    Args:
        item: Anything with id, created_utc, title, body and link_flair_text
            (a parsed post or reply, or a ContentItem)
        window: Time window the item must fall in, or None to skip the check
        exists: Lookup returning True when the item id is already stored
        keyword_filter: Keyword gate; skipped when None or inactive
        check_keywords: False to bypass the keyword gate (used for replies)
    """
    if window is not None and not window.contains(item.created_utc):
        return FilterDecision(
            admit=False,
            reason=f"outside window [{window.start_utc}, {window.end_utc})",
        )

    if exists(item.id):
        return FilterDecision(admit=False, reason="already stored")

    if check_keywords and keyword_filter is not None and keyword_filter.is_active:
        return keyword_filter.check(
            getattr(item, "title", None),
            getattr(item, "body", None),
            getattr(item, "link_flair_text", None),
        )

    return FilterDecision(admit=True)
