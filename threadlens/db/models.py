"""Pydantic models for database entities."""

from datetime import datetime, timezone
from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DELETED_AUTHOR = "[deleted]"

SUMMARY_MAX_LENGTH = 200

# model_name recorded on labels written after the model could not be reached
DEFAULT_MODEL_NAME = "default"

ItemKind = Literal["post", "reply"]

# Label taxonomy
Intent = Literal["help", "comment"]

Target = Literal["platform", "other"]

Sentiment = Literal["pos", "neg", "neu"]

Category = Literal[
    "account_recovery",          # forgot email/password, recovering an account
    "verification",              # ID verification
    "2fa",
    "matchmaking_issues",        # queue times, balance complaints
    "game_registration_issues",  # linking game accounts
    "afk_leaver_bans",
    "griefing",                  # trolling, team damage, not playing with the team
    "verbal_abuse",
    "smurfs",                    # new or second accounts performing well
    "cheaters",
    "anti_cheat",                # technical issues with the anti-cheat client
    "subscriptions",
    "faceit_shop",               # items bought from the platform shop
    "technical_client",          # client issues not related to anti-cheat
    "platform_website",
    "steam_issues_game_update",
    "tournaments_leagues",
    "esea",
    "mission",                   # platform events and missions
    "moderation_community",      # comments about moderators and admins
    "feature_request",
    "track_stats",
    "ow2",
    "dota2",
    "legal_issues_gdpr",
    "other",
]

INTENTS = get_args(Intent)
TARGETS = get_args(Target)
SENTIMENTS = get_args(Sentiment)
CATEGORIES = get_args(Category)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ContentItem(BaseModel):
    """A stored post or reply.

    Posts have no parent; replies point at the post they were fetched for.
    `created_utc` is epoch seconds and is never rewritten once stored.
    """

    model_config = ConfigDict(from_attributes=True)

    kind: ItemKind
    id: str
    parent_id: Optional[str] = None
    created_utc: int
    author: str = DELETED_AUTHOR
    title: Optional[str] = None
    body: str = ""
    link_flair_text: Optional[str] = None
    permalink: Optional[str] = None
    score: int = 0
    upvote_ratio: Optional[float] = None
    approx_upvotes: Optional[int] = None
    approx_downvotes: Optional[int] = None
    num_comments: int = 0
    is_staff: bool = False
    analyzed: bool = False
    analyzed_at: Optional[datetime] = None

    @field_validator("author", mode="before")
    @classmethod
    def default_missing_author(cls, v):
        return v or DELETED_AUTHOR

    @field_validator("body", mode="before")
    @classmethod
    def default_missing_body(cls, v):
        return v or ""

    @model_validator(mode="after")
    def check_parent(self) -> "ContentItem":
        if self.kind == "post" and self.parent_id is not None:
            raise ValueError("posts cannot have a parent_id")
        if self.kind == "reply" and not self.parent_id:
            raise ValueError("replies require a parent_id")
        return self


class Label(BaseModel):
    """Structured classification attached to exactly one ContentItem."""

    model_config = ConfigDict(from_attributes=True)

    item_kind: ItemKind
    item_id: str
    intent: Intent
    target: Target
    sentiment: Sentiment
    category: Category
    summary: str = Field(max_length=SUMMARY_MAX_LENGTH)
    key_issues: List[str]
    model_name: str
    tokens_in: int = Field(default=0, ge=0)
    tokens_out: int = Field(default=0, ge=0)
    cost_usd: float = Field(default=0.0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)


class StaffResponse(BaseModel):
    """One staff-authored reply to a post, with its latency from post creation."""

    model_config = ConfigDict(from_attributes=True)

    post_id: str
    reply_id: str
    staff_username: str
    response_time_seconds: int = Field(ge=0)
    post_created_utc: int
    reply_created_utc: int
    is_first_response: bool = False


class StaffStats(BaseModel):
    """Aggregate response metrics for one staff member."""

    model_config = ConfigDict(from_attributes=True)

    username: str
    total_responses: int
    avg_response_time_seconds: int
    fastest_response_seconds: int
    slowest_response_seconds: int
    first_responses: int
    last_updated: datetime = Field(default_factory=utc_now)
