"""
Label classifier for posts and replies.

Builds the prompt, calls the labeling model under a retry policy, then
validates the returned object. Invalid fields are corrected locally and
never sent back to the model. If every attempt fails the item gets the
documented default label, so `classify` always returns a structurally
valid Label.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from openai import OpenAIError
from pydantic import BaseModel, Field

from .db.models import (
    CATEGORIES,
    DEFAULT_MODEL_NAME,
    INTENTS,
    SENTIMENTS,
    SUMMARY_MAX_LENGTH,
    TARGETS,
    ContentItem,
    ItemKind,
    Label,
)
from .errors import ModelResponseError
from .llm_client import LabelingModelClient
from .prompts.labeling import (
    POST_SYSTEM_PROMPT,
    REPLY_SYSTEM_PROMPT,
    build_post_prompt,
    build_reply_prompt,
)
from .retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

LABEL_KEYS = ("intent", "target", "sentiment", "category", "summary", "key_issues")

DEFAULT_VALUES = {
    "intent": "comment",
    "target": "other",
    "sentiment": "neu",
    "category": "other",
}

DEFAULT_SUMMARY = "Analysis failed - using default values"
DEFAULT_KEY_ISSUES = ["Unable to analyze content"]

FALLBACK_SUMMARY = {
    "post": "Content analysis completed",
    "reply": "Reply analysis completed",
}
FALLBACK_KEY_ISSUES = ["Unable to extract key issues"]

ENUM_FIELDS = {
    "intent": INTENTS,
    "target": TARGETS,
    "sentiment": SENTIMENTS,
    "category": CATEGORIES,
}

# Values older prompts produced for target
TARGET_ALIASES = {"faceit": "platform", "not_faceit": "other"}

Outcome = Literal["model", "sanitized", "default"]


class ClassificationResult(BaseModel):
    """A label plus how it was obtained."""

    label: Label
    outcome: Outcome
    attempts: int = 0
    corrections: List[str] = Field(default_factory=list)
    error: Optional[str] = None


def validate_label(payload: Dict[str, Any]) -> List[str]:
    """Return a list of structural problems; empty means the payload is valid."""
    problems = []
    for key in LABEL_KEYS:
        if key not in payload or payload[key] is None:
            problems.append(f"missing {key}")

    for key, allowed in ENUM_FIELDS.items():
        value = payload.get(key)
        if value is not None and value not in allowed:
            problems.append(f"invalid {key}: {value!r}")

    summary = payload.get("summary")
    if summary is not None:
        if not isinstance(summary, str) or not summary.strip():
            problems.append("summary is not a non-empty string")
        elif len(summary) > SUMMARY_MAX_LENGTH:
            problems.append(f"summary longer than {SUMMARY_MAX_LENGTH} chars")

    key_issues = payload.get("key_issues")
    if key_issues is not None:
        if not isinstance(key_issues, list):
            problems.append("key_issues is not a list")
        elif not all(isinstance(k, str) for k in key_issues):
            problems.append("key_issues contains non-string entries")

    return problems


def _normalize_enum(key: str, value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if key == "target":
        normalized = TARGET_ALIASES.get(normalized, normalized)
    return normalized if normalized in ENUM_FIELDS[key] else None


def sanitize_label(payload: Dict[str, Any], kind: ItemKind) -> Tuple[Dict[str, Any], List[str]]:
    """Correct a model payload field by field.

    Valid fields pass through unchanged. Returns the cleaned fields and a
    description of each correction made.
    """
    clean: Dict[str, Any] = {}
    corrections = []

    for key in ENUM_FIELDS:
        value = payload.get(key)
        if value in ENUM_FIELDS[key]:
            clean[key] = value
            continue
        normalized = _normalize_enum(key, value)
        if normalized is not None:
            clean[key] = normalized
            corrections.append(f"{key}: {value!r} -> {normalized!r}")
        else:
            clean[key] = DEFAULT_VALUES[key]
            corrections.append(f"{key}: {value!r} -> {DEFAULT_VALUES[key]!r}")

    summary = payload.get("summary")
    if isinstance(summary, str) and summary.strip() and len(summary) <= SUMMARY_MAX_LENGTH:
        clean["summary"] = summary
    else:
        clean["summary"] = FALLBACK_SUMMARY[kind]
        corrections.append("summary replaced")

    key_issues = payload.get("key_issues")
    if isinstance(key_issues, list):
        strings = [k for k in key_issues if isinstance(k, str)]
        if len(strings) != len(key_issues):
            corrections.append("key_issues: dropped non-string entries")
        clean["key_issues"] = strings
    else:
        clean["key_issues"] = list(FALLBACK_KEY_ISSUES)
        corrections.append("key_issues replaced")

    return clean, corrections


def default_label(item: ContentItem) -> Label:
    """Label written when the model could not be reached."""
    return Label(
        item_kind=item.kind,
        item_id=item.id,
        summary=DEFAULT_SUMMARY,
        key_issues=list(DEFAULT_KEY_ISSUES),
        model_name=DEFAULT_MODEL_NAME,
        tokens_in=0,
        tokens_out=0,
        cost_usd=0.0,
        **DEFAULT_VALUES,
    )


class ContentClassifier:
    """Classify one ContentItem at a time against the fixed taxonomy."""

    def __init__(
        self,
        model_client: LabelingModelClient,
        retry_policy: Optional[RetryPolicy] = None,
        subreddit: str = "FACEITcom",
        post_content_limit: int = 2500,
        reply_content_limit: int = 1500,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.model_client = model_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.subreddit = subreddit
        self.post_content_limit = post_content_limit
        self.reply_content_limit = reply_content_limit
        self.sleep = sleep

    def build_prompts(self, item: ContentItem, post_title: Optional[str] = None) -> Tuple[str, str]:
        """(system, user) prompt pair for an item."""
        if item.kind == "post":
            return POST_SYSTEM_PROMPT, build_post_prompt(
                item.title, item.body, item.link_flair_text,
                self.subreddit, self.post_content_limit,
            )
        return REPLY_SYSTEM_PROMPT, build_reply_prompt(
            item.body, post_title, self.subreddit, self.reply_content_limit,
        )

    def classify(self, item: ContentItem, post_title: Optional[str] = None) -> ClassificationResult:
        """Label one item. Never raises for model or validation failures.

        Args:
            item: Post or reply to label
            post_title: Title of the parent post, used as context for replies
        """
        system_prompt, user_prompt = self.build_prompts(item, post_title)

        outcome = call_with_retry(
            lambda: self.model_client.complete_json(system_prompt, user_prompt),
            self.retry_policy,
            retry_on=(OpenAIError, ModelResponseError),
            sleep=self.sleep,
            description=f"Labeling {item.kind} {item.id}",
        )

        if not outcome.succeeded:
            logger.error(
                f"Labeling model unavailable for {item.kind} {item.id} after "
                f"{outcome.attempts} attempts, using default label"
            )
            return ClassificationResult(
                label=default_label(item),
                outcome="default",
                attempts=outcome.attempts,
                error=str(outcome.last_error) if outcome.last_error else None,
            )

        reply = outcome.value
        problems = validate_label(reply.payload)
        if problems:
            fields, corrections = sanitize_label(reply.payload, item.kind)
            logger.warning(
                f"Sanitized label for {item.kind} {item.id}: {'; '.join(corrections)}"
            )
            result_outcome = "sanitized"
        else:
            fields = {key: reply.payload[key] for key in LABEL_KEYS}
            corrections = []
            result_outcome = "model"

        label = Label(
            item_kind=item.kind,
            item_id=item.id,
            model_name=reply.model_name,
            tokens_in=reply.usage.tokens_in,
            tokens_out=reply.usage.tokens_out,
            cost_usd=reply.usage.cost_usd,
            **fields,
        )
        return ClassificationResult(
            label=label,
            outcome=result_outcome,
            attempts=outcome.attempts,
            corrections=corrections,
        )
