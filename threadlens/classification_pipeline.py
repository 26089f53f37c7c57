"""
Classification pipeline: select unlabeled items, label them, persist.

Flow per batch:
1. Select items with analyzed = false, or whose label has a NULL required
   column, newest first
2. Classify each one (prompt, model call with retry, validate, sanitize)
3. Upsert the label, mark the item analyzed, read the flag back and retry
   the mark once if it did not stick
4. Correction passes: labels with NULL sentiment or intent, then labels
   with NULL intent, through the same classify and persist steps

A failure on one item is logged and counted; the batch moves on and the
item stays unanalyzed for the next run.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import psycopg2

from .classifier import ClassificationResult, ContentClassifier
from .db.content_storage import ContentStore
from .db.label_storage import LabelStore
from .db.models import ContentItem, ItemKind, utc_now
from .errors import PersistenceError
from .logging_utils import log_summary

logger = logging.getLogger(__name__)

ITEM_KINDS: Sequence[ItemKind] = ("post", "reply")

# (pass name, label columns that select an item when NULL)
CORRECTION_PASSES = (
    ("null_sentiment_or_intent", ("sentiment", "intent")),
    ("null_intent", ("intent",)),
)


@dataclass
class PipelineStats:
    """Counters for one pipeline run."""

    selected: int = 0
    persisted: int = 0
    persist_failures: int = 0
    errors: int = 0
    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0
    outcomes: Dict[str, int] = field(
        default_factory=lambda: {"model": 0, "sanitized": 0, "default": 0}
    )
    passes: Dict[str, int] = field(default_factory=dict)

    def record(self, result: ClassificationResult) -> None:
        self.outcomes[result.outcome] += 1
        self.tokens_in += result.label.tokens_in
        self.tokens_out += result.label.tokens_out
        self.cost_usd += result.label.cost_usd

    def as_dict(self) -> dict:
        return {
            "selected": self.selected,
            "persisted": self.persisted,
            "model labels": self.outcomes["model"],
            "sanitized labels": self.outcomes["sanitized"],
            "default labels": self.outcomes["default"],
            "persist failures": self.persist_failures,
            "errors": self.errors,
            "tokens in/out": f"{self.tokens_in}/{self.tokens_out}",
            "cost": f"${self.cost_usd:.4f}",
            **{f"pass {name}": count for name, count in self.passes.items()},
        }


class ClassificationPipeline:
    """Drives ContentClassifier over the store in bounded batches."""

    def __init__(
        self,
        content_store: ContentStore,
        label_store: LabelStore,
        classifier: ContentClassifier,
        batch_size: int = 100,
        item_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.content_store = content_store
        self.label_store = label_store
        self.classifier = classifier
        self.batch_size = batch_size
        self.item_delay = item_delay
        self.sleep = sleep
        self._post_titles: Dict[str, Optional[str]] = {}

    def run(
        self,
        kinds: Sequence[ItemKind] = ITEM_KINDS,
        limit: Optional[int] = None,
        correction_passes: bool = True,
    ) -> PipelineStats:
        """Label one batch per kind, then run the correction passes."""
        stats = PipelineStats()
        batch_size = limit or self.batch_size

        for kind in kinds:
            items = self.content_store.select_unanalyzed(kind, batch_size)
            logger.info(f"Selected {len(items)} unanalyzed {kind}s")
            self._process(items, stats, f"unanalyzed_{kind}")

        if correction_passes:
            for kind in kinds:
                for pass_name, fields in CORRECTION_PASSES:
                    items = self.label_store.select_items_with_null_fields(kind, fields, batch_size)
                    if items:
                        logger.info(f"Correction pass {pass_name}: {len(items)} {kind}s")
                    self._process(items, stats, f"{pass_name}_{kind}")

        log_summary(logger, "CLASSIFICATION COMPLETE", stats.as_dict())
        return stats

    def reanalyze_defaults(
        self,
        kinds: Sequence[ItemKind] = ITEM_KINDS,
        limit: Optional[int] = None,
    ) -> PipelineStats:
        """Re-label items whose stored label is the default fallback."""
        stats = PipelineStats()
        batch_size = limit or self.batch_size
        for kind in kinds:
            items = self.label_store.select_default_labeled(kind, batch_size)
            logger.info(f"Re-analyzing {len(items)} {kind}s with default labels")
            self._process(items, stats, f"reanalyze_{kind}")

        log_summary(logger, "RE-ANALYSIS COMPLETE", stats.as_dict())
        return stats

    def _process(self, items: List[ContentItem], stats: PipelineStats, pass_name: str) -> None:
        stats.passes[pass_name] = stats.passes.get(pass_name, 0) + len(items)
        for index, item in enumerate(items):
            stats.selected += 1
            try:
                result = self.classify_and_persist(item)
                stats.record(result)
                stats.persisted += 1
                logger.info(
                    f"[{index + 1}/{len(items)}] {item.kind} {item.id}: "
                    f"{result.outcome} ({result.label.category}/{result.label.sentiment})"
                )
            except (PersistenceError, psycopg2.Error) as e:
                stats.persist_failures += 1
                logger.error(f"Failed to persist label for {item.kind} {item.id}: {e}")
            except Exception as e:
                stats.errors += 1
                logger.exception(f"Failed to classify {item.kind} {item.id}: {e}")

            if self.item_delay > 0 and index < len(items) - 1:
                self.sleep(self.item_delay)

    def classify_and_persist(self, item: ContentItem) -> ClassificationResult:
        post_title = self._parent_title(item) if item.kind == "reply" else None
        result = self.classifier.classify(item, post_title=post_title)
        self.persist(result)
        return result

    def persist(self, result: ClassificationResult) -> None:
        """Upsert the label, then mark the item analyzed and verify the mark.

        Raises:
            PersistenceError: the analyzed flag was still unset after one retry
        """
        label = result.label
        self.label_store.upsert_label(label)

        self.content_store.mark_analyzed(label.item_kind, label.item_id, utc_now())
        if self.content_store.is_analyzed(label.item_kind, label.item_id):
            return

        logger.warning(
            f"analyzed flag did not stick for {label.item_kind} {label.item_id}, retrying"
        )
        self.content_store.mark_analyzed(label.item_kind, label.item_id, utc_now())
        if not self.content_store.is_analyzed(label.item_kind, label.item_id):
            raise PersistenceError(label.item_kind, label.item_id, "analyzed flag not set after retry")

    def _parent_title(self, reply: ContentItem) -> Optional[str]:
        if reply.parent_id not in self._post_titles:
            post = self.content_store.get_item("post", reply.parent_id)
            self._post_titles[reply.parent_id] = post.title if post else None
        return self._post_titles[reply.parent_id]
