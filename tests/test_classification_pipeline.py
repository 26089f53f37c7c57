"""
Classification pipeline tests.

Uses InMemoryStore for the content and label tables and a mocked classifier.

Run with: pytest tests/test_classification_pipeline.py -v
"""

from unittest.mock import Mock

import psycopg2
import pytest
from openai import OpenAIError

from threadlens.classification_pipeline import ClassificationPipeline
from threadlens.classifier import ClassificationResult, ContentClassifier, default_label
from threadlens.db.models import Label
from threadlens.retry import RetryPolicy


def _result_for(item, outcome="model", **fields):
    if outcome == "default":
        return ClassificationResult(label=default_label(item), outcome="default", attempts=3)
    values = {
        "intent": "help",
        "target": "platform",
        "sentiment": "neg",
        "category": "matchmaking_issues",
        "summary": "Queue complaint",
        "key_issues": ["queue"],
        "model_name": "gpt-4o-mini",
        "tokens_in": 100,
        "tokens_out": 20,
        "cost_usd": 0.00003,
    }
    values.update(fields)
    label = Label(item_kind=item.kind, item_id=item.id, **values)
    return ClassificationResult(label=label, outcome=outcome, attempts=1)


@pytest.fixture
def classifier():
    mock = Mock()
    mock.classify.side_effect = lambda item, post_title=None: _result_for(item)
    return mock


@pytest.fixture
def pipeline(store, classifier):
    return ClassificationPipeline(store, store, classifier, batch_size=10, item_delay=3.0, sleep=Mock())


class TestRun:
    """Tests for the main labeling pass."""

    def test_labels_and_marks_unanalyzed(self, pipeline, store, make_post, make_reply):
        """Every unanalyzed item gets a label and the analyzed flag."""
        store.add(make_post("p1"), make_reply("r1", parent_id="p1"))

        stats = pipeline.run()

        assert stats.persisted == 2
        assert store.is_analyzed("post", "p1")
        assert store.is_analyzed("reply", "r1")
        assert store.get_label("post", "p1")["category"] == "matchmaking_issues"

    def test_analyzed_items_not_reselected(self, pipeline, store, classifier, make_post):
        """A second run has nothing to do."""
        store.add(make_post("p1"))
        pipeline.run()
        classifier.classify.reset_mock()

        stats = pipeline.run()

        assert stats.selected == 0
        classifier.classify.assert_not_called()

    def test_reply_gets_parent_title(self, pipeline, store, classifier, make_post, make_reply):
        """Replies are classified with their parent post title as context."""
        store.add(make_post("p1", title="Anti-cheat crash"), make_reply("r1", parent_id="p1"))

        pipeline.run(kinds=["reply"])

        assert classifier.classify.call_args.kwargs["post_title"] == "Anti-cheat crash"

    def test_incomplete_label_is_reselected(self, pipeline, store, make_post):
        """An analyzed item whose label has a NULL intent is labeled again."""
        post = make_post("p1").model_copy(update={"analyzed": True})
        store.add(post)
        store.labels[("post", "p1")] = {
            **_result_for(post).label.model_dump(), "intent": None,
        }

        pipeline.run(kinds=["post"])

        assert store.get_label("post", "p1")["intent"] == "help"

    def test_sleeps_between_items_only(self, pipeline, store, make_post):
        """The pacing delay is applied between items, not after the last."""
        store.add(make_post("p1", created_utc=3), make_post("p2", created_utc=2), make_post("p3", created_utc=1))

        pipeline.run(kinds=["post"], correction_passes=False)

        assert pipeline.sleep.call_count == 2
        pipeline.sleep.assert_called_with(3.0)

    def test_limit_caps_batch(self, pipeline, store, make_post):
        """limit overrides the batch size, newest items first."""
        store.add(*(make_post(f"p{i}", created_utc=i) for i in range(5)))

        pipeline.run(kinds=["post"], limit=2, correction_passes=False)

        assert sorted(k[1] for k in store.labels) == ["p3", "p4"]

    def test_outcomes_and_cost_counted(self, store, make_post):
        """Stats break down labels by how they were produced."""
        store.add(make_post("p1", created_utc=2), make_post("p2", created_utc=1))
        classifier = Mock()
        classifier.classify.side_effect = [
            _result_for(store.get_item("post", "p1"), outcome="sanitized"),
            _result_for(store.get_item("post", "p2"), outcome="default"),
        ]
        pipeline = ClassificationPipeline(store, store, classifier, item_delay=0, sleep=Mock())

        stats = pipeline.run(kinds=["post"], correction_passes=False)

        assert stats.outcomes == {"model": 0, "sanitized": 1, "default": 1}
        assert stats.tokens_in == 100
        assert stats.as_dict()["default labels"] == 1

    def test_correction_passes_query_null_fields(self, classifier):
        """Correction passes look for NULL sentiment/intent, then NULL intent."""
        content_store = Mock()
        content_store.select_unanalyzed.return_value = []
        label_store = Mock()
        label_store.select_items_with_null_fields.return_value = []
        pipeline = ClassificationPipeline(content_store, label_store, classifier, batch_size=7, sleep=Mock())

        pipeline.run(kinds=["post"])

        calls = [c.args for c in label_store.select_items_with_null_fields.call_args_list]
        assert calls == [("post", ("sentiment", "intent"), 7), ("post", ("intent",), 7)]


class TestPersistence:
    """Tests for the write, mark and verify sequence."""

    def test_lost_mark_is_retried(self, pipeline, store, make_post):
        """If the analyzed flag does not stick it is written once more."""
        store.add(make_post("p1"))
        store.drop_marks = 1

        stats = pipeline.run(kinds=["post"], correction_passes=False)

        assert stats.persisted == 1
        assert store.mark_calls == 2
        assert store.is_analyzed("post", "p1")

    def test_mark_failing_twice_leaves_item_unanalyzed(self, pipeline, store, make_post):
        """Two lost marks count as a persistence failure and the batch continues."""
        store.add(make_post("p1", created_utc=2), make_post("p2", created_utc=1))
        store.drop_marks = 2

        stats = pipeline.run(kinds=["post"], correction_passes=False)

        assert stats.persist_failures == 1
        assert stats.persisted == 1
        assert not store.is_analyzed("post", "p1")
        assert store.is_analyzed("post", "p2")

    def test_database_error_is_isolated(self, store, classifier, make_post):
        """A psycopg2 error on one label does not stop the batch."""
        store.add(make_post("p1", created_utc=2), make_post("p2", created_utc=1))
        label_store = Mock()
        label_store.upsert_label.side_effect = [psycopg2.OperationalError("connection lost"), None]
        pipeline = ClassificationPipeline(store, label_store, classifier, item_delay=0, sleep=Mock())

        stats = pipeline.run(kinds=["post"], correction_passes=False)

        assert stats.persist_failures == 1
        assert not store.is_analyzed("post", "p1")
        assert store.is_analyzed("post", "p2")

    def test_unexpected_error_counted(self, pipeline, store, classifier, make_post):
        """Any other exception is counted as an error and the item stays unanalyzed."""
        store.add(make_post("p1"))
        classifier.classify.side_effect = RuntimeError("bug")

        stats = pipeline.run(kinds=["post"], correction_passes=False)

        assert stats.errors == 1
        assert not store.is_analyzed("post", "p1")


class TestReanalyzeDefaults:
    """Tests for re-labeling default-labeled items."""

    def test_replaces_default_labels(self, pipeline, store, make_post):
        """Items whose label came from the fallback are labeled again."""
        post = make_post("p1").model_copy(update={"analyzed": True})
        store.add(post, make_post("p2").model_copy(update={"analyzed": True}))
        store.upsert_label(default_label(post))
        store.upsert_label(_result_for(store.get_item("post", "p2")).label)

        stats = pipeline.reanalyze_defaults(kinds=["post"])

        assert stats.selected == 1
        assert store.get_label("post", "p1")["model_name"] == "gpt-4o-mini"
        assert store.label_counts_by_model() == {"gpt-4o-mini": 2}


class TestModelOutage:
    """End to end through the real classifier with a failing model."""

    def test_default_label_written_and_item_marked(self, store, make_post):
        """When every attempt fails the default label is stored and the item is still analyzed."""
        model_client = Mock()
        model_client.complete_json.side_effect = OpenAIError("timeout")
        classifier = ContentClassifier(model_client, RetryPolicy(max_retries=2), sleep=Mock())
        pipeline = ClassificationPipeline(store, store, classifier, item_delay=0, sleep=Mock())
        store.add(make_post("p1"))

        stats = pipeline.run(kinds=["post"])

        label = store.get_label("post", "p1")
        assert label["model_name"] == "default"
        assert (label["intent"], label["target"], label["sentiment"], label["category"]) == (
            "comment", "other", "neu", "other"
        )
        assert store.is_analyzed("post", "p1")
        assert stats.outcomes["default"] == 1
        assert model_client.complete_json.call_count == 3
