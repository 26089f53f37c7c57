"""
Pytest configuration for threadlens tests.

Test Tier System:
- fast (default): Pure unit tests, all I/O mocked
- medium: Tests that need a real database or filesystem
- slow: External APIs (Reddit, OpenAI)

Run tiers:
- pytest                          # Fast only (default)
- pytest -m medium                # Medium only
- pytest -m "not slow"            # Fast + Medium
- pytest --override-ini="addopts=" -v   # Full suite

Unmarked tests are auto-assigned to 'fast'. Tests marked
@pytest.mark.integration without a tier default to 'medium'.

API Key Safety:
- Fast/medium runs force fake OPENAI_API_KEY and Reddit credentials so a
  missed mock can never reach a real API
"""

import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).parent))

from threadlens.db.models import ContentItem  # noqa: E402

from fakes import InMemoryStore  # noqa: E402

FAKE_CREDENTIALS = {
    "OPENAI_API_KEY": "sk-test-fake-key-for-testing",
    "REDDIT_CLIENT_ID": "test-client-id",
    "REDDIT_CLIENT_SECRET": "test-client-secret",
    "REDDIT_REFRESH_TOKEN": "test-refresh-token",
}


# =============================================================================
# Tier Auto-Assignment
# =============================================================================

def pytest_collection_modifyitems(config, items):
    """Assign the 'fast' tier to unmarked tests, 'medium' to bare integration tests."""
    for item in items:
        has_tier = (
            list(item.iter_markers(name='fast')) or
            list(item.iter_markers(name='medium')) or
            list(item.iter_markers(name='slow'))
        )
        if has_tier:
            continue

        if list(item.iter_markers(name='skip')):
            continue

        if list(item.iter_markers(name='integration')):
            item.add_marker(pytest.mark.medium)
            continue

        item.add_marker(pytest.mark.fast)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Force fake credentials unless slow tests are part of the run."""
    markexpr = getattr(config.option, 'markexpr', '') or ''
    includes_slow_tests = (
        not markexpr or
        (
            'slow' in markexpr and
            'not slow' not in markexpr
        )
    )

    for name, value in FAKE_CREDENTIALS.items():
        if includes_slow_tests:
            os.environ.setdefault(name, value)
        else:
            os.environ[name] = value


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def store():
    """Empty in-memory store implementing the content, label and staff stores."""
    return InMemoryStore()


@pytest.fixture
def make_post():
    """Factory for post ContentItems."""
    def _make(post_id="p1", created_utc=1_700_000_000, **kwargs):
        fields = {
            "title": "Queue times are terrible",
            "body": "Waited 20 minutes for a match tonight",
            "author": "player_one",
        }
        fields.update(kwargs)
        return ContentItem(kind="post", id=post_id, created_utc=created_utc, **fields)
    return _make


@pytest.fixture
def make_reply():
    """Factory for reply ContentItems."""
    def _make(reply_id="r1", parent_id="p1", created_utc=1_700_000_060, **kwargs):
        fields = {"body": "Same here", "author": "player_two"}
        fields.update(kwargs)
        return ContentItem(
            kind="reply", id=reply_id, parent_id=parent_id, created_utc=created_utc, **fields
        )
    return _make
