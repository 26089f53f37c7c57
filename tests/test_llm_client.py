"""
Labeling model client tests.

Run with: pytest tests/test_llm_client.py -v
"""

import json
from unittest.mock import Mock

import pytest

from threadlens.config import Settings
from threadlens.errors import ConfigurationError, ModelResponseError
from threadlens.llm_client import LabelingModelClient, calculate_cost


def _completion(content, prompt_tokens=100, completion_tokens=50):
    response = Mock()
    response.choices = [Mock(message=Mock(content=content))]
    response.usage = Mock(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    return response


@pytest.fixture
def openai_client():
    return Mock()


@pytest.fixture
def client(openai_client):
    return LabelingModelClient(model="gpt-4o-mini", client=openai_client)


class TestCalculateCost:
    """Tests for token cost accounting."""

    def test_cost_per_million(self):
        """Cost is linear in tokens at the configured per-million rates."""
        assert calculate_cost(1_000_000, 1_000_000, 0.15, 0.60) == pytest.approx(0.75)
        assert calculate_cost(0, 0, 0.15, 0.60) == 0.0


class TestLabelingModelClient:
    """Tests for complete_json()."""

    def test_parses_json_object(self, client, openai_client):
        """A JSON object reply is parsed with usage and cost attached."""
        openai_client.chat.completions.create.return_value = _completion(
            json.dumps({"intent": "help"}), prompt_tokens=1000, completion_tokens=200
        )

        reply = client.complete_json("system", "user")

        assert reply.payload == {"intent": "help"}
        assert reply.model_name == "gpt-4o-mini"
        assert reply.usage.tokens_in == 1000
        assert reply.usage.tokens_out == 200
        assert reply.usage.cost_usd == pytest.approx(1000 * 0.15e-6 + 200 * 0.60e-6)

    def test_requests_json_mode(self, client, openai_client):
        """The request asks for a JSON object and carries both messages."""
        openai_client.chat.completions.create.return_value = _completion("{}")

        client.complete_json("be precise", "label this")

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"] == [
            {"role": "system", "content": "be precise"},
            {"role": "user", "content": "label this"},
        ]

    def test_empty_content_raises(self, client, openai_client):
        """An empty reply is a model response error."""
        openai_client.chat.completions.create.return_value = _completion("")
        with pytest.raises(ModelResponseError):
            client.complete_json("s", "u")

    def test_invalid_json_raises(self, client, openai_client):
        """Non-JSON text is a model response error."""
        openai_client.chat.completions.create.return_value = _completion("intent: help")
        with pytest.raises(ModelResponseError, match="not valid JSON"):
            client.complete_json("s", "u")

    def test_non_object_json_raises(self, client, openai_client):
        """A JSON array is rejected."""
        openai_client.chat.completions.create.return_value = _completion("[1, 2]")
        with pytest.raises(ModelResponseError, match="JSON object"):
            client.complete_json("s", "u")

    def test_missing_usage_counts_zero(self, client, openai_client):
        """Replies without usage data cost nothing."""
        response = _completion("{}")
        response.usage = None
        openai_client.chat.completions.create.return_value = response

        reply = client.complete_json("s", "u")

        assert reply.usage.tokens_in == 0
        assert reply.usage.cost_usd == 0.0

    def test_requires_api_key(self):
        """Without a key or injected client construction fails."""
        with pytest.raises(ConfigurationError):
            LabelingModelClient(api_key=None)

    def test_from_settings_requires_key(self):
        """from_settings checks the OpenAI key first."""
        with pytest.raises(ConfigurationError):
            LabelingModelClient.from_settings(Settings(openai_api_key=None))
