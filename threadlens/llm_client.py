"""
OpenAI client for the labeling model.

One call sends a system instruction and a user message and expects a JSON
object back. The client makes exactly one request per call; retries and
fallback belong to the caller (see retry.py).
"""

import json
import logging
from typing import Any, Dict, Optional

from openai import OpenAI
from pydantic import BaseModel

from .config import Settings
from .errors import ConfigurationError, ModelResponseError

logger = logging.getLogger(__name__)


class ModelUsage(BaseModel):
    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0


class ModelReply(BaseModel):
    """Parsed JSON payload plus token accounting for one completion."""

    payload: Dict[str, Any]
    usage: ModelUsage
    model_name: str


def calculate_cost(
    tokens_in: int,
    tokens_out: int,
    input_cost_per_million: float,
    output_cost_per_million: float,
) -> float:
    return round(
        tokens_in / 1_000_000 * input_cost_per_million
        + tokens_out / 1_000_000 * output_cost_per_million,
        8,
    )


class LabelingModelClient:
    """Thin wrapper over chat.completions with JSON-object responses."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        input_cost_per_million: float = 0.15,
        output_cost_per_million: float = 0.60,
        temperature: float = 0.1,
        max_tokens: int = 400,
        client: Optional[OpenAI] = None,
    ):
        if client is None:
            if not api_key:
                raise ConfigurationError("OPENAI_API_KEY not set")
            # Retries are handled by the pipeline's retry policy
            client = OpenAI(api_key=api_key, max_retries=0, timeout=timeout)
        self.client = client
        self.model = model
        self.timeout = timeout
        self.input_cost_per_million = input_cost_per_million
        self.output_cost_per_million = output_cost_per_million
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings) -> "LabelingModelClient":
        settings.require_openai()
        return cls(
            api_key=settings.openai_api_key,
            model=settings.labeling_model,
            timeout=settings.llm_timeout_seconds,
            input_cost_per_million=settings.llm_input_cost_per_million,
            output_cost_per_million=settings.llm_output_cost_per_million,
        )

    def complete_json(self, system_prompt: str, user_prompt: str) -> ModelReply:
        """Run one completion and parse its text as a JSON object.

        Raises:
            openai.OpenAIError: transport, timeout, rate limit or API errors
            ModelResponseError: the reply is empty, not JSON, or not an object
        """
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
            timeout=self.timeout,
        )

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ModelResponseError("Empty response from labeling model")

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise ModelResponseError(f"Response is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ModelResponseError(f"Expected a JSON object, got {type(payload).__name__}")

        usage = response.usage
        tokens_in = getattr(usage, "prompt_tokens", 0) or 0
        tokens_out = getattr(usage, "completion_tokens", 0) or 0
        return ModelReply(
            payload=payload,
            usage=ModelUsage(
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                cost_usd=calculate_cost(
                    tokens_in, tokens_out,
                    self.input_cost_per_million, self.output_cost_per_million,
                ),
            ),
            model_name=self.model,
        )
