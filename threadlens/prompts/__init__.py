"""
threadlens Prompts

Centralized prompt templates for LLM interactions.
"""

from .labeling import (
    POST_SYSTEM_PROMPT,
    REPLY_SYSTEM_PROMPT,
    build_post_prompt,
    build_reply_prompt,
    truncate,
)

__all__ = [
    "POST_SYSTEM_PROMPT",
    "REPLY_SYSTEM_PROMPT",
    "build_post_prompt",
    "build_reply_prompt",
    "truncate",
]
