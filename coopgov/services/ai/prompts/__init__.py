"""Prompts package for the AI evaluation calls."""

from .comment import COMMENT_SYSTEM_PROMPT, COMMENT_USER_PROMPT_TEMPLATE
from .evaluation import (
    EVALUATION_SYSTEM_PROMPT,
    EVALUATION_USER_PROMPT_TEMPLATE,
    SCORER_AGENT_SYSTEM_PROMPT,
    SCORER_AGENT_USER_PROMPT_TEMPLATE,
)

__all__ = [
    "COMMENT_SYSTEM_PROMPT",
    "COMMENT_USER_PROMPT_TEMPLATE",
    "EVALUATION_SYSTEM_PROMPT",
    "EVALUATION_USER_PROMPT_TEMPLATE",
    "SCORER_AGENT_SYSTEM_PROMPT",
    "SCORER_AGENT_USER_PROMPT_TEMPLATE",
]
