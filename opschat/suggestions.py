"""
Follow-up suggestions for the chat UI.

Asks the model for three short next steps based on the tail of the
conversation. Suggestions are a convenience, so every failure yields an
empty list instead of an error.
"""

import logging
import re
from typing import Iterable, Optional

from .config import config
from .exceptions import OpsChatError
from .llm_call import OllamaClient
from .orchestration.formatter import HistoryEntry, normalize_role

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 4
MAX_SUGGESTIONS = 3

SUGGESTION_PROMPT = (
    "Suggestions Goal: Provide 3 short, actionable DevOps commands or questions "
    "based on the context.\n"
    "Constraints:\n"
    "- Output ONLY 3 lines of plain text.\n"
    "- NO numbering (1., 2.).\n"
    "- NO markdown (no bold, no code blocks).\n"
    "- NO introductory text ('Here are...').\n"
    "- NO thinking or reasoning blocks.\n"
    "\n"
    "Example Output:\n"
    "Run docker ps\n"
    "Explain the syntax\n"
    "Check logs"
)

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)
_NUMBERING = re.compile(r"^[\d-]+\.\s*")
_BULLET = re.compile(r"^[*-]\s*")
_QUOTES = re.compile(r'^"|"$')
_BACKTICKS = re.compile(r"^`+|`+$")


def _recent_messages(history: Iterable[HistoryEntry]) -> list[dict]:
    messages = []
    for entry in history:
        if isinstance(entry, dict):
            role, content = entry.get("role", ""), entry.get("content", "")
        else:
            role, content = entry.role, entry.content
        backend_role = normalize_role(role)
        if backend_role is not None:
            messages.append({"role": backend_role.value, "content": content or ""})
    return messages[-HISTORY_WINDOW:]


def parse_suggestions(text: str) -> list[str]:
    """Clean a model reply into at most three one-line suggestions."""
    text = _THINK_BLOCK.sub("", text).strip()
    suggestions = []
    for line in text.splitlines():
        line = line.strip()
        line = _NUMBERING.sub("", line)
        line = _BULLET.sub("", line)
        line = _QUOTES.sub("", line)
        line = _BACKTICKS.sub("", line)
        if 2 < len(line) < 80:
            suggestions.append(line)
    return suggestions[:MAX_SUGGESTIONS]


def suggest_follow_ups(
    client: OllamaClient,
    history: Iterable[HistoryEntry],
    temperature: Optional[float] = None,
) -> list[str]:
    """
    Generate follow-up suggestions for a conversation.

    Args:
        client: Backend client to ask.
        history: Session messages; only the last four are sent.
        temperature: Sampling temperature (defaults to config).

    Returns:
        Up to three suggestions; empty on any failure.
    """
    messages = _recent_messages(history)
    messages.append({"role": "user", "content": SUGGESTION_PROMPT})

    if temperature is None:
        temperature = config.ollama.suggestion_temperature

    try:
        reply = client.chat(messages, options={"temperature": temperature})
    except OpsChatError as e:
        logger.warning("Failed to generate suggestions: %s", e)
        return []

    return parse_suggestions(reply)
