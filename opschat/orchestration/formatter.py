"""
Conversation formatting for the inference backend.

Turns a session's message history into the ordered, role-tagged message
list sent to ``/api/chat``.
"""

from typing import Any, Iterable, Optional, Union

from ..models import Message, Role

# Session roles that are forwarded to the backend; "model" is the UI's name
# for assistant turns.
_ROLE_MAP = {
    "user": Role.USER,
    "model": Role.ASSISTANT,
    "assistant": Role.ASSISTANT,
    "system": Role.SYSTEM,
}

HistoryEntry = Union[Message, dict[str, Any]]


def normalize_role(role: Union[str, Role]) -> Optional[Role]:
    """Map a session role name to a backend role, or None if not forwarded."""
    value = role.value if isinstance(role, Role) else str(role).lower()
    return _ROLE_MAP.get(value)


def format_conversation(
    history: Iterable[HistoryEntry],
    system_instruction: Optional[str] = None,
) -> list[Message]:
    """
    Build the backend message list from session history.

    Only user, model/assistant and system entries are kept, in order. A
    single leading system message carrying *system_instruction* is added
    when the instruction is non-empty and the history has no system
    message of its own.

    Args:
        history: Session messages as ``Message`` objects or
            ``{"role": ..., "content": ...}`` dicts.
        system_instruction: Configured system preamble.

    Returns:
        New list of ``Message`` objects; the input is not modified.
    """
    messages: list[Message] = []
    for entry in history:
        if isinstance(entry, Message):
            role, content = entry.role, entry.content
        else:
            role, content = entry.get("role", ""), entry.get("content") or ""

        mapped = normalize_role(role)
        if mapped is None:
            continue
        messages.append(Message(role=mapped, content=str(content)))

    if system_instruction and not any(m.role == Role.SYSTEM for m in messages):
        messages.insert(0, Message(role=Role.SYSTEM, content=system_instruction))

    return messages
