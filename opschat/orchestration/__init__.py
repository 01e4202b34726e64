"""
Streaming chat orchestration.

Formats the conversation, reads the backend's NDJSON stream, and loops
over tool calls until the model answers, the turn cap is hit, or the run
is cancelled.
"""

from .cancellation import CancellationToken
from .formatter import format_conversation
from .stream_reader import StreamReader, THINK_CLOSE, THINK_OPEN
from .loop import (
    MAX_TURNS,
    ChatOrchestrator,
    ChatRun,
    RunOutcome,
    RunState,
    new_execution_id,
)

__all__ = [
    "CancellationToken",
    "format_conversation",
    "StreamReader",
    "THINK_OPEN",
    "THINK_CLOSE",
    "MAX_TURNS",
    "ChatOrchestrator",
    "ChatRun",
    "RunOutcome",
    "RunState",
    "new_execution_id",
]
