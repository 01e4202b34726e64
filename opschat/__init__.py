"""
OpsChat - tool-augmented streaming chat backend for DevOps teams.

This package provides:
- Ollama client with incremental NDJSON stream reading
- Turn loop that executes model tool calls against MCP tool servers
- Telemetry and Langfuse tracing for every run
- OpenAI-compatible HTTP API and an interactive CLI
"""

from .llm_call import OllamaClient
from .orchestration import ChatOrchestrator, ChatRun, RunOutcome

__all__ = [
    "OllamaClient",
    "ChatOrchestrator",
    "ChatRun",
    "RunOutcome",
]

__version__ = "0.1.0"
