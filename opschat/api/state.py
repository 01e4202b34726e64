"""
Process-wide API state: the shared tool catalog, the metrics service, and
the registry of in-flight chat runs (so they can be cancelled by id).
"""

import dataclasses
import logging
import threading
from typing import Optional

from ..config import config
from ..llm_call import OllamaClient
from ..orchestration import ChatOrchestrator, ChatRun
from ..telemetry import MetricsService
from ..tools import McpToolCatalog, ToolCatalog

logger = logging.getLogger(__name__)


class RunRegistry:
    """Thread-safe map of run id to in-flight ChatRun."""

    def __init__(self) -> None:
        self._runs: dict[str, ChatRun] = {}
        self._lock = threading.Lock()

    def register(self, run: ChatRun) -> None:
        with self._lock:
            self._runs[run.execution_id] = run

    def get(self, run_id: str) -> Optional[ChatRun]:
        with self._lock:
            return self._runs.get(run_id)

    def remove(self, run_id: str) -> None:
        with self._lock:
            self._runs.pop(run_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)


run_registry = RunRegistry()

_tool_catalog: Optional[ToolCatalog] = None
_metrics_service: Optional[MetricsService] = None
_state_lock = threading.Lock()


def get_tool_catalog() -> ToolCatalog:
    global _tool_catalog
    with _state_lock:
        if _tool_catalog is None:
            _tool_catalog = McpToolCatalog(
                active_categories=config.chat.active_categories
            )
        return _tool_catalog


def get_metrics_service() -> MetricsService:
    global _metrics_service
    with _state_lock:
        if _metrics_service is None:
            _metrics_service = MetricsService()
        return _metrics_service


def shutdown_state() -> None:
    """Stop background workers owned by the API state."""
    global _metrics_service
    with _state_lock:
        if _metrics_service is not None:
            _metrics_service.shutdown()
            _metrics_service = None


def build_orchestrator(
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> ChatOrchestrator:
    """Orchestrator for one request, applying per-request overrides."""
    overrides = {}
    if temperature is not None:
        overrides["temperature"] = temperature
    if max_tokens is not None:
        overrides["max_output_tokens"] = max_tokens
    chat_config = dataclasses.replace(config.chat, **overrides)

    return ChatOrchestrator(
        client=OllamaClient(model=model),
        catalog=get_tool_catalog(),
        chat_config=chat_config,
        telemetry=get_metrics_service(),
    )
