"""
Tool Registry - in-process tool catalog.

Holds Python callables with their metadata so they can be offered to the
model next to (or instead of) remote tool servers.
"""

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..exceptions import ToolExecutionError, ToolNotFoundError
from ..models import ToolCallResult, ToolDescriptor
from .catalog import ToolCatalog

logger = logging.getLogger(__name__)


def default_formatter(result: Any) -> str:
    """Render a handler result as text for the model."""
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, default=str)
    except (TypeError, ValueError):
        return str(result)


@dataclass
class ToolDefinition:
    """Metadata for a tool - defined once, used everywhere."""

    name: str
    description: str
    parameter_schema: dict
    handler: Callable[[dict], Any]
    formatter: Callable[[Any], str] = default_formatter

    def to_descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            parameter_schema=self.parameter_schema,
        )


class ToolRegistry(ToolCatalog):
    """Registry of local tools; safe to share across chat runs."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        description: str,
        handler: Callable[[dict], Any],
        parameter_schema: Optional[dict] = None,
        formatter: Callable[[Any], str] = default_formatter,
    ) -> None:
        """Register a tool with its metadata, replacing any tool of the same name."""
        with self._lock:
            self._tools[name] = ToolDefinition(
                name=name,
                description=description,
                parameter_schema=parameter_schema
                or {"type": "object", "properties": {}},
                handler=handler,
                formatter=formatter,
            )

    def get(self, name: str) -> Optional[ToolDefinition]:
        """Get a tool by name."""
        with self._lock:
            return self._tools.get(name)

    def all_tools(self) -> dict[str, ToolDefinition]:
        """Get a copy of all registered tools."""
        with self._lock:
            return self._tools.copy()

    def get_tools_summary(self) -> str:
        """Get formatted summary of all tools for display."""
        lines = []
        for name, tool in self.all_tools().items():
            lines.append(f"- {name}: {tool.description}")
        return "\n".join(lines)

    def clear(self) -> None:
        """Clear all registered tools (mainly for testing)."""
        with self._lock:
            self._tools.clear()

    def list_tools(self) -> list[ToolDescriptor]:
        return [tool.to_descriptor() for tool in self.all_tools().values()]

    def source_of(self, name: str) -> str:
        return "local"

    def call_tool(self, name: str, arguments: dict) -> ToolCallResult:
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool '{name}' is not registered.")

        try:
            logger.debug("Executing tool '%s' with args=%s", name, arguments)
            raw_result = tool.handler(arguments)
        except Exception as exc:
            logger.exception("Unhandled error in tool '%s'", name)
            raise ToolExecutionError(str(exc)) from exc

        return ToolCallResult(content=tool.formatter(raw_result), is_error=False)
