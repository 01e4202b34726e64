"""
Tool catalog interface.

The chat core only ever sees tools through this interface: a list of
descriptors offered to the model, and invoke-by-name.
"""

from abc import ABC, abstractmethod

from ..models import ToolCallResult, ToolDescriptor


class ToolCatalog(ABC):
    """A set of named tools the model may call."""

    @abstractmethod
    def list_tools(self) -> list[ToolDescriptor]:
        """Return the descriptors of all currently available tools."""

    @abstractmethod
    def call_tool(self, name: str, arguments: dict) -> ToolCallResult:
        """
        Invoke a tool by name.

        Raises:
            ToolNotFoundError: No tool with this name exists.
            ToolExecutionError: The tool failed.
        """

    def source_of(self, name: str) -> str:
        """Name of the service providing *name*, for telemetry."""
        return "unknown"
