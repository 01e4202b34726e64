"""
OpsChat Tools Package

Tool catalogs the chat core can offer to the model:
- ToolRegistry: in-process Python callables
- McpToolCatalog: remote vendor tool servers (Jenkins, Jira, SonarQube, ...)
"""

from .catalog import ToolCatalog
from .registry import ToolDefinition, ToolRegistry
from .mcp_catalog import McpToolCatalog
from .schema import validate_arguments

__all__ = [
    "ToolCatalog",
    "ToolDefinition",
    "ToolRegistry",
    "McpToolCatalog",
    "validate_arguments",
]
