"""
Remote tool catalog backed by MCP-style HTTP tool servers.

Each vendor integration (Jenkins, Jira, SonarQube, ...) runs as its own
server exposing:

    GET  {url}/tools       -> {"tools": [{"name", "description", "inputSchema"}]}
    POST {url}/call-tool   <- {"name", "arguments"}
                           -> {"content": [{"type": "text", "text": "..."}], "isError": false}

The catalog merges all servers into one tool list and remembers which
server owns which tool so calls are routed without probing every server.
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

import requests

from ..config import config
from ..exceptions import ToolExecutionError, ToolNotFoundError
from ..models import ToolCallResult, ToolDescriptor, ToolServerConfig
from .catalog import ToolCatalog

logger = logging.getLogger(__name__)


def flatten_call_result(data: Any) -> ToolCallResult:
    """Convert a server's CallToolResult payload into a ToolCallResult."""
    if not isinstance(data, dict):
        return ToolCallResult(content=json.dumps(data, default=str))

    content = data.get("content")
    is_error = bool(data.get("isError", False))

    if isinstance(content, str):
        return ToolCallResult(content=content, is_error=is_error)

    if isinstance(content, list):
        texts = [
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type", "text") == "text"
        ]
        if texts:
            return ToolCallResult(content="\n".join(texts), is_error=is_error)

    return ToolCallResult(content=json.dumps(data, default=str), is_error=is_error)


class McpToolCatalog(ToolCatalog):
    """Tool catalog spanning several HTTP tool servers."""

    def __init__(
        self,
        servers: Optional[list[ToolServerConfig]] = None,
        active_categories: Optional[list[str]] = None,
        timeout: Optional[int] = None,
    ):
        self.servers = list(servers if servers is not None else config.tool_servers.servers)
        self.active_categories = list(active_categories or [])
        self.timeout = timeout if timeout is not None else config.tool_servers.timeout
        self._owners: dict[str, ToolServerConfig] = {}
        self._lock = threading.Lock()

    def active_servers(self) -> list[ToolServerConfig]:
        """Servers selected by ``active_categories`` (all when empty)."""
        if not self.active_categories:
            return list(self.servers)
        wanted = {c.lower() for c in self.active_categories}
        return [s for s in self.servers if s.name.lower() in wanted]

    def _fetch_server_tools(self, server: ToolServerConfig) -> list[ToolDescriptor]:
        """Fetch one server's tools; an unreachable server contributes none."""
        try:
            response = requests.get(f"{server.url}/tools", timeout=self.timeout)
            if not response.ok:
                logger.warning(
                    "Failed to fetch tools from %s: %s", server.name, response.reason
                )
                return []
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error("Error fetching tools from %s: %s", server.name, e)
            return []

        descriptors = []
        for tool in data.get("tools") or []:
            if not isinstance(tool, dict) or not tool.get("name"):
                continue
            descriptors.append(
                ToolDescriptor(
                    name=tool["name"],
                    description=tool.get("description", ""),
                    parameter_schema=tool.get("inputSchema")
                    or {"type": "object", "properties": {}},
                )
            )
        return descriptors

    def list_tools(self) -> list[ToolDescriptor]:
        servers = self.active_servers()
        if not servers:
            return []

        with ThreadPoolExecutor(max_workers=len(servers)) as pool:
            per_server = list(pool.map(self._fetch_server_tools, servers))

        tools: list[ToolDescriptor] = []
        owners: dict[str, ToolServerConfig] = {}
        for server, descriptors in zip(servers, per_server):
            for descriptor in descriptors:
                if descriptor.name in owners:
                    logger.warning(
                        "Tool '%s' offered by both %s and %s; keeping %s",
                        descriptor.name,
                        owners[descriptor.name].name,
                        server.name,
                        owners[descriptor.name].name,
                    )
                    continue
                owners[descriptor.name] = server
                tools.append(descriptor)

        with self._lock:
            self._owners = owners

        logger.debug("Tool catalog: %d tools from %d servers", len(tools), len(servers))
        return tools

    def _owner_of(self, name: str) -> Optional[ToolServerConfig]:
        with self._lock:
            owner = self._owners.get(name)
        if owner is not None:
            return owner

        # Unknown name: refresh the ownership map once
        self.list_tools()
        with self._lock:
            return self._owners.get(name)

    def source_of(self, name: str) -> str:
        with self._lock:
            owner = self._owners.get(name)
        return owner.name if owner else "unknown"

    def call_tool(self, name: str, arguments: dict) -> ToolCallResult:
        server = self._owner_of(name)
        if server is None:
            raise ToolNotFoundError(f"Tool '{name}' not found on any active MCP server.")

        try:
            response = requests.post(
                f"{server.url}/call-tool",
                json={"name": name, "arguments": arguments},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("Error calling tool %s: %s", name, e)
            raise ToolExecutionError(f"Failed to call tool on {server.url}: {e}") from e

        if not response.ok:
            raise ToolExecutionError(
                f"Failed to call tool on {server.url}: {response.reason}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ToolExecutionError(f"Invalid response from {server.url}: {e}") from e

        return flatten_call_result(data)
