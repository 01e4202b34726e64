"""
Conversation data models for OpsChat.

Defines the role-tagged messages exchanged with the inference backend,
tool descriptors and results, and the typed frames produced while
reading a streaming response.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class Role(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


@dataclass
class ToolCallRequest:
    """A tool invocation requested by the model."""

    name: str
    arguments: dict = field(default_factory=dict)

    @classmethod
    def from_wire(cls, fragment: dict) -> "ToolCallRequest":
        """
        Build a request from one ``tool_calls`` entry of a stream frame.

        Arguments sent as a JSON-encoded string are decoded. Anything that
        is not a mapping is kept under ``_raw`` so schema validation can
        reject it later instead of failing the stream.
        """
        function = fragment.get("function") or {}
        name = function.get("name") or ""
        arguments = function.get("arguments")
        if arguments is None:
            arguments = {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                arguments = {"_raw": arguments}
        if not isinstance(arguments, dict):
            arguments = {"_raw": arguments}
        return cls(name=name, arguments=arguments)

    def to_wire(self) -> dict:
        return {"function": {"name": self.name, "arguments": self.arguments}}


@dataclass
class ToolCallResult:
    """Outcome of a single tool invocation."""

    content: str
    is_error: bool = False


@dataclass
class ToolDescriptor:
    """Static metadata for a tool offered to the model."""

    name: str
    description: str
    parameter_schema: dict = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_wire(self) -> dict:
        """Ollama function-calling tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameter_schema,
            },
        }


@dataclass
class Message:
    """A single message in a conversation."""

    role: Role
    content: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)

    def to_wire(self) -> dict:
        """Serialize for the ``messages`` array of an ``/api/chat`` request."""
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [call.to_wire() for call in self.tool_calls]
        return data


# Stream frames -------------------------------------------------------------


@dataclass(frozen=True)
class ContentDelta:
    """A fragment of final-answer text."""

    text: str


@dataclass(frozen=True)
class ThinkingDelta:
    """A fragment of intermediate reasoning text."""

    text: str


@dataclass(frozen=True)
class ToolCallFragment:
    """A tool call carried by one stream frame."""

    call: ToolCallRequest


@dataclass(frozen=True)
class Done:
    """Terminal marker sent by the backend."""


StreamFrame = Union[ContentDelta, ThinkingDelta, ToolCallFragment, Done]
