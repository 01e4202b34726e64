"""
Pytest configuration and fixtures for OpsChat tests.

The fakes here stand in for the Ollama server and the tool servers so the
chat loop can be driven deterministically:

- ``make_client(*turns)`` builds a client whose ``stream_chat`` replays one
  scripted turn per call. A turn is a list of NDJSON frames (dicts), raw
  byte chunks, or an exception to raise when the stream is first read.
- ``catalog`` is an in-memory tool catalog with a few DevOps tools.
- ``telemetry`` records every metric it receives.
"""

import copy
import json
from types import SimpleNamespace
from typing import Any, Callable, Optional

import pytest

from opschat.exceptions import ToolExecutionError, ToolNotFoundError
from opschat.models import ChatConfig, ToolCallResult, ToolDescriptor
from opschat.telemetry import LLMRequestMetric, TelemetrySink, ToolUsageMetric
from opschat.tools import ToolCatalog


def encode_turn(frames: list[Any]) -> list[bytes]:
    """One NDJSON line per frame; bytes are passed through as raw chunks."""
    chunks = []
    for frame in frames:
        if isinstance(frame, bytes):
            chunks.append(frame)
        else:
            chunks.append((json.dumps(frame) + "\n").encode("utf-8"))
    return chunks


class FakeOllamaClient:
    """Replays scripted streaming turns and records every request."""

    def __init__(self, turns: list[Any], model: str = "test-model"):
        self.turns = list(turns)
        self.model = model
        self.requests: list[dict] = []
        self.chat_replies: list[Any] = []
        self.chat_requests: list[dict] = []

    def stream_chat(
        self,
        messages,
        tools=None,
        options=None,
        cancel_token=None,
        execution_id=None,
    ):
        self.requests.append(
            {
                "messages": copy.deepcopy(messages),
                "tools": copy.deepcopy(tools),
                "options": options,
            }
        )
        if not self.turns:
            raise AssertionError("stream_chat called more often than scripted")
        turn = self.turns.pop(0)

        def chunks():
            if isinstance(turn, Exception):
                raise turn
            for chunk in encode_turn(turn):
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                yield chunk

        return chunks()

    def chat(self, messages, options=None) -> str:
        self.chat_requests.append({"messages": messages, "options": options})
        reply = self.chat_replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeToolCatalog(ToolCatalog):
    """In-memory catalog; handlers receive the arguments dict."""

    def __init__(self) -> None:
        self.descriptors: dict[str, ToolDescriptor] = {}
        self.handlers: dict[str, Callable[[dict], Any]] = {}
        self.calls: list[tuple[str, dict]] = []
        self.list_calls = 0

    def add(
        self,
        name: str,
        handler: Callable[[dict], Any],
        schema: Optional[dict] = None,
        description: str = "",
    ) -> None:
        self.descriptors[name] = ToolDescriptor(
            name=name,
            description=description or f"{name} tool",
            parameter_schema=schema or {"type": "object", "properties": {}},
        )
        self.handlers[name] = handler

    def list_tools(self) -> list[ToolDescriptor]:
        self.list_calls += 1
        return list(self.descriptors.values())

    def call_tool(self, name: str, arguments: dict) -> ToolCallResult:
        self.calls.append((name, arguments))
        if name not in self.handlers:
            raise ToolNotFoundError(f"Tool '{name}' not found.")
        result = self.handlers[name](arguments)
        if isinstance(result, ToolCallResult):
            return result
        return ToolCallResult(content=str(result))

    def source_of(self, name: str) -> str:
        return "fake"


class RecordingTelemetrySink(TelemetrySink):
    def __init__(self) -> None:
        self.llm_requests: list[LLMRequestMetric] = []
        self.tool_usage: list[ToolUsageMetric] = []

    def record_llm_request(self, metric: LLMRequestMetric) -> None:
        self.llm_requests.append(metric)

    def record_tool_usage(self, metric: ToolUsageMetric) -> None:
        self.tool_usage.append(metric)


def content(text: str, done: bool = False) -> dict:
    return {"message": {"role": "assistant", "content": text}, "done": done}


def thinking(text: str) -> dict:
    return {"message": {"role": "assistant", "content": "", "thinking": text}, "done": False}


def tool_call(name: str, arguments: Any) -> dict:
    return {
        "message": {
            "role": "assistant",
            "content": "",
            "tool_calls": [{"function": {"name": name, "arguments": arguments}}],
        },
        "done": False,
    }


def done() -> dict:
    return {"message": {"role": "assistant", "content": ""}, "done": True}


@pytest.fixture
def frames():
    """Builders for NDJSON stream frames."""

    return SimpleNamespace(content=content, thinking=thinking, tool_call=tool_call, done=done)


@pytest.fixture
def make_client():
    """Factory for scripted Ollama clients."""

    def _make(*turns, model: str = "test-model") -> FakeOllamaClient:
        return FakeOllamaClient(list(turns), model=model)

    return _make


@pytest.fixture
def catalog() -> FakeToolCatalog:
    """Catalog with a Jenkins-style and a Jira-style tool."""
    fake = FakeToolCatalog()

    def get_build_status(args: dict) -> str:
        return f"Build #{args.get('build', 42)} of {args['job']}: FAILURE"

    def search_issues(args: dict) -> str:
        return "OPS-101: Pipeline flaky on main"

    def restart_agent(args: dict) -> str:
        raise ToolExecutionError("Jenkins agent API returned 500")

    fake.add(
        "get_build_status",
        get_build_status,
        {
            "type": "object",
            "properties": {
                "job": {"type": "string"},
                "build": {"type": "integer"},
            },
            "required": ["job"],
        },
    )
    fake.add(
        "search_issues",
        search_issues,
        {
            "type": "object",
            "properties": {"jql": {"type": "string"}},
            "required": ["jql"],
        },
    )
    fake.add("restart_agent", restart_agent)
    return fake


@pytest.fixture
def telemetry() -> RecordingTelemetrySink:
    return RecordingTelemetrySink()


@pytest.fixture
def chat_config() -> ChatConfig:
    return ChatConfig(
        system_instruction="You are a DevOps assistant.",
        temperature=0.1,
        max_output_tokens=256,
        tools_enabled=True,
    )


@pytest.fixture(autouse=True)
def reset_tracing_client():
    """Keep tracing disabled unless a test installs a client."""
    import opschat.tracing.client as client_module

    original = client_module._tracing_client
    client_module._tracing_client = None
    yield
    client_module._tracing_client = original
