"""
Tests for Langfuse tracing integration with SDK v3.

Tests cover:
- Client disabled states (credentials, failed auth, init errors)
- Context manager no-ops when disabled
- Trace lifecycle with a mocked Langfuse client
- Chat run integration: one generation per turn, one span per tool call
"""

from unittest.mock import MagicMock, patch

import pytest

from opschat.models import LangfuseConfig
from opschat.orchestration.loop import ChatRun
from opschat.models import Message, Role
from opschat.tracing import (
    TracingClient,
    TracingContext,
    get_tracing_client,
    init_tracing_client,
    shutdown_tracing,
)

LANGFUSE_CONFIG = LangfuseConfig(
    public_key="pk-lf-test", secret_key="sk-lf-test", host="http://langfuse:3000"
)


@pytest.fixture
def mock_langfuse():
    """Enabled tracing backed by a mocked Langfuse client."""
    langfuse = MagicMock()
    langfuse.auth_check.return_value = True
    root = MagicMock(trace_id="trace-1", id="span-root")
    langfuse.start_as_current_observation.return_value.__enter__.return_value = root

    with patch("opschat.tracing.client.Langfuse", return_value=langfuse):
        init_tracing_client(LANGFUSE_CONFIG)
        yield langfuse


def _observation_calls(langfuse):
    return [c.kwargs for c in langfuse.start_as_current_observation.call_args_list]


class TestTracingClient:
    """Tests for TracingClient."""

    def test_client_disabled_without_credentials(self):
        client = TracingClient(public_key="", secret_key="")
        assert client.enabled is False
        assert "credentials not configured" in client.error.lower()

    def test_client_disabled_with_partial_credentials(self):
        client = TracingClient(public_key="pk-test", secret_key="")
        assert client.enabled is False

    def test_client_enabled_when_auth_passes(self, mock_langfuse):
        client = get_tracing_client()
        assert client.enabled is True
        assert client.error is None
        assert client.client is mock_langfuse

    def test_client_disabled_when_auth_fails(self):
        langfuse = MagicMock()
        langfuse.auth_check.return_value = False
        with patch("opschat.tracing.client.Langfuse", return_value=langfuse):
            client = TracingClient.from_config(LANGFUSE_CONFIG)

        assert client.enabled is False
        assert "rejected" in client.error
        assert client.client is None

    def test_client_disabled_when_host_unreachable(self):
        langfuse = MagicMock()
        langfuse.auth_check.side_effect = ConnectionError("connection refused")
        with patch("opschat.tracing.client.Langfuse", return_value=langfuse):
            client = TracingClient.from_config(LANGFUSE_CONFIG)

        assert client.enabled is False
        assert "connection refused" in client.error

    def test_client_disabled_when_init_fails(self):
        with patch("opschat.tracing.client.Langfuse", side_effect=ValueError("bad host")):
            client = TracingClient(public_key="pk", secret_key="sk")

        assert client.enabled is False
        assert "Failed to initialize" in client.error

    def test_host_passed_through(self):
        with patch("opschat.tracing.client.Langfuse") as langfuse_cls:
            TracingClient.from_config(LANGFUSE_CONFIG)

        assert langfuse_cls.call_args.kwargs["host"] == "http://langfuse:3000"

    def test_flush_and_shutdown(self, mock_langfuse):
        client = get_tracing_client()
        client.flush()
        mock_langfuse.flush.assert_called_once()

        shutdown_tracing()
        mock_langfuse.shutdown.assert_called_once()
        assert get_tracing_client() is None

    def test_flush_noop_when_disabled(self):
        TracingClient().flush()


class TestTracingContextDisabled:
    """Every operation is a no-op without an enabled client."""

    def test_context_disabled_without_client(self):
        ctx = TracingContext(execution_id="run-1")
        assert ctx.enabled is False

    def test_start_and_end_trace_noop(self):
        ctx = TracingContext(execution_id="run-1")
        ctx.start_trace(input={"messages": 1})
        ctx.end_trace(output="x")
        assert ctx.get_trace_context() is None

    def test_span_noop(self):
        ctx = TracingContext(execution_id="run-1")
        with ctx.span("tool:search_issues", input={"jql": "x"}) as span:
            span.set_output({"result": "ok"})
            span.set_status("error")
            with span.span("child") as child:
                assert child.enabled is False

    def test_generation_noop(self):
        ctx = TracingContext(execution_id="run-1")
        with ctx.generation("chat_turn_1", model="qwen3:8b") as gen:
            gen.set_output("text")
            gen.set_usage(prompt_tokens=10, completion_tokens=5)
        assert gen._usage == {"promptTokens": 10, "completionTokens": 5, "totalTokens": 15}


class TestTracingContextEnabled:
    def test_trace_lifecycle(self, mock_langfuse):
        ctx = TracingContext(execution_id="run-1", session_id="sess-1", user_id="alice")
        assert ctx.enabled is True

        ctx.start_trace(name="chat_completion", input={"message_count": 2})
        root = mock_langfuse.start_as_current_observation.return_value.__enter__.return_value
        root.update_trace.assert_called_once_with(user_id="alice", session_id="sess-1")
        assert ctx.get_trace_context() == {"trace_id": "trace-1", "parent_span_id": "span-root"}

        ctx.end_trace(output="answer", status="completed")
        update = root.update.call_args.kwargs
        assert update["output"] == "answer"
        assert update["metadata"]["status"] == "completed"
        mock_langfuse.start_as_current_observation.return_value.__exit__.assert_called()

    def test_children_parented_to_root(self, mock_langfuse):
        ctx = TracingContext(execution_id="run-1")
        ctx.start_trace()

        with ctx.generation("chat_turn_1", model="qwen3:8b", input=[{"role": "user"}]):
            pass
        with ctx.span("tool:get_build_status", input={"job": "main"}):
            pass

        generation_call, span_call = _observation_calls(mock_langfuse)[1:]
        assert generation_call["as_type"] == "generation"
        assert generation_call["model"] == "qwen3:8b"
        assert generation_call["trace_context"] == {
            "trace_id": "trace-1",
            "parent_span_id": "span-root",
        }
        assert span_call["as_type"] == "span"
        assert span_call["name"] == "tool:get_build_status"

    def test_failed_start_does_not_raise(self, mock_langfuse):
        mock_langfuse.start_as_current_observation.side_effect = RuntimeError("otel error")
        ctx = TracingContext(execution_id="run-1")
        ctx.start_trace()
        with ctx.span("tool:x") as span:
            span.set_output("ok")


class TestChatRunTracing:
    def test_turns_and_tools_traced(self, mock_langfuse, make_client, frames, catalog, chat_config):
        ctx = TracingContext(execution_id="run-1")
        ctx.start_trace()
        client = make_client(
            [frames.tool_call("get_build_status", {"job": "main"}), frames.done()],
            [frames.content("It failed.", done=True)],
        )
        run = ChatRun(
            client=client,
            messages=[Message(role=Role.USER, content="status of main?")],
            catalog=catalog,
            chat_config=chat_config,
            tracing_context=ctx,
        )
        run.collect()

        names = [c["name"] for c in _observation_calls(mock_langfuse)]
        assert names == ["chat_run", "chat_turn_1", "tool:get_build_status", "chat_turn_2"]

    def test_run_unaffected_when_disabled(self, make_client, frames, chat_config):
        ctx = TracingContext(execution_id="run-1")
        run = ChatRun(
            client=make_client([frames.content("ok", done=True)]),
            messages=[Message(role=Role.USER, content="hi")],
            chat_config=chat_config,
            tracing_context=ctx,
        )
        assert run.collect() == "ok"
