"""
Turn loop for tool-augmented streaming chat.

A ``ChatRun`` drives one user send to completion:

    AWAITING_RESPONSE --(no tool calls)------------------> DONE (completed)
    AWAITING_RESPONSE --(tool calls)--> EXECUTING_TOOLS
    EXECUTING_TOOLS   --(turn < MAX_TURNS)--> AWAITING_RESPONSE
    EXECUTING_TOOLS   --(turn == MAX_TURNS)--------------> DONE (truncated)
    any               --(cancelled)----------------------> ABORTED

Text is yielded to the caller as it arrives from the backend, with
thinking bracketed by ``<think>`` / ``</think>``. Tool calls are executed
one at a time, in the order the model requested them, and their results
are fed back as ``tool`` messages for the next turn.
"""

import logging
import time
import uuid
from contextlib import nullcontext
from dataclasses import dataclass
from enum import Enum
from typing import Any, ContextManager, Iterable, Iterator, Optional

from ..config import config
from ..exceptions import BackendError, GenerationCancelled, ToolNotFoundError
from ..llm_call import OllamaClient
from ..models import ChatConfig, Message, Role, ToolCallRequest, ToolDescriptor
from ..telemetry import (
    LLMRequestMetric,
    NullTelemetrySink,
    TelemetrySink,
    ToolUsageMetric,
)
from ..tools import McpToolCatalog, ToolCatalog, validate_arguments
from ..tracing import TracingContext
from .cancellation import CancellationToken
from .formatter import HistoryEntry, format_conversation
from .stream_reader import StreamReader

logger = logging.getLogger(__name__)

MAX_TURNS = 5

ABANDONED_BY_USER = "ABANDONED_BY_USER"
TOOL_ERROR_PREFIX = "Error executing tool: "


class RunState(str, Enum):
    AWAITING_RESPONSE = "awaiting_response"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ABORTED = "aborted"


class RunOutcome(str, Enum):
    """How a finished run ended."""

    COMPLETED = "completed"
    TRUNCATED = "truncated"
    CANCELLED = "cancelled"


@dataclass
class ToolInvocation:
    """Record of one executed tool call."""

    turn: int
    name: str
    arguments: dict
    output: str
    success: bool
    duration_ms: float


def new_execution_id() -> str:
    return f"run-{uuid.uuid4().hex[:8]}"


class ChatRun:
    """
    State machine for a single user send.

    Iterate ``stream()`` (or the run itself) to drive it. The run owns its
    message list; the client, catalog and telemetry sink are shared.
    """

    def __init__(
        self,
        client: OllamaClient,
        messages: Iterable[Message],
        catalog: Optional[ToolCatalog] = None,
        chat_config: Optional[ChatConfig] = None,
        telemetry: Optional[TelemetrySink] = None,
        tracing_context: Optional[TracingContext] = None,
        execution_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.client = client
        self.catalog = catalog
        self.chat_config = chat_config or config.chat
        self.telemetry = telemetry or NullTelemetrySink()
        self.tracing_context = tracing_context
        self.execution_id = execution_id or new_execution_id()
        self.cancel_token = cancel_token or CancellationToken()

        self.messages: list[Message] = list(messages)
        self.turn = 1
        self.state = RunState.AWAITING_RESPONSE
        self.outcome: Optional[RunOutcome] = None
        self.tool_invocations: list[ToolInvocation] = []

        self._started = False
        self._tools: dict[str, ToolDescriptor] = {}

    @property
    def _id_prefix(self) -> str:
        return f"[{self.execution_id}] "

    @property
    def finished(self) -> bool:
        return self.state in (RunState.DONE, RunState.ABORTED)

    @property
    def tools(self) -> list[ToolDescriptor]:
        """Tools offered to the model during this run."""
        return list(self._tools.values())

    def cancel(self) -> bool:
        """Request cancellation; safe to call from any thread."""
        fired = self.cancel_token.cancel()
        if fired:
            logger.info("%sCancellation requested", self._id_prefix)
        return fired

    def __iter__(self) -> Iterator[str]:
        return self.stream()

    def collect(self) -> str:
        """Drive the run to the end and return everything it emitted."""
        return "".join(self.stream())

    def stream(self) -> Iterator[str]:
        """
        Yield text deltas until the run finishes.

        Raises:
            BackendError: A turn failed; the run is left unfinished.
            RuntimeError: The run was already streamed.
        """
        if self._started:
            raise RuntimeError("ChatRun can only be streamed once")
        self._started = True

        logger.debug(
            "%sStarting chat run with %d messages", self._id_prefix, len(self.messages)
        )
        self._load_tools()

        try:
            while not self.finished:
                if self.state is RunState.AWAITING_RESPONSE:
                    yield from self._await_response()
                else:
                    self._execute_tools()
        except GenerationCancelled:
            self._abort()
        except GeneratorExit:
            # Consumer stopped reading; treat it as a cancellation.
            self.cancel_token.cancel()
            self._abort()
            raise
        finally:
            if self.finished:
                self._log_trace_summary()

    def _load_tools(self) -> None:
        if not self.chat_config.tools_enabled or self.catalog is None:
            return
        self._tools = {tool.name: tool for tool in self.catalog.list_tools()}
        logger.debug("%sOffering %d tools", self._id_prefix, len(self._tools))

    def _abort(self) -> None:
        self.state = RunState.ABORTED
        self.outcome = RunOutcome.CANCELLED
        logger.info("%sRun aborted at turn %d", self._id_prefix, self.turn)

    def _options(self) -> dict:
        return {
            "temperature": self.chat_config.temperature,
            "num_predict": self.chat_config.max_output_tokens,
        }

    def _turn_observation(self, wire_messages: list[dict]) -> ContextManager[Any]:
        if self.tracing_context is None:
            return nullcontext()
        return self.tracing_context.generation(
            name=f"chat_turn_{self.turn}",
            model=self.client.model,
            input=wire_messages,
            model_parameters=self._options(),
        )

    def _await_response(self) -> Iterator[str]:
        """Stream one backend turn and decide the next state."""
        self.cancel_token.raise_if_cancelled()

        wire_messages = [message.to_wire() for message in self.messages]
        wire_tools = [tool.to_wire() for tool in self._tools.values()]
        logger.debug("%sTurn %d: requesting completion", self._id_prefix, self.turn)

        with self._turn_observation(wire_messages) as generation:
            started = time.monotonic()
            reader = StreamReader(
                self.client.stream_chat(
                    wire_messages,
                    tools=wire_tools or None,
                    options=self._options(),
                    cancel_token=self.cancel_token,
                    execution_id=self.execution_id,
                ),
                cancel_token=self.cancel_token,
                execution_id=self.execution_id,
            )
            try:
                for delta in reader:
                    self.cancel_token.raise_if_cancelled()
                    yield delta
                # A cancel that lands after the last delta still aborts the turn.
                self.cancel_token.raise_if_cancelled()
            except (GenerationCancelled, GeneratorExit):
                self._record_turn(reader, started, error=ABANDONED_BY_USER)
                if generation is not None:
                    generation.set_status("cancelled")
                raise
            except BackendError as e:
                self._record_turn(reader, started, error=str(e))
                if generation is not None:
                    generation.set_status("error")
                raise
            finally:
                reader.close()

            self._record_turn(reader, started)
            if generation is not None:
                generation.set_output(reader.content[:2000])

        if not reader.saw_done:
            logger.debug("%sStream ended without a done frame", self._id_prefix)

        self.messages.append(
            Message(
                role=Role.ASSISTANT,
                content=reader.content,
                tool_calls=list(reader.tool_calls),
            )
        )

        if reader.tool_calls:
            logger.info(
                "%sTurn %d: model requested %d tool call(s): %s",
                self._id_prefix,
                self.turn,
                len(reader.tool_calls),
                ", ".join(call.name for call in reader.tool_calls),
            )
            self.state = RunState.EXECUTING_TOOLS
        else:
            self.state = RunState.DONE
            self.outcome = RunOutcome.COMPLETED

    def _execute_tools(self) -> None:
        """Run the last assistant message's tool calls, then advance the turn."""
        for call in self.messages[-1].tool_calls:
            self.cancel_token.raise_if_cancelled()
            content = self._execute_tool(call)
            self.messages.append(Message(role=Role.TOOL, content=content))

        self.cancel_token.raise_if_cancelled()

        if self.turn >= MAX_TURNS:
            logger.warning(
                "%sTurn limit (%d) reached with tool results pending; stopping",
                self._id_prefix,
                MAX_TURNS,
            )
            self.state = RunState.DONE
            self.outcome = RunOutcome.TRUNCATED
            return

        self.turn += 1
        self.state = RunState.AWAITING_RESPONSE

    def _execute_tool(self, call: ToolCallRequest) -> str:
        """Execute one tool call and return the tool message content."""
        if self.tracing_context is None:
            return self._invoke_tool(call)

        with self.tracing_context.span(
            name=f"tool:{call.name}",
            input=call.arguments,
        ) as span:
            content = self._invoke_tool(call)
            invocation = self.tool_invocations[-1]
            span.set_output({"result": content[:500]})
            if not invocation.success:
                span.set_status("error")
            return content

    def _invoke_tool(self, call: ToolCallRequest) -> str:
        started = time.monotonic()
        error: Optional[str] = None

        try:
            descriptor = self._tools.get(call.name)
            if descriptor is None or self.catalog is None:
                raise ToolNotFoundError(
                    f"Tool '{call.name}' is not available in this conversation."
                )
            validate_arguments(call.arguments, descriptor.parameter_schema)
            logger.debug(
                "%sTurn %d: executing tool '%s'", self._id_prefix, self.turn, call.name
            )
            result = self.catalog.call_tool(call.name, call.arguments)
        except Exception as e:
            logger.error("%sTool '%s' failed: %s", self._id_prefix, call.name, e)
            error = str(e)
            content = f"{TOOL_ERROR_PREFIX}{error}"
        else:
            content = result.content
            if result.is_error:
                error = result.content[:500]

        duration_ms = (time.monotonic() - started) * 1000
        self.tool_invocations.append(
            ToolInvocation(
                turn=self.turn,
                name=call.name,
                arguments=call.arguments,
                output=content,
                success=error is None,
                duration_ms=duration_ms,
            )
        )
        self._emit(
            self.telemetry.record_tool_usage,
            ToolUsageMetric(
                tool_name=call.name,
                success=error is None,
                arguments=call.arguments,
                duration_ms=round(duration_ms, 2),
                error=error,
                service=self.catalog.source_of(call.name) if self.catalog else "unknown",
                execution_id=self.execution_id,
            ),
        )
        return content

    def _record_turn(
        self, reader: StreamReader, started: float, error: Optional[str] = None
    ) -> None:
        ttft_ms = None
        if reader.first_chunk_at is not None:
            ttft_ms = round((reader.first_chunk_at - started) * 1000, 2)
        self._emit(
            self.telemetry.record_llm_request,
            LLMRequestMetric(
                model=self.client.model,
                success=error is None,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
                ttft_ms=ttft_ms,
                error=error,
                turn=self.turn,
                execution_id=self.execution_id,
            ),
        )

    def _emit(self, record, metric) -> None:
        """Hand a metric to the sink; sink failures never affect the run."""
        try:
            record(metric)
        except Exception as e:
            logger.warning("%sTelemetry sink failed: %s", self._id_prefix, e)

    def get_trace(self) -> list[dict]:
        """Executed tool calls as plain dictionaries."""
        return [
            {
                "turn": inv.turn,
                "tool": inv.name,
                "arguments": inv.arguments,
                "output": inv.output,
                "success": inv.success,
                "duration_ms": round(inv.duration_ms, 2),
            }
            for inv in self.tool_invocations
        ]

    def _log_trace_summary(self) -> None:
        id_prefix = self._id_prefix
        logger.info("%s%s", id_prefix, "─" * 50)
        logger.info(
            "%sRUN SUMMARY: %s after %d turn(s)",
            id_prefix,
            self.outcome.value if self.outcome else self.state.value,
            self.turn,
        )
        for inv in self.tool_invocations:
            preview = inv.output if len(inv.output) <= 80 else inv.output[:80] + "..."
            log = logger.info if inv.success else logger.error
            log("%sTurn %d: %s -> %s", id_prefix, inv.turn, inv.name, preview)
        logger.info("%s%s", id_prefix, "─" * 50)


class ChatOrchestrator:
    """
    Long-lived factory for chat runs.

    Holds the shared backend client, tool catalog and telemetry sink, and
    creates a fresh ``ChatRun`` for every user send.
    """

    def __init__(
        self,
        client: Optional[OllamaClient] = None,
        catalog: Optional[ToolCatalog] = None,
        chat_config: Optional[ChatConfig] = None,
        telemetry: Optional[TelemetrySink] = None,
    ):
        self.chat_config = chat_config or config.chat
        self.client = client or OllamaClient()
        self.catalog = (
            catalog
            if catalog is not None
            else McpToolCatalog(active_categories=self.chat_config.active_categories)
        )
        self.telemetry = telemetry or NullTelemetrySink()

    def available_tools(self) -> list[ToolDescriptor]:
        """Tools a run would offer right now; empty when tools are disabled."""
        if not self.chat_config.tools_enabled:
            return []
        return self.catalog.list_tools()

    def start(
        self,
        history: Iterable[HistoryEntry],
        execution_id: Optional[str] = None,
        tracing_context: Optional[TracingContext] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ChatRun:
        """Create a run for *history*; nothing is sent until it is iterated."""
        return ChatRun(
            client=self.client,
            messages=format_conversation(history, self.chat_config.system_instruction),
            catalog=self.catalog,
            chat_config=self.chat_config,
            telemetry=self.telemetry,
            tracing_context=tracing_context,
            execution_id=execution_id,
            cancel_token=cancel_token,
        )
