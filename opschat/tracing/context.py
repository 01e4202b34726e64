"""
Run-scoped tracing context using Langfuse SDK v3.

One ``TracingContext`` per chat run owns a root span. Each backend turn is
recorded as a generation and each tool call as a span beneath it. Parents
hand their trace_id and span_id to children explicitly, so nesting is
correct even when the run is consumed from another thread than the one
that started it (streaming responses do this).
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

from langfuse.types import TraceContext

from .client import get_tracing_client

logger = logging.getLogger(__name__)


def _langfuse():
    client = get_tracing_client()
    if client is None or not client.enabled:
        return None
    return client.client


class _Observation:
    """Common lifecycle of spans and generations."""

    as_type = "span"

    def __init__(
        self,
        name: str,
        enabled: bool,
        trace_context: Optional[TraceContext] = None,
        **attributes: Any,
    ):
        self.name = name
        self.enabled = enabled
        self.attributes = {k: v for k, v in attributes.items() if v is not None}
        self._trace_context = trace_context
        self._context_manager: Any = None
        self._observation: Any = None
        self._start_time = 0.0
        self._output: Any = None
        self._status = "success"

    def start(self) -> None:
        if not self.enabled:
            return
        langfuse = _langfuse()
        if langfuse is None:
            return

        try:
            self._start_time = time.time()
            self._context_manager = langfuse.start_as_current_observation(
                trace_context=self._trace_context,
                as_type=self.as_type,
                name=self.name,
                **self.attributes,
            )
            self._observation = self._context_manager.__enter__()
        except Exception as e:
            logger.warning(f"Failed to start {self.as_type} '{self.name}': {e}")
            self._observation = None

    def _update_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "metadata": {
                "status": self._status,
                "duration_ms": round((time.time() - self._start_time) * 1000, 2),
            }
        }
        if self._output is not None:
            kwargs["output"] = self._output
        return kwargs

    def end(self) -> None:
        if not self.enabled or self._observation is None:
            return
        try:
            self._observation.update(**self._update_kwargs())
            self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning(f"Failed to end {self.as_type} '{self.name}': {e}")

    def set_output(self, output: Any) -> None:
        self._output = output

    def set_status(self, status: str) -> None:
        self._status = status

    def child_trace_context(self) -> Optional[TraceContext]:
        """Trace context that makes this observation the parent of new ones."""
        if not self._trace_context:
            return None
        span_id = getattr(self._observation, "id", None)
        trace_id = self._trace_context.get("trace_id")
        if not span_id or not trace_id:
            return self._trace_context
        return TraceContext(trace_id=trace_id, parent_span_id=span_id)


@contextmanager
def _observe(observation: _Observation) -> Generator[Any, None, None]:
    try:
        observation.start()
        yield observation
    finally:
        observation.end()


class SpanContext(_Observation):
    """A tracing span, e.g. one tool call."""

    @contextmanager
    def span(
        self, name: str, metadata: Optional[dict] = None, input: Optional[Any] = None
    ) -> Generator["SpanContext", None, None]:
        child = SpanContext(
            name,
            self.enabled,
            self.child_trace_context(),
            metadata=metadata,
            input=input,
        )
        with _observe(child) as span:
            yield span


class GenerationContext(_Observation):
    """A tracing generation, i.e. one backend turn."""

    as_type = "generation"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._usage: Optional[dict] = None

    def set_usage(
        self,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
    ) -> None:
        self._usage = {}
        if prompt_tokens is not None:
            self._usage["promptTokens"] = prompt_tokens
        if completion_tokens is not None:
            self._usage["completionTokens"] = completion_tokens
        if prompt_tokens is not None and completion_tokens is not None:
            self._usage["totalTokens"] = prompt_tokens + completion_tokens

    def _update_kwargs(self) -> dict[str, Any]:
        kwargs = super()._update_kwargs()
        if self._usage:
            kwargs["usage"] = self._usage
        return kwargs


@dataclass
class TracingContext:
    """
    Tracing scope for a single chat run.

    All methods degrade to no-ops when the tracing client is missing or
    disabled, so callers never need to check.
    """

    execution_id: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    _context_manager: Any = field(default=None, repr=False)
    _root_span: Any = field(default=None, repr=False)
    _enabled: bool = field(default=False, repr=False)
    _start_time: float = field(default_factory=time.time, repr=False)
    _trace_id: Optional[str] = field(default=None, repr=False)
    _root_span_id: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        client = get_tracing_client()
        self._enabled = client is not None and client.enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_trace(
        self,
        name: str = "chat_run",
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Open the root span for this run."""
        if not self._enabled:
            return
        langfuse = _langfuse()
        if langfuse is None:
            return

        try:
            self._context_manager = langfuse.start_as_current_observation(
                as_type="span",
                name=name,
                input=input,
                metadata={"execution_id": self.execution_id, **(metadata or {})},
            )
            self._root_span = self._context_manager.__enter__()
            self._trace_id = getattr(self._root_span, "trace_id", None)
            self._root_span_id = getattr(self._root_span, "id", None)
            self._root_span.update_trace(
                user_id=self.user_id,
                session_id=self.session_id,
            )
            self._start_time = time.time()
            logger.debug(
                f"[{self.execution_id}] Trace started: trace_id={self._trace_id}"
            )
        except Exception as e:
            logger.warning(f"[{self.execution_id}] Failed to start trace: {e}")
            self._root_span = None

    def get_trace_context(self) -> Optional[TraceContext]:
        if not self._trace_id or not self._root_span_id:
            return None
        return TraceContext(trace_id=self._trace_id, parent_span_id=self._root_span_id)

    def end_trace(
        self,
        output: Optional[Any] = None,
        status: str = "success",
        metadata: Optional[dict] = None,
    ) -> None:
        """Close the root span, recording the run's outcome."""
        if not self._enabled or not self._root_span:
            return
        try:
            self._root_span.update(
                output=output,
                metadata={
                    "status": status,
                    "duration_ms": round((time.time() - self._start_time) * 1000, 2),
                    **(metadata or {}),
                },
            )
            self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning(f"[{self.execution_id}] Failed to end trace: {e}")
        finally:
            self._root_span = None

    @contextmanager
    def span(
        self,
        name: str,
        metadata: Optional[dict] = None,
        input: Optional[Any] = None,
    ) -> Generator[SpanContext, None, None]:
        span_ctx = SpanContext(
            name,
            self._enabled,
            self.get_trace_context(),
            metadata=metadata,
            input=input,
        )
        with _observe(span_ctx) as span:
            yield span

    @contextmanager
    def generation(
        self,
        name: str,
        model: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
        model_parameters: Optional[dict] = None,
    ) -> Generator[GenerationContext, None, None]:
        gen_ctx = GenerationContext(
            name,
            self._enabled,
            self.get_trace_context(),
            model=model,
            input=input,
            metadata=metadata,
            model_parameters=model_parameters,
        )
        with _observe(gen_ctx) as generation:
            yield generation
