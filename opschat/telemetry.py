"""
Telemetry sink for chat runs.

Records one metric per backend turn and one per tool invocation. The
``MetricsService`` keeps a bounded in-memory history for the API and CLI,
and optionally forwards every metric to a collector over HTTP on a
background worker so recording never waits on the network.
"""

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

import requests

from .config import config

logger = logging.getLogger(__name__)


def _metric_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class LLMRequestMetric:
    """Latency and outcome of one backend turn."""

    model: str
    success: bool
    duration_ms: float
    ttft_ms: Optional[float] = None
    error: Optional[str] = None
    turn: Optional[int] = None
    execution_id: Optional[str] = None
    id: str = field(default_factory=_metric_id)
    timestamp: float = field(default_factory=time.time)


@dataclass
class ToolUsageMetric:
    """Outcome of one tool invocation."""

    tool_name: str
    success: bool
    arguments: dict = field(default_factory=dict)
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    service: str = "unknown"
    execution_id: Optional[str] = None
    id: str = field(default_factory=_metric_id)
    timestamp: float = field(default_factory=time.time)


class TelemetrySink(ABC):
    """Receiver of chat-run events. Implementations must not block."""

    @abstractmethod
    def record_llm_request(self, metric: LLMRequestMetric) -> None:
        """Record one backend turn."""

    @abstractmethod
    def record_tool_usage(self, metric: ToolUsageMetric) -> None:
        """Record one tool invocation."""


class NullTelemetrySink(TelemetrySink):
    """Discards every event."""

    def record_llm_request(self, metric: LLMRequestMetric) -> None:
        pass

    def record_tool_usage(self, metric: ToolUsageMetric) -> None:
        pass


class MetricsService(TelemetrySink):
    """In-memory metrics buffer with optional HTTP forwarding."""

    def __init__(
        self,
        buffer_size: Optional[int] = None,
        metrics_url: Optional[str] = None,
        timeout: Optional[int] = None,
        session_id: Optional[str] = None,
    ):
        self.buffer_size = buffer_size or config.telemetry.buffer_size
        self.metrics_url = (
            metrics_url if metrics_url is not None else config.telemetry.metrics_url
        ).rstrip("/")
        self.timeout = timeout if timeout is not None else config.telemetry.timeout
        self.session_id = session_id or uuid.uuid4().hex[:16]

        self._lock = threading.Lock()
        self._llm_requests: deque[LLMRequestMetric] = deque(maxlen=self.buffer_size)
        self._tool_usage: deque[ToolUsageMetric] = deque(maxlen=self.buffer_size)
        # Posts queued or in flight; forwarding drops metrics beyond this.
        self._backlog = threading.BoundedSemaphore(self.buffer_size)
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.metrics_url:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="metrics-forwarder"
            )

    def record_llm_request(self, metric: LLMRequestMetric) -> None:
        with self._lock:
            self._llm_requests.append(metric)

        if metric.success:
            logger.info(
                "LLM response generated: %.2fs (ttft %s ms, model %s)",
                metric.duration_ms / 1000,
                round(metric.ttft_ms) if metric.ttft_ms is not None else "n/a",
                metric.model,
            )
        else:
            logger.info("LLM request failed (model %s): %s", metric.model, metric.error)

        self._forward("/api/metrics/llm", asdict(metric))

    def record_tool_usage(self, metric: ToolUsageMetric) -> None:
        with self._lock:
            self._tool_usage.append(metric)
        self._forward("/api/metrics/tool", asdict(metric))

    @property
    def llm_requests(self) -> list[LLMRequestMetric]:
        with self._lock:
            return list(self._llm_requests)

    @property
    def tool_usage(self) -> list[ToolUsageMetric]:
        with self._lock:
            return list(self._tool_usage)

    def snapshot(self) -> dict:
        """Serializable copy of the buffered metrics."""
        return {
            "session_id": self.session_id,
            "llm_requests": [asdict(m) for m in self.llm_requests],
            "tool_usage": [asdict(m) for m in self.tool_usage],
        }

    def summary(self) -> dict:
        """Aggregate counts over the buffered metrics."""
        requests_ = self.llm_requests
        tools = self.tool_usage
        successful = [m for m in requests_ if m.success]
        return {
            "llm_requests": len(requests_),
            "llm_failures": len(requests_) - len(successful),
            "avg_duration_ms": (
                round(sum(m.duration_ms for m in successful) / len(successful), 2)
                if successful
                else None
            ),
            "tool_calls": len(tools),
            "tool_failures": sum(1 for m in tools if not m.success),
        }

    def clear(self) -> None:
        with self._lock:
            self._llm_requests.clear()
            self._tool_usage.clear()

    def import_metrics(self, data: Any) -> bool:
        """
        Replace the buffers with previously exported metrics.

        Returns:
            False (leaving the buffers untouched) if *data* is not a
            snapshot-shaped mapping.
        """
        if not isinstance(data, dict):
            return False
        llm_data = data.get("llm_requests")
        tool_data = data.get("tool_usage")
        if not isinstance(llm_data, list) or not isinstance(tool_data, list):
            return False

        try:
            llm_metrics = [LLMRequestMetric(**item) for item in llm_data]
            tool_metrics = [ToolUsageMetric(**item) for item in tool_data]
        except TypeError as e:
            logger.warning("Rejected metrics import: %s", e)
            return False

        with self._lock:
            self._llm_requests = deque(llm_metrics, maxlen=self.buffer_size)
            self._tool_usage = deque(tool_metrics, maxlen=self.buffer_size)
        return True

    def shutdown(self) -> None:
        """Stop the forwarding worker; queued posts still complete."""
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)

    def _forward(self, path: str, payload: dict) -> None:
        executor = self._executor
        if executor is None:
            return
        if not self._backlog.acquire(blocking=False):
            logger.debug("Metrics forwarding backlog full; dropping %s", path)
            return
        body = {**payload, "sessionId": self.session_id}
        try:
            future = executor.submit(self._post, f"{self.metrics_url}{path}", body)
        except RuntimeError as e:
            self._backlog.release()
            logger.debug("Metrics forwarder unavailable: %s", e)
            return
        future.add_done_callback(lambda _: self._backlog.release())

    def _post(self, url: str, body: dict) -> None:
        try:
            requests.post(url, json=body, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.debug("Failed to sync metric to %s: %s", url, e)
