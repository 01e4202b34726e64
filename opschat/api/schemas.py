"""
OpenAI-compatible Pydantic schemas for the API.

The chat schemas follow the OpenAI Chat API so OpenWebUI, LiteLLM and
other OpenAI-compatible clients can talk to OpsChat directly. Tool,
suggestion, run and metrics schemas are OpsChat-specific.
"""

import time
import uuid
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


class ContentPart(BaseModel):
    """A single part of multimodal content."""

    type: Literal["text", "image_url"] = Field(
        ..., description="The type of content part"
    )
    text: Optional[str] = Field(default=None, description="Text content (for type='text')")
    image_url: Optional[dict] = Field(
        default=None, description="Image URL object (for type='image_url')"
    )


class ChatMessage(BaseModel):
    """A single message in a chat conversation."""

    role: Literal["system", "user", "assistant", "model", "tool"] = Field(
        ..., description="The role of the message author ('model' is an alias for 'assistant')"
    )
    content: Union[str, list[ContentPart], None] = Field(
        default="", description="The content of the message (string or list of content parts)"
    )

    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, v):
        if v is None:
            return ""
        if isinstance(v, list):
            return [
                ContentPart(**item) if isinstance(item, dict) else item for item in v
            ]
        return v

    def get_text_content(self) -> str:
        """Extract text content regardless of format."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            part.text for part in self.content or [] if part.type == "text" and part.text
        )

    def to_history_entry(self) -> dict:
        return {"role": self.role, "content": self.get_text_content()}


class ChatCompletionRequest(BaseModel):
    """Request body for /v1/chat/completions endpoint."""

    model: Optional[str] = Field(
        default=None, description="Ollama model to use (defaults to the configured model)"
    )
    messages: list[ChatMessage] = Field(
        ..., description="List of messages in the conversation", min_length=1
    )
    temperature: Optional[float] = Field(
        default=None, ge=0.0, le=2.0, description="Sampling temperature"
    )
    max_tokens: Optional[int] = Field(
        default=None, ge=1, description="Maximum tokens generated per turn"
    )
    stream: Optional[bool] = Field(
        default=False, description="Stream deltas as Server-Sent Events"
    )
    include_trace: Optional[bool] = Field(
        default=False, description="Include executed tool calls in the response"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "messages": [{"role": "user", "content": "Why did the last main build fail?"}],
                "stream": True,
            }
        }
    }


class ToolTraceStep(BaseModel):
    """One tool call executed during a run."""

    turn: int = Field(..., description="Turn in which the model requested the call")
    tool: str = Field(..., description="Tool name")
    arguments: dict = Field(default_factory=dict, description="Arguments passed to the tool")
    output: str = Field(default="", description="Tool message fed back to the model")
    success: bool = True
    duration_ms: Optional[float] = None


FinishReason = Literal["stop", "length", "cancelled"]


class ChatCompletionMessage(BaseModel):
    """Message in a chat completion response."""

    role: Literal["assistant"] = "assistant"
    content: str


class ChatCompletionChoice(BaseModel):
    """A single choice in a chat completion response."""

    index: int = 0
    message: ChatCompletionMessage
    finish_reason: FinishReason = "stop"


class UsageInfo(BaseModel):
    """Token usage information."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    """Response body for /v1/chat/completions endpoint."""

    id: str = Field(default_factory=lambda: f"chatcmpl-{uuid.uuid4().hex[:12]}")
    object: Literal["chat.completion"] = "chat.completion"
    created: int = Field(default_factory=lambda: int(time.time()))
    model: str
    run_id: str = Field(..., description="Run identifier, also sent as X-Run-Id")
    choices: list[ChatCompletionChoice]
    usage: UsageInfo = Field(default_factory=UsageInfo)
    trace: Optional[list[ToolTraceStep]] = Field(
        default=None, description="Executed tool calls (when include_trace=True)"
    )


class CancelRunResponse(BaseModel):
    """Response body for the run cancellation endpoint."""

    run_id: str
    cancelled: bool = Field(
        ..., description="False if the run had already been cancelled"
    )


class ModelInfo(BaseModel):
    """Information about an available model."""

    id: str
    object: Literal["model"] = "model"
    created: int = Field(default_factory=lambda: int(time.time()))
    owned_by: str = "ollama"


class ModelListResponse(BaseModel):
    """Response body for /v1/models endpoint."""

    object: Literal["list"] = "list"
    data: list[ModelInfo]


class ToolInfo(BaseModel):
    """A tool the model may call."""

    name: str
    description: str
    parameters: dict = Field(default_factory=dict)


class ToolListResponse(BaseModel):
    """Response body for /v1/tools endpoint."""

    tools_enabled: bool
    tools: list[ToolInfo]


class SuggestionRequest(BaseModel):
    """Request body for /v1/suggestions endpoint."""

    model: Optional[str] = None
    messages: list[ChatMessage] = Field(..., min_length=1)


class SuggestionResponse(BaseModel):
    suggestions: list[str]


class MetricsResponse(BaseModel):
    """Buffered telemetry plus aggregate counts."""

    session_id: str
    summary: dict[str, Any]
    llm_requests: list[dict[str, Any]]
    tool_usage: list[dict[str, Any]]


class MetricsImportRequest(BaseModel):
    llm_requests: list[dict[str, Any]] = Field(default_factory=list)
    tool_usage: list[dict[str, Any]] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response body for /health endpoint."""

    status: Literal["healthy", "degraded"]
    version: str
    model: str
    backend_reachable: bool


class ErrorDetail(BaseModel):
    """Error detail in OpenAI format."""

    message: str
    type: str = "server_error"
    code: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error response in OpenAI format."""

    error: ErrorDetail
