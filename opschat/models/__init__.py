"""
Data models for OpsChat.
"""

from .config import (
    OllamaConfig,
    ChatConfig,
    ToolServerConfig,
    ToolServersConfig,
    TelemetryConfig,
    ServerConfig,
    LoggingConfig,
    LangfuseConfig,
    AppConfig,
)
from .messages import (
    Role,
    Message,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
    ContentDelta,
    ThinkingDelta,
    ToolCallFragment,
    Done,
    StreamFrame,
)

__all__ = [
    # Config models
    "OllamaConfig",
    "ChatConfig",
    "ToolServerConfig",
    "ToolServersConfig",
    "TelemetryConfig",
    "ServerConfig",
    "LoggingConfig",
    "LangfuseConfig",
    "AppConfig",
    # Conversation models
    "Role",
    "Message",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDescriptor",
    "ContentDelta",
    "ThinkingDelta",
    "ToolCallFragment",
    "Done",
    "StreamFrame",
]
