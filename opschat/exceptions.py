"""Exception hierarchy for OpsChat."""

from typing import Optional

CONNECTION_ERROR_MESSAGE = (
    "Could not connect to Ollama. Make sure 'ollama serve' is running."
)


class OpsChatError(Exception):
    """Base class for all OpsChat errors."""


class BackendError(OpsChatError):
    """The inference backend failed to produce a usable response."""


class BackendConnectionError(BackendError):
    """The inference backend could not be reached."""

    def __init__(self, message: str = CONNECTION_ERROR_MESSAGE):
        super().__init__(message)


class BackendStatusError(BackendError):
    """The inference backend answered with a non-success status."""

    def __init__(self, status_code: int, reason: str = "", body: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(
            f"Ollama API Error ({status_code}): {reason} - {body[:100]}..."
        )


class GenerationCancelled(OpsChatError):
    """The run's cancellation token fired."""


class MalformedFrameError(OpsChatError):
    """A stream line could not be interpreted as a backend frame."""

    def __init__(self, line: str, reason: Optional[str] = None):
        self.line = line
        detail = f": {reason}" if reason else ""
        super().__init__(f"Malformed stream frame{detail}")


class ToolError(OpsChatError):
    """Base class for failures while invoking a tool."""


class ToolNotFoundError(ToolError):
    """No catalog entry matches the requested tool name."""


class ToolArgumentError(ToolError):
    """Tool arguments do not satisfy the tool's parameter schema."""


class ToolExecutionError(ToolError):
    """The tool was found but its invocation failed."""
