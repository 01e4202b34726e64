"""
Configuration models for OpsChat.

Defines dataclasses for the unified YAML configuration file.
"""

from dataclasses import dataclass, field

DEFAULT_SYSTEM_INSTRUCTION = (
    "You are an advanced DevOps Omni-Assistant. Your expertise spans the entire "
    "software development lifecycle (SDLC): Planning, Coding (Git, Best Practices), "
    "Building (CI/CD), Testing, Releasing, Deploying (IaC, Containers, Cloud), "
    "Operating, and Monitoring (Observability, SRE). You are not limited to "
    "infrastructure; you help with scripts, debugging applications, system "
    "architecture, security (DevSecOps), and automation strategy. Be precise, "
    "technical, and concise."
)


@dataclass
class OllamaConfig:
    """Connection settings for the Ollama inference backend."""
    endpoint: str = "http://localhost:11434"
    model: str = "qwen3:8b"
    timeout: int = 120
    suggestion_temperature: float = 0.2


@dataclass
class ChatConfig:
    """Per-conversation generation settings."""
    system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION
    temperature: float = 0.7
    max_output_tokens: int = 10000
    # Master tool switch: no tools are offered to the model when False
    tools_enabled: bool = False
    active_categories: list[str] = field(default_factory=list)


@dataclass
class ToolServerConfig:
    """A single MCP-style tool server."""
    name: str
    url: str


def _default_tool_servers() -> list[ToolServerConfig]:
    return [
        ToolServerConfig(name="jenkins", url="http://localhost:3897"),
        ToolServerConfig(name="jira", url="http://localhost:3898"),
        ToolServerConfig(name="sonarqube", url="http://localhost:3899"),
        ToolServerConfig(name="nexus", url="http://localhost:3900"),
        ToolServerConfig(name="bitbucket", url="http://localhost:3901"),
        ToolServerConfig(name="elasticsearch", url="http://localhost:3902"),
        ToolServerConfig(name="grafana", url="http://localhost:3903"),
    ]


@dataclass
class ToolServersConfig:
    """Configuration for the tool catalog servers."""
    servers: list[ToolServerConfig] = field(default_factory=_default_tool_servers)
    timeout: int = 30


@dataclass
class TelemetryConfig:
    """Configuration for the metrics sink."""
    # Base URL of the metrics collector; empty disables forwarding
    metrics_url: str = ""
    buffer_size: int = 50
    timeout: int = 5


@dataclass
class ServerConfig:
    """Configuration for the FastAPI server."""
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1
    reload: bool = False


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse observability.

    Tracing auto-enables when both public_key and secret_key are provided.
    """
    enabled: bool = False
    public_key: str = ""
    secret_key: str = ""
    host: str = "https://cloud.langfuse.com"
    debug: bool = False

    @property
    def is_configured(self) -> bool:
        """Check if Langfuse is configured (both keys present)."""
        return bool(self.public_key and self.secret_key)


@dataclass
class AppConfig:
    """
    Unified application configuration container.

    Holds all configuration sections loaded from config/config.yaml.
    """
    version: str = "1.0"
    ollama: OllamaConfig = field(default_factory=OllamaConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    tool_servers: ToolServersConfig = field(default_factory=ToolServersConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)

    @property
    def log_level(self) -> str:
        """Shortcut for logging.level."""
        return self.logging.level
