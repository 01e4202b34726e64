"""
Configuration loader for OpsChat.

Loads configuration from YAML files with support for
environment variable interpolation.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml

from .models import (
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
from .models.config import DEFAULT_SYSTEM_INSTRUCTION

logger = logging.getLogger(__name__)

# Default config path relative to project root
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "config.yaml"

# Regex for environment variable interpolation: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

# Singleton cache for app config
_app_config: Optional[AppConfig] = None


def resolve_env_vars(value: str) -> str:
    """
    Resolve environment variable references in a string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with env vars resolved
    """

    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _substitute_env_vars_recursive(data: Any) -> Any:
    """
    Recursively substitute environment variables in a data structure.

    Args:
        data: Any data structure (dict, list, str, etc.)

    Returns:
        Data structure with env vars resolved
    """
    if isinstance(data, dict):
        return {k: _substitute_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return resolve_env_vars(data)
    return data


def _parse_bool(value: Any, default: bool) -> bool:
    """Parse a boolean that may arrive as a string after env substitution."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _parse_ollama_config(data: dict) -> OllamaConfig:
    """Parse Ollama backend configuration from dict."""
    return OllamaConfig(
        endpoint=str(data.get("endpoint") or "http://localhost:11434").rstrip("/"),
        model=data.get("model") or "qwen3:8b",
        timeout=int(data.get("timeout", 120)),
        suggestion_temperature=float(data.get("suggestion_temperature", 0.2)),
    )


def _parse_chat_config(data: dict) -> ChatConfig:
    """Parse chat generation configuration from dict."""
    categories = data.get("active_categories") or []
    if isinstance(categories, str):
        categories = [c.strip() for c in categories.split(",") if c.strip()]

    return ChatConfig(
        system_instruction=data.get("system_instruction", DEFAULT_SYSTEM_INSTRUCTION),
        temperature=float(data.get("temperature", 0.7)),
        max_output_tokens=int(data.get("max_output_tokens", 10000)),
        tools_enabled=_parse_bool(data.get("tools_enabled"), False),
        active_categories=list(categories),
    )


def _parse_tool_servers_config(data: Any) -> ToolServersConfig:
    """
    Parse tool server configuration.

    Accepts either a bare list of ``{name, url}`` entries or a mapping with
    ``servers`` and ``timeout`` keys.
    """
    if data is None:
        return ToolServersConfig()

    if isinstance(data, list):
        entries, timeout = data, 30
    else:
        entries = data.get("servers")
        timeout = int(data.get("timeout", 30))
        if entries is None:
            return ToolServersConfig(timeout=timeout)

    servers = []
    for entry in entries:
        name = entry.get("name")
        url = entry.get("url")
        if not name or not url:
            raise ValueError(f"Tool server entry needs both name and url: {entry}")
        servers.append(ToolServerConfig(name=name, url=str(url).rstrip("/")))

    return ToolServersConfig(servers=servers, timeout=timeout)


def _parse_telemetry_config(data: dict) -> TelemetryConfig:
    """Parse telemetry configuration from dict."""
    return TelemetryConfig(
        metrics_url=str(data.get("metrics_url", "")).rstrip("/"),
        buffer_size=int(data.get("buffer_size", 50)),
        timeout=int(data.get("timeout", 5)),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server configuration from dict."""
    return ServerConfig(
        host=data.get("host", "0.0.0.0"),
        port=int(data.get("port", 8000)),
        workers=int(data.get("workers", 1)),
        reload=_parse_bool(data.get("reload"), False),
    )


def _parse_logging_config(data: dict) -> LoggingConfig:
    """Parse logging configuration from dict."""
    return LoggingConfig(
        level=data.get("level", "INFO"),
    )


def _parse_langfuse_config(data: dict) -> LangfuseConfig:
    """Parse Langfuse configuration from dict."""
    return LangfuseConfig(
        enabled=_parse_bool(data.get("enabled"), False),
        public_key=data.get("public_key", ""),
        secret_key=data.get("secret_key", ""),
        host=data.get("host", "https://cloud.langfuse.com"),
        debug=_parse_bool(data.get("debug"), False),
    )


def validate_app_config(app_config: AppConfig) -> list[str]:
    """
    Validate an application configuration.

    Args:
        app_config: Configuration to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if not app_config.ollama.endpoint.startswith(("http://", "https://")):
        errors.append(
            f"ollama.endpoint '{app_config.ollama.endpoint}' should start with http:// or https://"
        )
    if app_config.chat.max_output_tokens <= 0:
        errors.append("chat.max_output_tokens must be positive")
    if app_config.telemetry.buffer_size <= 0:
        errors.append("telemetry.buffer_size must be positive")

    names = [server.name for server in app_config.tool_servers.servers]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    for name in duplicates:
        errors.append(f"Tool server '{name}' is defined more than once")

    return errors


def parse_app_config(raw_config: dict) -> AppConfig:
    """
    Build an AppConfig from an already-loaded mapping.

    Environment variables are substituted before parsing.
    """
    raw_config = _substitute_env_vars_recursive(raw_config)

    return AppConfig(
        version=str(raw_config.get("version", "1.0")),
        ollama=_parse_ollama_config(raw_config.get("ollama") or {}),
        chat=_parse_chat_config(raw_config.get("chat") or {}),
        tool_servers=_parse_tool_servers_config(raw_config.get("tool_servers")),
        telemetry=_parse_telemetry_config(raw_config.get("telemetry") or {}),
        server=_parse_server_config(raw_config.get("server") or {}),
        logging=_parse_logging_config(raw_config.get("logging") or {}),
        langfuse=_parse_langfuse_config(raw_config.get("langfuse") or {}),
    )


def load_app_config(path: Optional[str] = None, reload: bool = False) -> AppConfig:
    """
    Load unified application configuration from a YAML file.

    Uses a singleton pattern - subsequent calls return the cached config
    unless reload=True is specified.

    Args:
        path: Path to the YAML configuration file. If None, uses
              CONFIG_PATH env var or the default path (config/config.yaml).
        reload: If True, force reload from disk instead of using cache.

    Returns:
        AppConfig with all configuration loaded

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config is invalid
    """
    global _app_config

    # Return cached config if available and not reloading
    if _app_config is not None and not reload:
        return _app_config

    # Determine config path
    if path is None:
        path = os.environ.get("CONFIG_PATH", str(DEFAULT_CONFIG_PATH))

    config_path = Path(path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found at {config_path}. "
            f"Create one from config/config.yaml or set CONFIG_PATH env var."
        )

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, "r") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raise ValueError(f"Configuration file {config_path} is empty")

    app_config = parse_app_config(raw_config)

    errors = validate_app_config(app_config)
    if errors:
        for error in errors:
            logger.warning(f"Config validation warning: {error}")

    # Cache the config
    _app_config = app_config

    logger.debug(
        f"Configuration loaded: version={app_config.version}, "
        f"model={app_config.ollama.model}, "
        f"tool_servers={[s.name for s in app_config.tool_servers.servers]}"
    )

    return app_config


def reset_config_cache() -> None:
    """Reset the configuration cache, forcing a reload on next access."""
    global _app_config
    _app_config = None
    logger.debug("Configuration cache reset")
