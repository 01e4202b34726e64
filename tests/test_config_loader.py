"""
Tests for YAML configuration loading.

Tests cover env var interpolation, section parsing and validation.
"""

import pytest

from opschat.config_loader import (
    load_app_config,
    parse_app_config,
    reset_config_cache,
    resolve_env_vars,
    validate_app_config,
)
from opschat.models import AppConfig, ToolServerConfig


@pytest.fixture(autouse=True)
def clear_config_cache():
    reset_config_cache()
    yield
    reset_config_cache()


class TestResolveEnvVars:
    def test_set_variable(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_ENDPOINT", "http://gpu-box:11434")
        assert resolve_env_vars("${OLLAMA_ENDPOINT}") == "http://gpu-box:11434"

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("OLLAMA_MODEL", raising=False)
        assert resolve_env_vars("${OLLAMA_MODEL:-qwen3:8b}") == "qwen3:8b"

    def test_unset_without_default_is_empty(self, monkeypatch):
        monkeypatch.delenv("METRICS_URL", raising=False)
        assert resolve_env_vars("${METRICS_URL}") == ""

    def test_embedded_reference(self, monkeypatch):
        monkeypatch.setenv("JIRA_HOST", "jira-mcp")
        assert resolve_env_vars("http://${JIRA_HOST}:3898") == "http://jira-mcp:3898"


class TestParseAppConfig:
    def test_empty_mapping_gives_defaults(self):
        app_config = parse_app_config({})

        assert app_config.ollama.endpoint == "http://localhost:11434"
        assert app_config.ollama.model == "qwen3:8b"
        assert app_config.chat.tools_enabled is False
        assert app_config.chat.max_output_tokens == 10000
        assert [s.name for s in app_config.tool_servers.servers][:2] == ["jenkins", "jira"]

    def test_string_values_coerced(self, monkeypatch):
        monkeypatch.setenv("CHAT_TEMPERATURE", "0.3")
        monkeypatch.setenv("CHAT_TOOLS_ENABLED", "true")
        app_config = parse_app_config(
            {
                "ollama": {"timeout": "45", "endpoint": "http://ollama:11434/"},
                "chat": {
                    "temperature": "${CHAT_TEMPERATURE:-0.7}",
                    "tools_enabled": "${CHAT_TOOLS_ENABLED:-false}",
                },
                "server": {"port": "9000", "reload": "no"},
            }
        )

        assert app_config.ollama.timeout == 45
        assert app_config.ollama.endpoint == "http://ollama:11434"
        assert app_config.chat.temperature == 0.3
        assert app_config.chat.tools_enabled is True
        assert app_config.server.port == 9000
        assert app_config.server.reload is False

    def test_active_categories_from_comma_string(self):
        app_config = parse_app_config({"chat": {"active_categories": "jenkins, jira,"}})
        assert app_config.chat.active_categories == ["jenkins", "jira"]

    def test_tool_servers_as_list(self):
        app_config = parse_app_config(
            {"tool_servers": [{"name": "grafana", "url": "http://grafana-mcp:3903/"}]}
        )
        assert app_config.tool_servers.servers == [
            ToolServerConfig(name="grafana", url="http://grafana-mcp:3903")
        ]
        assert app_config.tool_servers.timeout == 30

    def test_tool_server_without_url_rejected(self):
        with pytest.raises(ValueError, match="name and url"):
            parse_app_config({"tool_servers": {"servers": [{"name": "jira"}]}})

    def test_langfuse_keys(self):
        app_config = parse_app_config(
            {"langfuse": {"public_key": "pk-lf-1", "secret_key": "sk-lf-1"}}
        )
        assert app_config.langfuse.is_configured is True
        assert app_config.langfuse.host == "https://cloud.langfuse.com"


class TestValidateAppConfig:
    def test_default_config_is_valid(self):
        assert validate_app_config(AppConfig()) == []

    def test_problems_reported(self):
        app_config = parse_app_config(
            {
                "ollama": {"endpoint": "localhost:11434"},
                "chat": {"max_output_tokens": 0},
                "tool_servers": [
                    {"name": "jira", "url": "http://a"},
                    {"name": "jira", "url": "http://b"},
                ],
            }
        )
        errors = validate_app_config(app_config)

        assert len(errors) == 3
        assert any("ollama.endpoint" in e for e in errors)
        assert any("max_output_tokens" in e for e in errors)
        assert any("'jira' is defined more than once" in e for e in errors)


class TestLoadAppConfig:
    def test_loads_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("ollama:\n  model: llama3.1:8b\nchat:\n  tools_enabled: true\n")

        app_config = load_app_config(str(path))

        assert app_config.ollama.model == "llama3.1:8b"
        assert app_config.chat.tools_enabled is True

    def test_cached_until_reload(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("ollama:\n  model: a\n")
        first = load_app_config(str(path))

        path.write_text("ollama:\n  model: b\n")
        assert load_app_config(str(path)) is first
        assert load_app_config(str(path), reload=True).ollama.model == "b"

    def test_config_path_env(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("version: '2.0'\n")
        monkeypatch.setenv("CONFIG_PATH", str(path))

        assert load_app_config().version == "2.0"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_app_config(str(tmp_path / "absent.yaml"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        with pytest.raises(ValueError, match="empty"):
            load_app_config(str(path))

    def test_bundled_config_loads(self, monkeypatch):
        monkeypatch.delenv("CONFIG_PATH", raising=False)
        monkeypatch.delenv("OLLAMA_TIMEOUT", raising=False)

        app_config = load_app_config()

        assert app_config.ollama.timeout == 120
        assert len(app_config.tool_servers.servers) == 7
