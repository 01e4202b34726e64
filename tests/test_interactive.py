"""Tests for the interactive CLI."""

import json
from unittest.mock import patch

import pytest

from opschat import interactive
from opschat.exceptions import BackendConnectionError
from opschat.interactive import InteractiveCLI, build_parser, run_single_query
from opschat.orchestration import ChatOrchestrator
from opschat.telemetry import MetricsService


@pytest.fixture
def metrics():
    service = MetricsService(metrics_url="", session_id="cli")
    yield service
    service.shutdown()


@pytest.fixture
def orchestrator_for(catalog, chat_config, metrics):
    def _make(fake_client):
        return ChatOrchestrator(
            client=fake_client, catalog=catalog, chat_config=chat_config, telemetry=metrics
        )

    return _make


class TestSingleQuery:
    def test_streams_to_stdout(self, orchestrator_for, make_client, frames, capsys):
        orchestrator = orchestrator_for(make_client([frames.content("All green.", done=True)]))

        assert run_single_query(orchestrator, "status?", as_json=False) == 0
        assert capsys.readouterr().out == "All green.\n"

    def test_json_output(self, orchestrator_for, make_client, frames, capsys):
        orchestrator = orchestrator_for(
            make_client(
                [frames.thinking("look up"), frames.tool_call("get_build_status", {"job": "api"}), frames.done()],
                [frames.content("api is failing", done=True)],
            )
        )

        assert run_single_query(orchestrator, "api?", as_json=True) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["answer"] == "api is failing"
        assert data["output"] == "<think>look up</think>api is failing"
        assert data["outcome"] == "completed"
        assert data["tool_calls"][0]["tool"] == "get_build_status"

    def test_backend_error_exit_code(self, orchestrator_for, make_client, capsys):
        orchestrator = orchestrator_for(make_client(BackendConnectionError()))

        assert run_single_query(orchestrator, "hi", as_json=False) == 1
        assert "ollama serve" in capsys.readouterr().err


class TestInteractiveCLI:
    def test_history_kept_between_queries(self, orchestrator_for, make_client, frames, metrics):
        fake = make_client(
            [frames.content("deploy-prod", done=True)],
            [frames.content("Disk full on agent-3.", done=True)],
        )
        cli = InteractiveCLI(orchestrator_for(fake), metrics)

        cli.process_query("Which job fails?")
        cli.process_query("Why?")

        assert cli.history == [
            {"role": "user", "content": "Which job fails?"},
            {"role": "assistant", "content": "deploy-prod"},
            {"role": "user", "content": "Why?"},
            {"role": "assistant", "content": "Disk full on agent-3."},
        ]
        assert [m["role"] for m in fake.requests[1]["messages"]] == [
            "system", "user", "assistant", "user",
        ]

    def test_cancelled_reply_not_added_to_history(
        self, orchestrator_for, make_client, frames, metrics, capsys
    ):
        fake = make_client([frames.content("partial"), frames.content(" rest", done=True)])
        cli = InteractiveCLI(orchestrator_for(fake), metrics)

        original_print = print

        def cancelling_print(*args, **kwargs):
            original_print(*args, **kwargs)
            if args and args[0] == "partial" and interactive._active_run is not None:
                interactive._active_run.cancel()

        with patch("builtins.print", side_effect=cancelling_print):
            cli.process_query("status?")

        assert cli.history == []
        assert "[Reply cancelled]" in capsys.readouterr().out
        assert interactive._active_run is None

    def test_backend_error_reported(self, orchestrator_for, make_client, metrics, capsys):
        cli = InteractiveCLI(orchestrator_for(make_client(BackendConnectionError())), metrics)

        cli.process_query("hi")

        assert "Error:" in capsys.readouterr().out
        assert cli.history == []

    def test_commands(self, orchestrator_for, make_client, metrics, capsys):
        cli = InteractiveCLI(orchestrator_for(make_client()), metrics)
        inputs = iter(["/tools", "/metrics", "/suggest", "/bogus", "/clear", "/quit"])

        with patch("builtins.input", side_effect=lambda prompt: next(inputs)):
            cli.run()

        out = capsys.readouterr().out
        assert "get_build_status" in out
        assert "SESSION METRICS (cli)" in out
        assert "Ask something first." in out
        assert "Unknown command: /bogus" in out
        assert "Goodbye!" in out

    def test_eof_exits(self, orchestrator_for, make_client, metrics):
        cli = InteractiveCLI(orchestrator_for(make_client()), metrics)
        with patch("builtins.input", side_effect=EOFError):
            cli.run()


class TestBuildParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.query is None
        assert args.tools is False
        assert args.model is None

    def test_flags(self):
        args = build_parser().parse_args(
            ["-q", "why?", "--json", "--tools", "--model", "llama3.1:8b", "-v"]
        )
        assert args.query == "why?"
        assert args.json is True
        assert args.tools is True
        assert args.model == "llama3.1:8b"
        assert args.verbose is True
