"""Tests for follow-up suggestion generation."""

from opschat.exceptions import BackendConnectionError
from opschat.suggestions import SUGGESTION_PROMPT, parse_suggestions, suggest_follow_ups


class TestParseSuggestions:
    def test_plain_lines(self):
        assert parse_suggestions("Run docker ps\nExplain the syntax\nCheck logs") == [
            "Run docker ps",
            "Explain the syntax",
            "Check logs",
        ]

    def test_decorations_stripped(self):
        text = '1. Check the pod logs\n- "Restart the agent"\n* `kubectl get pods`'
        assert parse_suggestions(text) == [
            "Check the pod logs",
            "Restart the agent",
            "kubectl get pods",
        ]

    def test_think_block_removed(self):
        text = "<think>\nThe user wants Jenkins help.\n</think>\nShow failed builds"
        assert parse_suggestions(text) == ["Show failed builds"]

    def test_short_and_long_lines_dropped(self):
        text = "ok\n\n" + "x" * 80 + "\nRe-run the pipeline"
        assert parse_suggestions(text) == ["Re-run the pipeline"]

    def test_at_most_three(self):
        text = "\n".join(f"Suggestion number {i}" for i in range(6))
        assert len(parse_suggestions(text)) == 3


class TestSuggestFollowUps:
    def test_sends_recent_history_and_prompt(self, make_client):
        client = make_client()
        client.chat_replies.append("Check logs\nRestart service\nOpen a ticket")
        history = [
            {"role": "user", "content": f"question {i}"} for i in range(6)
        ] + [{"role": "model", "content": "answer"}]

        suggestions = suggest_follow_ups(client, history, temperature=0.4)

        assert suggestions == ["Check logs", "Restart service", "Open a ticket"]
        (request,) = client.chat_requests
        messages = request["messages"]
        assert len(messages) == 5
        assert messages[-2] == {"role": "assistant", "content": "answer"}
        assert messages[-1] == {"role": "user", "content": SUGGESTION_PROMPT}
        assert request["options"] == {"temperature": 0.4}

    def test_default_temperature_from_config(self, make_client):
        client = make_client()
        client.chat_replies.append("Check logs")

        suggest_follow_ups(client, [{"role": "user", "content": "hi"}])

        assert client.chat_requests[0]["options"]["temperature"] == 0.2

    def test_backend_failure_returns_empty(self, make_client):
        client = make_client()
        client.chat_replies.append(BackendConnectionError())

        assert suggest_follow_ups(client, [{"role": "user", "content": "hi"}]) == []

    def test_empty_history(self, make_client):
        client = make_client()
        client.chat_replies.append("")

        assert suggest_follow_ups(client, []) == []
        assert client.chat_requests[0]["messages"] == [
            {"role": "user", "content": SUGGESTION_PROMPT}
        ]
