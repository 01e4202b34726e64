"""Tests for CancellationToken."""

import threading

import pytest

from opschat.exceptions import GenerationCancelled
from opschat.orchestration.cancellation import CancellationToken


class TestCancellationToken:
    def test_initially_not_cancelled(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel_is_idempotent(self):
        token = CancellationToken()
        assert token.cancel() is True
        assert token.cancel() is False
        assert token.cancelled is True

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(GenerationCancelled):
            token.raise_if_cancelled()

    def test_callbacks_run_once(self):
        token = CancellationToken()
        calls = []
        token.add_callback(lambda: calls.append("closed"))
        token.cancel()
        token.cancel()
        assert calls == ["closed"]

    def test_callback_added_after_cancel_runs_immediately(self):
        token = CancellationToken()
        token.cancel()
        calls = []
        token.add_callback(lambda: calls.append(1))
        assert calls == [1]

    def test_removed_callback_not_run(self):
        token = CancellationToken()
        calls = []

        def callback():
            calls.append(1)

        token.add_callback(callback)
        token.remove_callback(callback)
        token.cancel()
        assert calls == []

    def test_failing_callback_does_not_block_others(self):
        token = CancellationToken()
        calls = []

        def broken():
            raise OSError("socket already closed")

        token.add_callback(broken)
        token.add_callback(lambda: calls.append(1))
        assert token.cancel() is True
        assert calls == [1]

    def test_cancel_from_another_thread(self):
        token = CancellationToken()
        thread = threading.Thread(target=token.cancel)
        thread.start()
        assert token.wait(timeout=2) is True
        thread.join()
