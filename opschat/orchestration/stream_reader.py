"""
Incremental reader for Ollama's newline-delimited JSON chat stream.

Each line of a streaming ``/api/chat`` response is a JSON object::

    {"message": {"content": "...", "thinking": "...",
                 "tool_calls": [{"function": {"name": "...", "arguments": {}}}]},
     "done": false}

The reader buffers partial lines across network chunks, turns every line
into typed frames, and re-emits the text as a single sequence in which
thinking text is bracketed by ``<think>`` / ``</think>`` markers. Tool call
fragments are collected in arrival order for the caller to execute once
the stream ends.
"""

import codecs
import json
import logging
import time
from typing import Iterable, Iterator, Optional, Union

from ..exceptions import BackendError, MalformedFrameError
from ..models import (
    ContentDelta,
    Done,
    StreamFrame,
    ThinkingDelta,
    ToolCallFragment,
    ToolCallRequest,
)
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

Chunk = Union[bytes, str]


def iter_lines(chunks: Iterable[Chunk]) -> Iterator[str]:
    """
    Split a chunked byte (or text) stream into complete lines.

    A line is only yielded once its terminating newline has arrived, except
    for a trailing unterminated line which is yielded at end of stream.
    UTF-8 sequences split across chunks are decoded correctly. Blank lines
    are dropped.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    for chunk in chunks:
        if isinstance(chunk, bytes):
            buffer += decoder.decode(chunk)
        else:
            buffer += chunk

        if "\n" not in buffer:
            continue
        *lines, buffer = buffer.split("\n")
        for line in lines:
            if line.strip():
                yield line.rstrip("\r")

    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        yield buffer.rstrip("\r")


def parse_frames(line: str) -> list[StreamFrame]:
    """
    Interpret one stream line as an ordered list of frames.

    Order within a line is: tool call fragments, thinking, content, done.

    Raises:
        MalformedFrameError: If the line is not a JSON object of the
            expected shape.
        BackendError: If the backend reported an error in-stream.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedFrameError(line, str(e)) from e

    if not isinstance(data, dict):
        raise MalformedFrameError(line, "expected a JSON object")

    if data.get("error"):
        raise BackendError(f"Ollama stream error: {data['error']}")

    message = data.get("message") or {}
    if not isinstance(message, dict):
        raise MalformedFrameError(line, "'message' is not an object")

    frames: list[StreamFrame] = []

    tool_calls = message.get("tool_calls") or []
    if not isinstance(tool_calls, list):
        raise MalformedFrameError(line, "'tool_calls' is not a list")
    for fragment in tool_calls:
        if isinstance(fragment, dict):
            frames.append(ToolCallFragment(ToolCallRequest.from_wire(fragment)))

    thinking = message.get("thinking")
    if isinstance(thinking, str) and thinking:
        frames.append(ThinkingDelta(thinking))

    content = message.get("content")
    if isinstance(content, str) and content:
        frames.append(ContentDelta(content))

    if data.get("done") is True:
        frames.append(Done())

    return frames


class StreamReader:
    """
    Single-pass iterator over the text deltas of one streaming response.

    Iterating yields content and thinking text in arrival order, with
    ``THINK_OPEN`` emitted before the first thinking delta of a run and
    ``THINK_CLOSE`` emitted before the next content delta or at end of
    stream. Malformed lines are logged and skipped.

    After iteration the accumulated ``content``, ``thinking`` and
    ``tool_calls`` are available.
    """

    def __init__(
        self,
        chunks: Iterable[Chunk],
        cancel_token: Optional[CancellationToken] = None,
        execution_id: Optional[str] = None,
    ):
        self._chunks = chunks
        self._cancel_token = cancel_token
        self._id_prefix = f"[{execution_id}] " if execution_id else ""
        self._consumed = False
        self._in_thinking = False
        self._content_parts: list[str] = []
        self._thinking_parts: list[str] = []

        self.tool_calls: list[ToolCallRequest] = []
        self.saw_done = False
        self.skipped_lines = 0
        self.first_chunk_at: Optional[float] = None

    @property
    def content(self) -> str:
        return "".join(self._content_parts)

    @property
    def thinking(self) -> str:
        return "".join(self._thinking_parts)

    @property
    def in_thinking(self) -> bool:
        return self._in_thinking

    def __iter__(self) -> Iterator[str]:
        if self._consumed:
            raise RuntimeError("StreamReader can only be iterated once")
        self._consumed = True

        for line in iter_lines(self._checked_chunks()):
            try:
                frames = parse_frames(line)
            except MalformedFrameError:
                self.skipped_lines += 1
                logger.warning(
                    "%sSkipping malformed stream line: %s", self._id_prefix, line[:200]
                )
                continue

            for frame in frames:
                if isinstance(frame, ToolCallFragment):
                    self.tool_calls.append(frame.call)
                elif isinstance(frame, ThinkingDelta):
                    if not self._in_thinking:
                        self._in_thinking = True
                        yield THINK_OPEN
                    self._thinking_parts.append(frame.text)
                    yield frame.text
                elif isinstance(frame, ContentDelta):
                    if self._in_thinking:
                        self._in_thinking = False
                        yield THINK_CLOSE
                    self._content_parts.append(frame.text)
                    yield frame.text
                elif isinstance(frame, Done):
                    self.saw_done = True

            if self.saw_done:
                break

        if self._in_thinking:
            self._in_thinking = False
            yield THINK_CLOSE

        logger.debug(
            "%sStream complete: %d content chars, %d thinking chars, %d tool calls",
            self._id_prefix,
            len(self.content),
            len(self.thinking),
            len(self.tool_calls),
        )

    def close(self) -> None:
        """Release the underlying chunk source."""
        close = getattr(self._chunks, "close", None)
        if callable(close):
            close()

    def _checked_chunks(self) -> Iterator[Chunk]:
        for chunk in self._chunks:
            if self._cancel_token is not None:
                self._cancel_token.raise_if_cancelled()
            if self.first_chunk_at is None:
                self.first_chunk_at = time.monotonic()
            yield chunk
