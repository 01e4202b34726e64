"""
Ollama client for OpsChat.

Wraps the three backend endpoints the chat core needs:
- streaming ``/api/chat`` (newline-delimited JSON, read incrementally)
- non-streaming ``/api/chat`` (follow-up suggestions)
- ``/api/tags`` (reachability check)
"""

import json
import logging
import socket
import threading
from concurrent.futures import Future
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional

import requests

from .config import config
from .exceptions import (
    BackendConnectionError,
    BackendError,
    BackendStatusError,
    GenerationCancelled,
)

if TYPE_CHECKING:
    from .orchestration.cancellation import CancellationToken

logger = logging.getLogger(__name__)

VALIDATE_TIMEOUT = 5


def _response_socket(response: Any) -> Optional[socket.socket]:
    """The socket under a streaming ``requests`` response, if reachable."""
    raw = getattr(response, "raw", None)
    connection = getattr(raw, "connection", None) or getattr(raw, "_connection", None)
    sock = getattr(connection, "sock", None)
    if not isinstance(sock, socket.socket):
        # http.client keeps the socket file on the response once the
        # pool has released the connection object.
        fp = getattr(getattr(raw, "_fp", None), "fp", None)
        sock = getattr(getattr(fp, "raw", None), "_sock", None)
    return sock if isinstance(sock, socket.socket) else None


def abort_response(response: Any) -> None:
    """
    Close a streaming response from any thread.

    ``close()`` alone does not wake a thread blocked in ``recv()``; shutting
    the socket down does, so the pending read returns immediately.
    """
    sock = _response_socket(response)
    if sock is not None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Socket shutdown failed: %s", e)
    response.close()


def _close_abandoned(future: Future) -> None:
    if future.exception() is None:
        abort_response(future.result())


def _send_in_background(send: Callable[[], Any]) -> Future:
    """Run *send* on a daemon thread so the caller can stop waiting for it."""
    future: Future = Future()

    def worker() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(send())
        except BaseException as e:
            future.set_exception(e)

    threading.Thread(target=worker, name="ollama-request", daemon=True).start()
    return future


class OllamaClient:
    """HTTP client for a local Ollama server."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.endpoint = (endpoint or config.ollama.endpoint).rstrip("/")
        self.model = model or config.ollama.model
        self.timeout = timeout if timeout is not None else config.ollama.timeout

    @property
    def chat_url(self) -> str:
        return f"{self.endpoint}/api/chat"

    def validate_endpoint(self) -> bool:
        """Return True if the server answers ``/api/tags`` successfully."""
        try:
            response = requests.get(
                f"{self.endpoint}/api/tags", timeout=VALIDATE_TIMEOUT
            )
            return response.ok
        except requests.exceptions.RequestException as e:
            logger.debug("Endpoint validation for %s failed: %s", self.endpoint, e)
            return False

    def stream_chat(
        self,
        messages: list[dict],
        tools: Optional[list[dict]] = None,
        options: Optional[dict] = None,
        cancel_token: Optional["CancellationToken"] = None,
        execution_id: Optional[str] = None,
    ) -> Iterator[bytes]:
        """
        Issue a streaming chat request and yield raw response chunks.

        The request is sent lazily, on the first ``next()``. When
        *cancel_token* fires before headers arrive the request is abandoned;
        afterwards the response socket is shut down. Either way
        ``GenerationCancelled`` is raised from the pending ``next()``.

        Args:
            messages: Wire-format chat messages.
            tools: Ollama function tool definitions; omitted when empty.
            options: Ollama generation options (temperature, num_predict).
            cancel_token: Token that aborts the request.
            execution_id: Prefix for log lines.

        Raises:
            BackendConnectionError: The server could not be reached.
            BackendStatusError: The server answered with a non-2xx status.
            BackendError: The stream broke off for another transport reason.
            GenerationCancelled: The token fired.
        """
        id_prefix = f"[{execution_id}] " if execution_id else ""

        body: dict = {
            "model": self.model,
            "messages": messages,
            "stream": True,
        }
        if options:
            body["options"] = options
        if tools:
            body["tools"] = tools

        payload = json.dumps(body)
        logger.debug("%sRequest payload size: %d bytes", id_prefix, len(payload))
        logger.debug("%sSending request to: %s", id_prefix, self.chat_url)

        def send() -> requests.Response:
            return requests.post(
                self.chat_url,
                data=payload,
                headers={"Content-Type": "application/json"},
                stream=True,
                timeout=self.timeout,
            )

        try:
            if cancel_token is None:
                response = send()
            else:
                response = self._send_cancellable(send, cancel_token, id_prefix)
        except requests.exceptions.ConnectionError as e:
            if cancel_token is not None and cancel_token.cancelled:
                raise GenerationCancelled("Generation cancelled by user") from e
            logger.error("%sNetwork connection to %s failed: %s", id_prefix, self.chat_url, e)
            raise BackendConnectionError() from e
        except requests.exceptions.RequestException as e:
            logger.error("%sRequest to %s failed: %s", id_prefix, self.chat_url, e)
            raise BackendError(f"Network request failed: {e}") from e

        def abort() -> None:
            abort_response(response)

        if cancel_token is not None:
            cancel_token.add_callback(abort)

        try:
            logger.info(
                "%sResponse status: %s %s", id_prefix, response.status_code, response.reason
            )
            if not response.ok:
                error_text = response.text
                logger.error("%sServer error body: %s", id_prefix, error_text[:500])
                raise BackendStatusError(response.status_code, response.reason or "", error_text)

            try:
                for chunk in response.iter_content(chunk_size=None):
                    if cancel_token is not None:
                        cancel_token.raise_if_cancelled()
                    if chunk:
                        yield chunk
                # A shut-down socket may read as a clean end of stream.
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
            except GenerationCancelled:
                raise
            except Exception as e:
                # Aborting the response from another thread surfaces as an
                # arbitrary read error in the blocked iterator.
                if cancel_token is not None and cancel_token.cancelled:
                    raise GenerationCancelled("Generation cancelled by user") from e
                if isinstance(e, requests.exceptions.RequestException):
                    logger.error("%sStream interrupted: %s", id_prefix, e)
                    raise BackendError(f"Stream interrupted: {e}") from e
                raise
        finally:
            if cancel_token is not None:
                cancel_token.remove_callback(abort)
            response.close()

    @staticmethod
    def _send_cancellable(
        send: Callable[[], requests.Response],
        cancel_token: "CancellationToken",
        id_prefix: str,
    ) -> requests.Response:
        """
        Wait for response headers unless *cancel_token* fires first.

        A cancelled request is left to finish on its own thread; its response
        is closed as soon as it arrives.
        """
        cancel_token.raise_if_cancelled()
        future = _send_in_background(send)
        ready = threading.Event()
        future.add_done_callback(lambda _: ready.set())
        cancel_token.add_callback(ready.set)
        try:
            ready.wait()
        finally:
            cancel_token.remove_callback(ready.set)

        if not future.done():
            logger.info("%sRequest abandoned before response headers", id_prefix)
            future.add_done_callback(_close_abandoned)
            raise GenerationCancelled("Generation cancelled by user")
        return future.result()

    def chat(
        self,
        messages: list[dict],
        options: Optional[dict] = None,
    ) -> str:
        """
        Issue a non-streaming chat request and return the reply content.

        Raises:
            BackendConnectionError: The server could not be reached.
            BackendStatusError: The server answered with a non-2xx status.
            BackendError: The request or response was otherwise unusable.
        """
        body: dict = {
            "model": self.model,
            "messages": messages,
            "stream": False,
        }
        if options:
            body["options"] = options

        try:
            response = requests.post(self.chat_url, json=body, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Ollama call to {self.chat_url} failed: {e}")
            raise BackendConnectionError() from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Ollama call to {self.chat_url} failed: {e}")
            raise BackendError(f"Network request failed: {e}") from e

        if not response.ok:
            raise BackendStatusError(response.status_code, response.reason or "", response.text)

        try:
            data = response.json()
            return (data.get("message") or {}).get("content") or ""
        except (ValueError, AttributeError) as e:
            raise BackendError(f"Unexpected response from {self.chat_url}: {e}") from e
