"""
OpenAI-compatible chat completion endpoints.

Implements /v1/chat/completions (streamed as Server-Sent Events when
``stream`` is set) and /v1/models, plus cancellation of in-flight runs by
their ``X-Run-Id``.
"""

import json
import logging
import time
import uuid
from typing import Iterator, Optional

from fastapi import APIRouter, HTTPException, Response
from fastapi.responses import StreamingResponse

from ..schemas import (
    CancelRunResponse,
    ChatCompletionChoice,
    ChatCompletionMessage,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ErrorResponse,
    ModelInfo,
    ModelListResponse,
    ToolTraceStep,
    UsageInfo,
)
from ..state import build_orchestrator, run_registry
from ...config import config
from ...exceptions import BackendConnectionError, BackendError
from ...orchestration import ChatRun, RunOutcome, new_execution_id
from ...tracing import TracingContext, get_tracing_client

logger = logging.getLogger(__name__)

router = APIRouter()

MODEL_CREATED = int(time.time())

_FINISH_REASONS = {
    RunOutcome.COMPLETED: "stop",
    RunOutcome.TRUNCATED: "length",
    RunOutcome.CANCELLED: "cancelled",
}


@router.get(
    "/v1/models",
    response_model=ModelListResponse,
    summary="List models",
    description="List available models. Returns the configured Ollama model.",
)
def list_models() -> ModelListResponse:
    return ModelListResponse(data=[ModelInfo(id=config.ollama.model, created=MODEL_CREATED)])


@router.get(
    "/v1/models/{model_id:path}",
    response_model=ModelInfo,
    summary="Get model",
)
def get_model(model_id: str) -> ModelInfo:
    if model_id != config.ollama.model:
        raise HTTPException(
            status_code=404,
            detail=f"Model '{model_id}' not found. Available model: {config.ollama.model}",
        )
    return ModelInfo(id=model_id, created=MODEL_CREATED)


def _finish_reason(run: ChatRun) -> str:
    return _FINISH_REASONS.get(run.outcome, "stop")


def _backend_http_error(run_id: str, exc: BackendError) -> HTTPException:
    """Map a backend failure to an HTTP error: unreachable 503, otherwise 502."""
    status_code = 503 if isinstance(exc, BackendConnectionError) else 502
    logger.error(f"[{run_id}] Chat completion failed: {exc}")
    return HTTPException(status_code=status_code, detail=str(exc))


def _create_sse_chunk(
    content: str,
    model: str,
    completion_id: str,
    finish_reason: Optional[str] = None,
) -> str:
    """Create a Server-Sent Events formatted chunk for streaming responses."""
    chunk = {
        "id": completion_id,
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "delta": {"content": content} if content else {},
                "finish_reason": finish_reason,
            }
        ],
    }
    return f"data: {json.dumps(chunk)}\n\n"


def _generate_streaming_response(
    run: ChatRun,
    deltas: Iterator[str],
    first: Optional[str],
    model: str,
    tracing_context: TracingContext,
) -> Iterator[str]:
    """Relay run deltas as SSE chunks, ending with finish_reason and [DONE]."""
    completion_id = f"chatcmpl-{uuid.uuid4().hex[:12]}"
    parts: list[str] = []
    status = "success"

    try:
        if first is not None:
            parts.append(first)
            yield _create_sse_chunk(first, model, completion_id)
        for delta in deltas:
            parts.append(delta)
            yield _create_sse_chunk(delta, model, completion_id)

        yield _create_sse_chunk("", model, completion_id, finish_reason=_finish_reason(run))
    except BackendError as e:
        # Headers are already sent; report the failure in-band.
        logger.error(f"[{run.execution_id}] Stream failed: {e}")
        status = "error"
        error = {"error": {"message": str(e), "type": "backend_error"}}
        yield f"data: {json.dumps(error)}\n\n"
    finally:
        deltas.close()
        run_registry.remove(run.execution_id)
        tracing_context.end_trace(
            output="".join(parts),
            status=status,
            metadata={"outcome": run.outcome.value if run.outcome else None, "turns": run.turn},
        )
        _flush_tracing()

    yield "data: [DONE]\n\n"


def _estimate_usage(request: ChatCompletionRequest, answer: str) -> UsageInfo:
    # Rough approximation; Ollama token counts are not surfaced per run.
    prompt_tokens = sum(
        len(msg.get_text_content().split()) * 2 for msg in request.messages
    )
    completion_tokens = len(answer.split()) * 2
    return UsageInfo(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )


@router.post(
    "/v1/chat/completions",
    response_model=ChatCompletionResponse,
    responses={
        502: {"model": ErrorResponse, "description": "Backend returned an error"},
        503: {"model": ErrorResponse, "description": "Backend unreachable"},
    },
    summary="Create chat completion",
    description=(
        "Run the conversation through the Ollama model, executing any tool calls "
        "it makes against the configured tool servers."
    ),
)
def create_chat_completion(
    request: ChatCompletionRequest,
    response: Response,
) -> ChatCompletionResponse | StreamingResponse:
    """Process a chat completion request through a new chat run."""
    logger.debug(f"Received chat completion request: {request.model_dump_json()}")

    user_messages = [msg for msg in request.messages if msg.role == "user"]
    if not user_messages:
        logger.warning("No user message found in request")
        raise HTTPException(
            status_code=400,
            detail="No user message found in the request.",
        )

    query = user_messages[-1].get_text_content()
    run_id = new_execution_id()
    logger.info(f"[{run_id}] Processing chat completion request: {query[:100]}...")

    orchestrator = build_orchestrator(
        model=request.model,
        temperature=request.temperature,
        max_tokens=request.max_tokens,
    )
    model = orchestrator.client.model

    tracing_context = TracingContext(execution_id=run_id)
    tracing_context.start_trace(
        name="chat_completion",
        input={"query": query},
        metadata={"model": model, "stream": request.stream},
    )

    run = orchestrator.start(
        [msg.to_history_entry() for msg in request.messages],
        execution_id=run_id,
        tracing_context=tracing_context,
    )
    run_registry.register(run)

    if request.stream:
        deltas = run.stream()
        try:
            # Pull the first delta so connection and status failures still
            # map to an HTTP error before any bytes are sent.
            first = next(deltas, None)
        except BackendError as e:
            run_registry.remove(run_id)
            tracing_context.end_trace(output=str(e), status="error")
            _flush_tracing()
            raise _backend_http_error(run_id, e)

        return StreamingResponse(
            _generate_streaming_response(run, deltas, first, model, tracing_context),
            media_type="text/event-stream",
            headers={"X-Run-Id": run_id},
        )

    try:
        answer = run.collect()
    except BackendError as e:
        tracing_context.end_trace(output=str(e), status="error")
        _flush_tracing()
        raise _backend_http_error(run_id, e)
    finally:
        run_registry.remove(run_id)

    logger.debug(f"[{run_id}] Run finished ({run.outcome}): {answer[:200]}...")

    trace = None
    if request.include_trace:
        trace = [ToolTraceStep(**step) for step in run.get_trace()]

    tracing_context.end_trace(
        output=answer,
        status="success",
        metadata={"outcome": run.outcome.value if run.outcome else None, "turns": run.turn},
    )
    _flush_tracing()

    response.headers["X-Run-Id"] = run_id
    return ChatCompletionResponse(
        model=model,
        run_id=run_id,
        choices=[
            ChatCompletionChoice(
                index=0,
                message=ChatCompletionMessage(content=answer),
                finish_reason=_finish_reason(run),
            )
        ],
        usage=_estimate_usage(request, answer),
        trace=trace,
    )


@router.post(
    "/v1/chat/runs/{run_id}/cancel",
    response_model=CancelRunResponse,
    summary="Cancel a chat run",
    description="Stop an in-flight chat run identified by its X-Run-Id.",
)
def cancel_run(run_id: str) -> CancelRunResponse:
    run = run_registry.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found.")
    return CancelRunResponse(run_id=run_id, cancelled=run.cancel())


def _flush_tracing() -> None:
    """Flush tracing client if available."""
    client = get_tracing_client()
    if client:
        client.flush()
