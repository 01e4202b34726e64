"""Telemetry and follow-up suggestion endpoints."""

import logging

from fastapi import APIRouter, HTTPException

from ..schemas import (
    MetricsImportRequest,
    MetricsResponse,
    SuggestionRequest,
    SuggestionResponse,
)
from ..state import get_metrics_service
from ...llm_call import OllamaClient
from ...suggestions import suggest_follow_ups

logger = logging.getLogger(__name__)

router = APIRouter()


def _metrics_response() -> MetricsResponse:
    metrics = get_metrics_service()
    snapshot = metrics.snapshot()
    return MetricsResponse(
        session_id=snapshot["session_id"],
        summary=metrics.summary(),
        llm_requests=snapshot["llm_requests"],
        tool_usage=snapshot["tool_usage"],
    )


@router.get(
    "/v1/metrics",
    response_model=MetricsResponse,
    summary="Get metrics",
    description="Recent LLM request and tool usage metrics held in memory.",
)
def get_metrics() -> MetricsResponse:
    return _metrics_response()


@router.delete(
    "/v1/metrics",
    response_model=MetricsResponse,
    summary="Clear metrics",
)
def clear_metrics() -> MetricsResponse:
    get_metrics_service().clear()
    logger.info("Metrics buffers cleared")
    return _metrics_response()


@router.post(
    "/v1/metrics/import",
    response_model=MetricsResponse,
    summary="Import metrics",
    description="Replace the in-memory metrics with a previously exported snapshot.",
)
def import_metrics(request: MetricsImportRequest) -> MetricsResponse:
    if not get_metrics_service().import_metrics(request.model_dump()):
        raise HTTPException(status_code=400, detail="Invalid metrics snapshot.")
    return _metrics_response()


@router.post(
    "/v1/suggestions",
    response_model=SuggestionResponse,
    summary="Suggest follow-ups",
    description="Up to three short follow-up commands or questions for the conversation.",
)
def create_suggestions(request: SuggestionRequest) -> SuggestionResponse:
    history = [msg.to_history_entry() for msg in request.messages]
    return SuggestionResponse(
        suggestions=suggest_follow_ups(OllamaClient(model=request.model), history)
    )
