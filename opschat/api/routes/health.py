"""Health check endpoints."""

import logging

from fastapi import APIRouter

from ..schemas import HealthResponse
from ... import __version__
from ...config import config
from ...llm_call import OllamaClient

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description=(
        "Check that the API server is running and whether the Ollama backend "
        "answers. The server reports 'degraded' while the backend is unreachable."
    ),
)
def health_check() -> HealthResponse:
    reachable = OllamaClient().validate_endpoint()
    if not reachable:
        logger.warning(f"Ollama backend at {config.ollama.endpoint} is unreachable")
    return HealthResponse(
        status="healthy" if reachable else "degraded",
        version=__version__,
        model=config.ollama.model,
        backend_reachable=reachable,
    )
