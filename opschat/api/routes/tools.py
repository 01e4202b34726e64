"""Tool catalog endpoint."""

from fastapi import APIRouter

from ..schemas import ToolInfo, ToolListResponse
from ..state import get_tool_catalog
from ...config import config

router = APIRouter()


@router.get(
    "/v1/tools",
    response_model=ToolListResponse,
    summary="List tools",
    description=(
        "Tools currently offered to the model, merged from all active tool "
        "servers. Empty while tools are disabled."
    ),
)
def list_tools() -> ToolListResponse:
    if not config.chat.tools_enabled:
        return ToolListResponse(tools_enabled=False, tools=[])

    return ToolListResponse(
        tools_enabled=True,
        tools=[
            ToolInfo(
                name=tool.name,
                description=tool.description,
                parameters=tool.parameter_schema,
            )
            for tool in get_tool_catalog().list_tools()
        ],
    )
