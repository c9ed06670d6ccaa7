"""Tools router - the tool contracts runs are validated against."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from actionpilot.api.dependencies import get_tool_registry
from actionpilot.domain.errors import ToolNotFoundError
from actionpilot.kernel.tools.tool_registry import ToolRegistry

router = APIRouter(prefix="/tools", tags=["tools"])


@router.get("")
async def list_tools(
    category: Optional[List[str]] = Query(None),
    registry: ToolRegistry = Depends(get_tool_registry),
) -> Dict[str, Any]:
    """List tool definitions, optionally only those in the given categories."""
    if category:
        tools = registry.tools_by_category(category)
    else:
        tools = [registry.get_tool_definition(name) for name in registry.supported_tool_names()]
    return {"tools": tools}


@router.get("/{tool_name}")
async def get_tool(
    tool_name: str,
    registry: ToolRegistry = Depends(get_tool_registry),
) -> Dict[str, Any]:
    try:
        return registry.require_tool_definition(tool_name)
    except ToolNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
