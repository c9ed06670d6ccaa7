"""History router."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from actionpilot.api.dependencies import get_history_service
from actionpilot.services.history_service import HistoryService

router = APIRouter(prefix="/history", tags=["history"])


@router.get("/{user_id}")
async def list_history(
    user_id: str,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    history: HistoryService = Depends(get_history_service),
) -> Dict[str, Any]:
    items = history.get_user_history(user_id, limit=limit, offset=offset)
    return {"user_id": user_id, "items": [item.to_dict() for item in items]}


@router.get("/{user_id}/{item_id}")
async def get_history_item(
    user_id: str,
    item_id: str,
    history: HistoryService = Depends(get_history_service),
) -> Dict[str, Any]:
    item = history.get_item(user_id, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="History item not found")
    return item.to_dict()


@router.delete("/{user_id}")
async def delete_history(
    user_id: str,
    history: HistoryService = Depends(get_history_service),
) -> Dict[str, Any]:
    return {"user_id": user_id, "deleted": history.delete_user_history(user_id)}
