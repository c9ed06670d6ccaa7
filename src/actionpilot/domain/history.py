"""User-visible history items."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class HistoryItemType(Enum):
    PLAN = "plan"
    TOOL_CALL = "tool_call"
    MESSAGE = "message"


@dataclass
class HistoryItem:
    """An entry in a user's bounded history log.

    ``data`` depends on ``item_type``:
    - plan: plan_title, status, action_count, plan_id, actions
    - tool_call: tool_name, status, summary, step_id, plan_id, arguments, result
    - message: text, role
    """

    id: str
    item_type: HistoryItemType
    timestamp: str
    user_id: str
    session_id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "item_type": self.item_type.value,
            "timestamp": self.timestamp,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryItem":
        return cls(
            id=str(data["id"]),
            item_type=HistoryItemType(data["item_type"]),
            timestamp=str(data["timestamp"]),
            user_id=str(data["user_id"]),
            session_id=str(data.get("session_id") or ""),
            data=dict(data.get("data") or {}),
        )
