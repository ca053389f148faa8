"""对话历史服务。

封装后端 /ai/history 与 /ai/conversations 接口：
读取失败只记录日志并返回空列表，保证页面可以正常挂载。
"""

from datetime import datetime
from typing import Any, List, Optional

from audit_ai.domain.exceptions import BusinessError
from audit_ai.domain.models import ConversationSummary, HistoryEntry
from audit_ai.infrastructure.logging.logger import logger
from audit_ai.transport.endpoints import get_endpoint
from audit_ai.transport.http_client import ApiClient


def _parse_ts(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None


class HistoryService:
    def __init__(self, api: ApiClient):
        self._api = api

    def get_history(self, user_id: str) -> List[HistoryEntry]:
        try:
            data = self._api.get(get_endpoint("history").format(user_id=user_id))
        except BusinessError as e:
            logger.error(f"Failed to get history: {e.message}", extra={"extra": {"user_id": user_id}})
            return []
        entries: List[HistoryEntry] = []
        for item in data.get("history") or []:
            if not isinstance(item, dict):
                continue
            entries.append(
                HistoryEntry(
                    id=str(item["id"]) if item.get("id") is not None else None,
                    sender="assistant" if item.get("role") == "model" else "user",
                    text=str(item.get("parts") or ""),
                    timestamp=_parse_ts(item.get("timestamp")),
                )
            )
        return entries

    def clear_history(self, user_id: str) -> bool:
        """清空后端历史；失败只记录日志，返回 False。"""

        try:
            self._api.delete(get_endpoint("clear_history").format(user_id=user_id))
        except BusinessError as e:
            logger.error(f"Failed to clear history: {e.message}", extra={"extra": {"user_id": user_id}})
            return False
        return True

    def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        try:
            data = self._api.get(get_endpoint("conversations").format(user_id=user_id))
        except BusinessError as e:
            logger.error(f"Failed to get all conversations: {e.message}", extra={"extra": {"user_id": user_id}})
            return []
        return [
            ConversationSummary(
                date=str(group.get("date") or ""),
                message_count=int(group.get("messageCount") or 0),
                preview=str(group.get("preview") or ""),
                last_message=_parse_ts(group.get("lastMessage")),
            )
            for group in data.get("conversations") or []
            if isinstance(group, dict)
        ]
