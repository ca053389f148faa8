"""AI 聊天流式传输客户端。

后端 /ai/stream 返回逐行的文本事件流：
- data: {"chunk": "<text>"}   一个回复片段
- data: [DONE]                流结束

解析策略：只认 "data:" 前缀的行；JSON 解析失败或没有 chunk 字段的行直接跳过，
便于后端后续扩展事件类型。所有失败都通过 on_error 回调返回，绝不抛出到调用方。
"""

import json
from typing import Any, Callable, Dict, Optional

from audit_ai.config.settings import settings
from audit_ai.domain.exceptions import ApiError, BusinessError, NetworkError, ValidationError
from audit_ai.infrastructure.logging.logger import logger
from audit_ai.transport.base import StreamCallbacks
from audit_ai.transport.endpoints import get_endpoint
from audit_ai.transport.http_client import ApiClient


DONE_SENTINEL = "[DONE]"


def parse_stream_line(line: str) -> Optional[Dict[str, Any]]:
    """解析单行事件，返回 JSON 对象；非数据行或格式错误时返回 None。

    结束标记单独返回 {"done": True}。
    """

    text = (line or "").strip()
    if not text.startswith("data:"):
        return None
    data_str = text[5:].strip()
    if data_str == DONE_SENTINEL:
        return {"done": True}
    if not data_str:
        return None
    try:
        payload = json.loads(data_str)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


class StreamingChatClient:
    """后端聊天接口的客户端实现。"""

    name = "audit-ai"

    def __init__(self, api: Optional[ApiClient] = None, cfg=settings):
        self._settings = cfg
        self._api = api or ApiClient(cfg=cfg)

    # ---- 流式 ----

    def stream_chat(
        self,
        message: str,
        user_id: Optional[str],
        financial_context: Optional[Dict[str, Any]],
        callbacks: StreamCallbacks,
        should_abort: Optional[Callable[[], bool]] = None,
    ) -> None:
        log_ctx = {"user_id": user_id, "message_length": len(message or "")}
        if not user_id:
            callbacks.on_error(ValidationError(code="MISSING_USER", message="userId is required"))
            return
        if not (message or "").strip():
            callbacks.on_error(ValidationError(code="EMPTY_MESSAGE", message="Message must not be empty"))
            return

        payload: Dict[str, Any] = {"message": message, "userId": user_id}
        if financial_context is not None:
            payload["financialContext"] = financial_context

        chunks = 0
        try:
            with self._api.open_stream(get_endpoint("chat_stream").path, payload) as resp:
                for line in resp.iter_lines():
                    if should_abort and should_abort():
                        logger.info("Stream aborted by caller", extra={"extra": {**log_ctx, "chunks": chunks}})
                        return
                    event = parse_stream_line(line)
                    if event is None:
                        continue
                    if event.get("done"):
                        break
                    chunk = event.get("chunk")
                    if isinstance(chunk, str) and chunk:
                        chunks += 1
                        callbacks.on_chunk(chunk)
        except BusinessError as e:
            logger.error(f"Stream failed: {e.message}", extra={"extra": {**log_ctx, "code": e.code, "chunks": chunks}})
            callbacks.on_error(e)
            return
        except Exception as e:
            # 解码或回调内部异常同样归入 on_error
            logger.error(f"Stream failed: {e}", extra={"extra": {**log_ctx, "chunks": chunks}})
            callbacks.on_error(NetworkError(code="STREAM_ERROR", message=str(e) or type(e).__name__))
            return

        if should_abort and should_abort():
            return
        logger.info("Stream completed", extra={"extra": {**log_ctx, "chunks": chunks}})
        try:
            callbacks.on_complete()
        except Exception as e:
            # 流已结束，完成回调中的异常只记录，不再转给 on_error
            logger.exception(f"Stream completion callback failed: {e}", extra={"extra": log_ctx})

    # ---- 非流式 ----

    def chat(self, message: str, user_id: str, financial_context: Optional[Dict[str, Any]] = None) -> str:
        if not user_id:
            raise ValidationError(code="MISSING_USER", message="userId is required")
        payload: Dict[str, Any] = {"message": message, "userId": user_id}
        if financial_context is not None:
            payload["financialContext"] = financial_context
        try:
            data = self._api.post(get_endpoint("chat").path, payload)
        except BusinessError as e:
            raise ApiError(
                code=e.code,
                message=f"Failed to get AI response: {e.message}",
                http_status=e.http_status,
            )
        return str(data.get("response") or "")
