"""后端通信层。

该包下的模块负责：
- 定义传输层抽象接口与回调 (base)。
- 维护后端端点路径 (endpoints)。
- HTTP 请求、认证头注入与错误归一化 (http_client)。
- 聊天文本事件流的解码 (stream_client)。
"""

from audit_ai.transport.base import ChatTransport, StreamCallbacks
from audit_ai.transport.http_client import ApiClient
from audit_ai.transport.stream_client import StreamingChatClient

__all__ = ["ApiClient", "ChatTransport", "StreamCallbacks", "StreamingChatClient"]
