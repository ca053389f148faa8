"""Chat 传输层抽象接口。

会话状态机不直接依赖 HTTP 细节，而是依赖此协议：

- StreamingChatClient 是默认实现（后端 /ai/stream 文本事件流）。
- 测试中可以用脚本化的假实现替换，逐个推送 chunk。

传输层只负责把字节流解码为 chunk 并调用回调，不修改会话状态。
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol


@dataclass
class StreamCallbacks:
    """一次流式请求的回调集合。

    - on_chunk: 按到达顺序收到每个文本片段。
    - on_complete: 流正常结束（收到 [DONE] 或响应体读完）。
    - on_error: 任何失败；与 on_complete 互斥，且最多调用一次。
    """

    on_chunk: Callable[[str], None]
    on_complete: Callable[[], None]
    on_error: Callable[[Exception], None]


class ChatTransport(Protocol):
    def stream_chat(
        self,
        message: str,
        user_id: Optional[str],
        financial_context: Optional[Dict[str, Any]],
        callbacks: StreamCallbacks,
        should_abort: Optional[Callable[[], bool]] = None,
    ) -> None:
        ...

    def chat(self, message: str, user_id: str, financial_context: Optional[Dict[str, Any]] = None) -> str:
        """非流式调用，返回完整回复文本。"""

        ...
