"""后端端点配置。

本模块把“逻辑端点名”与具体 URL 路径解耦：上层服务只引用逻辑名，
路径变更时集中在这里修改。路径均相对于 api_base_url（已含 /api）。"""

from dataclasses import dataclass
from typing import Mapping
from urllib.parse import quote


@dataclass(frozen=True)
class Endpoint:
    """单个端点的配置。"""

    logical_name: str
    method: str
    path: str

    def format(self, **params: str) -> str:
        return self.path.format(**{k: quote(str(v), safe="") for k, v in params.items()})


ENDPOINTS: Mapping[str, Endpoint] = {
    "chat_stream": Endpoint("chat_stream", "POST", "/ai/stream"),
    "chat": Endpoint("chat", "POST", "/ai/chat"),
    "history": Endpoint("history", "GET", "/ai/history/{user_id}"),
    "clear_history": Endpoint("clear_history", "DELETE", "/ai/history/{user_id}"),
    "conversations": Endpoint("conversations", "GET", "/ai/conversations/{user_id}"),
    "analyze_image": Endpoint("analyze_image", "POST", "/ai/analyze-image"),
    "analyze_document": Endpoint("analyze_document", "POST", "/documents/analyze"),
    "transaction_summary": Endpoint("transaction_summary", "GET", "/transactions/summary/{user_id}"),
}


def get_endpoint(name: str) -> Endpoint:
    """根据逻辑名获取端点配置。"""

    try:
        return ENDPOINTS[name]
    except KeyError:
        raise KeyError(f"Unknown endpoint: {name!r}")
