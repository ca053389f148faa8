"""对话与财务数据模型。

本模块定义了聊天客户端内部共享的标准数据结构：

- Message: 对话中的一条消息（用户或助手），流式期间可追加内容。
- FinancialContextSnapshot: 每次请求随附的只读财务快照。
- AttachmentResult / DocumentImportSummary: 附件分析结果，渲染为消息文本后即丢弃。
- HistoryEntry / ConversationSummary: 后端历史接口的返回结构。

服务层（history/attachments/stream_client）负责在后端 JSON 与这些模型之间做转换。
"""

import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional

from audit_ai.domain.exceptions import ApiError


# 消息发送方（后端历史中的 "model" 在解析时映射为 "assistant"）
Sender = Literal["user", "assistant"]


def _coerce(convert: Callable[[Any], Any], data: Dict[str, Any], key: str) -> Any:
    """把后端字段转换为数值；格式不对时视为响应无效。"""

    value = data.get(key) or 0
    try:
        return convert(value)
    except (TypeError, ValueError):
        raise ApiError(code="INVALID_RESPONSE", message=f"Invalid value for {key}: {value!r}")


class MessageStatus(str, Enum):
    """消息生命周期：pending 表示仍在接收流式内容。"""

    PENDING = "pending"
    SETTLED = "settled"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageIdSource:
    """单调递增的消息 ID 生成器（线程安全）。

    不依赖时钟，同一时刻连续创建的消息也不会得到相同的 ID。
    """

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            return next(self._counter)


@dataclass
class Message:
    """一条对话消息。

    - id: 本地单调 ID，用于在并发流式回复之间区分占位消息。
    - text: 文本内容；pending 状态下只允许追加，失败时整体覆盖。
    - sender: 发送方，user 或 assistant。
    - timestamp: 创建时间（UTC）。
    - attached_image: 用户随消息附带的图片（data URL）。
    - status: pending/settled/failed。
    - remote_id: 从后端历史加载时的原始 ID。
    """

    id: int
    text: str
    sender: Sender
    timestamp: datetime = field(default_factory=_utcnow)
    attached_image: Optional[str] = None
    status: MessageStatus = MessageStatus.SETTLED
    remote_id: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status is MessageStatus.PENDING

    def append_text(self, chunk: str) -> None:
        if not self.is_pending:
            raise RuntimeError(f"message {self.id} is {self.status.value}, cannot append")
        self.text += chunk

    def overwrite_text(self, text: str) -> None:
        if not self.is_pending:
            raise RuntimeError(f"message {self.id} is {self.status.value}, cannot overwrite")
        self.text = text

    def settle(self, status: MessageStatus = MessageStatus.SETTLED) -> None:
        self.status = status


@dataclass(frozen=True)
class FinancialContextSnapshot:
    """随聊天请求发送给助手的只读财务快照。"""

    cash_balance: float = 0.0
    revenue: float = 0.0
    expenses: float = 0.0
    profit: float = 0.0
    profit_margin: float = 0.0

    @classmethod
    def from_metrics(cls, revenue: float, expenses: float, profit: float) -> "FinancialContextSnapshot":
        margin = (profit / revenue) * 100 if revenue > 0 else 0.0
        # 后端目前只提供利润汇总，现金余额先用利润近似
        return cls(
            cash_balance=profit,
            revenue=revenue,
            expenses=expenses,
            profit=profit,
            profit_margin=margin,
        )

    def to_payload(self, document: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "financial": {
                "cashBalance": self.cash_balance,
                "revenue": {"current": self.revenue, "change": 0},
                "expenses": {"current": self.expenses, "change": 0},
                "profit": self.profit,
                "profitMargin": self.profit_margin,
            },
            # 交易明细由后端自行查询
            "transactions": {"total": 0, "pending": 0, "flagged": 0, "recent": []},
            "compliance": {"score": 100, "pendingItems": 0, "upcomingDeadlines": 0},
        }
        if document:
            payload["documentAnalysis"] = dict(document)
        return payload


@dataclass
class AttachmentResult:
    """收据图片的结构化识别结果。"""

    amount: float
    vendor: str
    date: str
    category: str
    description: str
    confidence: float

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "AttachmentResult":
        return cls(
            amount=_coerce(float, data, "amount"),
            vendor=str(data.get("vendor") or ""),
            date=str(data.get("date") or ""),
            category=str(data.get("category") or ""),
            description=str(data.get("description") or ""),
            confidence=_coerce(float, data, "confidence"),
        )

    def to_text(self) -> str:
        return (
            "**Receipt Analysis**\n\n"
            f"Amount: ${self.amount:.2f}\n"
            f"Vendor: {self.vendor}\n"
            f"Date: {self.date}\n"
            f"Category: {self.category}\n"
            f"Description: {self.description}\n"
            f"Confidence: {self.confidence * 100:.0f}%\n\n"
            "Would you like me to create a transaction from this receipt?"
        )


@dataclass
class DocumentImportSummary:
    """表格导入结果摘要。"""

    filename: str
    imported_count: int = 0
    skipped_count: int = 0
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Dict[str, Any], fallback_name: str = "") -> "DocumentImportSummary":
        return cls(
            filename=str(data.get("filename") or fallback_name),
            imported_count=_coerce(int, data, "imported"),
            skipped_count=_coerce(int, data, "skipped"),
            errors=[str(e) for e in (data.get("errors") or [])],
        )

    def to_text(self) -> str:
        lines = [
            f"Successfully uploaded: {self.filename}",
            f"Imported {self.imported_count} transactions automatically!",
            "",
        ]
        if self.skipped_count > 0:
            lines.append(f"Skipped {self.skipped_count} rows (invalid data)")
        if self.errors:
            lines.append("")
            lines.append(f"Errors: {', '.join(self.errors)}")
        lines.append("Check the Transactions page to see your imported data!")
        return "\n".join(lines)


@dataclass
class HistoryEntry:
    """后端保存的一条历史消息。"""

    id: Optional[str]
    sender: Sender
    text: str
    timestamp: Optional[datetime] = None


@dataclass
class ConversationSummary:
    """按日期分组的历史会话摘要。"""

    date: str
    message_count: int
    preview: str
    last_message: Optional[datetime] = None
