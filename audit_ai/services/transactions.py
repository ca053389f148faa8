"""交易汇总（外部协作者）。

聊天子系统只读取汇总快照，并在助手回复/表格导入后请求刷新；
交易本身的增删改不在本包范围内。
"""

from threading import Lock
from typing import Optional, Protocol

from audit_ai.domain.exceptions import BusinessError
from audit_ai.domain.models import FinancialContextSnapshot
from audit_ai.infrastructure.logging.logger import logger
from audit_ai.transport.endpoints import get_endpoint
from audit_ai.transport.http_client import ApiClient


class TransactionAggregate(Protocol):
    def snapshot(self) -> FinancialContextSnapshot:
        ...

    def refresh(self) -> None:
        ...


class RemoteTransactionAggregate:
    """从 /transactions/summary/<user_id> 拉取收入、支出与利润。"""

    def __init__(self, api: ApiClient, user_id: Optional[str]):
        self._api = api
        self._user_id = user_id
        self._snapshot = FinancialContextSnapshot()
        self._lock = Lock()

    def snapshot(self) -> FinancialContextSnapshot:
        with self._lock:
            return self._snapshot

    def refresh(self) -> None:
        if not self._user_id:
            with self._lock:
                self._snapshot = FinancialContextSnapshot()
            return
        try:
            data = self._api.get(get_endpoint("transaction_summary").format(user_id=self._user_id))
        except BusinessError as e:
            # 保留上一次快照
            logger.error(f"Error fetching transactions: {e.message}", extra={"extra": {"user_id": self._user_id}})
            return
        try:
            snap = FinancialContextSnapshot.from_metrics(
                revenue=float(data.get("revenue") or 0),
                expenses=float(data.get("expenses") or 0),
                profit=float(data.get("profit") or 0),
            )
        except (TypeError, ValueError) as e:
            logger.error(f"Invalid transaction summary: {e}", extra={"extra": {"user_id": self._user_id}})
            return
        with self._lock:
            self._snapshot = snap
