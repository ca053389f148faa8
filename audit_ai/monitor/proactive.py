"""主动财务监控。

后台线程按固定间隔读取财务快照，利润为负时发送本地通知。
通知带固定 tag，重复触发时替换而不是堆叠；监控只读，不修改任何状态。
"""

import threading
from typing import Callable, Literal, Optional, Protocol

from audit_ai.config.settings import settings
from audit_ai.domain.models import FinancialContextSnapshot
from audit_ai.infrastructure.logging.logger import logger


Permission = Literal["default", "granted", "denied"]


class Notifier(Protocol):
    permission: Permission

    def request_permission(self) -> Permission:
        ...

    def notify(self, title: str, body: str, tag: str) -> None:
        ...


class NullNotifier:
    """宿主环境没有通知能力时使用。"""

    permission: Permission = "denied"

    def request_permission(self) -> Permission:
        return self.permission

    def notify(self, title: str, body: str, tag: str) -> None:
        logger.info("Notification suppressed", extra={"extra": {"title": title, "tag": tag}})


class ProactiveMonitor:
    def __init__(
        self,
        snapshot_source: Callable[[], FinancialContextSnapshot],
        notifier: Optional[Notifier] = None,
        cfg=settings,
    ):
        self._snapshot_source = snapshot_source
        self._notifier = notifier or NullNotifier()
        self._settings = cfg
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.enabled = notifier is not None and notifier.permission == "granted"

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def enable_notifications(self) -> bool:
        """请求通知权限；结果为 granted 时启用。"""

        permission = self._notifier.permission
        if permission == "default":
            permission = self._notifier.request_permission()
        self.enabled = permission == "granted"
        return self.enabled

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="audit-ai-monitor", daemon=True)
        self._thread.start()
        logger.info("ProactiveMonitor started", extra={"extra": {"interval": self._settings.monitor_interval_seconds}})

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread and thread is not threading.current_thread():
            thread.join(timeout)

    def _loop(self) -> None:
        interval = self._settings.monitor_interval_seconds
        while not self._stop.wait(interval):
            try:
                self.check()
            except Exception as exc:
                logger.error(f"ProactiveMonitor.check failed: {exc}")

    def check(self) -> bool:
        """评估一次快照；发出通知时返回 True。"""

        snap = self._snapshot_source()
        if snap.profit >= 0:
            return False
        if not self.enabled or self._notifier.permission != "granted":
            return False
        self._notifier.notify(
            "Profit Alert",
            f"Current profit is negative (${snap.profit:,.2f}). Review expenses.",
            self._settings.notification_tag,
        )
        return True
